"""Container image reference helpers."""

from serverdeployer.errors import DeployerError
from serverdeployer.models import ImageConfig


def compute_image(registry: str, image: ImageConfig, tag: str = "", suffix: str = "") -> str:
    """Builds ``registry/name<suffix>:tag``.

    A tag already present in the image name wins over ``tag`` and the image's
    configured tag. The registry is only prepended when the name does not
    already start with it.
    """
    name = image.name.strip()
    if not name:
        raise DeployerError("Image name cannot be empty.")

    last_segment = name.rsplit("/", 1)[-1]
    name_tag = ""
    if ":" in last_segment:
        name, _, name_tag = name.rpartition(":")

    name = f"{name}{suffix}"
    registry = registry.strip().rstrip("/")
    if registry and not name.startswith(f"{registry}/"):
        name = f"{registry}/{name}"

    final_tag = name_tag or tag or image.tag
    if not final_tag:
        raise DeployerError(f"No tag defined for image {name}.")
    return f"{name}:{final_tag}"
