"""Migration preparation helpers."""

from pathlib import Path

from serverdeployer.constants import SSH_CONFIGMAP_NAME, SSH_SECRET_NAME
from serverdeployer.errors import PreconditionError
from serverdeployer.errors_catalog import actionable_error
from serverdeployer.models import SshConfig
from serverdeployer.services.manifests import ManifestBuilder

DEFAULT_SSH_CONFIG = """Host *
    IdentityFile /root/.ssh/key
    StrictHostKeyChecking yes
"""


def _read(path: str, label: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise PreconditionError(f"Cannot read SSH {label} file '{path}': {exc}") from exc


def ensure_ssh_resources(client, namespace: str, ssh: SshConfig, logger):
    """Stores the SSH files in the cluster or checks they are already there."""
    provided = {
        "private key": ssh.private_key,
        "public key": ssh.public_key,
        "known hosts": ssh.known_hosts,
    }
    if all(provided.values()):
        config = _read(ssh.config, "config") if ssh.config else DEFAULT_SSH_CONFIG
        objects = ManifestBuilder(namespace).ssh_resources(
            _read(ssh.private_key, "private key"),
            _read(ssh.public_key, "public key"),
            _read(ssh.known_hosts, "known hosts"),
            config,
        )
        client.apply(objects, "failed to create the SSH secret and config map")
        return

    if not client.exists("secret", namespace, SSH_SECRET_NAME):
        missing = next((label for label, value in provided.items() if not value), "key")
        raise PreconditionError(actionable_error("missing_ssh", item=missing, resource=SSH_SECRET_NAME))
    if not client.exists("configmap", namespace, SSH_CONFIGMAP_NAME):
        raise PreconditionError(
            actionable_error("missing_ssh", item="configuration", resource=SSH_CONFIGMAP_NAME)
        )
    logger.info("Reusing the existing %s secret and %s config map", SSH_SECRET_NAME, SSH_CONFIGMAP_NAME)
