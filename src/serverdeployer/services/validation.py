"""Input and environment validation helpers for ServerDeployer."""

import re
import shutil
from typing import Callable, Iterable, Optional

from serverdeployer.errors import PreconditionError
from serverdeployer.errors_catalog import actionable_error

_LABEL_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


class ValidationService:
    """Checks everything that must hold before the cluster is touched."""

    def __init__(self, which: Callable[[str], Optional[str]] = shutil.which):
        self.which = which

    def is_valid_fqdn(self, fqdn: str) -> bool:
        if not fqdn or len(fqdn) > 253:
            return False
        labels = fqdn.rstrip(".").split(".")
        if len(labels) < 2:
            return False
        return all(_LABEL_RE.match(label) for label in labels)

    def validate_fqdn(self, fqdn: str):
        if not self.is_valid_fqdn(fqdn):
            raise PreconditionError(actionable_error("invalid_fqdn", fqdn=fqdn))

    def ensure_tools(self, tools: Iterable[str]):
        for tool in tools:
            if self.which(tool) is None:
                raise PreconditionError(actionable_error("missing_tool", tool=tool))
