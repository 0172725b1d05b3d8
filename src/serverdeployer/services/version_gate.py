"""Version transition checks for ServerDeployer."""

from typing import Optional

from packaging import version

from serverdeployer.errors import UnsupportedTransitionError
from serverdeployer.errors_catalog import actionable_error
from serverdeployer.models import InspectedConfiguration, VersionTransition


def classify(installed: int, target: int) -> VersionTransition:
    if installed > target:
        return VersionTransition.UNSUPPORTED_DOWNGRADE
    if installed < target:
        return VersionTransition.UPGRADE
    return VersionTransition.NO_CHANGE


def ensure_supported(installed: int, target: int) -> VersionTransition:
    """Classifies the database transition and rejects downgrades."""
    transition = classify(installed, target)
    if transition is VersionTransition.UNSUPPORTED_DOWNGRADE:
        raise UnsupportedTransitionError(
            actionable_error("db_downgrade", old=str(installed), new=str(target))
        )
    return transition


def _parse_version(value: str) -> Optional[version.Version]:
    try:
        return version.parse(value.strip())
    except version.InvalidVersion:
        return None


def sanity_check(running: Optional[InspectedConfiguration], target: InspectedConfiguration):
    """Refuses to replace a running server with an older product version."""
    if running is None or not running.server_version or not target.server_version:
        return

    running_version = _parse_version(running.server_version)
    target_version = _parse_version(target.server_version)
    if running_version is None or target_version is None:
        return

    if target_version < running_version:
        raise UnsupportedTransitionError(
            actionable_error(
                "server_downgrade", old=running.server_version, new=target.server_version
            )
        )
