import pytest

from serverdeployer.errors import UnsupportedTransitionError
from serverdeployer.models import InspectedConfiguration, VersionTransition
from serverdeployer.services.version_gate import classify, ensure_supported, sanity_check


@pytest.mark.parametrize(
    "installed, target, expected",
    [
        (14, 16, VersionTransition.UPGRADE),
        (16, 16, VersionTransition.NO_CHANGE),
        (16, 15, VersionTransition.UNSUPPORTED_DOWNGRADE),
    ],
)
def test_classify_outcomes(installed, target, expected):
    assert classify(installed, target) is expected


def test_classify_covers_every_pair_with_three_outcomes():
    for installed in range(10, 18):
        for target in range(10, 18):
            outcome = classify(installed, target)
            assert (outcome is VersionTransition.UNSUPPORTED_DOWNGRADE) == (installed > target)
            assert (outcome is VersionTransition.NO_CHANGE) == (installed == target)
            assert (outcome is VersionTransition.UPGRADE) == (installed < target)


def test_ensure_supported_names_both_versions_on_downgrade():
    with pytest.raises(UnsupportedTransitionError, match="PostgreSQL 16 to 15"):
        ensure_supported(16, 15)


def test_ensure_supported_returns_upgrade():
    assert ensure_supported(15, 16) is VersionTransition.UPGRADE


def _inspected(server_version):
    return InspectedConfiguration(current_pg_version=16, image_pg_version=16, server_version=server_version)


def test_sanity_check_rejects_older_server_version():
    with pytest.raises(UnsupportedTransitionError, match="2024.10"):
        sanity_check(_inspected("2024.10"), _inspected("2024.08"))


def test_sanity_check_accepts_newer_or_unknown_versions():
    sanity_check(_inspected("2024.08"), _inspected("2024.10"))
    sanity_check(None, _inspected("2024.10"))
    sanity_check(_inspected("5.0.1"), _inspected("not a version"))
