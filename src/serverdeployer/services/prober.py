"""Cluster state inspection for ServerDeployer."""

from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Sequence, Tuple

import yaml

from serverdeployer.constants import (
    DB_VOLUME_NAME,
    EXTRACTOR_POD_NAME,
    INSPECT_POD_TIMEOUT,
    INSPECTOR_POD_NAME,
    MIGRATION_DATA_PATH,
    MIGRATION_DATA_VOLUME,
    SERVER_DEPLOY_NAME,
)
from serverdeployer.errors import DeployerError, InspectionError
from serverdeployer.errors_catalog import actionable_error
from serverdeployer.models import InspectedConfiguration, MigrationPayload, VolumeMount
from serverdeployer.services.manifests import ManifestBuilder
from serverdeployer.services.scripts import INSPECT_MOUNTS, INSPECT_SCRIPT, build_extractor_script

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}

MIGRATION_FILES = {
    "RHN-ORG-PRIVATE-SSL-KEY": "ca_key",
    "RHN-ORG-TRUSTED-SSL-CERT": "ca_cert",
    "spacewalk.crt": "server_cert",
    "spacewalk.key": "server_key",
}


def parse_inspected_data(output: str) -> InspectedConfiguration:
    """Parses the ``key=value`` lines written by the inspection script."""
    values: Dict[str, str] = {}
    for line in output.splitlines():
        key, separator, value = line.strip().partition("=")
        if separator and key:
            values[key.strip()] = value.strip()

    try:
        current_pg_version = int(values["current_pg_version"])
        image_pg_version = int(values["image_pg_version"])
    except (KeyError, ValueError) as exc:
        raise InspectionError(
            f"Failed to parse the inspected data: invalid or missing PostgreSQL version ({exc})."
        ) from exc

    try:
        db_port = int(values.get("db_port") or 5432)
    except ValueError as exc:
        raise InspectionError(f"Failed to parse the inspected data: invalid db_port ({exc}).") from exc

    return InspectedConfiguration(
        current_pg_version=current_pg_version,
        image_pg_version=image_pg_version,
        server_version=values.get("server_version", ""),
        timezone=values.get("timezone", ""),
        debug=values.get("debug", "").lower() in _TRUE_VALUES,
        db_user=values.get("db_user", ""),
        db_password=values.get("db_password", ""),
        db_name=values.get("db_name", ""),
        db_port=db_port,
        has_hub_api=values.get("has_hub_api", "").lower() in _TRUE_VALUES,
        fqdn=values.get("fqdn", ""),
    )


def parse_migration_data(output: str) -> MigrationPayload:
    try:
        files = yaml.safe_load(output) or {}
    except yaml.YAMLError as exc:
        raise InspectionError(f"Failed to parse data extractor pod output: {exc}") from exc
    if not isinstance(files, dict):
        raise InspectionError("Failed to parse data extractor pod output: expected a mapping.")

    if "data" not in files:
        raise InspectionError(actionable_error("missing_migration_data"))

    secrets = {field: str(files.get(name) or "") for name, field in MIGRATION_FILES.items()}
    return MigrationPayload(data=parse_inspected_data(str(files["data"])), **secrets)


class ClusterStateProber:
    """Detects prior deployments and reads their configuration."""

    def __init__(self, client, logger, console, pod_timeout: int = INSPECT_POD_TIMEOUT):
        self.client = client
        self.logger = logger
        self.console = console
        self.pod_timeout = pod_timeout

    def probe(self, namespace: str) -> Tuple[bool, Optional[str]]:
        has_prior = self.client.has_volume(namespace, DB_VOLUME_NAME)
        running_image = self.client.get_deployment_image(namespace, SERVER_DEPLOY_NAME) or None
        self.logger.debug(
            "Probe of %s: prior deployment=%s, running image=%s", namespace, has_prior, running_image
        )
        return has_prior, running_image

    @contextmanager
    def _run_pod(
        self,
        namespace: str,
        pod_name: str,
        image: str,
        pull_policy: str,
        script: str,
        mounts: Sequence[VolumeMount],
    ) -> Iterator[str]:
        """Runs a one-shot pod and yields its logs, always deleting it afterwards."""
        pod = ManifestBuilder(namespace).pod(pod_name, image, pull_policy, script, mounts)
        try:
            self.client.recreate(pod, f"failed to run the {pod_name} pod")
            self.client.wait_for_pod(namespace, pod_name, self.pod_timeout)
            try:
                logs = self.client.get_logs(namespace, pod_name)
            except DeployerError as exc:
                raise InspectionError(f"Failed to get the {pod_name} pod logs: {exc}") from exc
            yield logs
        finally:
            try:
                self.client.delete("pod", namespace, pod_name)
            except DeployerError as exc:
                self.logger.warning("Failed to delete the %s pod: %s", pod_name, exc)

    def inspect(self, namespace: str, image: str, pull_policy: str) -> InspectedConfiguration:
        self.console.print(f"[blue]Inspecting {image}...[/blue]")
        with self._run_pod(
            namespace, INSPECTOR_POD_NAME, image, pull_policy, INSPECT_SCRIPT, INSPECT_MOUNTS
        ) as output:
            inspected = parse_inspected_data(output)

        self.logger.info(
            "Inspected %s: PostgreSQL %s (image %s), server version '%s'",
            image,
            inspected.current_pg_version,
            inspected.image_pg_version,
            inspected.server_version or "<unknown>",
        )
        return inspected

    def extract_migration_data(self, namespace: str, image: str) -> MigrationPayload:
        self.console.print("[blue]Reading migrated data...[/blue]")
        mounts = [VolumeMount(MIGRATION_DATA_VOLUME, MIGRATION_DATA_PATH)]
        with self._run_pod(
            namespace,
            EXTRACTOR_POD_NAME,
            image,
            "IfNotPresent",
            build_extractor_script(),
            mounts,
        ) as output:
            return parse_migration_data(output)
