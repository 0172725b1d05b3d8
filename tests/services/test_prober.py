import pytest

from serverdeployer.errors import DeployerError, InspectionError
from serverdeployer.services.prober import (
    ClusterStateProber,
    parse_inspected_data,
    parse_migration_data,
)


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakePodClient:
    def __init__(self, logs="", fail_wait=False, fail_delete=False):
        self.logs = logs
        self.fail_wait = fail_wait
        self.fail_delete = fail_delete
        self.calls = []

    def recreate(self, obj, _error_message):
        self.calls.append(("recreate", obj["kind"], obj["metadata"]["name"]))

    def wait_for_pod(self, namespace, name, timeout):
        self.calls.append(("wait_for_pod", name, timeout))
        if self.fail_wait:
            raise DeployerError(f"Pod {name} failed.")

    def get_logs(self, namespace, name):
        self.calls.append(("get_logs", name))
        return self.logs

    def delete(self, kind, namespace, name):
        self.calls.append(("delete", kind, name))
        if self.fail_delete:
            raise DeployerError("cannot delete")

    def has_volume(self, namespace, name):
        return name == "var-pgsql"

    def get_deployment_image(self, namespace, name):
        return ""


INSPECT_OUTPUT = """
current_pg_version=14
image_pg_version=16
server_version=2024.10
timezone=Europe/Berlin
db_user=spacewalk
db_password=secret=with=equals
db_name=susemanager
db_port=5432
fqdn=server.example.com
debug=false
has_hub_api=true
"""


def test_parse_inspected_data_reads_key_values():
    data = parse_inspected_data(INSPECT_OUTPUT)

    assert data.current_pg_version == 14
    assert data.image_pg_version == 16
    assert data.db_password == "secret=with=equals"
    assert data.has_hub_api is True
    assert data.debug is False
    assert data.fqdn == "server.example.com"


def test_parse_inspected_data_requires_pg_versions():
    with pytest.raises(InspectionError, match="PostgreSQL version"):
        parse_inspected_data("current_pg_version=\nimage_pg_version=16\n")


def test_parse_migration_data_maps_files():
    output = (
        "RHN-ORG-PRIVATE-SSL-KEY: |2\n  KEY\n"
        "RHN-ORG-TRUSTED-SSL-CERT: |2\n  CERT\n"
        "data: |2\n  current_pg_version=14\n  image_pg_version=14\n  fqdn=old.example.com\n"
    )

    payload = parse_migration_data(output)

    assert payload.ca_key == "KEY\n"
    assert payload.ca_cert == "CERT\n"
    assert payload.server_cert == ""
    assert payload.data.fqdn == "old.example.com"


def test_parse_migration_data_requires_data_file():
    with pytest.raises(InspectionError, match="no data file"):
        parse_migration_data("spacewalk.crt: |2\n  CERT\n")


def test_probe_reports_prior_deployment_without_running_image():
    prober = ClusterStateProber(FakePodClient(), DummyLogger(), DummyConsole())

    assert prober.probe("ns") == (True, None)


def test_inspect_runs_and_deletes_pod():
    client = FakePodClient(logs=INSPECT_OUTPUT)
    prober = ClusterStateProber(client, DummyLogger(), DummyConsole())

    inspected = prober.inspect("ns", "registry/server:latest", "IfNotPresent")

    assert inspected.image_pg_version == 16
    assert client.calls[0] == ("recreate", "Pod", "uyuni-image-inspector")
    assert client.calls[1] == ("wait_for_pod", "uyuni-image-inspector", 60)
    assert client.calls[-1] == ("delete", "pod", "uyuni-image-inspector")


def test_inspect_deletes_pod_when_it_fails():
    client = FakePodClient(fail_wait=True)
    prober = ClusterStateProber(client, DummyLogger(), DummyConsole())

    with pytest.raises(DeployerError, match="failed"):
        prober.inspect("ns", "registry/server:latest", "IfNotPresent")

    assert client.calls[-1] == ("delete", "pod", "uyuni-image-inspector")


def test_inspect_deletes_pod_when_parsing_fails():
    client = FakePodClient(logs="garbage")
    prober = ClusterStateProber(client, DummyLogger(), DummyConsole())

    with pytest.raises(InspectionError):
        prober.inspect("ns", "registry/server:latest", "IfNotPresent")

    assert client.calls[-1] == ("delete", "pod", "uyuni-image-inspector")


def test_inspect_tolerates_cleanup_failure():
    client = FakePodClient(logs=INSPECT_OUTPUT, fail_delete=True)
    prober = ClusterStateProber(client, DummyLogger(), DummyConsole())

    inspected = prober.inspect("ns", "registry/server:latest", "IfNotPresent")

    assert inspected.current_pg_version == 14
