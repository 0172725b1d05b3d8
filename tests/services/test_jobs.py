from serverdeployer.models import ImageConfig, InspectedConfiguration, VersionTransition, VolumeMount
from serverdeployer.services.jobs import JobSequencer, db_upgrade_job, migration_job


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class FakeJobClient:
    def __init__(self):
        self.calls = []
        self.jobs = {}

    def recreate(self, obj, _error_message):
        name = obj["metadata"]["name"]
        self.jobs[name] = obj
        self.calls.append(("recreate", name))

    def wait_for_job(self, namespace, name, timeout):
        self.calls.append(("wait", name, timeout))


SERVER_IMAGE = ImageConfig(name="server", tag="5.1", registry="registry.example.com/uyuni")


def _run(installed, target, migration=False):
    client = FakeJobClient()
    sequencer = JobSequencer(client, DummyLogger(), DummyConsole())
    sequencer.run_upgrade_jobs(
        "ns",
        VersionTransition.UPGRADE if installed < target else VersionTransition.NO_CHANGE,
        InspectedConfiguration(current_pg_version=installed, image_pg_version=target),
        SERVER_IMAGE.registry,
        SERVER_IMAGE,
        "registry.example.com/uyuni/server:5.1",
        migration=migration,
    )
    return client


def _script(job):
    return job["spec"]["template"]["spec"]["containers"][0]["command"][2]


def test_upgrade_runs_schema_job_before_finalize():
    client = _run(15, 16)

    assert client.calls == [
        ("recreate", "uyuni-db-upgrade"),
        ("wait", "uyuni-db-upgrade", None),
        ("recreate", "uyuni-db-finalize"),
        ("wait", "uyuni-db-finalize", None),
        ("recreate", "uyuni-post-upgrade"),
        ("wait", "uyuni-post-upgrade", 60),
    ]
    assert "check-database" in _script(client.jobs["uyuni-db-finalize"])


def test_no_change_skips_schema_job_and_update():
    client = _run(16, 16)

    names = [call[1] for call in client.calls if call[0] == "recreate"]
    assert names == ["uyuni-db-finalize", "uyuni-post-upgrade"]
    script = _script(client.jobs["uyuni-db-finalize"])
    assert "check-database" not in script
    assert "reindexdb" in script


def test_migration_flag_reaches_finalize_script():
    client = _run(16, 16, migration=True)

    assert "INTERRUPTED" in _script(client.jobs["uyuni-db-finalize"])


def test_db_upgrade_image_defaults_to_migration_suffix():
    descriptor = db_upgrade_job(SERVER_IMAGE.registry, SERVER_IMAGE, None, 14, 16)

    assert descriptor.image == "registry.example.com/uyuni/server-migration-14-16:5.1"
    assert descriptor.timeout is None


def test_db_upgrade_image_override():
    descriptor = db_upgrade_job(
        SERVER_IMAGE.registry, SERVER_IMAGE, ImageConfig(name="custom/pg-upgrade"), 14, 16
    )

    assert descriptor.image == "registry.example.com/uyuni/custom/pg-upgrade:5.1"


def test_migration_job_mounts_ssh_material():
    client = FakeJobClient()
    sequencer = JobSequencer(client, DummyLogger(), DummyConsole())
    mounts = [VolumeMount("etc-rhn", "/etc/rhn"), VolumeMount("migration-data", "/var/lib/uyuni-tools")]

    sequencer.run_job(
        "ns",
        migration_job("server:5.1", "IfNotPresent", "old.example.com", "root", False, mounts),
        with_ssh=True,
    )

    pod_spec = client.jobs["uyuni-data-sync"]["spec"]["template"]["spec"]
    mount_paths = [mount["mountPath"] for mount in pod_spec["containers"][0]["volumeMounts"]]
    assert "/root/.ssh/key" in mount_paths
    assert {"name": "ssh-conf", "configMap": {"name": "uyuni-migration-ssh"}} in pod_spec["volumes"]
    assert client.calls[-1] == ("wait", "uyuni-data-sync", None)
    script = _script(client.jobs["uyuni-data-sync"])
    assert "root@old.example.com:/etc/rhn/" in script
    assert "/var/lib/uyuni-tools/ /var/lib/uyuni-tools/" not in script
