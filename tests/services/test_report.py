import json

from serverdeployer.services.report import RunReportService


class DummyLogger:
    def warning(self, *_args, **_kwargs):
        return None


def test_report_service_writes_run_metadata(tmp_path):
    report_file = tmp_path / "reports" / "run-report.json"
    service = RunReportService(str(report_file), logger=DummyLogger())

    service.start_run("upgrade", "uyuni", "server.example.com")
    service.set_versions(14, 16, "upgrade", server="2024.10")
    service.step_started("probe")
    service.step_finished("probe", "success")
    service.step_started("database_jobs")
    service.step_finished("database_jobs", "failed", error="job failed")
    service.finalize("failed", error="job failed")

    data = json.loads(report_file.read_text(encoding="utf-8"))

    assert data["action"] == "upgrade"
    assert data["status"] == "failed"
    assert data["versions"]["installed_pg"] == 14
    assert data["versions"]["transition"] == "upgrade"
    assert [step["status"] for step in data["steps"]] == ["success", "failed"]
    assert data["steps"][1]["error"] == "job failed"
    assert data["error"] == "job failed"


def test_report_service_without_file_writes_nothing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    service = RunReportService(None, logger=DummyLogger())

    service.start_run("install", "default", "server.example.com")
    service.finalize("success")

    assert list(tmp_path.iterdir()) == []
    assert service.report["status"] == "success"
