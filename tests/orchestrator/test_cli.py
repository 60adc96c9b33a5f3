"""
Tests for the command-line entry point and logging setup.
"""

import asyncio
import json
import logging

import pytest

from monitoring.config import SupervisorConfig
from orchestrator.cli import create_parser, main
from orchestrator.core import JsonFormatter, Supervisor


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestParser:

    def test_defaults(self):
        args = create_parser().parse_args([])

        assert args.config is None
        assert args.once is False
        assert args.report_format == "json"
        assert args.log_format == "text"

    def test_rejects_unknown_report_format(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["--report", "--report-format", "pdf"])


class TestMain:

    def test_invalid_config_exits_2(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("thresholds:\n  cpu_high: 99\n  cpu_critical: 90\n")

        assert main(["--config", str(path)]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_missing_config_exits_2(self, tmp_path):
        assert main(["--config", str(tmp_path / "nope.yaml")]) == 2

    def test_show_jobs(self, tmp_path, capsys):
        path = tmp_path / "supervisor.yaml"
        path.write_text(
            "intervals:\n  component_sweep: 15\n"
            "components:\n  - name: indexer\n    recovery_command: python indexer.py\n"
        )

        assert main(["--config", str(path), "--show-jobs"]) == 0

        out = capsys.readouterr().out
        assert "component_sweep" in out
        assert "every 15s" in out
        assert "indexer" in out
        assert "restartable" in out

    def test_report_from_empty_store(self, tmp_path, capsys, monkeypatch):
        monkeypatch.setenv("SUPERVISOR_DATA_DIR", str(tmp_path / "data"))
        path = tmp_path / "supervisor.yaml"
        path.write_text("notifications:\n  console: false\n  file: false\n")

        assert main(["--config", str(path), "--report", "--log-level", "ERROR"]) == 0

        out = capsys.readouterr().out
        report = json.loads(out)
        assert report["report_type"] == "health_monitoring"


class TestJsonFormatter:

    def test_formats_one_object_per_record(self):
        record = logging.LogRecord("supervisor", logging.WARNING, __file__, 1, "disk at %d%%", (91,), None)
        record.context = {"component": "system"}

        payload = json.loads(JsonFormatter().format(record))

        assert payload["level"] == "WARNING"
        assert payload["message"] == "disk at 91%"
        assert payload["context"] == {"component": "system"}


class TestSupervisor:

    @pytest.mark.asyncio
    async def test_request_shutdown_ends_run_forever(self, tmp_path):
        config = SupervisorConfig(data_dir=tmp_path, database_url="sqlite://").validate()
        supervisor = Supervisor(config)

        runner = asyncio.create_task(supervisor.run_forever())
        await asyncio.sleep(0.1)
        assert supervisor.scheduler.is_running

        supervisor.request_shutdown()
        await asyncio.wait_for(runner, timeout=15)

        assert not supervisor.scheduler.is_running
