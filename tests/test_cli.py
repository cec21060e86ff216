from __future__ import annotations

import logging
import socket
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog
from typer.testing import CliRunner

from healthgate.cli import app
from healthgate.observe.sinks import read_events

FAKE_SERVICE = Path(__file__).resolve().parents[1] / "tools" / "fake_service.py"

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "stack.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_check_prints_start_order(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
name: demo
units:
  grafana:
    command: grafana-server
    depends_on: [prometheus]
  prometheus:
    command: prometheus
""",
    )
    result = runner.invoke(app, ["check", str(path)])

    assert result.exit_code == 0, result.output
    assert "Start Order: demo" in result.output
    assert result.output.index("prometheus") < result.output.index("grafana")


def test_check_reports_cycle_with_exit_code_2(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
units:
  a: {depends_on: [b]}
  b: {depends_on: [a]}
""",
    )
    result = runner.invoke(app, ["check", str(path)])

    assert result.exit_code == 2
    assert "dependency cycle" in result.output


def test_up_brings_stack_up_and_stops_it(tmp_path: Path) -> None:
    port = _free_port()
    path = _write(
        tmp_path,
        f"""
units:
  api:
    command: ["{sys.executable}", "{FAKE_SERVICE}", "--port", "{port}", "--ready-after", "0.2"]
    healthcheck:
      http: http://127.0.0.1:{port}/ready
      interval: 100ms
      timeout: 1s
      retries: 50
  worker:
    command: ["{sys.executable}", "-c", "import time; time.sleep(30)"]
    depends_on: [api]
    healthcheck:
      interval: 100ms
""",
    )
    events = tmp_path / "events.jsonl"
    result = runner.invoke(app, ["up", str(path), "--no-wait", "--events", str(events)])

    assert result.exit_code == 0, result.output
    assert "state: UP" in result.output
    recorded = read_events(events)
    api_healthy = next(
        idx for idx, e in enumerate(recorded) if e.unit == "api" and e.to_state == "HEALTHY"
    )
    worker_start = next(
        idx for idx, e in enumerate(recorded) if e.unit == "worker" and e.to_state == "STARTING"
    )
    assert api_healthy < worker_start
    assert {e.unit for e in recorded if e.to_state == "STOPPED"} == {"api", "worker"}


def test_up_failing_stack_writes_report_and_events(tmp_path: Path) -> None:
    script = "import sys; print('boom on startup', file=sys.stderr); sys.exit(3)"
    path = _write(
        tmp_path,
        f"""
name: broken-stack
units:
  broken:
    command: ["{sys.executable}", "-c", "{script}"]
    healthcheck:
      interval: 200ms
  app:
    command: ["{sys.executable}", "-c", "import time; time.sleep(30)"]
    depends_on: [broken]
""",
    )
    events = tmp_path / "out" / "events.jsonl"
    report = tmp_path / "out" / "report.md"
    events.parent.mkdir()
    events.write_text(
        '{"unit": "leftover", "from": "PENDING", "to": "FAILED", "terminal": true}\n',
        encoding="utf-8",
    )
    log_dir = tmp_path / "logs"

    result = runner.invoke(
        app,
        [
            "up",
            str(path),
            "--log-dir",
            str(log_dir),
            "--events",
            str(events),
            "--report",
            str(report),
        ],
    )

    assert result.exit_code == 3, result.output
    assert "failed: broken, app" in result.output

    text = report.read_text(encoding="utf-8")
    assert "- stack: broken-stack" in text
    assert "process_exited: 3" in text
    assert "dependency_failed: broken" in text
    assert "boom on startup" in text

    recorded = read_events(events)
    assert "leftover" not in {e.unit for e in recorded}
    assert [e.to_state for e in recorded if e.unit == "app"] == ["FAILED"]
    assert all(e.terminal for e in recorded if e.to_state == "FAILED")


def test_probe_command(tmp_path: Path) -> None:
    port = _free_port()
    path = _write(
        tmp_path,
        f"""
units:
  cache:
    healthcheck:
      tcp: 127.0.0.1:{port}
      timeout: 500ms
""",
    )
    down = runner.invoke(app, ["probe", str(path), "cache"])
    unknown = runner.invoke(app, ["probe", str(path), "nope"])

    assert down.exit_code == 1
    assert "UNHEALTHY" in down.output
    assert unknown.exit_code == 2


def test_invalid_log_format_exits_2(tmp_path: Path) -> None:
    path = _write(tmp_path, "units:\n  a: {command: x}\n")
    result = runner.invoke(app, ["--log-format", "xml", "check", str(path)])
    assert result.exit_code == 2


def test_probe_command_refuses_process_checks(tmp_path: Path) -> None:
    path = _write(tmp_path, "units:\n  worker: {command: sleep 60}\n")
    result = runner.invoke(app, ["probe", str(path), "worker"])

    assert result.exit_code == 2
    assert "liveness" in result.output
    assert "HEALTHY" not in result.output
