from __future__ import annotations

import io
import os
import subprocess
import sys
import time
from pathlib import Path

import pytest

from py_workbench import worker
from py_workbench.client import EvalResult, WorkerClient, WorkerError
from py_workbench.config import ENV_TOKEN, WorkerConfig
from py_workbench.transport import encode_request, read_frame


def test_client_round_trip_keeps_session() -> None:
    with WorkerClient(timeout_seconds=5) as client:
        first = client.evaluate("a = 20")
        second = client.evaluate("print('sum'); a + 22")
    assert isinstance(first, EvalResult)
    assert first.return_value == "None"
    assert second.return_value == "42"
    assert second.stdout == "sum\n"
    assert second.id == first.id + 1


def test_client_raises_worker_error_and_session_survives() -> None:
    with WorkerClient(timeout_seconds=5) as client:
        client.evaluate("kept = 'yes'")
        with pytest.raises(WorkerError) as excinfo:
            client.evaluate("1 / 0")
        assert str(excinfo.value) == "ZeroDivisionError: division by zero"
        assert excinfo.value.code == -32000
        assert client.evaluate("kept").return_value == "'yes'"


def test_wrong_token_is_rejected() -> None:
    with WorkerClient(timeout_seconds=5) as client:
        payload = client.request("print('leak')", token="not-the-token")
        assert payload["error"]["message"] == "Invalid token"
        assert client.evaluate("1").return_value == "1"


def test_stray_descriptor_writes_do_not_corrupt_protocol() -> None:
    with WorkerClient(timeout_seconds=5) as client:
        result = client.evaluate("import os\nos.write(1, b'noise')\n'clean'")
    assert result.return_value == "'clean'"
    assert result.stdout == ""


def test_timeout_then_next_request() -> None:
    with WorkerClient(timeout_seconds=1) as client:
        started = time.monotonic()
        with pytest.raises(WorkerError, match="timed out"):
            client.evaluate("while True:\n    pass")
        assert time.monotonic() - started < 5
        assert client.evaluate("'still here'").return_value == "'still here'"


def test_client_closes_cleanly() -> None:
    client = WorkerClient(timeout_seconds=5)
    client.evaluate("1")
    assert client.close() == 0


def test_worker_logs_to_file_when_debug_enabled(tmp_path: Path) -> None:
    log_path = tmp_path / "worker.log"
    with WorkerClient(timeout_seconds=5, debug=True, log_destination=str(log_path)) as client:
        client.evaluate("1 + 1")
    text = log_path.read_text(encoding="utf-8")
    assert "[INFO]" in text
    assert "Worker started" in text


def test_missing_token_refuses_to_start() -> None:
    env = dict(os.environ)
    env.pop(ENV_TOKEN, None)
    completed = subprocess.run(
        [sys.executable, "-m", "py_workbench.worker"],
        input=b"",
        capture_output=True,
        env=env,
        timeout=30,
    )
    assert completed.returncode == 1
    assert b"token required" in completed.stderr


def test_main_reports_configuration_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert worker.main({}) == 1
    assert "Error: token required" in capsys.readouterr().err


def test_serve_with_in_memory_streams() -> None:
    frames = encode_request(1, "x = 3", "", "secret") + encode_request(2, "x * 3", "", "secret")
    outbound = io.BytesIO()
    served = worker.serve(WorkerConfig(token="secret", timeout_seconds=0), io.BytesIO(frames), outbound)
    assert served == 2
    outbound.seek(0)
    read_frame(outbound)
    second = read_frame(outbound)
    assert second is not None
    assert second["result"]["returnValue"] == "9"
