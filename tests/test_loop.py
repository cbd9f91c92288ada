from __future__ import annotations

import io
import json
import os
import time
from pathlib import Path
from typing import Any

import pytest

from py_workbench.errors import ExecutionTimedOut
from py_workbench.loop import EvaluationLoop, LoopState, _normalize_system_exit, change_directory
from py_workbench.session import Session
from py_workbench.timeout import TimeoutGuard
from py_workbench.transport import EVAL_ERROR_CODE, Request, Transport, encode_request, read_frame

TOKEN = "secret"


def _run(
    *fragments: str | bytes, timeout_seconds: int = 30, cwd: str | None = None
) -> tuple[EvaluationLoop, list[dict[str, Any]]]:
    frames = []
    for request_id, fragment in enumerate(fragments, start=1):
        if isinstance(fragment, bytes):
            frames.append(fragment)
        else:
            frames.append(encode_request(request_id, fragment, cwd or os.getcwd(), TOKEN))
    outbound = io.BytesIO()
    loop = EvaluationLoop(
        Transport(io.BytesIO(b"".join(frames)), outbound, token=TOKEN),
        timeout_seconds=timeout_seconds,
    )
    loop.run()
    outbound.seek(0)
    responses = []
    while True:
        payload = read_frame(outbound)
        if payload is None:
            break
        responses.append(payload)
    return loop, responses


def _value(response: dict[str, Any]) -> str:
    assert "error" not in response, response
    return response["result"]["returnValue"]


def _error(response: dict[str, Any]) -> str:
    assert "result" not in response, response
    assert response["error"]["code"] == EVAL_ERROR_CODE
    return response["error"]["message"]


def test_bindings_persist_between_requests() -> None:
    _, responses = _run("a = 1", "a")
    assert [r["id"] for r in responses] == [1, 2]
    assert _value(responses[0]) == "None"
    assert _value(responses[1]) == "1"


def test_functions_and_imports_persist() -> None:
    _, responses = _run("import math\ndef area(r):\n    return math.pi * r * r", "round(area(2), 2)")
    assert _value(responses[1]) == "12.57"


def test_failed_evaluation_does_not_leak_bindings() -> None:
    _, responses = _run("a = 1", "a = 2\nraise RuntimeError('boom')", "a")
    assert _error(responses[1]) == "RuntimeError: boom"
    assert _value(responses[2]) == "1"


def test_last_value_error_and_output_bindings() -> None:
    _, responses = _run(
        "40 + 2",
        "_",
        "1 / 0",
        "type(_e).__name__",
        "print('hey')",
        "_out",
    )
    assert _value(responses[1]) == "42"
    assert _error(responses[2]) == "ZeroDivisionError: division by zero"
    assert _value(responses[3]) == "'ZeroDivisionError'"
    assert _value(responses[5]) == "'hey\\n'"


def test_output_is_concatenated_in_order() -> None:
    _, responses = _run('print("a", end=""); print("b", end="")')
    assert responses[0]["result"]["stdout"] == "ab"
    assert _value(responses[0]) == "None"


def test_output_of_failed_evaluation_is_discarded() -> None:
    _, responses = _run("print('partial')\nraise ValueError('x')", "print('next')")
    assert _error(responses[0]) == "ValueError: x"
    assert responses[1]["result"]["stdout"] == "next\n"


def test_duplicate_class_declaration_keeps_first_definition() -> None:
    loop, responses = _run(
        "class Greeter:\n    def hi(self):\n        return 'v1'",
        "class Greeter:\n    def hi(self):\n        return 'v2'",
        "Greeter().hi()",
        "__workbench__.names()",
    )
    assert _value(responses[0]) == "None"
    assert _value(responses[1]) == "None"
    assert _value(responses[2]) == "'v1'"
    assert _value(responses[3]) == "['__main__.Greeter']"
    assert loop.session.types.names() == ["__main__.Greeter"]


def test_class_from_failed_fragment_is_rebound_on_redeclaration() -> None:
    _, responses = _run(
        "class Temp:\n    pass\nraise ValueError('after declare')",
        "'Temp' in globals()",
        "class Temp:\n    pass\nTemp.__name__",
    )
    assert _error(responses[0]) == "ValueError: after declare"
    assert _value(responses[1]) == "False"
    assert _value(responses[2]) == "'Temp'"


def test_namespace_applies_to_later_classes() -> None:
    _, responses = _run("__name__ = 'app.models'\nclass User:\n    pass", "User.__module__", "__workbench__.names()")
    assert _value(responses[1]) == "'app.models'"
    assert _value(responses[2]) == "['app.models.User']"


def test_future_imports_carry_over() -> None:
    _, responses = _run(
        "from __future__ import annotations\ndef f(x: Undefined) -> None:\n    pass\nf.__annotations__",
        "def g(y: Missing):\n    pass\ng.__annotations__",
    )
    assert _value(responses[0]) == "{'x': 'Undefined', 'return': 'None'}"
    assert _value(responses[1]) == "{'y': 'Missing'}"


def test_magic_constants_resolve() -> None:
    _, responses = _run("__file__", "def where():\n    return __function__\nwhere()", "x = 1\n__line__")
    assert _value(responses[0]) == "'<workbench>'"
    assert _value(responses[1]) == "'where'"
    assert _value(responses[2]) == "2"


def test_code_fences_and_shebang_are_stripped() -> None:
    _, responses = _run("```python\nvalue = 5\nvalue * 2\n```", "#!/usr/bin/env python\nvalue")
    assert _value(responses[0]) == "10"
    assert _value(responses[1]) == "5"


def test_success_result_carries_raw_and_cleaned() -> None:
    _, responses = _run("a = 1\na", "# only a comment")
    assert responses[0]["result"]["raw"] == "a = 1\na"
    assert responses[0]["result"]["cleaned"] == "a = 1\nreturn a"
    assert responses[1]["result"]["cleaned"] is None
    assert _value(responses[1]) == "None"


def test_syntax_error_does_not_touch_session() -> None:
    loop, responses = _run("a = 1", "def broken(:", "a")
    assert _error(responses[1]).startswith("SyntaxError: ")
    assert _value(responses[2]) == "1"
    assert loop.session.last_error is None


def test_unsuppressed_warning_is_recorded_not_raised() -> None:
    loop, responses = _run("import warnings\nwarnings.warn('loud')\n'done'", "str(_e)")
    assert _value(responses[0]) == "'done'"
    assert _value(responses[1]) == "'UserWarning: loud'"
    assert loop.session.last_error is not None


def test_locally_suppressed_warning_is_swallowed() -> None:
    loop, responses = _run(
        "import warnings\n"
        "with warnings.catch_warnings():\n"
        "    warnings.simplefilter('always', UserWarning)\n"
        "    warnings.warn('quiet')\n"
        "'done'"
    )
    assert _value(responses[0]) == "'done'"
    assert loop.session.last_error is None


def test_fatal_warning_aborts_evaluation() -> None:
    _, responses = _run(
        "from py_workbench.errors import FatalWarning\nimport warnings\nx = 1\nwarnings.warn('stop', FatalWarning)",
        "'x' in globals()",
    )
    assert _error(responses[0]) == "FatalWarning: stop"
    assert _value(responses[1]) == "False"


@pytest.mark.skipif(not TimeoutGuard.is_supported(), reason="interval timers unavailable")
def test_timeout_aborts_and_worker_keeps_serving() -> None:
    started = time.monotonic()
    loop, responses = _run("while True:\n    pass", "1 + 1", timeout_seconds=1)
    elapsed = time.monotonic() - started
    assert "timed out" in _error(responses[0])
    assert _value(responses[1]) == "2"
    assert elapsed < 5
    assert isinstance(loop.session.last_error, ExecutionTimedOut)
    assert not loop.guard.armed


def test_zero_timeout_disables_guard() -> None:
    loop, responses = _run("import time\ntime.sleep(0.1)\n'slept'", timeout_seconds=0)
    assert _value(responses[0]) == "'slept'"
    assert not loop.guard.armed


def test_working_directory_is_applied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    target = tmp_path / "sub"
    target.mkdir()
    _, responses = _run("import os\nos.getcwd()", cwd=str(target))
    assert _value(responses[0]) == repr(str(target.resolve()))


def test_missing_working_directory_is_ignored(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    _, responses = _run("import os\nos.getcwd()", cwd=str(tmp_path / "missing"))
    assert _value(responses[0]) == repr(str(tmp_path.resolve()))


def test_invalid_token_is_rejected_without_evaluating() -> None:
    bad = encode_request(5, "a = 99\nprint('no')", os.getcwd(), "wrong")
    _, responses = _run(bad, "'a' in globals()")
    assert responses[0]["id"] == 5
    assert _error(responses[0]) == "Invalid token"
    assert _value(responses[1]) == "False"


def test_protocol_errors_answer_and_continue() -> None:
    garbage = b"Content-Length: 7\r\n\r\nnotjson"
    body = json.dumps({"id": 3, "params": ["1", "/"]}).encode("utf-8")
    missing_token = b"Content-Length: " + str(len(body)).encode("ascii") + b"\r\n\r\n" + body
    _, responses = _run(garbage, missing_token, "21 * 2")
    assert responses[0]["id"] == -1
    assert _error(responses[0]) == "Invalid JSON-RPC request"
    assert responses[1]["id"] == 3
    assert _error(responses[1]) == "Invalid request: missing token"
    assert _value(responses[2]) == "42"


def test_keep_alive_frame_is_answered() -> None:
    _, responses = _run(b"X-Ping: yes\r\n\r\n", "1")
    assert responses[0]["id"] == -1
    assert _value(responses[0]) == "None"
    assert _value(responses[1]) == "1"


def test_system_exit_is_converted() -> None:
    _, responses = _run("import sys\nsys.exit(3)", "raise SystemExit", "'alive'")
    assert _error(responses[0]) == "SystemExit: 3"
    assert _value(responses[1]) == "None"
    assert _value(responses[2]) == "'alive'"


def test_run_counts_served_requests_and_stops() -> None:
    loop, responses = _run("1", "2", "3")
    assert len(responses) == 3
    assert loop.state is LoopState.STOPPED


def test_handle_directly_with_custom_session() -> None:
    session = Session()
    loop = EvaluationLoop(Transport(io.BytesIO(), io.BytesIO(), token=TOKEN), session)
    response = loop.handle(Request(id=9, fragment="'x' * 3", working_directory=""))
    assert response.result is not None
    assert response.result["returnValue"] == "'xxx'"
    assert session.last_return_value == "xxx"


def test_normalize_system_exit() -> None:
    assert _normalize_system_exit(None) == (True, None)
    assert _normalize_system_exit(0) == (True, None)
    assert _normalize_system_exit(2) == (False, "SystemExit: 2")
    assert _normalize_system_exit("bye") == (False, "SystemExit: bye")


def test_change_directory_ignores_blank_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    change_directory("")
    assert Path.cwd() == tmp_path


def test_keyboard_interrupt_in_fragment_is_answered_and_loop_continues() -> None:
    loop, responses = _run("raise KeyboardInterrupt('x')", "1 + 1")
    assert [r["id"] for r in responses] == [1, 2]
    assert _error(responses[0]) == "KeyboardInterrupt: x"
    assert _value(responses[1]) == "2"
    assert isinstance(loop.session.last_error, KeyboardInterrupt)


def test_custom_base_exception_in_fragment_is_answered() -> None:
    _, responses = _run(
        "class Abort(BaseException):\n    pass\nraise Abort('stop here')",
        "'alive'",
    )
    assert _error(responses[0]) == "Abort: stop here"
    assert _value(responses[1]) == "'alive'"


def test_ignore_filter_swallows_non_fatal_warning() -> None:
    loop, responses = _run(
        "import warnings\n"
        "with warnings.catch_warnings():\n"
        "    warnings.simplefilter('ignore')\n"
        "    warnings.warn('quiet')\n"
        "'done'"
    )
    assert _value(responses[0]) == "'done'"
    assert loop.session.last_error is None


def test_fatal_warning_ignores_local_suppression() -> None:
    _, responses = _run(
        "from py_workbench.errors import FatalWarning\n"
        "import warnings\n"
        "with warnings.catch_warnings():\n"
        "    warnings.simplefilter('ignore')\n"
        "    warnings.warn('stop', FatalWarning)\n"
        "'done'",
        "1",
    )
    assert _error(responses[0]) == "FatalWarning: stop"
    assert _value(responses[1]) == "1"


def test_unencodable_token_is_rejected_and_loop_continues() -> None:
    bad = encode_request(4, "print('no')", os.getcwd(), "\ud800")
    _, responses = _run(bad, "'next'")
    assert responses[0]["id"] == 4
    assert _error(responses[0]) == "Invalid token"
    assert _value(responses[1]) == "'next'"
