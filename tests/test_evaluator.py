from __future__ import annotations

import __future__
from typing import Any

import pytest

from py_workbench.evaluator import PythonEvaluator
from py_workbench.session import NO_RETURN_VALUE


def test_statements_then_returned_expression() -> None:
    scope: dict[str, Any] = {}
    assert PythonEvaluator().evaluate("a = 2\nreturn a * 21", scope) == 42
    assert scope["a"] == 2


def test_fragment_without_return() -> None:
    scope: dict[str, Any] = {}
    assert PythonEvaluator().evaluate("a = 1", scope) is NO_RETURN_VALUE
    assert scope["a"] == 1


def test_bare_return_is_none() -> None:
    assert PythonEvaluator().evaluate("return", {}) is None


def test_scope_is_shared_between_calls() -> None:
    evaluator = PythonEvaluator()
    scope: dict[str, Any] = {}
    evaluator.evaluate("def double(x):\n    return x * 2", scope)
    assert evaluator.evaluate("return double(4)", scope) == 8


def test_errors_propagate_with_fragment_filename() -> None:
    with pytest.raises(ZeroDivisionError) as excinfo:
        PythonEvaluator().evaluate("x = 1\nreturn x / 0", {})
    assert excinfo.traceback[-1].frame.code.raw.co_filename == "<workbench>"


def test_future_flags_apply() -> None:
    scope: dict[str, Any] = {}
    flags = __future__.annotations.compiler_flag
    PythonEvaluator().evaluate("def f(x: Missing) -> None:\n    pass", scope, flags=flags)
    assert scope["f"].__annotations__ == {"x": "Missing", "return": "None"}
