from __future__ import annotations

import ast
from typing import Any, Protocol

from .cleaner import FRAGMENT_FILENAME
from .session import NO_RETURN_VALUE


class Evaluator(Protocol):
    def evaluate(self, source: str, scope: dict[str, Any], *, flags: int = 0) -> Any:
        """Run cleaned source against `scope` and return its value.

        Bindings created by the source are left in `scope`. Returns
        NO_RETURN_VALUE when the source does not end in a return.

        Example:
            ```python
            value = evaluator.evaluate("a = 1\\nreturn a", scope)
            ```
        """
        ...


class PythonEvaluator:
    """Evaluate cleaned fragments with the running Python interpreter.

    A trailing top-level `return` is split off and evaluated as an
    expression after the preceding statements have run.

    Example:
        ```python
        scope = {}
        PythonEvaluator().evaluate("a = 2\\nreturn a * 21", scope)  # 42
        ```
    """

    def __init__(self, filename: str = FRAGMENT_FILENAME) -> None:
        """Set the filename reported in tracebacks and warnings.

        Example:
            ```python
            evaluator = PythonEvaluator("<session>")
            ```
        """
        self.filename = filename

    def evaluate(self, source: str, scope: dict[str, Any], *, flags: int = 0) -> Any:
        """Execute the statements, then evaluate the returned expression, if any.

        Example:
            ```python
            value = PythonEvaluator().evaluate("return 1 + 1", {})
            ```
        """
        tree = ast.parse(source, filename=self.filename, mode="exec")
        returned: ast.expr | None = None
        ends_in_return = False
        last = tree.body[-1] if tree.body else None
        if isinstance(last, ast.Return):
            tree.body.pop()
            returned = last.value
            ends_in_return = True

        if tree.body:
            code = compile(tree, self.filename, "exec", flags=flags, dont_inherit=True)
            exec(code, scope)  # noqa: S102

        if not ends_in_return:
            return NO_RETURN_VALUE
        if returned is None:
            return None
        expression = ast.Expression(body=returned)
        ast.fix_missing_locations(expression)
        code = compile(expression, self.filename, "eval", flags=flags, dont_inherit=True)
        return eval(code, scope)  # noqa: S307
