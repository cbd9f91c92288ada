from __future__ import annotations

import ast
from typing import TYPE_CHECKING

from .base import CleanerPass

if TYPE_CHECKING:
    from . import CodeCleaner

FRAGMENT_FILENAME = "<workbench>"


class MagicConstantsPass(CleanerPass):
    """Resolve context names for a fragment that has no file of its own.

    `__file__` becomes the fragment pseudo filename, `__line__` the line it
    appears on and `__function__` the enclosing function name.

    Example:
        ```python
        tree = MagicConstantsPass().run(ast.parse("where = (__file__, __line__)"))
        ```
    """

    def __init__(self, cleaner: "CodeCleaner | None" = None) -> None:
        """Start outside of any function.

        Example:
            ```python
            pass_ = MagicConstantsPass(cleaner)
            ```
        """
        super().__init__(cleaner)
        self._functions: list[str] = []

    def visit_FunctionDef(self, node: ast.FunctionDef) -> ast.AST:
        """Track the enclosing function while visiting its body.

        Example:
            ```python
            pass_.visit(ast.parse("def f():\\n    return __function__"))
            ```
        """
        self._functions.append(node.name)
        try:
            self.generic_visit(node)
        finally:
            self._functions.pop()
        return node

    visit_AsyncFunctionDef = visit_FunctionDef  # type: ignore[assignment]

    def visit_Lambda(self, node: ast.Lambda) -> ast.AST:
        """Treat lambda bodies as a function named `<lambda>`.

        Example:
            ```python
            pass_.visit(ast.parse("f = lambda: __function__"))
            ```
        """
        self._functions.append("<lambda>")
        try:
            self.generic_visit(node)
        finally:
            self._functions.pop()
        return node

    def visit_Name(self, node: ast.Name) -> ast.AST:
        """Replace a load of a context name with its constant value.

        Example:
            ```python
            pass_.visit(ast.parse("__line__"))
            ```
        """
        if not isinstance(node.ctx, ast.Load):
            return node
        if node.id == "__file__":
            value: object = FRAGMENT_FILENAME
        elif node.id == "__line__":
            value = node.lineno
        elif node.id == "__function__":
            value = self._functions[-1] if self._functions else ""
        else:
            return node
        return ast.copy_location(ast.Constant(value=value), node)
