from __future__ import annotations

import ast

from ..errors import CleanerError
from .base import SCOPE_NODES, CleanerPass


def _module_level_returns(tree: ast.Module) -> list[ast.Return]:
    """Find `return` statements that are not inside a function or class.

    Example:
        ```python
        returns = _module_level_returns(ast.parse("if x:\\n    return 1"))
        ```
    """
    found: list[ast.Return] = []
    pending: list[ast.AST] = list(tree.body)
    while pending:
        node = pending.pop()
        if isinstance(node, SCOPE_NODES):
            continue
        if isinstance(node, ast.Return):
            found.append(node)
        pending.extend(ast.iter_child_nodes(node))
    return found


class ImplicitReturnPass(CleanerPass):
    """Return the value of a trailing expression statement.

    `a + 1` as the last statement becomes `return a + 1`, so expression-style
    fragments report a value the way an interactive prompt does. An explicit
    top-level `return` is accepted only as the final statement.

    Example:
        ```python
        tree = ImplicitReturnPass().run(ast.parse("a = 1\\na"))
        ```
    """

    def run(self, tree: ast.Module) -> ast.Module:
        """Rewrite the trailing expression and validate explicit returns.

        Example:
            ```python
            tree = ImplicitReturnPass(cleaner).run(tree)
            ```
        """
        if not tree.body:
            return tree

        last = tree.body[-1]
        for node in _module_level_returns(tree):
            if node is not last:
                raise CleanerError("'return' is only allowed as the last statement of a fragment")

        if isinstance(last, ast.Expr):
            tree.body[-1] = ast.copy_location(ast.Return(value=last.value), last)
        return tree
