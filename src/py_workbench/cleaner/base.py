from __future__ import annotations

import ast
from typing import TYPE_CHECKING, cast

if TYPE_CHECKING:
    from . import CodeCleaner

# compound statements whose bodies still execute at module level
MODULE_LEVEL_BLOCKS = (
    ast.If,
    ast.For,
    ast.AsyncFor,
    ast.While,
    ast.With,
    ast.AsyncWith,
    ast.Try,
    ast.TryStar,
    ast.Match,
)
SCOPE_NODES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)


class CleanerPass(ast.NodeTransformer):
    """One rewrite step of the cleaning pipeline.

    Subclasses either implement `visit_*` methods or override `run` for
    module-level rewrites. Raise `CleanerError` to reject the fragment.

    Example:
        ```python
        class NoopPass(CleanerPass):
            pass
        tree = NoopPass(cleaner).run(ast.parse("a = 1"))
        ```
    """

    def __init__(self, cleaner: "CodeCleaner | None" = None) -> None:
        """Bind the pass to the cleaner whose cross-fragment state it may use.

        Example:
            ```python
            pass_ = ImplicitReturnPass(cleaner)
            ```
        """
        self.cleaner = cleaner

    def run(self, tree: ast.Module) -> ast.Module:
        """Apply the pass to a parsed fragment and return the new tree.

        Example:
            ```python
            tree = pass_.run(ast.parse("a = 1"))
            ```
        """
        return cast(ast.Module, self.visit(tree))


def module_level_blocks(body: list[ast.stmt]) -> list[list[ast.stmt]]:
    """Return `body` and every nested statement list that runs at module level.

    Function and class bodies are not included.

    Example:
        ```python
        blocks = module_level_blocks(tree.body)
        ```
    """
    blocks = [body]
    for stmt in body:
        if not isinstance(stmt, MODULE_LEVEL_BLOCKS):
            continue
        nested: list[list[ast.stmt]] = []
        for field in ("body", "orelse", "finalbody"):
            value = getattr(stmt, field, None)
            if value:
                nested.append(value)
        for handler in getattr(stmt, "handlers", []):
            nested.append(handler.body)
        for case in getattr(stmt, "cases", []):
            nested.append(case.body)
        for block in nested:
            blocks.extend(module_level_blocks(block))
    return blocks
