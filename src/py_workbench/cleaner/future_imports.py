from __future__ import annotations

import __future__
import ast

from ..errors import CleanerError
from .base import SCOPE_NODES, CleanerPass, module_level_blocks

FUTURE_MODULE = "__future__"


def is_future_import(stmt: ast.stmt) -> bool:
    """Whether `stmt` is a `from __future__ import ...` statement.

    Example:
        ```python
        is_future_import(ast.parse("from __future__ import annotations").body[0])  # True
        ```
    """
    return isinstance(stmt, ast.ImportFrom) and stmt.module == FUTURE_MODULE and stmt.level == 0


class FutureImportPass(CleanerPass):
    """Hoist `__future__` imports to the head of the fragment.

    Python only accepts them as the first statements of a module, so they are
    lifted out of whatever module-level block they were written in, merged
    into a single import and remembered by the cleaner for later fragments.

    Example:
        ```python
        tree = FutureImportPass(cleaner).run(ast.parse("if x:\\n    from __future__ import annotations"))
        ```
    """

    def run(self, tree: ast.Module) -> ast.Module:
        """Collect, validate and hoist the fragment's `__future__` imports.

        Example:
            ```python
            tree = FutureImportPass(cleaner).run(tree)
            ```
        """
        self._reject_nested(tree)

        features: list[str] = []
        for block in module_level_blocks(tree.body):
            kept = []
            for stmt in block:
                if is_future_import(stmt):
                    features.extend(alias.name for alias in stmt.names)
                else:
                    kept.append(stmt)
            if len(kept) == len(block):
                continue
            # a nested block may not be left empty
            block[:] = kept if block is tree.body else kept or [ast.Pass()]

        if not features:
            return tree

        unique = sorted(set(features))
        for name in unique:
            if name not in __future__.all_feature_names:
                raise CleanerError(f"future feature {name} is not defined")

        if self.cleaner is not None:
            self.cleaner.future_features.update(unique)

        hoisted = ast.ImportFrom(
            module=FUTURE_MODULE,
            names=[ast.alias(name=name) for name in unique],
            level=0,
        )
        tree.body.insert(0, hoisted)
        return tree

    def _reject_nested(self, tree: ast.Module) -> None:
        """Reject `__future__` imports written inside a function or class.

        Example:
            ```python
            FutureImportPass(cleaner)._reject_nested(tree)
            ```
        """
        for node in ast.walk(tree):
            if not isinstance(node, SCOPE_NODES):
                continue
            for inner in ast.walk(node):
                if isinstance(inner, ast.stmt) and is_future_import(inner):
                    raise CleanerError("from __future__ imports must occur at module level")


def compiler_flags(features: set[str] | frozenset[str]) -> int:
    """Combine the `compile()` flags of the given `__future__` features.

    Example:
        ```python
        flags = compiler_flags({"annotations"})
        ```
    """
    flags = 0
    for name in features:
        flags |= getattr(__future__, name).compiler_flag
    return flags
