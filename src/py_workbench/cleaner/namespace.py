from __future__ import annotations

import ast

from ..errors import CleanerError
from .base import CleanerPass
from .future_imports import is_future_import

NAMESPACE_NAME = "__name__"


def namespace_declaration(stmt: ast.stmt) -> str | None:
    """Return the module name set by a `__name__ = "pkg.mod"` statement.

    Example:
        ```python
        namespace_declaration(ast.parse("__name__ = 'app.models'").body[0])  # "app.models"
        ```
    """
    if not isinstance(stmt, ast.Assign) or len(stmt.targets) != 1:
        return None
    target = stmt.targets[0]
    if not isinstance(target, ast.Name) or target.id != NAMESPACE_NAME:
        return None
    if not isinstance(stmt.value, ast.Constant) or not isinstance(stmt.value.value, str):
        return None
    return stmt.value.value


def _is_valid_namespace(name: str) -> bool:
    """Whether `name` is a dotted sequence of identifiers.

    Example:
        ```python
        _is_valid_namespace("app.models")  # True
        ```
    """
    return bool(name) and all(part.isidentifier() for part in name.split("."))


class NamespacePass(CleanerPass):
    """Carry the module name declared by one fragment into the next ones.

    A fragment that assigns a string to `__name__` at the top level declares
    the namespace its classes belong to. Later fragments that do not declare
    one run under the remembered name.

    Example:
        ```python
        NamespacePass(cleaner).run(ast.parse("__name__ = 'app'"))
        ```
    """

    def run(self, tree: ast.Module) -> ast.Module:
        """Record a declared namespace or apply the remembered one.

        Example:
            ```python
            tree = NamespacePass(cleaner).run(tree)
            ```
        """
        if self.cleaner is None:
            return tree

        tree.initial_namespace = self.cleaner.effective_namespace  # type: ignore[attr-defined]

        declared = None
        for stmt in tree.body:
            name = namespace_declaration(stmt)
            if name is None:
                continue
            if not _is_valid_namespace(name):
                raise CleanerError(f"Invalid namespace name '{name}'")
            declared = name

        if declared is not None:
            self.cleaner.namespace = declared
            return tree

        if self.cleaner.namespace is None or not tree.body:
            return tree

        position = 0
        while position < len(tree.body) and is_future_import(tree.body[position]):
            position += 1
        statement = ast.Assign(
            targets=[ast.Name(id=NAMESPACE_NAME, ctx=ast.Store())],
            value=ast.Constant(value=self.cleaner.namespace),
        )
        tree.body.insert(position, statement)
        return tree
