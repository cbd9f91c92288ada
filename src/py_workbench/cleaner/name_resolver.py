from __future__ import annotations

import ast

from .base import CleanerPass
from .namespace import namespace_declaration

DEFAULT_NAMESPACE = "__main__"


class NameResolver(CleanerPass):
    """Annotate declarations and references with fully qualified names.

    Nothing is rewritten: `ClassDef` and function nodes gain `fq_name`, and
    `Name` loads that refer to an import or a class of this fragment gain
    `resolved_name`, for later passes to reason about.

    Example:
        ```python
        tree = NameResolver(cleaner).run(ast.parse("import numpy as np\\nnp"))
        ```
    """

    def run(self, tree: ast.Module) -> ast.Module:
        """Resolve names in order, following namespace changes in the fragment.

        Example:
            ```python
            tree = NameResolver(cleaner).run(tree)
            ```
        """
        initial = getattr(tree, "initial_namespace", None)
        if initial is None and self.cleaner is not None:
            initial = self.cleaner.effective_namespace
        self._namespace = initial or DEFAULT_NAMESPACE
        self._qualname: list[str] = []
        self._aliases: dict[str, str] = {}

        for stmt in tree.body:
            declared = namespace_declaration(stmt)
            if declared is not None:
                self._namespace = declared
            self.visit(stmt)
        return tree

    def _qualify(self, name: str) -> str:
        """Return the fully qualified name for a declaration in the current scope.

        Example:
            ```python
            resolver._qualify("User")  # "app.models.User"
            ```
        """
        return ".".join([self._namespace, *self._qualname, name])

    def _enter(self, node: ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef, *parts: str) -> ast.AST:
        """Visit a declaration body with its name pushed on the qualname stack.

        Example:
            ```python
            resolver._enter(node, node.name)
            ```
        """
        node.fq_name = self._qualify(node.name)  # type: ignore[union-attr]
        self._qualname.extend(parts)
        try:
            self.generic_visit(node)
        finally:
            del self._qualname[-len(parts):]
        return node

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.AST:
        """Qualify a class and resolve names in its body.

        Example:
            ```python
            resolver.visit(ast.parse("class User: pass"))
            ```
        """
        if not self._qualname:
            self._aliases[node.name] = self._qualify(node.name)
        return self._enter(node, node.name)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> ast.AST:
        """Qualify a function and resolve names in its body.

        Example:
            ```python
            resolver.visit(ast.parse("def f(): pass"))
            ```
        """
        return self._enter(node, node.name, "<locals>")

    visit_AsyncFunctionDef = visit_FunctionDef  # type: ignore[assignment]

    def visit_Import(self, node: ast.Import) -> ast.AST:
        """Record what each `import` binds.

        Example:
            ```python
            resolver.visit(ast.parse("import os.path"))
            ```
        """
        for alias in node.names:
            if alias.asname:
                self._aliases[alias.asname] = alias.name
            else:
                root = alias.name.split(".")[0]
                self._aliases[root] = root
        return node

    def visit_ImportFrom(self, node: ast.ImportFrom) -> ast.AST:
        """Record what each `from ... import` binds.

        Example:
            ```python
            resolver.visit(ast.parse("from os import path as p"))
            ```
        """
        base = "." * node.level + (node.module or "")
        for alias in node.names:
            if alias.name == "*":
                continue
            target = f"{base}.{alias.name}" if node.module else f"{base}{alias.name}"
            self._aliases[alias.asname or alias.name] = target
        return node

    def visit_Name(self, node: ast.Name) -> ast.AST:
        """Attach the resolved target of a name that refers to an import or class.

        Example:
            ```python
            resolver.visit(ast.parse("np.array"))
            ```
        """
        if isinstance(node.ctx, ast.Load) and node.id in self._aliases:
            node.resolved_name = self._aliases[node.id]  # type: ignore[attr-defined]
        return node
