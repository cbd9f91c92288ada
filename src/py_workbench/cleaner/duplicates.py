from __future__ import annotations

import ast

from .base import CleanerPass
from .name_resolver import DEFAULT_NAMESPACE

REGISTRY_NAME = "__workbench__"


def _registry_call(method: str, *args: ast.expr) -> ast.Call:
    """Build `__workbench__.<method>(*args)`.

    Example:
        ```python
        call = _registry_call("type_exists", ast.Constant("app.User"))
        ```
    """
    return ast.Call(
        func=ast.Attribute(
            value=ast.Name(id=REGISTRY_NAME, ctx=ast.Load()),
            attr=method,
            ctx=ast.Load(),
        ),
        args=list(args),
        keywords=[],
    )


class PreventDuplicateClassPass(CleanerPass):
    """Declare each module-level class only if it was not declared before.

    Re-running a fragment must not replace a class that earlier code already
    holds instances of, so the class statement is guarded:

        if not __workbench__.type_exists("app.User"):
            class User: ...
            __workbench__.register_type("app.User", User)
        else:
            User = __workbench__.declared_type("app.User")

    Edited class bodies are therefore ignored until the worker restarts.

    Example:
        ```python
        tree = PreventDuplicateClassPass(cleaner).run(ast.parse("class User: pass"))
        ```
    """

    def visit_FunctionDef(self, node: ast.FunctionDef) -> ast.AST:
        """Leave function bodies alone; their classes are created per call.

        Example:
            ```python
            pass_.visit(ast.parse("def f():\\n    class Local: pass"))
            ```
        """
        return node

    visit_AsyncFunctionDef = visit_FunctionDef  # type: ignore[assignment]

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.AST:
        """Wrap a module-level class statement in an existence check.

        Example:
            ```python
            guarded = pass_.visit(ast.parse("class User: pass").body[0])
            ```
        """
        fq_name = self._fully_qualified_name(node)
        guard = ast.If(
            test=ast.UnaryOp(
                op=ast.Not(),
                operand=_registry_call("type_exists", ast.Constant(value=fq_name)),
            ),
            body=[
                node,
                ast.Expr(
                    value=_registry_call(
                        "register_type",
                        ast.Constant(value=fq_name),
                        ast.Name(id=node.name, ctx=ast.Load()),
                    )
                ),
            ],
            orelse=[
                ast.Assign(
                    targets=[ast.Name(id=node.name, ctx=ast.Store())],
                    value=_registry_call("declared_type", ast.Constant(value=fq_name)),
                )
            ],
        )
        return ast.copy_location(guard, node)

    def _fully_qualified_name(self, node: ast.ClassDef) -> str:
        """Use the resolver's name, falling back to the cleaner's namespace.

        Example:
            ```python
            pass_._fully_qualified_name(node)  # "__main__.User"
            ```
        """
        resolved = getattr(node, "fq_name", None)
        if resolved:
            return resolved
        namespace = self.cleaner.effective_namespace if self.cleaner is not None else DEFAULT_NAMESPACE
        return f"{namespace}.{node.name}"
