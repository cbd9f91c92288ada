"""Rewrite raw fragments into code that can be evaluated again and again.

The passes run in a fixed order over the fragment's syntax tree:

1. FutureImportPass         hoist `__future__` imports (before namespaces)
2. ImplicitReturnPass       trailing expression becomes a return
3. MagicConstantsPass       `__file__`, `__line__`, `__function__`
4. NamespacePass            remembered `__name__` (after implicit return)
5. NameResolver             annotate fully qualified names
6. PreventDuplicateClassPass  guard class declarations
"""

from __future__ import annotations

import ast

from ..errors import CleanerError, PreprocessError
from ..logger import context, get_logger
from .base import CleanerPass
from .duplicates import REGISTRY_NAME, PreventDuplicateClassPass
from .future_imports import FutureImportPass, compiler_flags
from .implicit_return import ImplicitReturnPass
from .magic_constants import FRAGMENT_FILENAME, MagicConstantsPass
from .name_resolver import DEFAULT_NAMESPACE, NameResolver
from .namespace import NamespacePass

__all__ = [
    "CleanerPass",
    "CodeCleaner",
    "FRAGMENT_FILENAME",
    "REGISTRY_NAME",
]

log = get_logger(__name__)


class CodeCleaner:
    """Ordered pipeline of cleaning passes plus the state they share.

    Example:
        ```python
        cleaner = CodeCleaner()
        cleaner.clean("a = 1\\na + 1")  # "a = 1\\nreturn a + 1"
        ```
    """

    def __init__(self, passes: list[CleanerPass] | None = None) -> None:
        """Create a cleaner with the default passes unless others are given.

        Example:
            ```python
            cleaner = CodeCleaner()
            ```
        """
        self.namespace: str | None = None
        self.future_features: set[str] = set()
        self.passes = passes if passes is not None else self.default_passes()

    def default_passes(self) -> list[CleanerPass]:
        """Return the standard passes in the order they must run.

        Example:
            ```python
            names = [type(p).__name__ for p in CodeCleaner().default_passes()]
            ```
        """
        return [
            FutureImportPass(self),  # must run before the namespace pass
            ImplicitReturnPass(self),
            MagicConstantsPass(self),
            NamespacePass(self),  # must run after the implicit return pass
            NameResolver(self),
            PreventDuplicateClassPass(self),
        ]

    @property
    def effective_namespace(self) -> str:
        """The module name fragments currently run under.

        Example:
            ```python
            CodeCleaner().effective_namespace  # "__main__"
            ```
        """
        return self.namespace or DEFAULT_NAMESPACE

    @property
    def compiler_flags(self) -> int:
        """`compile()` flags for every `__future__` feature seen so far.

        Example:
            ```python
            flags = cleaner.compiler_flags
            ```
        """
        return compiler_flags(self.future_features)

    def clean(self, source: str) -> str | None:
        """Parse, rewrite and print one fragment; None if it has no statements.

        Cross-fragment state is left untouched when the fragment is rejected.

        Example:
            ```python
            cleaned = CodeCleaner().clean("print('hi')")
            ```
        """
        try:
            tree = ast.parse(source, filename=FRAGMENT_FILENAME, mode="exec")
        except SyntaxError as exc:
            raise PreprocessError(_syntax_message(exc)) from exc
        except ValueError as exc:
            # null bytes in the source
            raise PreprocessError(f"SyntaxError: {exc}") from exc

        if not tree.body:
            return None

        namespace = self.namespace
        future_features = set(self.future_features)
        try:
            for cleaner_pass in self.passes:
                tree = cleaner_pass.run(tree)
        except CleanerError as exc:
            self.namespace = namespace
            self.future_features = future_features
            log.debug("Fragment rejected", extra=context(error=str(exc), cleaner_pass=type(cleaner_pass).__name__))
            raise PreprocessError(f"SyntaxError: {exc}") from exc

        ast.fix_missing_locations(tree)
        return ast.unparse(tree)


def _syntax_message(exc: SyntaxError) -> str:
    """Describe a parse failure as `SyntaxError: <msg> (line N)`.

    Example:
        ```python
        _syntax_message(SyntaxError("invalid syntax"))  # "SyntaxError: invalid syntax"
        ```
    """
    message = f"{type(exc).__name__}: {exc.msg}"
    if exc.lineno:
        message += f" (line {exc.lineno})"
    return message
