from __future__ import annotations

import re
from typing import Any, Mapping

from .cleaner import REGISTRY_NAME, CodeCleaner
from .logger import context, get_logger

RETURN_VALUE_NAME = "_"
LAST_ERROR_NAME = "_e"
LAST_OUTPUT_NAME = "_out"
EMPTY_FRAGMENT = "return None"

# bindings owned by the engine that are never handed back as user scope
RESERVED_NAMES = frozenset({REGISTRY_NAME, "__builtins__"})

_SHEBANG = re.compile(r"\A#![^\n]*(?:\n|\Z)")
_FENCE_OPEN = re.compile(r"\A\s*```(?:python3?|py)?[ \t]*\n")
_FENCE_CLOSE = re.compile(r"\n?```\s*\Z")

log = get_logger(__name__)


class NoReturnValue:
    """Marker for an evaluation whose fragment did not return anything."""

    def __repr__(self) -> str:
        """Render like the value the response reports.

        Example:
            ```python
            repr(NO_RETURN_VALUE)  # "None"
            ```
        """
        return "None"


NO_RETURN_VALUE = NoReturnValue()


def strip_tags(source: str) -> str:
    """Remove a leading shebang or code fence and a lone trailing fence.

    Example:
        ```python
        strip_tags("```python\\nprint(1)\\n```")  # "print(1)"
        ```
    """
    source = _SHEBANG.sub("", source, count=1)
    opened = _FENCE_OPEN.match(source)
    if opened:
        source = source[opened.end():]
    return _FENCE_CLOSE.sub("", source, count=1)


class TypeRegistry:
    """Fully qualified names of the classes declared in this session.

    Example:
        ```python
        registry = TypeRegistry()
        registry.register_type("__main__.User", User)
        registry.type_exists("__main__.User")  # True
        ```
    """

    def __init__(self) -> None:
        """Start with no declared types.

        Example:
            ```python
            registry = TypeRegistry()
            ```
        """
        self._types: dict[str, type] = {}

    def type_exists(self, name: str) -> bool:
        """Whether a class with this fully qualified name was declared.

        Example:
            ```python
            registry.type_exists("app.models.User")
            ```
        """
        return name in self._types

    def register_type(self, name: str, declared: type) -> None:
        """Record a freshly declared class.

        Example:
            ```python
            registry.register_type("app.models.User", User)
            ```
        """
        self._types[name] = declared
        log.debug("Type declared", extra=context(type=name))

    def declared_type(self, name: str) -> type:
        """Return the class first declared under this name.

        Example:
            ```python
            User = registry.declared_type("app.models.User")
            ```
        """
        return self._types[name]

    def names(self) -> list[str]:
        """Return declared type names in declaration order.

        Example:
            ```python
            registry.names()  # ["__main__.User"]
            ```
        """
        return list(self._types)


class Session:
    """Persistent state carried from one evaluated fragment to the next.

    Example:
        ```python
        session = Session()
        session.add_fragment("a = 1")
        code = session.flush_fragment()
        ```
    """

    def __init__(self, cleaner: CodeCleaner | None = None) -> None:
        """Create an empty session.

        Example:
            ```python
            session = Session(CodeCleaner())
            ```
        """
        self.cleaner = cleaner or CodeCleaner()
        self.types = TypeRegistry()
        self.last_return_value: Any = None
        self.last_error: BaseException | None = None
        self.last_captured_output = ""
        self.raw_fragment = ""
        self.cleaned_fragment: str | None = None
        self._bindings: dict[str, Any] = {}
        self._pending: list[str] = []
        self._output: list[str] = []
        self._last_success = False

    @property
    def last_success(self) -> bool:
        """Whether the previous evaluation completed without a thrown error.

        Example:
            ```python
            if session.last_success:
                ...
            ```
        """
        return self._last_success

    @property
    def future_flags(self) -> int:
        """Compiler flags for the `__future__` features the session has imported.

        Example:
            ```python
            compile(code, "<workbench>", "exec", flags=session.future_flags)
            ```
        """
        return self.cleaner.compiler_flags

    @property
    def output(self) -> str:
        """Output captured for the request being evaluated.

        Example:
            ```python
            stdout = session.output
            ```
        """
        return "".join(self._output)

    def add_fragment(self, raw: str) -> None:
        """Clean a raw fragment and append it to the pending buffer.

        Raises PreprocessError when the fragment cannot be cleaned; nothing is
        appended in that case.

        Example:
            ```python
            session.add_fragment("#!/usr/bin/env python\\nprint('hi')")
            ```
        """
        self.raw_fragment += raw
        cleaned = self.cleaner.clean(strip_tags(raw))
        if cleaned:
            self._pending.append(cleaned)
            self.cleaned_fragment = (self.cleaned_fragment or "") + cleaned

    def flush_fragment(self) -> str:
        """Return the pending code, or a neutral statement when there is none.

        Example:
            ```python
            session.flush_fragment()  # "return None" on an empty buffer
            ```
        """
        return "\n".join(self._pending).strip() or EMPTY_FRAGMENT

    def scope_bindings(self) -> dict[str, Any]:
        """Return every binding except the engine-reserved ones.

        Includes `_`, `_e` and `_out` for the last value, error and output.

        Example:
            ```python
            scope.update(session.scope_bindings())
            ```
        """
        bindings = {key: value for key, value in self._bindings.items() if key not in RESERVED_NAMES}
        bindings[RETURN_VALUE_NAME] = self.last_return_value
        bindings[LAST_ERROR_NAME] = self.last_error
        if self.last_captured_output:
            bindings[LAST_OUTPUT_NAME] = self.last_captured_output
        return bindings

    def scope_diff(self, current: Mapping[str, Any]) -> dict[str, Any]:
        """Return the bindings that are missing from or different in `current`.

        Example:
            ```python
            scope.update(session.scope_diff(scope))
            ```
        """
        return {
            key: value
            for key, value in self.scope_bindings().items()
            if key not in current or current[key] is not value
        }

    def set_bindings(self, scope: Mapping[str, Any]) -> None:
        """Replace the stored bindings with those of a finished evaluation.

        Example:
            ```python
            session.set_bindings(scope)
            ```
        """
        self._bindings = {
            key: value
            for key, value in scope.items()
            if key not in RESERVED_NAMES
            and key not in (RETURN_VALUE_NAME, LAST_ERROR_NAME, LAST_OUTPUT_NAME)
        }

    def record_return_value(self, value: Any) -> None:
        """Mark the evaluation successful and remember its value.

        Example:
            ```python
            session.record_return_value(42)
            ```
        """
        self._last_success = True
        if value is NO_RETURN_VALUE:
            return
        self.last_return_value = value

    def record_error(self, error: BaseException) -> None:
        """Mark the evaluation failed and remember the error.

        Example:
            ```python
            session.record_error(ZeroDivisionError("division by zero"))
            ```
        """
        self._last_success = False
        self.last_error = error

    def capture_output(self, chunk: str, is_final: bool = False) -> None:
        """Accumulate evaluated output; the final call publishes it as `_out`.

        Example:
            ```python
            session.capture_output("hello")
            session.capture_output("", is_final=True)
            ```
        """
        if chunk:
            self._output.append(chunk)
        if is_final and self._output:
            self.last_captured_output = self.output

    def discard_output(self) -> None:
        """Drop output captured for the current request.

        Example:
            ```python
            session.discard_output()
            ```
        """
        self._output = []

    def reset_pending(self) -> None:
        """Clear the per-request buffers once a response has been sent.

        Example:
            ```python
            session.reset_pending()
            ```
        """
        self._pending = []
        self._output = []
        self.raw_fragment = ""
        self.cleaned_fragment = None
