"""Turn warnings raised by evaluated code into typed outcomes.

Python's warnings machinery plays the part of an interpreter's error
signalling: the warning category is the severity, the process filter list is
the ambient reporting level, and `warnings.catch_warnings()` inside a
fragment is the local suppression construct.
"""

from __future__ import annotations

import sys
import warnings
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from .errors import FatalWarning, WarningError
from .logger import context, get_logger

FATAL_CATEGORIES: tuple[type[Warning], ...] = (FatalWarning,)

log = get_logger(__name__)


def _snapshot_filters() -> tuple[Any, ...]:
    """Return an immutable copy of the current warning filter list.

    Example:
        ```python
        before = _snapshot_filters()
        ```
    """
    return tuple(warnings.filters)


@dataclass(frozen=True, slots=True)
class SuppressionState:
    """The reporting level in effect when an evaluation started.

    Example:
        ```python
        state = SuppressionState(filters=tuple(warnings.filters))
        ```
    """

    filters: tuple[Any, ...]

    @classmethod
    def capture(cls) -> "SuppressionState":
        """Record the filter list currently in effect.

        Example:
            ```python
            state = SuppressionState.capture()
            ```
        """
        return cls(filters=_snapshot_filters())

    def is_suppressed(self) -> bool:
        """Whether evaluated code has locally changed the reporting level.

        Example:
            ```python
            if state.is_suppressed():
                ...
            ```
        """
        return _snapshot_filters() != self.filters


def is_enabled(category: type[Warning]) -> bool:
    """Whether the currently effective filters report `category`.

    Example:
        ```python
        is_enabled(DeprecationWarning)
        ```
    """
    for action, _message, filter_category, _module, _lineno in warnings.filters:
        if issubclass(category, filter_category):
            return action != "ignore"
    return True


class ErrorClassifier:
    """Classify a warning as fatal, swallowed or recoverable.

    Example:
        ```python
        classifier = ErrorClassifier()
        err = classifier.handle(UserWarning, "careful", "<workbench>", 1, state)
        ```
    """

    def __init__(self, fatal_categories: tuple[type[Warning], ...] = FATAL_CATEGORIES) -> None:
        """Configure which warning categories abort the evaluation.

        Example:
            ```python
            classifier = ErrorClassifier(fatal_categories=(FatalWarning, RuntimeWarning))
            ```
        """
        self._fatal_categories = fatal_categories

    def is_fatal(self, category: type[Warning]) -> bool:
        """Whether `category` belongs to the fatal tier.

        Example:
            ```python
            classifier.is_fatal(FatalWarning)  # True
            ```
        """
        return issubclass(category, self._fatal_categories)

    def handle(
        self,
        category: type[Warning],
        message: str,
        filename: str,
        lineno: int,
        state: SuppressionState,
    ) -> WarningError | None:
        """Raise for fatal categories, return an error object or None otherwise.

        Example:
            ```python
            err = classifier.handle(DeprecationWarning, "old", "<workbench>", 2, state)
            ```
        """
        error = WarningError(category, message, filename, lineno)
        where = context(category=category.__name__, error=message, file=filename, line=lineno)
        log.debug("Error occurred", extra=where)

        if self.is_fatal(category):
            log.debug("Error is fatal, throwing exception", extra=where)
            raise error

        if state.is_suppressed():
            log.debug("Errors suppressed", extra=where)
            return None

        if is_enabled(category):
            log.debug("Error is not fatal, returning exception", extra=where)
            return error
        return None

    def _fatal_location(self, stacklevel: int) -> tuple[str, int]:
        """Return the filename and line a `warnings.warn` call is attributed to.

        Example:
            ```python
            filename, lineno = classifier._fatal_location(1)
            ```
        """
        try:
            # frame 0 is this helper, frame 1 the patched warn
            frame = sys._getframe(stacklevel + 1)
        except ValueError:
            return "sys", 1
        return frame.f_code.co_filename, frame.f_lineno

    @contextmanager
    def installed(self, on_error: Callable[[WarningError], None]) -> Iterator[SuppressionState]:
        """Report everything and route warnings through this classifier.

        Fatal categories are checked inside `warnings.warn` and
        `warnings.warn_explicit` before any filter applies, so a fragment
        cannot silence them. Restores the previous filters, display hook and
        warn functions on exit.

        Example:
            ```python
            with classifier.installed(session.record_error) as state:
                exec(code, scope)
            ```
        """
        original_warn = warnings.warn
        original_warn_explicit = warnings.warn_explicit

        with warnings.catch_warnings():
            warnings.simplefilter("always")
            state = SuppressionState.capture()

            def _warn(
                message: Warning | str,
                category: type[Warning] | None = None,
                stacklevel: int = 1,
                *args: Any,
                **kwargs: Any,
            ) -> None:
                """Raise fatal warnings before filtering, then warn as usual.

                Example:
                    ```python
                    warnings.warn = _warn
                    ```
                """
                if isinstance(message, Warning):
                    category = type(message)
                category = category or UserWarning
                if self.is_fatal(category):
                    filename, lineno = self._fatal_location(stacklevel)
                    self.handle(category, str(message), filename, lineno, state)
                original_warn(message, category, stacklevel + 1, *args, **kwargs)

            def _warn_explicit(
                message: Warning | str,
                category: type[Warning],
                filename: str,
                lineno: int,
                *args: Any,
                **kwargs: Any,
            ) -> None:
                """Raise fatal warnings before filtering, then warn as usual.

                Example:
                    ```python
                    warnings.warn_explicit = _warn_explicit
                    ```
                """
                if isinstance(message, Warning):
                    category = type(message)
                if self.is_fatal(category):
                    self.handle(category, str(message), filename, lineno, state)
                original_warn_explicit(message, category, filename, lineno, *args, **kwargs)

            def _show(
                message: Warning | str,
                category: type[Warning],
                filename: str,
                lineno: int,
                file: Any = None,
                line: str | None = None,
            ) -> None:
                """Forward a displayed warning to the classifier.

                Example:
                    ```python
                    warnings.showwarning = _show
                    ```
                """
                error = self.handle(category, str(message), filename, lineno, state)
                if error is not None:
                    on_error(error)

            warnings.showwarning = _show
            warnings.warn = _warn  # type: ignore[assignment]
            warnings.warn_explicit = _warn_explicit  # type: ignore[assignment]
            try:
                yield state
            finally:
                warnings.warn = original_warn
                warnings.warn_explicit = original_warn_explicit
