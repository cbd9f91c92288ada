from __future__ import annotations


class WorkbenchError(Exception):
    """Base class for errors raised by the workbench engine itself."""


class ConfigurationError(WorkbenchError):
    """Raised when the worker cannot be configured from its environment."""


class ProtocolError(WorkbenchError):
    """Raised for malformed frames, malformed bodies and token mismatches.

    Example:
        ```python
        raise ProtocolError("Invalid token", request_id=7)
        ```
    """

    def __init__(self, message: str, request_id: int = -1) -> None:
        """Store the message and the id of the offending request, if known.

        Example:
            ```python
            err = ProtocolError("Invalid JSON-RPC request")
            ```
        """
        super().__init__(message)
        self.request_id = request_id


class PreprocessError(WorkbenchError):
    """Raised when a fragment cannot be cleaned for evaluation."""


class CleanerError(WorkbenchError):
    """Raised by a cleaner pass that rejects the fragment."""


class ExecutionTimedOut(BaseException):
    """Raised inside a running evaluation when its deadline expires.

    Derives from BaseException so `except Exception` in user code cannot
    swallow it.
    """


class FatalWarning(UserWarning):
    """Warning category that always aborts the evaluation."""


class WarningError(Exception):
    """Recoverable error built from a warning raised by evaluated code.

    Example:
        ```python
        err = WarningError(UserWarning, "careful", "<workbench>", 3)
        ```
    """

    def __init__(
        self,
        category: type[Warning],
        message: str,
        filename: str,
        lineno: int,
    ) -> None:
        """Capture the warning category, text and source location.

        Example:
            ```python
            err = WarningError(DeprecationWarning, "old api", "<workbench>", 1)
            ```
        """
        super().__init__(message)
        self.category = category
        self.message = message
        self.filename = filename
        self.lineno = lineno

    def __str__(self) -> str:
        """Render as `<Category>: <message>`.

        Example:
            ```python
            str(WarningError(UserWarning, "x", "<workbench>", 1))  # "UserWarning: x"
            ```
        """
        return f"{self.category.__name__}: {self.message}"


def describe(exc: BaseException) -> str:
    """Return the wire-safe description of an exception.

    Engine errors carry their own message; anything else is rendered as
    `Type: message`.

    Example:
        ```python
        describe(ZeroDivisionError("division by zero"))  # "ZeroDivisionError: division by zero"
        ```
    """
    text = str(exc)
    if not text:
        return type(exc).__name__
    if isinstance(exc, (WorkbenchError, WarningError)):
        return text
    return f"{type(exc).__name__}: {text}"
