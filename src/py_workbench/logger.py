"""Opt-in diagnostic logging for the worker.

Evaluated code owns stdout, and stdout carries the framed protocol, so log
records go to stderr or a file and only when explicitly enabled.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from typing import Any

LOGGER_NAME = "py_workbench"

_root = logging.getLogger(LOGGER_NAME)
_root.addHandler(logging.NullHandler())
_root.propagate = False
_root.setLevel(logging.CRITICAL + 1)

_handler: logging.Handler | None = None


class SingleLineFormatter(logging.Formatter):
    """Format records as `[time] [LEVEL] [pid:N] message {context}`.

    Example:
        ```python
        handler.setFormatter(SingleLineFormatter())
        ```
    """

    def format(self, record: logging.LogRecord) -> str:
        """Render one record on a single line with compact JSON context.

        Example:
            ```python
            line = SingleLineFormatter().format(record)
            ```
        """
        timestamp = datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")
        message = record.getMessage().replace("\n", "\\n")
        line = f"[{timestamp}] [{record.levelname}] [pid:{record.process}] {message}"
        context = getattr(record, "context", None)
        if context:
            line += " " + json.dumps(context, default=str, ensure_ascii=False, separators=(",", ":"))
        if record.exc_info:
            line += " " + json.dumps(self.formatException(record.exc_info), ensure_ascii=False)
        return line


def get_logger(name: str) -> logging.Logger:
    """Return a child logger of the package logger.

    Example:
        ```python
        log = get_logger(__name__)
        ```
    """
    if name == LOGGER_NAME or name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return _root.getChild(name)


def init(enabled: bool, destination: str | None = None) -> None:
    """Enable or disable logging and select its destination.

    `destination` is a file path; None, "" or "stderr" select stderr. A file
    that cannot be opened falls back to stderr.

    Example:
        ```python
        init(True, "/tmp/py-workbench.log")
        ```
    """
    shutdown()
    if not enabled:
        return

    global _handler
    fallback_path: str | None = None
    if destination is None or destination == "" or destination.lower() == "stderr":
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
    else:
        try:
            handler = logging.FileHandler(destination, mode="a", encoding="utf-8")
        except OSError:
            handler = logging.StreamHandler(sys.stderr)
            fallback_path = destination

    handler.setFormatter(SingleLineFormatter())
    _root.addHandler(handler)
    _root.setLevel(logging.DEBUG)
    _handler = handler

    if fallback_path is not None:
        _root.warning(
            "Failed to open log file, falling back to STDERR",
            extra={"context": {"path": fallback_path}},
        )


def shutdown() -> None:
    """Flush and detach the active handler, disabling logging again.

    Example:
        ```python
        shutdown()
        ```
    """
    global _handler
    if _handler is not None:
        _handler.flush()
        _root.removeHandler(_handler)
        # the stderr handler must not close the process stream
        if isinstance(_handler, logging.FileHandler):
            _handler.close()
        _handler = None
    _root.setLevel(logging.CRITICAL + 1)


def context(**values: Any) -> dict[str, Any]:
    """Build the `extra` mapping that attaches structured context to a record.

    Example:
        ```python
        log.debug("Evaluating fragment", extra=context(id=3))
        ```
    """
    return {"context": values}
