from __future__ import annotations

import signal
import threading
from types import FrameType
from typing import Any

from .errors import ExecutionTimedOut
from .logger import context, get_logger

TIMEOUT_MESSAGE = "Execution timed out."

log = get_logger(__name__)


def _raise_timeout(signum: int, frame: FrameType | None) -> None:
    """SIGALRM handler that aborts whatever code is currently running.

    Example:
        ```python
        signal.signal(signal.SIGALRM, _raise_timeout)
        ```
    """
    raise ExecutionTimedOut(TIMEOUT_MESSAGE)


class TimeoutGuard:
    """Wall-clock deadline around a single evaluation.

    Uses a real-time interval timer so that code which never yields is still
    interrupted. Only available on POSIX and from the main thread; elsewhere
    arming is a no-op.

    Example:
        ```python
        guard = TimeoutGuard()
        guard.arm(30)
        try:
            run()
        finally:
            guard.disarm()
        ```
    """

    def __init__(self) -> None:
        """Create a disarmed guard.

        Example:
            ```python
            guard = TimeoutGuard()
            ```
        """
        self._previous_handler: Any = None
        self._armed = False

    @staticmethod
    def is_supported() -> bool:
        """Whether interval timers can interrupt the current thread.

        Example:
            ```python
            if TimeoutGuard.is_supported():
                ...
            ```
        """
        return hasattr(signal, "setitimer") and threading.current_thread() is threading.main_thread()

    @property
    def armed(self) -> bool:
        """Whether a deadline is currently pending.

        Example:
            ```python
            guard.armed  # False
            ```
        """
        return self._armed

    def arm(self, seconds: float) -> None:
        """Schedule a one-shot deadline; zero seconds disables the guard.

        Example:
            ```python
            guard.arm(5)
            ```
        """
        self.disarm()
        if seconds <= 0 or not self.is_supported():
            return
        self._previous_handler = signal.signal(signal.SIGALRM, _raise_timeout)
        signal.setitimer(signal.ITIMER_REAL, seconds)
        self._armed = True
        log.debug("Timeout armed", extra=context(seconds=seconds))

    def disarm(self) -> None:
        """Cancel any pending deadline and restore the previous handler.

        Example:
            ```python
            guard.disarm()
            ```
        """
        if not self._armed:
            return
        signal.setitimer(signal.ITIMER_REAL, 0)
        signal.signal(
            signal.SIGALRM,
            self._previous_handler if self._previous_handler is not None else signal.SIG_DFL,
        )
        self._previous_handler = None
        self._armed = False
