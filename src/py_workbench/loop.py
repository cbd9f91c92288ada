from __future__ import annotations

import builtins
import contextlib
import enum
import io
import os
from typing import Any, Iterator

from .classifier import ErrorClassifier
from .cleaner import REGISTRY_NAME
from .config import DEFAULT_TIMEOUT_SECONDS
from .errors import PreprocessError, ProtocolError, describe
from .evaluator import Evaluator, PythonEvaluator
from .logger import context, get_logger
from .session import NO_RETURN_VALUE, Session
from .timeout import TimeoutGuard
from .transport import Request, Response, Transport

log = get_logger(__name__)


class LoopState(enum.Enum):
    AWAITING_REQUEST = "awaiting_request"
    PREPARING = "preparing"
    EVALUATING = "evaluating"
    RESPONDING = "responding"
    STOPPED = "stopped"


class OutputCapture(io.TextIOBase):
    """Text stream that hands everything written to it to the session.

    Example:
        ```python
        with contextlib.redirect_stdout(OutputCapture(session)):
            print("hi")
        ```
    """

    def __init__(self, session: Session) -> None:
        """Bind the capture to the session that accumulates the output.

        Example:
            ```python
            capture = OutputCapture(session)
            ```
        """
        super().__init__()
        self._session = session

    def writable(self) -> bool:
        """Report the stream as writable.

        Example:
            ```python
            OutputCapture(session).writable()  # True
            ```
        """
        return True

    def write(self, text: str) -> int:
        """Forward a chunk of output.

        Example:
            ```python
            capture.write("hello")
            ```
        """
        if not isinstance(text, str):
            raise TypeError(f"write() argument must be str, not {type(text).__name__}")
        self._session.capture_output(text)
        return len(text)

    def finish(self) -> None:
        """Deliver the final chunk so the session can publish the output.

        Example:
            ```python
            capture.finish()
            ```
        """
        self._session.capture_output("", is_final=True)


def change_directory(path: str) -> None:
    """Switch to `path` when it is an existing directory; otherwise stay put.

    Example:
        ```python
        change_directory("/tmp")
        ```
    """
    if path and os.path.isdir(path):
        os.chdir(path)


def _normalize_system_exit(exit_code: Any) -> tuple[bool, str | None]:
    """Map a fragment's `SystemExit` code to success or an error message.

    Example:
        ```python
        _normalize_system_exit(0)  # (True, None)
        ```
    """
    if exit_code in (None, 0):
        return True, None
    return False, f"SystemExit: {exit_code}"


class EvaluationLoop:
    """Serve framed requests one at a time against a single session.

    Example:
        ```python
        loop = EvaluationLoop(Transport(stdin, stdout, token="secret"))
        loop.run()
        ```
    """

    def __init__(
        self,
        transport: Transport,
        session: Session | None = None,
        *,
        evaluator: Evaluator | None = None,
        classifier: ErrorClassifier | None = None,
        guard: TimeoutGuard | None = None,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Wire the loop's collaborators; defaults evaluate Python in-process.

        Example:
            ```python
            loop = EvaluationLoop(transport, Session(), timeout_seconds=5)
            ```
        """
        self.transport = transport
        self.session = session or Session()
        self.evaluator: Evaluator = evaluator or PythonEvaluator()
        self.classifier = classifier or ErrorClassifier()
        self.guard = guard or TimeoutGuard()
        self.timeout_seconds = timeout_seconds
        self.state = LoopState.AWAITING_REQUEST
        self.scope = self._full_scope()

    def _full_scope(self) -> dict[str, Any]:
        """Build a fresh evaluation scope from every stored binding.

        Example:
            ```python
            scope = loop._full_scope()
            ```
        """
        scope: dict[str, Any] = {
            "__name__": "__main__",
            "__builtins__": builtins,
            REGISTRY_NAME: self.session.types,
        }
        scope.update(self.session.scope_bindings())
        return scope

    def run(self) -> int:
        """Serve requests until the inbound stream ends; return how many were answered.

        Example:
            ```python
            served = loop.run()
            ```
        """
        served = 0
        while self.step():
            served += 1
        log.info("Input closed, stopping", extra=context(served=served))
        return served

    def step(self) -> bool:
        """Read, evaluate and answer one request; False once the stream has ended.

        Example:
            ```python
            while loop.step():
                pass
            ```
        """
        self.state = LoopState.AWAITING_REQUEST
        try:
            request = self.transport.read_request()
        except ProtocolError as exc:
            log.error("Rejected request", extra=context(id=exc.request_id, error=str(exc)))
            self._respond(Response.failure(exc.request_id, describe(exc)))
            return True

        if request is None:
            self.state = LoopState.STOPPED
            return False

        self._respond(self.handle(request))
        return True

    def _respond(self, response: Response) -> None:
        """Clear the per-request buffers and send the response.

        Example:
            ```python
            loop._respond(Response.failure(1, "boom"))
            ```
        """
        self.state = LoopState.RESPONDING
        self.session.reset_pending()
        self.transport.write_response(response)

    def handle(self, request: Request) -> Response:
        """Evaluate one authenticated request and build its response.

        Example:
            ```python
            response = loop.handle(Request(id=1, fragment="1 + 1", working_directory="."))
            ```
        """
        self.state = LoopState.PREPARING
        log.debug("Received request", extra=context(id=request.id, fragment=request.fragment))
        try:
            self.session.add_fragment(request.fragment)
        except PreprocessError as exc:
            log.debug("Fragment could not be cleaned", extra=context(id=request.id, error=str(exc)))
            return Response.failure(request.id, describe(exc))
        change_directory(request.working_directory)

        self.state = LoopState.EVALUATING
        capture = OutputCapture(self.session)
        try:
            with self._deadline():
                self._merge_scope()
                with (
                    self.classifier.installed(self.session.record_error),
                    contextlib.redirect_stdout(capture),
                ):
                    value = self._evaluate_fragment()
                    return_value = repr(value)
        except SystemExit as exc:
            ok, message = _normalize_system_exit(exc.code)
            if not ok:
                return self._failure(request, exc, message)
            value, return_value = NO_RETURN_VALUE, repr(NO_RETURN_VALUE)
        except BaseException as exc:
            # ExecutionTimedOut and KeyboardInterrupt land here too
            return self._failure(request, exc, describe(exc))

        capture.finish()
        self.session.set_bindings(self.scope)
        self.session.record_return_value(value)
        log.debug("Evaluation succeeded", extra=context(id=request.id))
        return Response.success(
            request.id,
            stdout=self.session.output,
            return_value=return_value,
            raw=self.session.raw_fragment,
            cleaned=self.session.cleaned_fragment,
        )

    def _merge_scope(self) -> None:
        """Bring the evaluation scope up to date with the session's bindings.

        After a success only changed bindings are merged; after a failure, or
        on the first request, the scope is rebuilt from scratch.

        Example:
            ```python
            loop._merge_scope()
            ```
        """
        if self.session.last_success:
            self.scope.update(self.session.scope_diff(self.scope))
        else:
            self.scope = self._full_scope()

    def _evaluate_fragment(self) -> Any:
        """Evaluate the flushed fragment in the current scope.

        Example:
            ```python
            value = loop._evaluate_fragment()
            ```
        """
        return self.evaluator.evaluate(
            self.session.flush_fragment(),
            self.scope,
            flags=self.session.future_flags,
        )

    def _failure(self, request: Request, exc: BaseException, message: str | None) -> Response:
        """Record a failed evaluation and build its error response.

        Example:
            ```python
            response = loop._failure(request, exc, "ZeroDivisionError: division by zero")
            ```
        """
        self.session.discard_output()
        self.session.record_error(exc)
        log.debug("Evaluation failed", extra=context(id=request.id, error=message), exc_info=exc)
        return Response.failure(request.id, message or describe(exc))

    @contextlib.contextmanager
    def _deadline(self) -> Iterator[None]:
        """Arm the timeout guard for the duration of the block.

        Example:
            ```python
            with loop._deadline():
                loop._evaluate_fragment()
            ```
        """
        self.guard.arm(self.timeout_seconds)
        try:
            yield
        finally:
            self.guard.disarm()
