from __future__ import annotations

import os
import secrets
import subprocess
import sys
from dataclasses import dataclass
from typing import Any, Mapping

from .config import WorkerConfig
from .errors import WorkbenchError
from .transport import encode_request, read_frame


class WorkerError(WorkbenchError):
    """Raised when the worker answers a request with an error response.

    Example:
        ```python
        raise WorkerError("ZeroDivisionError: division by zero", code=-32000)
        ```
    """

    def __init__(self, message: str, code: int) -> None:
        """Store the error message and code sent by the worker.

        Example:
            ```python
            err = WorkerError("Invalid token", code=-32000)
            ```
        """
        super().__init__(message)
        self.code = code


@dataclass(slots=True)
class EvalResult:
    """Successful evaluation as reported by the worker.

    Example:
        ```python
        result = EvalResult(id=1, stdout="hi\\n", return_value="None")
        ```
    """

    id: int
    stdout: str
    return_value: str
    raw: str = ""
    cleaned: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "EvalResult":
        """Build a result from a decoded success response.

        Example:
            ```python
            result = EvalResult.from_payload({"id": 1, "result": {"stdout": "", "returnValue": "1"}})
            ```
        """
        body = payload.get("result") or {}
        return cls(
            id=int(payload["id"]),
            stdout=str(body.get("stdout", "")),
            return_value=str(body.get("returnValue", "")),
            raw=str(body.get("raw", "")),
            cleaned=body.get("cleaned"),
        )


def generate_token() -> str:
    """Return a random shared secret for one worker process.

    Example:
        ```python
        token = generate_token()
        ```
    """
    return secrets.token_hex(32)


class WorkerClient:
    """Spawn a worker process and evaluate fragments in its session.

    Example:
        ```python
        with WorkerClient(timeout_seconds=5) as client:
            client.evaluate("a = 1")
            client.evaluate("a + 1").return_value  # "2"
        ```
    """

    def __init__(
        self,
        *,
        timeout_seconds: int | None = None,
        debug: bool = False,
        log_destination: str | None = None,
        python: str | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Start the worker with a fresh token in its environment.

        Example:
            ```python
            client = WorkerClient(timeout_seconds=2, cwd="/tmp")
            ```
        """
        settings: dict[str, Any] = {"token": generate_token(), "debug": debug}
        if timeout_seconds is not None:
            settings["timeout_seconds"] = timeout_seconds
        if log_destination is not None:
            settings["log_destination"] = log_destination
        self.config = WorkerConfig(**settings)
        self._cwd = cwd or os.getcwd()
        self._next_id = 0

        child_env = dict(os.environ if env is None else env)
        child_env.update(self.config.to_environment())
        self._process = subprocess.Popen(
            [python or sys.executable, "-m", "py_workbench.worker"],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            cwd=self._cwd,
            env=child_env,
        )

    @property
    def token(self) -> str:
        """The shared secret the worker was started with.

        Example:
            ```python
            client.token
            ```
        """
        return self.config.token

    def send_raw(self, frame: bytes) -> dict[str, Any]:
        """Write an already framed request and return the decoded response.

        Example:
            ```python
            payload = client.send_raw(encode_request(1, "1", "/tmp", "wrong-token"))
            ```
        """
        stdin, stdout = self._process.stdin, self._process.stdout
        if stdin is None or stdout is None:
            raise WorkbenchError("Worker pipes are not available")
        stdin.write(frame)
        stdin.flush()
        payload = read_frame(stdout)
        if payload is None:
            raise WorkbenchError(f"Worker exited with status {self._process.wait()}")
        return payload

    def request(self, fragment: str, cwd: str | None = None, token: str | None = None) -> dict[str, Any]:
        """Send one evaluation request and return the decoded response body.

        Example:
            ```python
            payload = client.request("1 + 1")
            ```
        """
        self._next_id += 1
        frame = encode_request(self._next_id, fragment, cwd or self._cwd, token or self.token)
        return self.send_raw(frame)

    def evaluate(self, fragment: str, cwd: str | None = None) -> EvalResult:
        """Evaluate a fragment; raise WorkerError for an error response.

        Example:
            ```python
            result = client.evaluate("print('hi')")
            ```
        """
        payload = self.request(fragment, cwd)
        error = payload.get("error")
        if error:
            raise WorkerError(str(error.get("message", "")), int(error.get("code", 0)))
        return EvalResult.from_payload(payload)

    def close(self, timeout: float = 5) -> int:
        """Close the worker's input and wait for it to exit.

        Example:
            ```python
            status = client.close()
            ```
        """
        if self._process.stdin is not None and not self._process.stdin.closed:
            self._process.stdin.close()
        try:
            status = self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._process.kill()
            status = self._process.wait()
        if self._process.stdout is not None:
            self._process.stdout.close()
        return status

    def __enter__(self) -> "WorkerClient":
        """Return the client for use in a `with` block.

        Example:
            ```python
            with WorkerClient() as client:
                ...
            ```
        """
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Shut the worker down when the block exits.

        Example:
            ```python
            with WorkerClient() as client:
                ...
            ```
        """
        self.close()
