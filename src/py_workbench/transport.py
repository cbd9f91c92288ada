from __future__ import annotations

import hmac
import json
import os
from dataclasses import dataclass
from typing import Any, BinaryIO

from .errors import ProtocolError
from .logger import context, get_logger

EVAL_ERROR_CODE = -32000
KEEP_ALIVE_ID = -1

log = get_logger(__name__)


@dataclass(slots=True)
class Request:
    """One decoded evaluation request.

    Example:
        ```python
        req = Request(id=1, fragment="a = 1", working_directory="/tmp")
        ```
    """

    id: int
    fragment: str
    working_directory: str

    @property
    def is_keep_alive(self) -> bool:
        """Whether this request came from an empty or header-less frame.

        Example:
            ```python
            Request(id=-1, fragment="", working_directory="/").is_keep_alive  # True
            ```
        """
        return self.id == KEEP_ALIVE_ID and not self.fragment


@dataclass(slots=True)
class Response:
    """One response frame; exactly one of `result` and `error` is set.

    Example:
        ```python
        resp = Response.success(1, stdout="hi", return_value="None")
        ```
    """

    id: int
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    @classmethod
    def success(
        cls,
        request_id: int,
        *,
        stdout: str,
        return_value: str,
        raw: str = "",
        cleaned: str | None = None,
    ) -> "Response":
        """Build a success response.

        Example:
            ```python
            resp = Response.success(4, stdout="", return_value="1")
            ```
        """
        return cls(
            id=request_id,
            result={
                "stdout": stdout,
                "returnValue": return_value,
                "raw": raw,
                "cleaned": cleaned,
            },
        )

    @classmethod
    def failure(cls, request_id: int, message: str) -> "Response":
        """Build an error response with the reserved evaluation error code.

        Example:
            ```python
            resp = Response.failure(4, "ZeroDivisionError: division by zero")
            ```
        """
        return cls(id=request_id, error={"code": EVAL_ERROR_CODE, "message": message})

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-ready body of this response.

        Example:
            ```python
            body = json.dumps(resp.to_payload())
            ```
        """
        if self.error is not None:
            return {"id": self.id, "error": self.error}
        return {"id": self.id, "result": self.result or {}}


def _read_headers(stream: BinaryIO) -> dict[str, str] | None:
    """Read `key: value` lines up to a blank line; None at end of stream.

    Example:
        ```python
        headers = _read_headers(io.BytesIO(b"Content-Length: 2\\r\\n\\r\\n{}"))
        ```
    """
    headers: dict[str, str] = {}
    while True:
        line = stream.readline()
        if not line:
            # a partial header block at EOF is answered by the body read
            return headers or None
        text = line.decode("latin-1").strip()
        if not text:
            return headers
        key, sep, value = text.partition(":")
        if sep:
            headers[key.strip().lower()] = value.strip()


def _content_length(headers: dict[str, str]) -> int | None:
    """Return the declared body length, or None when absent or malformed.

    Example:
        ```python
        _content_length({"content-length": "12"})  # 12
        ```
    """
    raw = headers.get("content-length")
    if raw is None or not raw.isdigit():
        return None
    return int(raw)


def _read_body(stream: BinaryIO, length: int) -> bytes:
    """Read exactly `length` bytes, failing if the stream ends first.

    Example:
        ```python
        body = _read_body(io.BytesIO(b"{}"), 2)
        ```
    """
    chunks: list[bytes] = []
    remaining = length
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise ProtocolError("Truncated request body")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


class Transport:
    """Framed JSON-RPC style channel over an inbound and an outbound byte stream.

    Example:
        ```python
        transport = Transport(sys.stdin.buffer, sys.stdout.buffer, token="secret")
        ```
    """

    def __init__(self, inbound: BinaryIO, outbound: BinaryIO, *, token: str) -> None:
        """Bind the streams and the shared secret used to authenticate requests.

        Example:
            ```python
            transport = Transport(io.BytesIO(), io.BytesIO(), token="secret")
            ```
        """
        self._inbound = inbound
        self._outbound = outbound
        self._token = token.encode("utf-8")

    def read_request(self) -> Request | None:
        """Block for the next request; None means the inbound stream ended.

        Malformed headers or a missing length produce a keep-alive request.
        A malformed body or a bad token raises ProtocolError.

        Example:
            ```python
            request = transport.read_request()
            ```
        """
        headers = _read_headers(self._inbound)
        if headers is None:
            return None

        length = _content_length(headers)
        if length is None:
            log.debug("Frame without Content-Length, treating as keep-alive")
            return Request(id=KEEP_ALIVE_ID, fragment="", working_directory=os.getcwd())

        body = _read_body(self._inbound, length)
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProtocolError("Invalid JSON-RPC request") from exc

        if not isinstance(payload, dict) or "id" not in payload or "params" not in payload:
            raise ProtocolError("Invalid JSON-RPC request")

        request_id = payload["id"]
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            raise ProtocolError("Invalid JSON-RPC request: id must be an integer")

        params = payload["params"]
        if not isinstance(params, list) or len(params) != 3:
            raise ProtocolError("Invalid request: missing token", request_id)
        if not all(isinstance(param, str) for param in params):
            raise ProtocolError("Invalid request: params must be strings", request_id)

        fragment, working_directory, token = params
        try:
            presented = token.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ProtocolError("Invalid token", request_id) from exc
        if not hmac.compare_digest(self._token, presented):
            log.debug("Rejected request with invalid token", extra=context(id=request_id))
            raise ProtocolError("Invalid token", request_id)

        return Request(id=request_id, fragment=fragment, working_directory=working_directory)

    def write_response(self, response: Response) -> None:
        """Serialize, frame and flush one response.

        Example:
            ```python
            transport.write_response(Response.success(1, stdout="", return_value="None"))
            ```
        """
        body = json.dumps(response.to_payload(), default=str).encode("utf-8")
        self._outbound.write(b"Content-Length: " + str(len(body)).encode("ascii") + b"\r\n\r\n")
        self._outbound.write(body)
        self._outbound.flush()


def encode_request(request_id: int, fragment: str, working_directory: str, token: str) -> bytes:
    """Frame a request the way the host sends it to the worker.

    Example:
        ```python
        frame = encode_request(1, "a = 1", "/tmp", "secret")
        ```
    """
    body = json.dumps({"id": request_id, "params": [fragment, working_directory, token]}).encode("utf-8")
    return b"Content-Length: " + str(len(body)).encode("ascii") + b"\r\n\r\n" + body


def read_frame(stream: BinaryIO) -> dict[str, Any] | None:
    """Read one framed JSON body from `stream`; None at end of stream.

    Example:
        ```python
        payload = read_frame(process.stdout)
        ```
    """
    headers = _read_headers(stream)
    if headers is None:
        return None
    length = _content_length(headers)
    if length is None:
        raise ProtocolError("Frame is missing Content-Length")
    decoded = json.loads(_read_body(stream, length).decode("utf-8"))
    if not isinstance(decoded, dict):
        raise ProtocolError("Frame body must be a JSON object")
    return decoded
