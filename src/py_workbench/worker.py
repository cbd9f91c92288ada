from __future__ import annotations

import os
import sys
from typing import BinaryIO, Mapping

from . import logger
from .config import WorkerConfig
from .errors import ConfigurationError
from .logger import context, get_logger
from .loop import EvaluationLoop
from .session import Session
from .transport import Transport

log = get_logger(__name__)


def _protocol_streams() -> tuple[BinaryIO, BinaryIO]:
    """Return the inbound and outbound protocol streams of this process.

    The outbound stream is a private duplicate of file descriptor 1, which is
    then pointed at stderr so that stray writes from evaluated code (child
    processes, C extensions) cannot corrupt the framed channel.

    Example:
        ```python
        inbound, outbound = _protocol_streams()
        ```
    """
    inbound = sys.stdin.buffer
    sys.stdout.flush()
    outbound = os.fdopen(os.dup(sys.stdout.fileno()), "wb")
    os.dup2(sys.stderr.fileno(), sys.stdout.fileno())
    return inbound, outbound


def serve(
    config: WorkerConfig,
    inbound: BinaryIO | None = None,
    outbound: BinaryIO | None = None,
) -> int:
    """Run the evaluation loop until the inbound stream closes.

    Example:
        ```python
        served = serve(WorkerConfig(token="secret"), io.BytesIO(frames), io.BytesIO())
        ```
    """
    if inbound is None or outbound is None:
        inbound, outbound = _protocol_streams()
    logger.init(config.debug, config.log_destination)
    log.info("Worker started", extra=context(timeout=config.timeout_seconds))
    try:
        loop = EvaluationLoop(
            Transport(inbound, outbound, token=config.token),
            Session(),
            timeout_seconds=config.timeout_seconds,
        )
        return loop.run()
    finally:
        log.info("Worker stopped")
        logger.shutdown()


def main(environ: Mapping[str, str] | None = None) -> int:
    """Worker process entry point; returns the process exit status.

    Example:
        ```python
        raise SystemExit(main())
        ```
    """
    try:
        config = WorkerConfig.from_environment(environ)
    except ConfigurationError as exc:
        sys.stderr.write(f"{exc}\n")
        return 1
    serve(config)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
