from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from pathlib import Path

import pytest

from py_workbench import logger


def _attached_handlers() -> list[logging.Handler]:
    package_logger = logging.getLogger(logger.LOGGER_NAME)
    return [h for h in package_logger.handlers if not isinstance(h, logging.NullHandler)]


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    logger.shutdown()
    yield
    logger.shutdown()


def test_logging_is_disabled_by_default(capsys: pytest.CaptureFixture[str]) -> None:
    logger.get_logger("test").error("should not appear")
    assert _attached_handlers() == []
    assert capsys.readouterr().err == ""


def test_file_destination_gets_single_line_records(tmp_path: Path) -> None:
    path = tmp_path / "worker.log"
    logger.init(True, str(path))
    logger.get_logger("test").info("Evaluating\nfragment", extra=logger.context(id=3))
    logger.shutdown()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert re.match(r"^\[[^\]]+\] \[INFO\] \[pid:\d+\] Evaluating\\nfragment \{\"id\":3\}$", lines[0])


def test_stderr_destination(capsys: pytest.CaptureFixture[str]) -> None:
    logger.init(True, "stderr")
    logger.get_logger("py_workbench.loop").debug("Received request")
    assert "[DEBUG]" in capsys.readouterr().err


def test_unopenable_file_falls_back_to_stderr(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    logger.init(True, str(tmp_path))
    assert len(_attached_handlers()) == 1
    err = capsys.readouterr().err
    assert "[WARNING]" in err
    assert "Failed to open log file" in err


def test_disabled_init_detaches_handler(capsys: pytest.CaptureFixture[str]) -> None:
    logger.init(True, None)
    logger.init(False)
    logger.get_logger("test").warning("quiet")
    assert _attached_handlers() == []
    assert capsys.readouterr().err == ""


def test_exception_info_stays_on_one_line(tmp_path: Path) -> None:
    path = tmp_path / "worker.log"
    logger.init(True, str(path))
    try:
        raise ValueError("boom")
    except ValueError as exc:
        logger.get_logger("test").debug("Evaluation failed", exc_info=exc)
    logger.shutdown()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert "ValueError: boom" in lines[0]
