"""Tests for utility functions."""

import logging
from pathlib import Path

import pytest

from flowgate.core.utils import LOGGER_NAME, log_workflow_event, setup_logging


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()


def test_setup_logging_console_only(monkeypatch) -> None:
    monkeypatch.delenv("FLOWGATE_LOG_LEVEL", raising=False)

    logger = setup_logging()

    assert logger.name == "flowgate"
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.INFO


def test_setup_logging_level_from_env(monkeypatch) -> None:
    monkeypatch.setenv("FLOWGATE_LOG_LEVEL", "warning")

    logger = setup_logging()

    assert logger.handlers[0].level == logging.WARNING


def test_setup_logging_writes_file(tmp_path: Path) -> None:
    """Test the rotating file handler captures debug output."""
    log_file = tmp_path / "logs" / "flowgate.log"

    logger = setup_logging("ERROR", str(log_file))
    logging.getLogger("flowgate.core.workflow.router").debug("Routing issue-1")
    for handler in logger.handlers:
        handler.flush()

    assert len(logger.handlers) == 2
    assert "Routing issue-1" in log_file.read_text()


def test_setup_logging_replaces_handlers() -> None:
    setup_logging()
    logger = setup_logging()

    assert len(logger.handlers) == 1


@pytest.mark.parametrize(
    "status,level",
    [
        ("failed", logging.ERROR),
        ("started", logging.INFO),
        ("skipped", logging.INFO),
        ("retrying", logging.DEBUG),
    ],
)
def test_log_workflow_event_levels(status, level, caplog) -> None:
    logger = logging.getLogger("flowgate.tests")

    with caplog.at_level(logging.DEBUG, logger="flowgate.tests"):
        log_workflow_event(logger, "cascade", status, "parent-1")

    record = caplog.records[-1]
    assert record.levelno == level
    assert record.getMessage() == f"[cascade] {status} - parent-1"


def test_log_workflow_event_without_details(caplog) -> None:
    logger = logging.getLogger("flowgate.tests")

    with caplog.at_level(logging.INFO, logger="flowgate.tests"):
        log_workflow_event(logger, "rollup", "completed")

    assert caplog.records[-1].getMessage() == "[rollup] completed"
