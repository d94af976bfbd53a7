"""Property-based tests for logging functionality.

**Feature: hgsync, Property 16: Run log format**

This module tests that run logs contain required fields:
- timestamp
- severity level (log level)
- event name
- the job (and build) the run belongs to
"""

import json
import logging
from datetime import datetime
from io import StringIO
from pathlib import Path

import pytest
import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from hgsync.models import LoggingConfig
from hgsync.utils.logging_config import RUN_LOGGER, configure_logging, run_context

pytestmark = pytest.mark.usefixtures("restore_logging")


def _capture_json_logs() -> StringIO:
    log_buffer = StringIO()

    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG,
        stream=log_buffer,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
    return log_buffer


def _entries(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.strip()]


@given(
    log_level=st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    job=st.text(min_size=1, max_size=50),
    message=st.text(min_size=1, max_size=200),
)
@settings(max_examples=100)
def test_run_log_format_contains_required_fields(log_level: str, job: str, message: str) -> None:
    """
    Property 16: Run log format

    *For any* event logged through a run log, the log entry should
    contain timestamp, severity level, event name, the message, the job and
    the build number.

    Args:
        log_level: The log level to test
        job: Job name bound to the run
        message: Human-readable message of the event
    """
    log_buffer = _capture_json_logs()

    with run_context(job, build_number=7) as run_log:
        getattr(run_log, log_level.lower())("required_step_failed", message=message)

    log_output = log_buffer.getvalue().strip()
    try:
        log_entry = json.loads(log_output)
    except json.JSONDecodeError as e:
        raise AssertionError(f"Log output is not valid JSON: {log_output}") from e

    assert "timestamp" in log_entry, f"Log entry missing 'timestamp' field. Log entry: {log_entry}"
    datetime.fromisoformat(log_entry["timestamp"].replace("Z", "+00:00"))

    assert log_entry["level"].upper() == log_level.upper()
    assert log_entry["event"] == "required_step_failed"
    assert log_entry["message"] == message
    assert log_entry["job"] == job
    assert log_entry["build_number"] == 7
    assert log_entry["logger"] == RUN_LOGGER


def test_module_loggers_carry_run_context() -> None:
    """Events from any module logged during a run carry the run's job."""
    log_buffer = _capture_json_logs()
    module_log = structlog.stdlib.get_logger("hgsync.sync.cache_manager")

    with run_context("core", build_number=12):
        module_log.info("cache_creating", cache="/agent/hgcache/X")
    module_log.info("cache_idle")

    inside, outside = _entries(log_buffer.getvalue())
    assert inside["job"] == "core"
    assert inside["build_number"] == 12
    assert inside["cache"] == "/agent/hgcache/X"
    assert "job" not in outside
    assert "build_number" not in outside


def test_configure_logging_writes_json_lines(capsys) -> None:
    configure_logging(LoggingConfig(log_level="INFO", json_logs=True))

    log = structlog.stdlib.get_logger("test_logger")
    with run_context("core", build_number=42):
        log.info("checkout_started")
    log.debug("below_threshold")

    entries = _entries(capsys.readouterr().out)
    assert len(entries) == 1
    assert "timestamp" in entries[0]
    assert entries[0]["level"] == "info"
    assert entries[0]["event"] == "checkout_started"
    assert entries[0]["job"] == "core"
    assert entries[0]["build_number"] == 42
    assert entries[0]["logger"] == "test_logger"


def test_configure_logging_appends_to_log_file(tmp_path: Path, capsys) -> None:
    log_file = tmp_path / "hgsync.log"
    configure_logging(LoggingConfig(log_level="WARNING", json_logs=True, log_file=str(log_file)))

    structlog.stdlib.get_logger("test_file_logger").warning("relink_failed", returncode=255)
    for handler in logging.root.handlers:
        handler.flush()

    (entry,) = _entries(log_file.read_text(encoding="utf-8"))
    assert entry["event"] == "relink_failed"
    assert entry["returncode"] == 255


def test_unknown_level_falls_back_to_info(capsys) -> None:
    configure_logging(LoggingConfig(log_level="CHATTY", json_logs=False))

    assert logging.root.level == logging.INFO
