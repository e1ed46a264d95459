"""Tests for structlog configuration."""

import json
import logging

import pytest
import structlog

from siteforge.config import MonitoringConfig
from siteforge.observability import configure_logging


@pytest.fixture
def restore_logging():
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def flush_root_handlers() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


@pytest.mark.unit
def test_file_logging_renders_json_with_job_context(tmp_path, restore_logging):
    log_file = tmp_path / "siteforge.log"
    configure_logging(MonitoringConfig(log_level="debug", log_file=str(log_file)))
    logger = structlog.get_logger("siteforge.test")

    with structlog.contextvars.bound_contextvars(job_id="abc123", url="https://acme.test"):
        logger.info("Stage finished", stage="scrape")
    flush_root_handlers()

    records = [json.loads(line) for line in log_file.read_text().splitlines() if line.strip()]
    record = records[-1]
    assert record["event"] == "Stage finished"
    assert record["stage"] == "scrape"
    assert record["job_id"] == "abc123"
    assert record["url"] == "https://acme.test"
    assert record["level"] == "info"
    assert record["logger"] == "siteforge.test"
    assert "timestamp" in record


@pytest.mark.unit
def test_level_filters_lower_records(tmp_path, restore_logging):
    log_file = tmp_path / "siteforge.log"
    configure_logging(MonitoringConfig(log_level="WARNING", log_file=str(log_file)))
    logger = structlog.get_logger("siteforge.test")

    logger.info("Hidden")
    logger.warning("Shown")
    flush_root_handlers()

    events = [json.loads(line)["event"] for line in log_file.read_text().splitlines() if line.strip()]
    assert "Hidden" not in events
    assert "Shown" in events


@pytest.mark.unit
def test_stdlib_records_share_the_pipeline(tmp_path, restore_logging):
    log_file = tmp_path / "siteforge.log"
    configure_logging(MonitoringConfig(log_file=str(log_file)))

    logging.getLogger("siteforge.config").warning("Plain stdlib message")
    flush_root_handlers()

    records = [json.loads(line) for line in log_file.read_text().splitlines() if line.strip()]
    assert records[-1]["event"] == "Plain stdlib message"
    assert records[-1]["level"] == "warning"


@pytest.mark.unit
def test_stdlib_records_inside_a_job_carry_job_id(tmp_path, restore_logging):
    log_file = tmp_path / "siteforge.log"
    configure_logging(MonitoringConfig(log_file=str(log_file)))

    with structlog.contextvars.bound_contextvars(job_id="job-42"):
        logging.getLogger("aiosqlite").warning("Database is locked")
    logging.getLogger("aiosqlite").warning("Outside any job")
    flush_root_handlers()

    records = [json.loads(line) for line in log_file.read_text().splitlines() if line.strip()]
    assert records[-2]["job_id"] == "job-42"
    assert "job_id" not in records[-1]
