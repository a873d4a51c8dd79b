import logging
import sys

import pytest
from loguru import logger

from nihontowatch.utils.config import LoggingConfig
from nihontowatch.utils.logger import StdlibBridge, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if not isinstance(h, StdlibBridge)]
    logger.remove()
    logger.add(sys.stderr)


def test_file_sink_and_stdlib_records(tmp_path):
    log_file = tmp_path / "logs" / "nihontowatch.log"
    messages = []

    setup_logging(log_level="debug", log_file=str(log_file), settings=LoggingConfig(), component="job")
    logger.add(messages.append, format="{extra[component]} {message}")

    logging.getLogger("nihontowatch.storage.database").warning("Database session error: locked")
    logger.info("Featured scores computed")

    assert log_file.exists()
    assert "nihontowatch Database session error: locked\n" in messages
    assert "job Featured scores computed\n" in messages


def test_stdlib_capture_can_be_disabled():
    messages = []

    setup_logging(log_file="", settings=LoggingConfig(capture_stdlib=False))
    logger.add(messages.append, format="{message}")

    logging.getLogger("apscheduler.scheduler").warning("Scheduler started")

    assert messages == []
    assert not any(isinstance(h, StdlibBridge) for h in logging.getLogger().handlers)
