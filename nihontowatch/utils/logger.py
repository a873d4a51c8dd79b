"""Loguru sinks for the scheduler, the API and one-off jobs."""

import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .config import LoggingConfig, get_config

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | {name}:{function}:{line} - {message}"

# Third-party loggers that are chatty below WARNING
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "apscheduler.executors.default")


class StdlibBridge(logging.Handler):
    """Forward stdlib logging records to loguru, keeping the caller's location."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real call site
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.bind(component=record.name.split(".")[0]).opt(
            depth=depth, exception=record.exc_info
        ).log(level, record.getMessage())


def capture_stdlib_logging(level: str) -> None:
    """Install the bridge as the only root handler."""
    logging.basicConfig(handlers=[StdlibBridge()], level=level, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    settings: Optional[LoggingConfig] = None,
    component: str = "nihontowatch",
):
    """Replace loguru's default sink with the configured console and file sinks.

    Args:
        log_level: Overrides the configured level
        log_file: Overrides the configured file; an empty string disables it
        settings: Logging section to use instead of the loaded config
        component: Label shown on records that do not bind their own
    """
    settings = settings or get_config().logging
    level = (log_level or settings.level).upper()
    log_file = settings.file if log_file is None else log_file

    logger.remove()
    logger.configure(extra={"component": component})
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level=level,
            rotation=settings.rotation,
            retention=settings.retention,
            compression="zip",
            serialize=settings.serialize,
        )

    if settings.capture_stdlib:
        capture_stdlib_logging(level)

    logger.debug(f"Logging to stderr{f' and {log_file}' if log_file else ''} at {level}")
