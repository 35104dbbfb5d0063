"""
Structured logging configuration for finreplay.

Provides JSON-formatted logs with trace_id support (the user id) for
correlating replays, snapshot writes and batch runs.

Environment Variables:
    FINREPLAY_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR) - default: INFO
    FINREPLAY_LOG_FORMAT: Log format (json, text) - default: json

Usage:
    from finreplay.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__, trace_id="user-42")
    logger.info("Replaying to %s", "2024-01-01T00:00:00+00:00")
"""

import logging
import os
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger


class TraceIDFilter(logging.Filter):
    """Ensures every record has a trace_id field, even outside a LoggerAdapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "trace_id"):
            record.trace_id = "N/A"  # type: ignore
        return True


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure root logger with structured logging.

    Arguments override FINREPLAY_LOG_LEVEL / FINREPLAY_LOG_FORMAT.
    """
    log_level = (level or os.getenv("FINREPLAY_LOG_LEVEL", "INFO")).upper()
    fmt = (log_format or os.getenv("FINREPLAY_LOG_FORMAT", "json")).lower()

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    resolved = level_map.get(log_level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(resolved)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # stderr keeps --json command output on stdout parseable
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved)
    handler.addFilter(TraceIDFilter())

    if fmt == "json":
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s %(trace_id)s",
            rename_fields={
                "asctime": "timestamp",
                "name": "logger",
                "levelname": "level",
            },
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s [trace_id=%(trace_id)s]",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str, trace_id: Optional[str] = None) -> logging.LoggerAdapter:
    """
    Get a logger with optional trace_id for correlation.

    Example:
        logger = get_logger(__name__, trace_id="user-42")
        logger.info("Snapshot batch started")
        # Output (JSON): {"timestamp": "...", "level": "INFO", "message": "Snapshot batch started", "trace_id": "user-42"}
    """
    logger = logging.getLogger(name)
    return logging.LoggerAdapter(logger, {"trace_id": trace_id or "N/A"})
