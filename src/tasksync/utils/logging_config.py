"""Logging configuration for the task sync engine.

Console output is colored; the optional log file rotates. Both pass through
``redact`` so API keys and auth tokens never reach a terminal or a log file,
even when they are part of an exception message (``requests`` errors quote
the full request URL, including ``?key=``).
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Optional

# (pattern, replacement) pairs; the captured prefix is kept
_SECRETS = (
    (re.compile(r"([?&]key=)[^&\s'\"]+"), r"\1***"),
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"), r"\1***"),
    (
        re.compile(r"((?:id|refresh)_?[Tt]oken[\"']?\s*[:=]\s*[\"']?)[^\"'\s,&}]+"),
        r"\1***",
    ),
)

CONSOLE_FORMAT = "%(asctime)s - %(location)-28s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)-32s - %(levelname)-8s - %(message)s"


def redact(text: str) -> str:
    """Mask API keys and tokens in ``text``."""
    for pattern, replacement in _SECRETS:
        text = pattern.sub(replacement, text)
    return text


class LocationFormatter(logging.Formatter):
    """Formatter with a ``location`` field and secret redaction."""

    def format(self, record: Any) -> str:
        """Format log record, then mask secrets in the whole line."""
        # file:line of the call site
        record.location = f"{record.filename}:{record.lineno}"
        # Tracebacks are included in super().format, so they are masked too
        return redact(super().format(record))


class ColoredFormatter(LocationFormatter):
    """Colored log formatter for console output."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: Any) -> str:
        """Format log record with colors."""
        log_color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset_color = self.COLORS["RESET"]

        # Pad before coloring so columns line up; the record is shared with
        # the file handler, which must see the plain level name
        original_levelname = record.levelname
        record.levelname = f"{log_color}{original_levelname:<8}{reset_color}"
        try:
            return super().format(record)
        finally:
            record.levelname = original_levelname


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    console_output: bool = True,
    max_file_size: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 3,
) -> None:
    """Set up application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        console_output: Whether to output logs to console (stderr, so
            command output on stdout stays clean)
        max_file_size: Maximum size of log file before rotation
        backup_count: Number of backup log files to keep
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    # Replace handlers from an earlier call
    root_logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(
            ColoredFormatter(fmt=CONSOLE_FORMAT, datefmt="%H:%M:%S")
        )
        root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        # Logger names tell sync, storage and remote apart in long runs
        file_handler.setFormatter(
            LocationFormatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )
        root_logger.addHandler(file_handler)

    logger = logging.getLogger(__name__)
    logger.debug("Logging initialized - Level: %s", log_level)
    if log_file:
        logger.info("Log file: %s", log_file)


def configure_third_party_loggers() -> None:
    """Quiet HTTP client loggers; their debug lines repeat every poll."""
    for name in ("urllib3", "requests"):
        logging.getLogger(name).setLevel(logging.WARNING)
