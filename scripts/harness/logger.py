"""Coloured logging configuration for the benchmark harness.

This module exposes the shared harness logger. Console output is coloured per
level, and a plain-text copy can be mirrored into a file next to the results.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


class LogMessageFilter(logging.Filter):
    """Strip terminal control characters that child processes may leak into messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Clean the record in place.

        Returns:
            Always True, the record is never dropped.
        """
        if isinstance(record.msg, str):
            record.msg = CONTROL_CHARACTERS.sub("", record.msg)
        if record.exc_text:
            record.exc_text = CONTROL_CHARACTERS.sub("", record.exc_text)
        return True


class ColoredFormatter(logging.Formatter):
    """Formatter that wraps each line in the ANSI colour of its level."""

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[90m",  # Grey
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET: ClassVar[str] = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format the record and apply the level colour.

        Returns:
            The coloured log line.
        """
        formatted = super().format(record)
        colour = self.COLORS.get(record.levelname)
        return f"{colour}{formatted}{self.RESET}" if colour else formatted


logger = logging.getLogger("harness")
logger.setLevel(logging.DEBUG)

console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(ColoredFormatter(LOG_FORMAT))
console_handler.addFilter(LogMessageFilter())
logger.addHandler(console_handler)

# Prevent duplicate logs from root logger
logger.propagate = False


def set_verbose(verbose: bool) -> None:
    """Switch console output between INFO and DEBUG."""
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)


def attach_file_handler(path: Path) -> logging.Handler:
    """Mirror every harness log record into a plain-text file.

    Args:
        path: Destination log file, opened in append mode.

    Returns:
        The attached handler, so callers can detach it with ``detach_handler``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.addFilter(LogMessageFilter())
    logger.addHandler(file_handler)
    return file_handler


def detach_handler(handler: logging.Handler) -> None:
    """Remove and close a handler previously returned by ``attach_file_handler``."""
    logger.removeHandler(handler)
    handler.close()
