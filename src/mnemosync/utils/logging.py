"""Logging setup for Mnemosync.

Log output goes to stderr through Rich so it never mixes with what the
companion "says" on stdout. Every handler installed here redacts API keys;
conversation text is never logged above DEBUG.

Example:
    >>> from mnemosync.utils.logging import setup_logging, LogContext
    >>> setup_logging(level_for_flags(verbose=True))
    >>> with LogContext("scene analysis via primary"):
    ...     pass
    ... # Logs: "scene analysis via primary took 0.00s"
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_NAME = "mnemosync"

# SDK and transport loggers that are chatty at INFO
THIRD_PARTY_LOGGERS = ("google", "google.generativeai", "google.api_core", "grpc", "urllib3", "PIL", "asyncio")

FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_stderr = Console(stderr=True)


# =============================================================================
# Redaction
# =============================================================================


class RedactingFilter(logging.Filter):
    """Masks anything that looks like a credential before a record is emitted.

    Example:
        >>> handler.addFilter(RedactingFilter())
        >>> logger.info("Using api_key=AIzaSy123456789...")
        # Output: "Using api_key=[REDACTED]"
    """

    KEY_VALUE_PATTERNS = [
        re.compile(r'((?:api_key|key|token|secret)\s*[=:]\s*)["\']?([a-zA-Z0-9_\-]{20,})["\']?', re.IGNORECASE),
        re.compile(r"(bearer\s+)([a-zA-Z0-9_\-]{20,})", re.IGNORECASE),
    ]
    STANDALONE_PATTERNS = [
        # Gemini keys start with AIza
        re.compile(r"\bAIza[a-zA-Z0-9_\-]{30,}\b"),
        re.compile(r"\b[a-zA-Z0-9_\-]{35,50}\b"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if record.args:
            record.args = tuple(self.redact(arg) if isinstance(arg, str) else arg for arg in record.args)
        return True

    def redact(self, text: str) -> str:
        for pattern in self.KEY_VALUE_PATTERNS:
            text = pattern.sub(r"\1[REDACTED]", text)
        for pattern in self.STANDALONE_PATTERNS:
            text = pattern.sub("[REDACTED]", text)
        return text


# =============================================================================
# Setup
# =============================================================================


def level_for_flags(verbose: bool = False, debug: bool = False) -> str:
    """Map the CLI's --verbose / --debug flags to a level name."""
    if debug:
        return "DEBUG"
    return "INFO" if verbose else "WARNING"


def setup_logging(level: str = "WARNING", log_file: Path | None = None) -> logging.Logger:
    """Route the package logger to stderr (and optionally a file).

    Calling it again replaces the handlers from the previous call.

    Args:
        level: Level name; unknown names fall back to WARNING.
        log_file: Also append plain-text records here.

    Returns:
        The configured package logger.
    """
    numeric_level = getattr(logging, level.upper(), logging.WARNING)
    redactor = RedactingFilter()

    package_logger = logging.getLogger(PACKAGE_NAME)
    package_logger.setLevel(numeric_level)
    package_logger.handlers = []
    package_logger.propagate = False

    console_handler = RichHandler(
        console=_stderr,
        show_time=numeric_level == logging.DEBUG,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    console_handler.addFilter(redactor)
    package_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler.addFilter(redactor)
        package_logger.addHandler(file_handler)

    third_party_level = logging.INFO if numeric_level == logging.DEBUG else logging.WARNING
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    package_logger.debug(f"Logging at {logging.getLevelName(numeric_level)}, file={log_file}")
    return package_logger


# =============================================================================
# Timing
# =============================================================================


class LogContext:
    """Times a block and logs how it ended. Exceptions are never swallowed.

    Attributes:
        message: What the block does, e.g. "conversation analysis via primary".
        elapsed: Seconds spent in the block, set on exit.
        failed: True if the block raised.
    """

    def __init__(
        self,
        message: str,
        level: int = logging.DEBUG,
        failure_level: int = logging.WARNING,
        logger: logging.Logger | None = None,
    ) -> None:
        self.message = message
        self.level = level
        self.failure_level = failure_level
        self.logger = logger or logging.getLogger(PACKAGE_NAME)
        self.elapsed = 0.0
        self.failed = False
        self._started = 0.0

    def __enter__(self) -> "LogContext":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.elapsed = time.perf_counter() - self._started
        if exc_type is None:
            self.logger.log(self.level, f"{self.message} took {self.elapsed:.2f}s")
            return
        self.failed = True
        self.logger.log(self.failure_level, f"{self.message} failed after {self.elapsed:.2f}s ({exc_type.__name__})")
