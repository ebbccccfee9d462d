"""Pluggable logging used throughout the library."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from enum import IntEnum

LOG_TAG = "AttestatationClientLib"


class LogLevel(IntEnum):
    ERROR = 0
    WARN = 1
    INFO = 2
    DEBUG = 3

    @property
    def label(self) -> str:
        return ("Error", "Warn", "Info", "Debug")[self.value]


class AttestationLogger(ABC):
    """Receives log records emitted by the library."""

    @abstractmethod
    def log(self, log_tag: str, level: LogLevel, function: str, line: int, message: str) -> None:
        """Handle one formatted log record."""


_logger: AttestationLogger | None = None


def set_logger(logger: AttestationLogger | None) -> None:
    """Install the library logger; a logger that is already installed is kept."""
    global _logger
    if _logger is None:
        _logger = logger


def get_logger() -> AttestationLogger | None:
    return _logger


def client_log(level: LogLevel, fmt: str, *args) -> None:
    """Format a printf-style message and hand it to the installed logger, if any."""
    logger = _logger
    if logger is None:
        return
    message = fmt % args if args else fmt
    frame = inspect.currentframe()
    caller = frame.f_back if frame is not None else None
    function = caller.f_code.co_name if caller is not None else "<unknown>"
    line = caller.f_lineno if caller is not None else 0
    del frame, caller
    logger.log(LOG_TAG, level, function, line, message)