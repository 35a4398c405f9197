"""A process-wide logger writing level-tagged, timestamped lines to stdout."""

from __future__ import annotations

import enum
import sys
import threading
from typing import NoReturn

from proactornet.timestamp import Timestamp

_MAX_MESSAGE = 1023


class LogLevel(enum.Enum):
    """Severity of a log line."""

    INFO = "INFO"
    ERROR = "ERROR"
    FATAL = "FATAL"
    DEBUG = "DEBUG"


class Logger:
    """Singleton logger; obtain it with :meth:`get_instance`."""

    _instance: "Logger | None" = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self.debug_enabled = False
        self._write_lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> "Logger":
        """Return the shared logger, creating it on first use."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def log(self, level: LogLevel, msg: str) -> None:
        """Write one line: ``[LEVEL]<time>:<msg>``."""
        line = f"[{level.value}]{Timestamp.now()}:{msg}"
        with self._write_lock:
            print(line, file=sys.stdout, flush=True)


def _format(fmt: str, args: tuple) -> str:
    text = fmt % args if args else fmt
    return text[:_MAX_MESSAGE]


def log_info(fmt: str, *args) -> None:
    """Log an informational message."""
    Logger.get_instance().log(LogLevel.INFO, _format(fmt, args))


def log_error(fmt: str, *args) -> None:
    """Log an error message."""
    Logger.get_instance().log(LogLevel.ERROR, _format(fmt, args))


def log_fatal(fmt: str, *args) -> NoReturn:
    """Log a fatal message and terminate with exit status -1."""
    Logger.get_instance().log(LogLevel.FATAL, _format(fmt, args))
    raise SystemExit(-1)


def log_debug(fmt: str, *args) -> None:
    """Log a debug message when debugging output is enabled."""
    logger = Logger.get_instance()
    if logger.debug_enabled:
        logger.log(LogLevel.DEBUG, _format(fmt, args))