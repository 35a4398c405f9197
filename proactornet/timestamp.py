"""Wall-clock and monotonic timestamps with microsecond resolution."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TypeVar

_MICROS_PER_SECOND = 1_000_000


@dataclass(frozen=True, order=True)
class Timestamp:
    """Microseconds since the Unix epoch, taken from the system clock."""

    microseconds_since_epoch: int = 0

    @classmethod
    def now(cls) -> "Timestamp":
        """Return the current wall-clock time."""
        return cls(time.time_ns() // 1_000)

    @classmethod
    def invalid(cls) -> "Timestamp":
        """Return the empty (invalid) timestamp."""
        return cls()

    def valid(self) -> bool:
        """True when the timestamp holds a positive time."""
        return self.microseconds_since_epoch > 0

    def __str__(self) -> str:
        t = time.localtime(self.microseconds_since_epoch // _MICROS_PER_SECOND)
        return "%4d/%02d/%02d %02d/%02d/%02d" % (
            t.tm_year,
            t.tm_mon,
            t.tm_mday,
            t.tm_hour,
            t.tm_min,
            t.tm_sec,
        )


@dataclass(frozen=True, order=True)
class MonotonicTimestamp:
    """Microseconds on the monotonic clock; only differences are meaningful."""

    microseconds_since_epoch: int = 0

    @classmethod
    def now(cls) -> "MonotonicTimestamp":
        """Return the current monotonic time."""
        return cls(time.monotonic_ns() // 1_000)

    @classmethod
    def invalid(cls) -> "MonotonicTimestamp":
        """Return the empty (invalid) timestamp."""
        return cls()

    def valid(self) -> bool:
        """True when the timestamp holds a positive time."""
        return self.microseconds_since_epoch > 0


_T = TypeVar("_T", Timestamp, MonotonicTimestamp)


def add_time(timestamp: _T, seconds: float) -> _T:
    """Return ``timestamp`` moved forward by ``seconds`` (truncated to microseconds)."""
    delta = int(seconds * _MICROS_PER_SECOND)
    return type(timestamp)(timestamp.microseconds_since_epoch + delta)