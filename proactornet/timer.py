"""Timers fired by the loop, and the handle returned to users."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional

from proactornet.timestamp import MonotonicTimestamp, add_time


class Timer:
    """A callback due at a monotonic time, optionally repeating."""

    _next_sequence = 0
    _sequence_lock = threading.Lock()

    def __init__(
        self,
        callback: Optional[Callable[[], None]],
        when: MonotonicTimestamp,
        interval: float,
    ) -> None:
        self._callback = callback
        self._expiration = when
        self._interval = interval
        self._repeat = interval > 0.0
        with Timer._sequence_lock:
            self._sequence = Timer._next_sequence
            Timer._next_sequence += 1

    def run(self) -> None:
        """Invoke the callback, if any."""
        if self._callback:
            self._callback()

    def restart(self, now: MonotonicTimestamp) -> None:
        """Reschedule a repeating timer from ``now``; a one-shot becomes invalid."""
        if self._repeat:
            self._expiration = add_time(now, self._interval)
        else:
            self._expiration = MonotonicTimestamp.invalid()

    @property
    def repeat(self) -> bool:
        return self._repeat

    @property
    def expiration(self) -> MonotonicTimestamp:
        return self._expiration

    @property
    def sequence(self) -> int:
        return self._sequence

    @classmethod
    def num_created(cls) -> int:
        """The sequence number the next timer will receive."""
        with cls._sequence_lock:
            return cls._next_sequence


@dataclass(frozen=True)
class TimerId:
    """Handle identifying a scheduled timer, used to cancel it."""

    timer: Optional[Timer] = None
    sequence: int = 0