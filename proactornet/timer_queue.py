"""Ordered set of pending timers owned by one event loop."""

from __future__ import annotations

import math
from bisect import bisect_left, bisect_right, insort
from typing import Callable, Optional, Protocol

from proactornet.timer import Timer, TimerId
from proactornet.timestamp import MonotonicTimestamp

_MIN_WAIT_MICROS = 100

_Entry = tuple  # (MonotonicTimestamp, sequence)
_Active = tuple  # (Timer, sequence)


class _Loop(Protocol):
    def run_in_loop(self, callback: Callable[[], None]) -> None: ...


def time_until(when: MonotonicTimestamp, now: Optional[MonotonicTimestamp] = None) -> float:
    """Seconds from ``now`` until ``when``, never less than 100 microseconds."""
    if now is None:
        now = MonotonicTimestamp.now()
    micros = max(when.microseconds_since_epoch - now.microseconds_since_epoch, _MIN_WAIT_MICROS)
    return micros / 1_000_000


class TimerQueue:
    """Timers sorted by expiration; all changes run on the owning loop."""

    def __init__(self, loop: _Loop) -> None:
        self._loop = loop
        self._entries: list[_Entry] = []
        self._timers: dict[_Entry, Timer] = {}
        self._active: set[_Active] = set()
        self._canceling: set[_Active] = set()
        self._running_callbacks = False

    def __len__(self) -> int:
        return len(self._entries)

    def add_timer(
        self,
        callback: Optional[Callable[[], None]],
        when: MonotonicTimestamp,
        interval: float,
    ) -> TimerId:
        """Schedule ``callback`` at ``when``; repeat every ``interval`` seconds if positive."""
        timer = Timer(callback, when, interval)
        self._loop.run_in_loop(lambda: self._insert(timer))
        return TimerId(timer, timer.sequence)

    def cancel_timer(self, timer_id: TimerId) -> None:
        """Cancel the timer identified by ``timer_id``."""
        self._loop.run_in_loop(lambda: self._cancel_in_loop(timer_id))

    def _cancel_in_loop(self, timer_id: TimerId) -> None:
        key = (timer_id.timer, timer_id.sequence)
        if not self._erase(key) and self._running_callbacks:
            self._canceling.add(key)

    def handle_expired(self, now: Optional[MonotonicTimestamp] = None) -> None:
        """Run every timer due at ``now`` and reschedule the repeating ones."""
        if now is None:
            now = MonotonicTimestamp.now()
        if not self._entries or now < self._entries[0][0]:
            return
        expired = self._take_expired(now)
        self._canceling.clear()
        self._running_callbacks = True
        try:
            for timer in expired:
                timer.run()
        finally:
            self._running_callbacks = False
        self._reset(expired, now)

    def recent_expire_time(self, now: Optional[MonotonicTimestamp] = None) -> float:
        """Seconds until the earliest timer, or ``math.inf`` when none is pending."""
        if not self._entries:
            return math.inf
        return time_until(self._entries[0][0], now)

    def _take_expired(self, now: MonotonicTimestamp) -> list[Timer]:
        end = bisect_right(self._entries, (now, math.inf))
        due = self._entries[:end]
        del self._entries[:end]
        expired = []
        for entry in due:
            timer = self._timers.pop(entry)
            self._active.discard((timer, timer.sequence))
            expired.append(timer)
        return expired

    def _reset(self, expired: list[Timer], now: MonotonicTimestamp) -> None:
        for timer in expired:
            if timer.repeat and (timer, timer.sequence) not in self._canceling:
                timer.restart(now)
                self._insert(timer)

    def _insert(self, timer: Timer) -> bool:
        entry = (timer.expiration, timer.sequence)
        earliest_changed = not self._entries or entry[0] < self._entries[0][0]
        insort(self._entries, entry)
        self._timers[entry] = timer
        self._active.add((timer, timer.sequence))
        return earliest_changed

    def _erase(self, key: _Active) -> bool:
        if key not in self._active:
            return False
        timer = key[0]
        entry = (timer.expiration, timer.sequence)
        self._active.discard(key)
        position = bisect_left(self._entries, entry)
        del self._entries[position]
        del self._timers[entry]
        return True