"""Outgoing data queue handing out gather-write fragments."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Union

BufferLike = Union[bytes, bytearray, memoryview, str]


@dataclass(eq=False)
class TxFragment:
    """One piece of queued output and how much of it has been written."""

    data: bytes
    written: int = 0

    def remaining(self) -> int:
        """Bytes not yet written."""
        return len(self.data) - self.written

    def readable(self) -> memoryview:
        """View of the bytes not yet written."""
        return memoryview(self.data)[self.written:]


class SendQueue:
    """FIFO of owned output fragments.

    Fragments are handed out for sending in order; :meth:`retrieve` consumes
    bytes that were actually written and rewinds the hand-out position to the
    first unsent fragment.
    """

    def __init__(self) -> None:
        self._fragments: deque[TxFragment] = deque()
        # Position of the next fragment to hand out; equal to the number of
        # fragments when everything queued has been handed out.
        self._cursor = 0
        self._total_len = 0

    def append(self, data: BufferLike) -> None:
        """Queue a copy of ``data``; text is encoded as UTF-8."""
        payload = data.encode() if isinstance(data, str) else bytes(data)
        self._fragments.append(TxFragment(payload))
        self._total_len += len(payload)

    def next_fragment(self) -> memoryview | None:
        """Hand out the next unsent fragment, or ``None`` when none is left."""
        if self._cursor >= len(self._fragments):
            return None
        fragment = self._fragments[self._cursor]
        self._cursor += 1
        return fragment.readable()

    def batch(self, max_count: int) -> list[memoryview]:
        """Hand out up to ``max_count`` fragments."""
        views: list[memoryview] = []
        while len(views) < max_count:
            view = self.next_fragment()
            if view is None:
                break
            views.append(view)
        return views

    def retrieve(self, length: int) -> None:
        """Mark ``length`` bytes as written and rewind to the first unsent fragment."""
        written = 0
        while written < length and self._fragments:
            head = self._fragments[0]
            step = min(head.remaining(), length - written)
            head.written += step
            written += step
            if head.written == len(head.data):
                self._fragments.popleft()
        self._cursor = 0
        self._total_len -= written

    def is_empty(self) -> bool:
        """True when no unsent bytes remain."""
        return self._total_len == 0

    @property
    def total_len(self) -> int:
        """Total unsent bytes."""
        return self._total_len