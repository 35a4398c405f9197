"""A fixed pool of equally sized receive buffers handed out as a ring."""

from __future__ import annotations

import itertools
import threading
from collections import deque
from dataclasses import dataclass, field

CHUNK_SIZE = 4096
POOL_SIZE = 4096 * 64

_group_ids = itertools.count(1)
_group_ids_lock = threading.Lock()


def _next_group_id() -> int:
    with _group_ids_lock:
        return next(_group_ids) & 0xFFFF


class PoolExhausted(BufferError):
    """Raised when no free chunk is available in the pool."""


@dataclass(eq=False)
class Chunk:
    """A fixed-size region of the pool with read and write offsets."""

    data: memoryview = field(repr=False)
    index: int
    head: int = 0
    tail: int = 0

    @property
    def capacity(self) -> int:
        return CHUNK_SIZE

    @property
    def readable_bytes(self) -> int:
        return self.tail - self.head

    @property
    def writable_bytes(self) -> int:
        return CHUNK_SIZE - self.tail

    def reset(self) -> None:
        """Clear both offsets."""
        self.head = self.tail = 0

    def readable(self) -> memoryview:
        """View of the unread data."""
        return self.data[self.head:self.tail]

    def writable(self) -> memoryview:
        """View of the free space after the data."""
        return self.data[self.tail:]


class ChunkPool:
    """Pre-allocated chunks kept in a FIFO ring of free buffers."""

    def __init__(self) -> None:
        self.chunks = POOL_SIZE // CHUNK_SIZE
        if self.chunks & (self.chunks - 1):
            raise ValueError("the number of chunks must be a power of two")
        self._memory = bytearray(POOL_SIZE)
        view = memoryview(self._memory)
        self._chunks = [
            Chunk(view[start:start + CHUNK_SIZE], index)
            for index, start in enumerate(range(0, POOL_SIZE, CHUNK_SIZE))
        ]
        self._ring: deque[int] = deque(chunk.index for chunk in self._chunks)
        self._free = set(self._ring)
        self._group_id = _next_group_id()

    def get_chunk(self, index: int) -> Chunk:
        """Return the chunk with the given index."""
        if not 0 <= index < len(self._chunks):
            raise IndexError(f"chunk index out of range: {index}")
        return self._chunks[index]

    def acquire(self) -> Chunk:
        """Take the next free chunk from the ring."""
        if not self._ring:
            raise PoolExhausted("no free chunk in the pool")
        index = self._ring.popleft()
        self._free.discard(index)
        return self._chunks[index]

    def return_chunk(self, chunk: Chunk) -> None:
        """Reset ``chunk`` and put it back at the end of the ring."""
        if self.get_chunk(chunk.index) is not chunk:
            raise ValueError("chunk does not belong to this pool")
        chunk.reset()
        if chunk.index not in self._free:
            self._free.add(chunk.index)
            self._ring.append(chunk.index)

    @property
    def buf_group_id(self) -> int:
        """Identifier of this pool's buffer group."""
        return self._group_id

    @property
    def mask(self) -> int:
        """Mask for wrapping ring positions."""
        return self.chunks - 1

    @property
    def available(self) -> int:
        """Number of free chunks in the ring."""
        return len(self._ring)