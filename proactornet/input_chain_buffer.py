"""Receive buffer made of a chain of pool chunks filled by the I/O layer."""

from __future__ import annotations

from collections import deque
from typing import Callable, Optional

from proactornet.chunk_pool import Chunk, ChunkPool
from proactornet.logger import log_debug


class InputChainBuffer:
    """Chain of filled chunks; consumed chunks go back to the pool."""

    def __init__(self, pool: ChunkPool) -> None:
        self._pool = pool
        self._chunks: deque[Chunk] = deque()
        self._total_len = 0

    def append(self, index: int, length: int) -> None:
        """Add chunk ``index`` whose next ``length`` bytes were just filled."""
        chunk = self._pool.get_chunk(index)
        if not 0 <= length <= chunk.writable_bytes:
            raise ValueError(f"invalid fill length {length} for chunk {index}")
        chunk.tail += length
        self._chunks.append(chunk)
        self._total_len += length

    def _consume(self, length: int, sink: Optional[Callable[[memoryview], None]]) -> int:
        consumed = 0
        while consumed < length and self._chunks:
            head = self._chunks[0]
            step = min(head.readable_bytes, length - consumed)
            if sink is not None:
                sink(head.readable()[:step])
            head.head += step
            consumed += step
            if head.readable_bytes == 0:
                self._pool.return_chunk(self._chunks.popleft())
        self._total_len -= consumed
        return consumed

    def remove(self, length: int) -> bytes:
        """Take up to ``length`` bytes out of the buffer."""
        out = bytearray()
        self._consume(length, out.extend)
        log_debug("chunks : %d", len(self._chunks))
        return bytes(out)

    def remove_all(self) -> bytes:
        """Take every buffered byte."""
        return self.remove(self._total_len)

    def peek(self) -> memoryview:
        """View of the unread data in the first chunk (empty if none)."""
        if not self._chunks:
            return memoryview(b"")
        return self._chunks[0].readable()

    def retrieve(self, length: int) -> None:
        """Discard up to ``length`` bytes."""
        self._consume(length, None)

    @property
    def total_len(self) -> int:
        return self._total_len

    @property
    def total_chunks(self) -> int:
        return len(self._chunks)

    def release(self) -> None:
        """Return every chunk to the pool and drop the buffered data."""
        while self._chunks:
            self._pool.return_chunk(self._chunks.popleft())
        self._total_len = 0

    def __enter__(self) -> "InputChainBuffer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()