"""Completion handler for a connection's multishot receive."""

from __future__ import annotations

import enum
import errno
import os
from typing import Any, Callable, Optional

from proactornet.chunk_pool import ChunkPool
from proactornet.input_chain_buffer import InputChainBuffer
from proactornet.logger import log_debug, log_error
from proactornet.loop import CQE_BUFFER_SHIFT, CQE_F_BUFFER, CQE_F_MORE, IoContext


class ReadStatus(enum.Enum):
    """State of the receive operation of one connection."""

    STOPPED = enum.auto()  # nothing submitted
    READING = enum.auto()  # receive submitted, completions arriving
    CANCELING = enum.auto()  # cancel submitted because of back-pressure


class ReadContext(IoContext):
    """Receives data into an :class:`InputChainBuffer` and wakes the reader.

    ``holder`` is the connection kept alive while a receive is in flight; it
    must provide ``submit_read(ctx)``, ``submit_cancel(ctx)`` and
    ``handle_close()``.  ``read_handle`` is the callable that resumes the
    waiting reader, if any.  The descriptor is used, not owned.
    """

    def __init__(
        self,
        high_water_mark: int,
        high_water_mark_chunk: int,
        fd: int,
        pool: ChunkPool,
    ) -> None:
        self.holder: Optional[Any] = None
        self.read_handle: Optional[Callable[[], None]] = None
        self.input_buffer = InputChainBuffer(pool)
        self.high_water_mark = high_water_mark
        self.high_water_mark_chunk = high_water_mark_chunk
        self.fd = fd
        self.is_error = False
        self.status = ReadStatus.STOPPED

    def handle_error(self) -> bool:
        """Classify a non-positive result; return True when the connection must close."""
        if self.res == 0:
            self.is_error = True
            log_debug("Peer closed connection")
            return True
        if self.res < 0:
            err = -self.res
            if err in (errno.EPIPE, errno.ECONNRESET):
                self.is_error = True
                return True
            if err == errno.ENOBUFS:
                log_error("Read buffer ring empty (ENOBUFS), waiting for buffers...")
                return False
            if err in (errno.EAGAIN, errno.ECANCELED):
                return False
            if err in (errno.ENOTCONN, errno.EBADF):
                log_error("Fatal fd error: %d", err)
                self.is_error = True
                return True
            log_error("unknown error happened msg: %s", os.strerror(err))
            self.is_error = True
            return True
        return True

    def on_completion(self) -> None:
        log_debug("ReadContext status : %s :res: %d", self.status.name, self.res)
        assert self.holder is not None, "the holder should be set while a read is in flight"
        assert self.status in (ReadStatus.READING, ReadStatus.CANCELING)

        need_close = False
        if self.res <= 0:
            need_close = self.handle_error()
        else:
            buf_id = 0
            if self.flags & CQE_F_BUFFER:
                buf_id = (self.flags >> CQE_BUFFER_SHIFT) & 0xFFFF
            self.input_buffer.append(buf_id, self.res)
            if self.overloaded() and self.status is not ReadStatus.CANCELING:
                log_debug("ReadContext high water mark triggered!")
                self.holder.submit_cancel(self)
                self.status = ReadStatus.CANCELING

        if not self.flags & CQE_F_MORE:
            if self.status is ReadStatus.CANCELING and not need_close:
                self.status = ReadStatus.STOPPED
                self.holder = None
            elif self.status is ReadStatus.READING and not need_close:
                self.holder.submit_read(self)
            else:
                holder = self.holder
                if self.read_handle is not None:
                    self.read_handle()
                holder.handle_close()
                self.holder = None
                self.status = ReadStatus.STOPPED
                return

        if self.read_handle is not None:
            handle, self.read_handle = self.read_handle, None
            handle()

    def overloaded(self) -> bool:
        """True when buffered bytes or chunks exceed their high-water marks."""
        return (
            self.input_buffer.total_len > self.high_water_mark
            or self.input_buffer.total_chunks > self.high_water_mark_chunk
        )

    def is_empty(self) -> bool:
        """True when no data is buffered."""
        return self.input_buffer.total_len == 0