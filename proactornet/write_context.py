"""Completion handler for a connection's gather writes."""

from __future__ import annotations

import errno
import os
from typing import Any, Callable, Optional

from proactornet.logger import log_debug, log_error, log_info
from proactornet.loop import IoContext
from proactornet.send_queue import SendQueue


class WriteContext(IoContext):
    """Sends queued output and wakes the writer once below the high-water mark.

    ``holder`` is the connection kept alive while a write is in flight; it
    must provide ``submit_write(ctx)`` and ``handle_close()``.  The buffers of
    the write in flight are kept in ``iovecs``.  The descriptor is used, not
    owned.
    """

    def __init__(self, high_water_mark: int, fd: int, max_slices: int = 256) -> None:
        if not fd:
            raise ValueError("fd is 0, check the logic")
        self.holder: Optional[Any] = None
        self.write_handle: Optional[Callable[[], None]] = None
        self.output_buffer = SendQueue()
        self.high_water_mark = high_water_mark
        self.fd = fd
        self.is_sending = False
        self._error = False
        self.max_slices = max_slices
        self.iovecs: list[memoryview] = []

    def flush(self) -> None:
        """Hand the next batch of queued fragments to the loop."""
        self.iovecs = self.output_buffer.batch(self.max_slices)
        assert self.iovecs, "nothing to flush"
        self.holder.submit_write(self)
        self.is_sending = True

    def handle_error(self) -> bool:
        """Classify a failed write; return True when the connection must close."""
        if self.res < 0:
            err = -self.res
            log_info("WriteContext.handle_error error happened, error:%s", os.strerror(err))
            if err in (errno.EPIPE, errno.ECONNRESET, errno.EBADF, errno.ENOTCONN):
                self._error = True
                return True
            if err in (errno.EAGAIN, errno.ENOBUFS, errno.EINTR):
                return False
            log_error("unknown error happened error")
            self._error = True
            return True
        return True

    def on_completion(self) -> None:
        log_debug("WriteContext res : %d flags: %d", self.res, self.flags)
        assert self.holder is not None, "the holder should be set while a write is in flight"

        if self.res < 0:
            need_close = self.handle_error()
            self.is_sending = False
            if need_close:
                holder = self.holder
                if self.write_handle is not None:
                    self.write_handle()
                holder.handle_close()
                self.holder = None
                return
        else:
            self.output_buffer.retrieve(self.res)

        if self.output_buffer.total_len > 0:
            self.flush()
        else:
            self.is_sending = False
            self.holder = None

        if self.write_handle is not None and not self.overloaded():
            handle, self.write_handle = self.write_handle, None
            handle()

    def overloaded(self) -> bool:
        """True when unsent output exceeds the high-water mark."""
        return self.output_buffer.total_len > self.high_water_mark

    @property
    def is_error(self) -> bool:
        """True once a write error forced the connection to close."""
        return self._error