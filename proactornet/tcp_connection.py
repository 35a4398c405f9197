"""TCP connections driven by coroutines on top of the completion event loop.

A connection's business logic is an ``async def`` coroutine wrapped in a
:class:`Task`.  It awaits :meth:`TcpConnection.prepare_to_read` and
:meth:`TcpConnection.send`; the loop resumes the task when data has arrived or
when queued output has dropped below the high-water mark.
"""

from __future__ import annotations

import socket
import sys
from typing import Any, Callable, Coroutine, Generator, Optional, Union

from proactornet.inet_address import InetAddress
from proactornet.logger import log_debug, log_info
from proactornet.read_context import ReadContext, ReadStatus
from proactornet.sock import Socket
from proactornet.write_context import WriteContext

Handle = Callable[[], None]
Suspend = Callable[[Handle], None]
CloseCallback = Callable[["TcpConnection"], None]


class Task:
    """A coroutine that starts suspended and is resumed explicitly.

    When the coroutine awaits one of the connection's awaiters it yields a
    suspend function; the task calls it with its own :meth:`resume` as the
    handle that continues the coroutine later.  Exceptions escaping the
    coroutine are printed to stderr and end the task.
    """

    def __init__(self, coroutine: Coroutine[Any, Any, Any]) -> None:
        self._coro: Optional[Coroutine[Any, Any, Any]] = coroutine
        self._done = False
        self._running = False
        self._destroy_requested = False

    def resume(self) -> None:
        """Run the coroutine until its next suspension or its end."""
        if self._coro is None or self._done or self._running:
            return
        suspend = None
        self._running = True
        try:
            suspend = self._coro.send(None)
        except StopIteration:
            self._done = True
        except Exception as exc:  # the task swallows and reports its errors
            print(exc, file=sys.stderr)
            self._done = True
        finally:
            self._running = False
        if self._destroy_requested:
            self.destroy()
            return
        if not self._done and callable(suspend):
            suspend(self.resume)

    def destroy(self) -> None:
        """Close the coroutine; deferred until it suspends if it is running."""
        if self._running:
            self._destroy_requested = True
            return
        coro, self._coro = self._coro, None
        if coro is not None:
            try:
                coro.close()
            except RuntimeError:
                pass
        self._done = True

    @property
    def done(self) -> bool:
        """True once the coroutine has finished or been destroyed."""
        return self._done


class TcpConnection:
    """One accepted TCP connection owned by an event loop.

    ``sockfd`` is the connected socket object; the connection owns it and
    closes it when the connection closes.
    """

    def __init__(
        self,
        name: str,
        loop: Any,
        sockfd: socket.socket,
        local_addr: InetAddress,
        peer_addr: InetAddress,
        input_high_water_mark: int,
        input_high_water_mark_chunk: int,
        output_high_water_mark: int,
    ) -> None:
        self._name = name
        self.loop = loop
        self._task: Optional[Task] = None
        self._socket = Socket(sockfd)
        self._closing = False
        self.close_callback: Optional[CloseCallback] = None
        self.local_addr = local_addr
        self.peer_addr = peer_addr
        fd = self._socket.fd
        self.read_context = ReadContext(
            input_high_water_mark, input_high_water_mark_chunk, fd, loop.input_pool
        )
        self.write_context = WriteContext(output_high_water_mark, fd)
        log_info("new TCP connection created, name=%s, fd=%d", name, fd)
        self._socket.set_keep_alive(True)

    def __repr__(self) -> str:
        return f"<TcpConnection {self._name!r} fd={self._socket.fd}>"

    # -- user interface ----------------------------------------------------

    def send(self, data: Union[bytes, bytearray, memoryview, str]) -> "SendDataAwaiter":
        """Queue ``data``; awaiting yields False when the connection failed."""
        return SendDataAwaiter(self, data)

    def prepare_to_read(self) -> "RecvDataAwaiter":
        """Wait for input; awaiting yields the buffered byte count or -1."""
        return RecvDataAwaiter(self)

    def read(self, size: int) -> bytes:
        """Take up to ``size`` buffered bytes."""
        return self.read_context.input_buffer.remove(size)

    def peek(self) -> memoryview:
        """View of the unread data in the first input chunk."""
        return self.read_context.input_buffer.peek()

    def retrieve(self, size: int) -> None:
        """Discard up to ``size`` buffered bytes."""
        self.read_context.input_buffer.retrieve(size)

    def established(self, task: Task) -> None:
        """Attach the business task and start it."""
        self._task = task
        task.resume()

    def destroyed(self) -> None:
        """Close the connection, or destroy the task if already closing."""
        self.handle_close()

    @property
    def closing(self) -> bool:
        return self._closing

    @property
    def fd(self) -> int:
        return self._socket.fd

    @property
    def name(self) -> str:
        return self._name

    # -- used by the contexts ----------------------------------------------

    def handle_close(self) -> None:
        """Close the socket, stop pending I/O and notify the close callback."""
        if self._closing:
            if self._task is not None:
                self._task.destroy()
            return
        log_debug("the connection is closing fd= %d", self._socket.fd)
        self._closing = True
        self.loop.submit_cancel(self.read_context)
        self.loop.submit_cancel(self.write_context)
        self._socket.close()
        if (
            self.read_context.read_handle is not None
            or self.write_context.write_handle is not None
        ) and self._task is not None:
            self._task.destroy()
        self.read_context.read_handle = None
        self.write_context.write_handle = None
        if self.close_callback is not None:
            self.close_callback(self)

    def submit_read(self, ctx: ReadContext) -> None:
        """Start the multishot receive, keeping the connection alive meanwhile."""
        if self._closing:
            ctx.holder = None
            ctx.status = ReadStatus.STOPPED
            return
        ctx.holder = self
        self.loop.submit_read_multishot(ctx)
        ctx.status = ReadStatus.READING

    def submit_write(self, ctx: WriteContext) -> None:
        self.loop.submit_write(ctx)

    def submit_cancel(self, ctx: ReadContext) -> None:
        self.loop.submit_cancel(ctx)

    def _send_in_loop(self, data: Union[bytes, bytearray, memoryview, str]) -> None:
        wc = self.write_context
        wc.output_buffer.append(data)
        if not wc.is_sending:
            wc.holder = self
            wc.flush()


class RecvDataAwaiter:
    """Awaitable returned by :meth:`TcpConnection.prepare_to_read`."""

    def __init__(self, conn: TcpConnection) -> None:
        self._conn = conn

    def _ready(self) -> bool:
        conn = self._conn
        if conn.closing:
            return True
        if not conn.loop.is_in_loop_thread():
            return False
        return not conn.read_context.is_empty()

    def _suspend(self, handle: Handle) -> None:
        conn = self._conn
        rc = conn.read_context

        def wait_for_data() -> None:
            rc.read_handle = handle
            if rc.status is ReadStatus.STOPPED:
                conn.submit_read(rc)

        if conn.loop.is_in_loop_thread():
            wait_for_data()
            return

        def in_loop() -> None:
            if rc.is_empty():
                wait_for_data()
            else:
                handle()

        conn.loop.queue_in_loop(in_loop)

    def _resume(self) -> int:
        conn = self._conn
        if conn.read_context.is_error:
            return -1
        if conn.closing:
            conn.loop.queue_in_loop(conn.destroyed)
            return -1
        return conn.read_context.input_buffer.total_len

    def __await__(self) -> Generator[Suspend, None, int]:
        if not self._ready():
            yield self._suspend
        return self._resume()


class SendDataAwaiter:
    """Awaitable returned by :meth:`TcpConnection.send`."""

    def __init__(self, conn: TcpConnection, data: Union[bytes, bytearray, memoryview, str]) -> None:
        self._conn = conn
        self._data = data

    def _take_data(self) -> Union[bytes, bytearray, memoryview, str]:
        data, self._data = self._data, b""
        return data

    def _ready(self) -> bool:
        conn = self._conn
        if conn.closing:
            return True
        if not conn.loop.is_in_loop_thread():
            return False
        conn._send_in_loop(self._take_data())
        return not conn.write_context.overloaded()

    def _suspend(self, handle: Handle) -> None:
        conn = self._conn
        if conn.loop.is_in_loop_thread():
            conn.write_context.write_handle = handle
            log_debug("SendDataAwaiter high water mark triggered!")
            return

        def in_loop() -> None:
            conn._send_in_loop(self._take_data())
            if not conn.write_context.overloaded():
                handle()
            else:
                conn.write_context.write_handle = handle

        conn.loop.queue_in_loop(in_loop)

    def _resume(self) -> bool:
        conn = self._conn
        if conn.closing:
            conn.loop.queue_in_loop(conn.destroyed)
            return False
        return not conn.write_context.is_error

    def __await__(self) -> Generator[Suspend, None, bool]:
        if not self._ready():
            yield self._suspend
        return self._resume()