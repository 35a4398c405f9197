"""Multi-loop TCP server running one coroutine per connection."""

from __future__ import annotations

import enum
import threading
from typing import Any, Callable, Coroutine, Optional

from proactornet.acceptor import Acceptor
from proactornet.inet_address import InetAddress
from proactornet.logger import log_error, log_info
from proactornet.loop import EventLoop, LoopParams
from proactornet.loop_thread import LoopThreadPool, ThreadInitCallback
from proactornet.tcp_connection import Task, TcpConnection

CoroutineHandler = Callable[[TcpConnection], Coroutine[Any, Any, Any]]

_INPUT_HIGH_WATER_MARK = 4096 * 16
_INPUT_HIGH_WATER_MARK_CHUNK = 16
_OUTPUT_HIGH_WATER_MARK = 4096 * 16


class ReuseOption(enum.Enum):
    """Whether the listening socket sets SO_REUSEPORT."""

    NO_REUSE_PORT = enum.auto()
    REUSE_PORT = enum.auto()


class TcpServer:
    """Accepts on the base loop and hands connections to sub-loops round-robin.

    Each connection runs ``handler(conn)`` as a :class:`Task` on its loop.
    """

    def __init__(
        self,
        base_loop: EventLoop,
        bind_addr: InetAddress,
        name: str,
        params: LoopParams,
        handler: CoroutineHandler,
        reuse_option: ReuseOption = ReuseOption.NO_REUSE_PORT,
    ) -> None:
        self._loop = base_loop
        self._ip_port = bind_addr.to_ip_port()
        self.name = name
        self._handler = handler
        self._num_threads = 0
        self._started = False
        self._start_lock = threading.Lock()
        self._next_conn_id = 1
        self._connections: dict[str, TcpConnection] = {}
        self.connection_callback: Optional[Callable[[TcpConnection], None]] = None
        self.write_complete_callback: Optional[Callable[[TcpConnection], None]] = None
        self.thread_init_callback: Optional[ThreadInitCallback] = None
        self._acceptor = Acceptor(
            base_loop, bind_addr, reuse_option is ReuseOption.REUSE_PORT
        )
        self._pool = LoopThreadPool(base_loop, name, params)
        self._acceptor.connection_callback = self._new_connection
        self._closed = False

    def start(self) -> None:
        """Start the loop threads and begin listening; later calls do nothing."""
        with self._start_lock:
            if self._started:
                return
            self._started = True
        self._pool.start(self.thread_init_callback)
        self._loop.run_in_loop(self._acceptor.listen)

    def set_thread_num(self, thread_num: int) -> None:
        """Set the number of sub-loops; only before :meth:`start`."""
        if self._started:
            raise RuntimeError("the server has already started")
        self._num_threads = thread_num
        self._pool.set_num_threads(thread_num)

    @property
    def connections(self) -> dict[str, TcpConnection]:
        """Snapshot of the live connections by name."""
        return dict(self._connections)

    def close(self) -> None:
        """Destroy every connection, stop the sub-loops and the acceptor."""
        if self._closed:
            return
        self._closed = True
        conns = list(self._connections.values())
        self._connections.clear()
        for conn in conns:
            conn.loop.queue_in_loop(conn.destroyed)
        self._pool.stop()

        def shutdown_acceptor() -> None:
            self._loop.submit_cancel(self._acceptor.accept_context)
            self._acceptor.close()

        self._loop.run_in_loop(shutdown_acceptor)

    def __enter__(self) -> "TcpServer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _new_connection(self, sock: Any, peer_addr: InetAddress) -> None:
        ioloop = self._pool.next_loop()
        conn_name = f"{self.name}-{self._ip_port}#{self._next_conn_id}"
        self._next_conn_id += 1
        log_info(
            "new_connection [%s] new connection [%s] from %s",
            self.name, conn_name, peer_addr.to_ip_port(),
        )
        try:
            local_addr = InetAddress.from_sockaddr(sock.getsockname())
        except OSError:
            log_error("new_connection fd=%d failed to get local ip port", sock.fileno())
            local_addr = InetAddress(0, "0.0.0.0")

        conn = TcpConnection(
            conn_name, ioloop, sock, local_addr, peer_addr,
            _INPUT_HIGH_WATER_MARK, _INPUT_HIGH_WATER_MARK_CHUNK, _OUTPUT_HIGH_WATER_MARK,
        )
        conn.close_callback = self._remove_connection
        self._connections[conn_name] = conn
        ioloop.queue_in_loop(lambda: conn.established(Task(self._handler(conn))))

    def _remove_connection(self, conn: TcpConnection) -> None:
        self._loop.run_in_loop(lambda: self._remove_connection_in_loop(conn))

    def _remove_connection_in_loop(self, conn: TcpConnection) -> None:
        log_info("remove_connection [%s] - connection %s", self.name, conn.name)
        self._connections.pop(conn.name, None)