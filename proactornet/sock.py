"""Thin owner of a TCP socket with the options a server needs."""

from __future__ import annotations

import socket

from proactornet.inet_address import InetAddress
from proactornet.logger import log_error

_LISTEN_BACKLOG = 1024 * 16


def create_nonblocking() -> socket.socket:
    """Create a non-blocking, close-on-exec IPv4 TCP socket."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    sock.setblocking(False)
    return sock


class Socket:
    """Owns a socket and closes it exactly once."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._fd = sock.fileno()
        self._closed = False

    @property
    def fd(self) -> int:
        """The descriptor the socket was created with."""
        return self._fd

    @property
    def sock(self) -> socket.socket:
        """The underlying socket object."""
        return self._sock

    @property
    def closed(self) -> bool:
        return self._closed

    def listen(self) -> None:
        """Start listening for connections."""
        try:
            self._sock.listen(_LISTEN_BACKLOG)
        except OSError:
            log_error("listen socket fd %d failed", self._fd)
            raise

    def bind_address(self, addr: InetAddress) -> None:
        """Bind the socket to ``addr``."""
        try:
            self._sock.bind(addr.sockaddr())
        except OSError:
            log_error("bind socket fd %d failed", self._fd)
            raise

    def accept(self) -> tuple[socket.socket, InetAddress]:
        """Accept one connection; the new socket is non-blocking.

        Raises ``OSError`` (``BlockingIOError`` when nothing is pending).
        """
        conn, addr = self._sock.accept()
        conn.setblocking(False)
        return conn, InetAddress.from_sockaddr(addr)

    def shutdown_write(self) -> None:
        """Close the write half; reading is still possible."""
        try:
            self._sock.shutdown(socket.SHUT_WR)
        except OSError:
            log_error("socket fd %d shut down failed", self._fd)

    def close(self) -> None:
        """Close the socket; further calls do nothing."""
        if not self._closed:
            self._sock.close()
            self._closed = True

    def _set_flag(self, level: int, option: int, on: bool) -> None:
        self._sock.setsockopt(level, option, 1 if on else 0)

    def set_tcp_no_delay(self, on: bool) -> None:
        """Enable or disable Nagle's algorithm being bypassed."""
        self._set_flag(socket.IPPROTO_TCP, socket.TCP_NODELAY, on)

    def set_reuse_addr(self, on: bool) -> None:
        """Allow binding to an address still in TIME_WAIT."""
        self._set_flag(socket.SOL_SOCKET, socket.SO_REUSEADDR, on)

    def set_reuse_port(self, on: bool) -> None:
        """Allow several sockets to bind the same address and port."""
        option = getattr(socket, "SO_REUSEPORT", None)
        if option is None:
            if on:
                log_error("SO_REUSEPORT is not supported on this platform")
            return
        self._set_flag(socket.SOL_SOCKET, option, on)

    def set_keep_alive(self, on: bool) -> None:
        """Enable or disable TCP keep-alive probes."""
        self._set_flag(socket.SOL_SOCKET, socket.SO_KEEPALIVE, on)

    def __enter__(self) -> "Socket":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()