"""Listening socket that accepts connections through the event loop."""

from __future__ import annotations

import errno
import socket
from typing import Any, Callable, Optional

from proactornet.inet_address import InetAddress
from proactornet.logger import log_debug, log_error
from proactornet.loop import CQE_F_MORE, IoContext
from proactornet.sock import Socket, create_nonblocking

NewConnectionCallback = Callable[[socket.socket, InetAddress], None]


class AcceptContext(IoContext):
    """Completion handler of the multishot accept on a listening socket."""

    def __init__(self, addr: InetAddress, fd: int) -> None:
        if not fd:
            raise ValueError("fd is empty, check the logic")
        self.addr = addr
        self.fd = fd
        self.is_error = False
        self.is_accepting = False
        self.acceptor: Optional[Any] = None

    def handle_error(self) -> bool:
        """Classify a failed accept; return True when accepting must stop."""
        if self.res < 0:
            err = -self.res
            if err == errno.ECANCELED:
                return True
            if err in (errno.EMFILE, errno.ENFILE):
                log_error("Accept error: Too many open files. Pausing accept.")
            else:
                log_error("Accept fatal error: %d", err)
            self.is_error = True
            return True
        return False

    def on_completion(self) -> None:
        assert self.is_accepting, "accept completion while not accepting"
        log_debug("AcceptContext res:%d flags:%d", self.res, self.flags)

        need_close = False
        if self.res < 0:
            need_close = self.handle_error()
        else:
            self.acceptor.handle_read(self.res)

        if not self.flags & CQE_F_MORE:
            if not need_close:
                self.acceptor._submit_accept()
            else:
                self.is_accepting = False


class Acceptor:
    """Owns the listening socket and passes each new connection to a callback.

    The callback receives the connected non-blocking socket and the peer
    address; without a callback new connections are closed at once.
    """

    def __init__(self, loop: Any, addr: InetAddress, reuse: bool) -> None:
        self.loop = loop
        self.addr = addr
        self._listening = False
        self.connection_callback: Optional[NewConnectionCallback] = None
        self._accept_socket = Socket(create_nonblocking())
        try:
            self._accept_socket.set_reuse_addr(True)
            self._accept_socket.set_reuse_port(reuse)
            self._accept_socket.bind_address(addr)
        except OSError:
            self._accept_socket.close()
            raise
        self.accept_context = AcceptContext(addr, self._accept_socket.fd)

    def listen(self) -> None:
        """Start listening and submit the multishot accept."""
        self._listening = True
        self._accept_socket.listen()
        self.accept_context.acceptor = self
        self.accept_context.is_accepting = True
        self._submit_accept()

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def fd(self) -> int:
        """Descriptor of the listening socket."""
        return self._accept_socket.fd

    def handle_read(self, conn: int) -> None:
        """Take ownership of the accepted descriptor ``conn``."""
        if conn > 0:
            sock = socket.socket(fileno=conn)
            try:
                peer = InetAddress.from_sockaddr(sock.getpeername())
            except OSError:
                peer = InetAddress(0, "0.0.0.0")
            if self.connection_callback is not None:
                self.connection_callback(sock, peer)
            else:
                sock.close()
        else:
            log_error("accept error:%d", conn)
            if -conn == errno.EMFILE:
                log_error("socket fd reached limit")

    def close(self) -> None:
        """Close the listening socket."""
        self._accept_socket.close()

    def _submit_accept(self) -> None:
        self.loop.submit_accept_multishot(self.accept_context)