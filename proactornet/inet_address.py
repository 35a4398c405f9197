"""IPv4 socket addresses."""

from __future__ import annotations

import socket

_INADDR_NONE = b"\xff\xff\xff\xff"


class InetAddress:
    """An IPv4 address and port."""

    __slots__ = ("_packed", "_port")

    def __init__(self, port: int = 0, ip: str = "127.0.0.1") -> None:
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"port out of range: {port}")
        try:
            self._packed = socket.inet_aton(ip)
        except OSError:
            self._packed = _INADDR_NONE
        self._port = port

    @classmethod
    def from_sockaddr(cls, addr: tuple[str, int]) -> "InetAddress":
        """Build from a ``(host, port)`` pair as returned by socket calls."""
        host, port = addr[0], addr[1]
        return cls(port, host)

    def to_ip(self) -> str:
        """Dotted-quad form of the address."""
        return socket.inet_ntoa(self._packed)

    def to_port(self) -> int:
        """The port number."""
        return self._port

    def to_ip_port(self) -> str:
        """``ip:port`` form."""
        return f"{self.to_ip()}:{self._port}"

    def sockaddr(self) -> tuple[str, int]:
        """The ``(host, port)`` pair accepted by socket calls."""
        return (self.to_ip(), self._port)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InetAddress):
            return NotImplemented
        return self._packed == other._packed and self._port == other._port

    def __hash__(self) -> int:
        return hash((self._packed, self._port))

    def __repr__(self) -> str:
        return f"InetAddress({self.to_ip_port()!r})"