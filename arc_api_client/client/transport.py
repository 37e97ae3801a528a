"""
Byte-level socket I/O for the ARC API client.

Transport is the only layer that touches socket handles; everything above it
works in terms of bytes and the errors defined in arc_api_client.errors.
"""

import abc
import logging
import select
import socket
from typing import Optional, Tuple

from arc_api_client.client.response import get_system_message
from arc_api_client.errors import ConnectionError

logger = logging.getLogger(__name__)


class Transport(abc.ABC):
    """Abstract byte transport used by the client."""

    @property
    @abc.abstractmethod
    def is_open(self) -> bool: ...

    @abc.abstractmethod
    def connect(self, address: str, port: int) -> None: ...

    @abc.abstractmethod
    def close(self) -> None: ...

    @abc.abstractmethod
    def send(self, data: bytes) -> None: ...

    @abc.abstractmethod
    def recv(self, max_bytes: int) -> bytes: ...

    @abc.abstractmethod
    def bytes_available(self) -> int: ...


def _describe(e: OSError) -> str:
    if isinstance(e, socket.timeout):
        return "operation timed out"
    if e.errno is not None:
        return get_system_message(e.errno)
    return str(e)


class SocketTransport(Transport):
    """TCP transport built on the socket module."""

    PEEK_SIZE = 65536

    def __init__(self, connect_timeout: float = 10.0, io_timeout: Optional[float] = None):
        """
        Args:
            connect_timeout: Seconds to wait for the TCP handshake
            io_timeout: Seconds a send/recv may block; None blocks indefinitely
        """
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout
        self._socket: Optional[socket.socket] = None
        self.peer: Optional[Tuple[str, int]] = None

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    def connect(self, address: str, port: int) -> None:
        if self._socket is not None:
            self.close()
        try:
            sock = socket.create_connection((address, port), timeout=self.connect_timeout)
        except OSError as e:
            raise ConnectionError(f"connect() to {address}:{port} failed: {_describe(e)}") from e
        sock.settimeout(self.io_timeout)
        self._socket = sock
        self.peer = (address, port)
        logger.info(f"Connected to server at {address}:{port}")

    def close(self) -> None:
        if self._socket is None:
            return
        sock, self._socket = self._socket, None
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone
            pass
        finally:
            sock.close()
        logger.info(f"Closed connection to {self.peer}")

    def _require_socket(self) -> socket.socket:
        if self._socket is None:
            raise ConnectionError("Connection is closed")
        return self._socket

    def send(self, data: bytes) -> None:
        sock = self._require_socket()
        try:
            sock.sendall(data)
        except OSError as e:
            self.close()
            raise ConnectionError(f"send() returned error: {_describe(e)}") from e

    def recv(self, max_bytes: int) -> bytes:
        sock = self._require_socket()
        try:
            data = sock.recv(max_bytes)
        except OSError as e:
            self.close()
            raise ConnectionError(f"recv() returned error: {_describe(e)}") from e
        if not data:
            self.close()
            raise ConnectionError("Connection closed by server")
        return data

    def bytes_available(self) -> int:
        sock = self._require_socket()
        try:
            readable, _, _ = select.select([sock], [], [], 0)
            if not readable:
                return 0
            return len(sock.recv(self.PEEK_SIZE, socket.MSG_PEEK))
        except OSError as e:
            self.close()
            raise ConnectionError(f"poll returned error: {_describe(e)}") from e
