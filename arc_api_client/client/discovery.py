"""
Broadcast discovery of ARC API servers.

A probe datagram is broadcast on the server port; every server that answers
within the discovery window is reported once. Discovery uses its own
short-lived UDP socket and never touches an open client connection.
"""

import logging
import socket
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from arc_api_client.client.encoder import Command
from arc_api_client.client.response import get_system_message
from arc_api_client.errors import ConnectionError
from arc_api_client.server.protocol import TCP_PORT, ArcClass, Method

logger = logging.getLogger(__name__)

DISCOVERY_PROBE = Command(ArcClass.SERVER.value, Method.Find.value)


@dataclass(frozen=True)
class DiscoveredServer:
    address: str
    port: int
    metadata: Optional[str] = None


def _describe(e: OSError) -> str:
    return get_system_message(e.errno) if e.errno is not None else str(e)


def _udp_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
    return sock


class ServerDiscovery:
    """
    Lazy, finite, restartable sequence of discovered servers.

    Each iteration runs a fresh discovery window; nothing is remembered
    between runs. A probe that cannot be sent raises ConnectionError; a
    receive failure after that ends the window with the servers found so far.
    """

    def __init__(
        self,
        port: int = TCP_PORT,
        broadcast_address: str = "255.255.255.255",
        window: float = 2.0,
        socket_factory: Callable[[], socket.socket] = _udp_socket,
    ):
        self.port = port
        self.broadcast_address = broadcast_address
        self.window = window
        self.socket_factory = socket_factory

    def __iter__(self) -> Iterator[DiscoveredServer]:
        seen = set()
        try:
            sock = self.socket_factory()
        except OSError as e:
            raise ConnectionError(f"Cannot open discovery socket: {_describe(e)}") from e
        try:
            probe = DISCOVERY_PROBE.to_wire()
            try:
                sock.sendto(probe, (self.broadcast_address, self.port))
            except OSError as e:
                raise ConnectionError(
                    f"Discovery broadcast to {self.broadcast_address}:{self.port} failed: {_describe(e)}"
                ) from e
            logger.debug(f"Broadcast discovery probe to {self.broadcast_address}:{self.port}")

            deadline = time.monotonic() + self.window
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                sock.settimeout(remaining)
                try:
                    data, (address, port) = sock.recvfrom(1024)
                except socket.timeout:
                    break
                except OSError as e:
                    logger.warning(f"Discovery receive failed, ending window early: {_describe(e)}")
                    break

                server = self._parse_reply(data, address, port)
                if server is None or server.address in seen:
                    continue
                seen.add(server.address)
                logger.info(f"Discovered ARC API server at {server.address}:{server.port}")
                yield server
        finally:
            sock.close()

        logger.debug(f"Discovery window closed, {len(seen)} server(s) found")

    @staticmethod
    def _parse_reply(data: bytes, address: str, port: int) -> Optional[DiscoveredServer]:
        text = data.decode("utf-8", errors="replace").strip("\0").strip()
        if text == DISCOVERY_PROBE.text or not text.startswith(ArcClass.SERVER.value):
            logger.debug(f"Ignoring unrelated datagram from {address}: {text!r}")
            return None
        metadata = text[len(ArcClass.SERVER.value):].strip() or None
        return DiscoveredServer(address=address, port=port, metadata=metadata)


def detect_servers(
    port: int = TCP_PORT,
    broadcast_address: str = "255.255.255.255",
    window: float = 2.0,
    socket_factory: Callable[[], socket.socket] = _udp_socket,
) -> ServerDiscovery:
    """
    Discover reachable ARC API servers.

    Args:
        port: Port the servers listen on (default 5000)
        broadcast_address: Where to send the probe
        window: Seconds to collect replies
        socket_factory: Builds the UDP socket (tests substitute a fake)

    Returns:
        ServerDiscovery: Iterate to run a discovery window; empty if nobody answers
    """
    return ServerDiscovery(port, broadcast_address, window, socket_factory)
