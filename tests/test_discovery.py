"""
Unit tests for broadcast server discovery using a fake UDP socket.
"""

import errno

import pytest
from conftest import FakeUdpSocket

from arc_api_client.client.discovery import (
    DISCOVERY_PROBE,
    DiscoveredServer,
    ServerDiscovery,
    detect_servers,
)
from arc_api_client.client.client import ArcAPIClient
from arc_api_client.config import ClientSettings
from arc_api_client.errors import ConnectionError


def reply(address, metadata="3.6", port=5000):
    return (f"arc::CArcAPIServer {metadata}".encode(), (address, port))


class TestDetectServers:
    """Test collecting replies within the discovery window."""

    def test_no_responders(self):
        sock = FakeUdpSocket()
        found = list(detect_servers(window=0.5, socket_factory=lambda: sock))

        assert found == []
        assert sock.sent == [(b"arc::CArcAPIServer::Find", ("255.255.255.255", 5000))]
        assert sock.closed

    def test_single_responder(self):
        sock = FakeUdpSocket([reply("192.168.1.20")])
        found = list(detect_servers(window=0.5, socket_factory=lambda: sock))

        assert found == [DiscoveredServer("192.168.1.20", 5000, "3.6")]

    def test_three_responders_and_duplicates(self):
        sock = FakeUdpSocket(
            [
                reply("10.0.0.1"),
                reply("10.0.0.2"),
                reply("10.0.0.1"),
                reply("10.0.0.3"),
            ]
        )
        found = list(detect_servers(window=0.5, socket_factory=lambda: sock))

        assert [s.address for s in found] == ["10.0.0.1", "10.0.0.2", "10.0.0.3"]

    def test_unrelated_datagrams_ignored(self):
        sock = FakeUdpSocket(
            [
                (b"hello", ("10.0.0.9", 5000)),
                (DISCOVERY_PROBE.to_wire(), ("10.0.0.8", 5000)),
                reply("10.0.0.4", metadata=""),
            ]
        )
        found = list(detect_servers(window=0.5, socket_factory=lambda: sock))

        assert found == [DiscoveredServer("10.0.0.4", 5000, None)]

    def test_custom_port_and_broadcast_address(self):
        sock = FakeUdpSocket()
        list(detect_servers(port=6000, broadcast_address="10.0.0.255", window=0.5, socket_factory=lambda: sock))

        assert sock.sent[0][1] == ("10.0.0.255", 6000)


class TestSocketFailures:
    """A broadcast that cannot go out raises; a failed receive ends the window."""

    def test_send_failure_raises(self):
        error = OSError(errno.ENETUNREACH, "Network is unreachable")
        sock = FakeUdpSocket(send_error=error)

        with pytest.raises(ConnectionError, match="broadcast to 255.255.255.255:5000 failed") as excinfo:
            list(detect_servers(window=0.5, socket_factory=lambda: sock))

        assert excinfo.value.__cause__ is error
        assert sock.closed

    def test_receive_failure_keeps_servers_found(self):
        sock = FakeUdpSocket(
            [reply("10.0.0.1")],
            recv_error=OSError(errno.ECONNREFUSED, "Connection refused"),
        )

        found = list(detect_servers(window=0.5, socket_factory=lambda: sock))

        assert [s.address for s in found] == ["10.0.0.1"]
        assert sock.closed

    def test_socket_open_failure_raises(self):
        def factory():
            raise OSError(errno.EMFILE, "Too many open files")

        with pytest.raises(ConnectionError, match="Cannot open discovery socket"):
            list(detect_servers(window=0.5, socket_factory=factory))


class TestServerDiscovery:
    """Discovery results are lazy and restartable."""

    def test_nothing_sent_until_iterated(self):
        sockets = []

        def factory():
            sockets.append(FakeUdpSocket())
            return sockets[-1]

        discovery = ServerDiscovery(window=0.5, socket_factory=factory)
        assert sockets == []

        list(discovery)
        list(discovery)

        # Each run probes on a fresh socket
        assert len(sockets) == 2
        assert all(s.closed for s in sockets)

    def test_socket_closed_when_iteration_abandoned(self):
        sock = FakeUdpSocket([reply("10.0.0.1"), reply("10.0.0.2")])
        iterator = iter(ServerDiscovery(window=0.5, socket_factory=lambda: sock))

        assert next(iterator).address == "10.0.0.1"
        iterator.close()

        assert sock.closed

    def test_timeout_shrinks_with_window(self):
        sock = FakeUdpSocket([reply("10.0.0.1")])
        list(ServerDiscovery(window=1.0, socket_factory=lambda: sock))

        assert 0 < sock.timeouts[-1] <= sock.timeouts[0] <= 1.0


class TestClientDetectServers:
    def test_uses_client_settings(self):
        settings = ClientSettings(broadcast_address="192.168.7.255", discovery_window=0.25)
        discovery = ArcAPIClient(settings=settings).detect_servers(port=5001)

        assert discovery.broadcast_address == "192.168.7.255"
        assert discovery.window == 0.25
        assert discovery.port == 5001

    def test_open_connection_untouched(self, make_client):
        client, transport = make_client()
        client.detect_servers()
        assert client.is_open
        assert transport.sent == []
