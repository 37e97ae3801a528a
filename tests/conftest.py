"""
Shared pytest fixtures for arc_api_client tests.

Provides a scripted in-memory transport, a recording file receiver, a fake
UDP socket for discovery, and a running protocol emulator on loopback.
"""

import logging
import socket
from collections import deque
from pathlib import Path
import tempfile

import pytest

from arc_api_client.client.client import ArcAPIClient
from arc_api_client.client.transport import Transport
from arc_api_client.config import ClientSettings
from arc_api_client.errors import ConnectionError
from arc_api_client.server.emulator import ArcAPIServerEmulator


class FakeTransport(Transport):
    """
    In-memory Transport double.

    Every send() is recorded and handed to the responder; whatever bytes the
    responder returns become readable, as if the server had replied. A list
    of byte strings is delivered as separate segments: each recv() sees only
    the current segment, and the next one arrives once it is drained.
    """

    def __init__(self, responder=None):
        self.responder = responder
        self.sent = []
        self.readable = b""
        self.later = deque()
        self.peer = None
        self._open = False

    @property
    def is_open(self):
        return self._open

    @property
    def bytes_sent(self):
        return sum(len(d) for d in self.sent)

    def connect(self, address, port):
        self.peer = (address, port)
        self._open = True

    def close(self):
        self._open = False

    def send(self, data):
        if not self._open:
            raise ConnectionError("Connection is closed")
        self.sent.append(bytes(data))
        if self.responder is None:
            return
        try:
            reply = self.responder(bytes(data))
        except ConnectionError:
            self._open = False
            raise
        if isinstance(reply, (list, tuple)):
            self.later.extend(reply)
        elif reply:
            self.later.append(reply)
        if not self.readable and self.later:
            self.readable = self.later.popleft()

    def recv(self, max_bytes):
        if not self._open:
            raise ConnectionError("Connection is closed")
        if not self.readable and self.later:
            self.readable = self.later.popleft()
        if not self.readable:
            self._open = False
            raise ConnectionError("Connection closed by server")
        data, self.readable = self.readable[:max_bytes], self.readable[max_bytes:]
        return data

    def bytes_available(self):
        if not self._open:
            raise ConnectionError("Connection is closed")
        return len(self.readable)


class ScriptedResponder:
    """Replies to each send with the next scripted response."""

    def __init__(self, *replies):
        self.replies = deque(r.encode() if isinstance(r, str) else r for r in replies)

    def __call__(self, data):
        return self.replies.popleft() if self.replies else b""


class RecordingReceiver:
    """
    Server side of a file upload.

    Reads the declared length from the command, acknowledges it, collects the
    raw content and acknowledges again once the declared count has arrived.
    """

    def __init__(self, reject_with=None, fail_on_chunk=None, on_command=None, end_of_line=False):
        self.reject_with = reject_with
        self.fail_on_chunk = fail_on_chunk
        self.on_command = on_command
        self.terminator = b"\r\n" if end_of_line else b""
        self.command = None
        self.declared = None
        self.received = b""
        self.chunks = 0

    @property
    def mismatch(self):
        return self.declared is not None and self.declared != len(self.received)

    def __call__(self, data):
        if self.command is None:
            self.command = data.decode()
            self.declared = int(self.command.split()[1])
            if self.on_command is not None:
                self.on_command()
            if self.reject_with:
                return self.reject_with.encode() + self.terminator
            if self.declared == 0:
                # No content follows, so both acknowledgements go out together
                return (b"ARC API OK" + self.terminator) * 2
            return b"ARC API OK" + self.terminator

        self.chunks += 1
        if self.fail_on_chunk is not None and self.chunks >= self.fail_on_chunk:
            raise ConnectionError("send() returned error: connection reset")
        self.received += data
        if len(self.received) == self.declared:
            return b"ARC API OK" + self.terminator
        return b""


class FakeUdpSocket:
    """Stands in for the discovery UDP socket."""

    def __init__(self, replies=(), send_error=None, recv_error=None):
        self.replies = deque(replies)
        self.send_error = send_error
        self.recv_error = recv_error
        self.sent = []
        self.timeouts = []
        self.closed = False

    def sendto(self, data, addr):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((data, addr))

    def settimeout(self, value):
        self.timeouts.append(value)

    def recvfrom(self, size):
        if not self.replies:
            if self.recv_error is not None:
                raise self.recv_error
            raise socket.timeout("timed out")
        return self.replies.popleft()

    def close(self):
        self.closed = True


@pytest.fixture
def fake_transport():
    """Connected FakeTransport with no responder."""
    transport = FakeTransport()
    transport.connect("127.0.0.1", 5000)
    return transport


@pytest.fixture
def make_client():
    """
    Factory for a client connected over a FakeTransport.

    Scripted replies carry no terminator, so the client defaults to the
    unterminated framing unless end_of_line=True is passed.

    Returns:
        callable: make_client(responder, **settings) -> (client, transport)
    """

    def _make(responder=None, **settings):
        settings.setdefault("end_of_line", False)
        transport = FakeTransport(responder)
        client = ArcAPIClient(transport=transport, settings=ClientSettings(**settings))
        client.connect("127.0.0.1", 5000)
        return client, transport

    return _make


@pytest.fixture
def temp_output_directory():
    """
    Create a temporary directory for test files.

    Yields:
        Path: Temporary directory path
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_controller_file(temp_output_directory):
    """A controller file with non-text content, 10000 bytes long."""
    path = temp_output_directory / "tim.lod"
    path.write_bytes(bytes(range(256)) * 39 + b"\x00" * 16)
    return path


@pytest.fixture
def emulator(temp_output_directory):
    """A running protocol emulator on a free loopback port."""
    listing_root = temp_output_directory / "server_root"
    listing_root.mkdir()
    server = ArcAPIServerEmulator(host="127.0.0.1", port=0, listing_root=listing_root)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def emulator_client(emulator):
    """A real socket client connected to the emulator."""
    client = ArcAPIClient(settings=ClientSettings(io_timeout=5.0))
    client.connect(emulator.host, emulator.port)
    yield client
    client.close()


@pytest.fixture
def restore_logging():
    """Put root logging back the way it was after a test reconfigures it."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
