"""
Integration tests: real sockets between ArcAPIClient and the protocol
emulator on the loopback interface.
"""

import socket
import threading
import time

import pytest

from arc_api_client.client.client import ArcAPIClient
from arc_api_client.client.discovery import detect_servers
from arc_api_client.config import ClientSettings
from arc_api_client.errors import ConnectionError, RemoteException
from arc_api_client.server.emulator import EMULATED_DEVICES, SERVER_VERSION, ArcAPIServerEmulator
from arc_api_client.server.protocol import ArcClass, Method


class TestServerMethods:
    """Test the built-in server handlers end to end."""

    def test_server_version(self, emulator_client):
        assert emulator_client.get_server_version() == pytest.approx(SERVER_VERSION)

    def test_to_string(self, emulator_client):
        assert emulator_client.to_string() == "ARC API emulated device"

    def test_server_logging(self, emulator, emulator_client):
        assert emulator_client.is_server_logging() is False

        emulator_client.enable_server_log(True)
        emulator_client.log_msg_on_server("hello world")

        assert emulator_client.is_server_logging() is True
        assert emulator.server_log == ["hello world"]

    def test_commands_recorded_in_order(self, emulator, emulator_client):
        emulator_client.to_string()
        emulator_client.get_server_version()

        assert emulator.received_commands == [
            "arc::CArcDevice::ToString",
            "arc::CArcAPIServer::GetServerVersion",
        ]


class TestDirListing:
    @pytest.fixture
    def controller_dir(self, emulator):
        root = emulator.listing_root / "ctl"
        (root / "sub").mkdir(parents=True)
        (root / "a.lod").write_text("a")
        (root / "b c.lod").write_text("b")
        (root / "sub" / "x.lod").write_text("x")
        return root

    def test_flat_listing(self, controller_dir, emulator_client):
        assert emulator_client.get_dir_listing("ctl") == ["a.lod", "b c.lod", "sub"]

    def test_recursive_listing(self, controller_dir, emulator_client):
        names = emulator_client.get_dir_listing("ctl", search_sub_dirs=True)
        assert names == ["a.lod", "b c.lod", "sub", "sub/x.lod"]

    def test_missing_directory(self, emulator_client):
        with pytest.raises(RemoteException) as excinfo:
            emulator_client.get_dir_listing("nowhere")

        assert excinfo.value.method_name == "GetDirListing"
        assert emulator_client.is_open

    @pytest.mark.parametrize("target", ["..", "ctl/../..", "/etc"])
    def test_outside_listing_root_refused(self, controller_dir, emulator_client, target):
        with pytest.raises(RemoteException, match="outside the listing root"):
            emulator_client.get_dir_listing(target)
        assert emulator_client.is_open


class TestErrors:
    """Test failures reported by the server."""

    def test_unknown_command(self, emulator_client):
        with pytest.raises(RemoteException, match="Unknown command"):
            emulator_client.send_invalid_command("bogus")

        # Connection still usable afterwards
        assert emulator_client.to_string()

    def test_handler_failure_becomes_remote_exception(self, emulator, emulator_client):
        def fail(session, args):
            raise RuntimeError("controller not responding")

        emulator.register(ArcClass.DEVICE.value, Method.Reset.value, fail)

        with pytest.raises(RemoteException) as excinfo:
            emulator_client.call_method(ArcClass.DEVICE, Method.Reset)

        assert excinfo.value.method_name == "Reset"
        assert excinfo.value.message == "controller not responding"

    def test_custom_handler_payload(self, emulator, emulator_client):
        emulator.register(ArcClass.DEVICE.value, Method.GetId.value, lambda s, a: "0x" + a[0])

        assert emulator_client.call_method(ArcClass.DEVICE, Method.GetId, "%X", 255) == "0xFF"

    def test_server_drops_connection(self, emulator, emulator_client):
        emulator.register(
            ArcClass.DEVICE.value,
            Method.Close.value,
            lambda s, a: s.conn.shutdown(socket.SHUT_RDWR),
        )

        with pytest.raises(ConnectionError):
            emulator_client.call_method(ArcClass.DEVICE, Method.Close)
        assert not emulator_client.is_open


class TestUpload:
    def test_controller_file_received(self, emulator, emulator_client, sample_controller_file):
        sent = emulator_client.load_controller_file(sample_controller_file)

        assert sent == 10000
        upload = emulator.uploads[0]
        assert upload.method == "LoadControllerFile"
        assert upload.arguments == ["1"]
        assert upload.content == sample_controller_file.read_bytes()

    def test_small_chunks(self, emulator, sample_controller_file):
        client = ArcAPIClient(settings=ClientSettings(io_timeout=5.0, chunk_bytes=7))
        client.connect(emulator.host, emulator.port)
        try:
            client.load_device_file(sample_controller_file)
        finally:
            client.close()

        assert emulator.uploads[0].content == sample_controller_file.read_bytes()

    def test_negative_length_rejected(self, emulator_client):
        with pytest.raises(RemoteException, match="Invalid file length"):
            emulator_client.call_method(ArcClass.DEVICE, Method.LoadDeviceFile, "%d", -1)


class TestRawFramingServer:
    def test_unterminated_exchange(self, sample_controller_file):
        with ArcAPIServerEmulator(port=0, end_of_line=False) as server:
            client = ArcAPIClient(settings=ClientSettings(io_timeout=5.0, end_of_line=False))
            client.connect(server.host, server.port)
            try:
                assert client.get_server_version() == pytest.approx(SERVER_VERSION)
                assert client.load_controller_file(sample_controller_file) == 10000
                assert client.to_string() == "ARC API emulated device"
            finally:
                client.close()


class TestMultiPartExchanges:
    """Exchanges that need a CLIENT OK between replies."""

    def test_device_list(self, emulator_client):
        assert emulator_client.get_device_list() == list(EMULATED_DEVICES)
        # The exchange left nothing behind on the stream
        assert emulator_client.get_server_version() == pytest.approx(SERVER_VERSION)

    def test_histogram(self, emulator_client):
        assert emulator_client.histogram(0, 2, 3, bpp=2) == [2, 2, 1, 1]

    def test_large_histogram(self, emulator_client):
        bins = emulator_client.histogram(0, 512, 512)

        assert len(bins) == 65536
        assert sum(bins) == 512 * 512
        assert emulator_client.is_open

    def test_histogram_rejected_before_count(self, emulator_client):
        with pytest.raises(RemoteException, match="Unsupported bits per pixel"):
            emulator_client.histogram(0, 2, 2, bpp=32)
        assert emulator_client.to_string()


class TestSplitReplies:
    """A reply spread over several TCP segments on a real socket."""

    def test_listing_split_across_segments(self):
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        listener.settimeout(5.0)

        def serve():
            conn, _ = listener.accept()
            with conn:
                conn.recv(1024)
                conn.sendall(b"ARC API OK a.lod|b.lod")
                time.sleep(0.2)
                conn.sendall(b"|c.lod\r\n")
                conn.recv(1024)
                conn.sendall(b"ARC API OK 3.6\r\n")

        thread = threading.Thread(target=serve, daemon=True)
        thread.start()
        client = ArcAPIClient(settings=ClientSettings(io_timeout=5.0))
        try:
            client.connect("127.0.0.1", listener.getsockname()[1])
            assert client.get_dir_listing("ctl") == ["a.lod", "b.lod", "c.lod"]
            assert client.get_server_version() == pytest.approx(3.6)
        finally:
            client.close()
            thread.join(timeout=5.0)
            listener.close()


class TestHandlerThreads:
    def test_finished_handlers_pruned(self, emulator):
        for _ in range(5):
            client = ArcAPIClient(settings=ClientSettings(io_timeout=5.0))
            client.connect(emulator.host, emulator.port)
            client.to_string()
            client.close()
        for thread in emulator._threads[1:]:
            thread.join(timeout=5.0)

        client = ArcAPIClient(settings=ClientSettings(io_timeout=5.0))
        client.connect(emulator.host, emulator.port)
        try:
            client.to_string()
            # Accept loop plus the one live client
            assert len(emulator._threads) == 2
        finally:
            client.close()


class TestDiscovery:
    def test_emulator_answers_probe(self):
        server = ArcAPIServerEmulator(host="127.0.0.1", port=0)
        server.start(discovery=True)
        try:
            found = list(detect_servers(port=server.port, broadcast_address="127.0.0.1", window=1.0))
        finally:
            server.stop()

        assert len(found) == 1
        assert found[0].address == "127.0.0.1"
        assert found[0].metadata == str(SERVER_VERSION)
