"""
ARC API client connection.

ArcAPIClient owns one transport and issues one command at a time: send the
encoded command, read the complete response, classify it, and either return
the payload or raise the remote exception. The protocol is strictly
request/response, so an instance must not be shared between threads without
external locking.

Example:
    with ArcAPIClient() as client:
        client.connect("192.168.0.10")
        print(client.call_method(ArcClass.DEVICE, Method.ToString))
"""

import contextlib
import logging
import pathlib
import struct
from typing import List, Optional, Union

from arc_api_client.client.discovery import ServerDiscovery, detect_servers
from arc_api_client.client.encoder import Command
from arc_api_client.client.file_transfer import FileTransfer
from arc_api_client.client.response import Response, ResponseReader, parse, unpack_multi_string
from arc_api_client.client.transport import SocketTransport, Transport
from arc_api_client.config import ClientSettings
from arc_api_client.errors import ConnectionError, ProtocolError
from arc_api_client.server.protocol import (
    CLIENT_OK_STRING,
    END_OF_LINE,
    TCP_PORT,
    ArcClass,
    Method,
    MethodRegistry,
)

logger = logging.getLogger(__name__)

# Histogram bins travel as little-endian 32-bit ints
HISTOGRAM_BIN = struct.Struct("<i")


class ArcAPIClient:
    """Client for the ARC API server."""

    DEFAULT_PORT = TCP_PORT

    def __init__(
        self,
        transport: Optional[Transport] = None,
        settings: Optional[ClientSettings] = None,
    ):
        """
        Args:
            transport: Byte transport; a SocketTransport is created if omitted
            settings: Client settings; built-in defaults if omitted
        """
        self.settings = settings or ClientSettings()
        self.transport = transport or SocketTransport(
            connect_timeout=self.settings.connect_timeout,
            io_timeout=self.settings.io_timeout,
        )
        self.end_of_line = self.settings.end_of_line
        self._reader = ResponseReader(
            self.transport,
            buffer_size=self.settings.recv_buffer_bytes,
            max_bytes=self.settings.max_response_bytes,
        )
        self._file_transfer = FileTransfer(self, chunk_bytes=self.settings.chunk_bytes)
        self._outstanding = False

    def __enter__(self) -> "ArcAPIClient":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        state = "open" if self.is_open else "closed"
        return f"ArcAPIClient({getattr(self.transport, 'peer', None)}, {state})"

    # ============ CONNECTION ============

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    def connect(self, address: str, port: int = DEFAULT_PORT):
        """Connect to a server, closing any existing connection first."""
        if self.transport.is_open:
            self.close()
        self.transport.connect(address, port)

    def close(self):
        """Close the connection. Safe to call more than once."""
        self.transport.close()
        self._reader.reset()
        self._outstanding = False

    def set_end_of_line(self, on: bool):
        """
        Toggle CR LF termination of commands and responses.

        Turning it off selects the legacy unterminated framing, which cannot
        tell a reply split across TCP segments from a complete one.
        """
        self.end_of_line = on

    # ============ LOW-LEVEL EXCHANGE ============

    @contextlib.contextmanager
    def outstanding(self):
        """Mark one command as in flight for the duration of the block."""
        if not self.transport.is_open:
            raise ConnectionError("Cannot issue a command on a closed connection")
        if self._outstanding:
            raise ProtocolError("A previous command's response has not been fully consumed")
        self._outstanding = True
        try:
            yield
        finally:
            self._outstanding = False

    def send_command(self, command: Command):
        wire = command.to_wire(self.end_of_line)
        logger.debug(f"Sending -> {command.text!r} size -> {len(wire)}")
        self.transport.send(wire)

    def receive_response(self) -> Response:
        try:
            text = self._reader.read(self.end_of_line)
        except ProtocolError:
            # Response boundary lost; the stream can no longer be trusted
            self.transport.close()
            raise
        return parse(text)

    def execute(self, command: Command) -> Response:
        """Send a built command and return its successful response."""
        with self.outstanding():
            self.send_command(command)
            response = self.receive_response()
        return response.raise_for_status()

    def call_method(
        self,
        class_name: Union[ArcClass, str],
        method_name: Union[Method, str],
        fmt: str = "",
        *args,
    ) -> str:
        """
        Invoke class_name::method_name on the server.

        Args:
            class_name: ArcClass member or class wire token
            method_name: Method member, name or wire token
            fmt: printf-style format for the arguments (%d %u %l %f %s %x %e)
            *args: Values for each conversion in fmt

        Returns:
            str: The response payload ("" for a bare OK)

        Raises:
            ProtocolError: Unknown token, format/argument mismatch, or malformed response
            RemoteException: The server reported a failure for the method
            ConnectionError: The connection is closed or the socket failed
        """
        command = Command.build(
            MethodRegistry.class_token(class_name),
            MethodRegistry.token(method_name),
            fmt,
            *args,
        )
        return self.execute(command).payload

    def send_invalid_command(self, text: str) -> Response:
        """
        Send arbitrary text, bypassing the encoder. For DEBUG ONLY.

        The reply is parsed as usual, so the server's handling of bad input
        surfaces as RemoteException or ProtocolError.
        """
        wire = (text + (END_OF_LINE if self.end_of_line else "")).encode("utf-8")
        with self.outstanding():
            logger.debug(f"Sending invalid command -> {text!r}")
            self.transport.send(wire)
            response = self.receive_response()
        return response.raise_for_status()

    def send_ok(self):
        """Send the client acknowledgement used between steps of multi-part exchanges."""
        wire = (CLIENT_OK_STRING + (END_OF_LINE if self.end_of_line else "")).encode("utf-8")
        if not self.transport.is_open:
            raise ConnectionError("Cannot send on a closed connection")
        logger.debug(f"Sending -> {CLIENT_OK_STRING!r}")
        self.transport.send(wire)

    def receive_exact(self, count: int) -> bytes:
        """Read exactly count raw bytes; a short read closes the connection and raises."""
        try:
            return self._reader.read_exact(count)
        except ConnectionError:
            self.transport.close()
            raise

    # ============ MULTI-PART EXCHANGES ============

    def call_method_bytes(
        self,
        class_name: Union[ArcClass, str],
        method_name: Union[Method, str],
        fmt: str = "",
        *args,
        element_size: int = 1,
    ) -> bytes:
        """
        Invoke a method whose result is a block of raw data.

        The server first replies with the element count. The client answers
        CLIENT OK and then reads exactly count * element_size bytes.

        Returns:
            bytes: The raw data block

        Raises:
            ProtocolError: The count is not an integer
            RemoteException: The server reported a failure for the method
            ConnectionError: The connection ended before the whole block arrived
        """
        method_token = MethodRegistry.token(method_name)
        command = Command.build(MethodRegistry.class_token(class_name), method_token, fmt, *args)
        with self.outstanding():
            self.send_command(command)
            payload = self.receive_response().raise_for_status().payload
            count = self._to_int(payload, method_token)
            self.send_ok()
            return self.receive_exact(count * element_size)

    def call_method_strings(
        self,
        class_name: Union[ArcClass, str],
        method_name: Union[Method, str],
        fmt: str = "",
        *args,
    ) -> List[str]:
        """
        Invoke a method that returns a list one string at a time.

        The first reply carries the count; each further string is requested
        with CLIENT OK.
        """
        method_token = MethodRegistry.token(method_name)
        command = Command.build(MethodRegistry.class_token(class_name), method_token, fmt, *args)
        items = []
        with self.outstanding():
            self.send_command(command)
            count = self._to_int(self.receive_response().raise_for_status().payload, method_token)
            for _ in range(count):
                self.send_ok()
                items.append(self.receive_response().raise_for_status().payload)
        return items

    # ============ GENERAL SERVER METHODS ============

    def to_string(self) -> str:
        return self.call_method(ArcClass.DEVICE, Method.ToString)

    def get_dir_listing(self, target_dir: str, search_sub_dirs: bool = False) -> List[str]:
        """Return the server's listing of target_dir, in server order."""
        payload = self.call_method(
            ArcClass.SERVER, Method.GetDirListing, "%s %d", target_dir, search_sub_dirs
        )
        return unpack_multi_string(payload)

    def log_msg_on_server(self, message: str):
        self.call_method(ArcClass.SERVER, Method.LogMsgOnServer, "%s", message)

    def enable_server_log(self, enable: bool):
        self.call_method(ArcClass.SERVER, Method.EnableServerLog, "%d", enable)

    def is_server_logging(self) -> bool:
        payload = self.call_method(ArcClass.SERVER, Method.IsServerLogging)
        return self._to_int(payload, Method.IsServerLogging.value) != 0

    def get_server_version(self) -> float:
        payload = self.call_method(ArcClass.SERVER, Method.GetServerVersion)
        try:
            return float(payload)
        except ValueError as e:
            raise ProtocolError(f"GetServerVersion returned non-numeric payload {payload!r}") from e

    def get_device_list(self) -> List[str]:
        return self.call_method_strings(ArcClass.DEVICE, Method.GetDeviceList)

    def histogram(self, buffer_address: int, rows: int, cols: int, bpp: int = 16) -> List[int]:
        """
        Histogram of an image already in server memory.

        Args:
            buffer_address: Server-side image buffer address
            rows: Image rows
            cols: Image columns
            bpp: Bits per pixel

        Returns:
            list: Pixel count per value
        """
        data = self.call_method_bytes(
            ArcClass.IMAGE, Method.Histogram, "%l %d %d %d", buffer_address, rows, cols, bpp,
            element_size=HISTOGRAM_BIN.size,
        )
        return [value for (value,) in HISTOGRAM_BIN.iter_unpack(data)]

    @staticmethod
    def _to_int(payload: str, method_name: str) -> int:
        try:
            return int(payload)
        except ValueError as e:
            raise ProtocolError(f"{method_name} returned non-integer payload {payload!r}") from e

    # ============ FILE TRANSFER ============

    def transfer_file(
        self,
        path: Union[str, pathlib.Path],
        class_name: Union[ArcClass, str],
        method_name: Union[Method, str],
        fmt: str = "",
        *args,
    ) -> int:
        """
        Upload a file as the payload of class_name::method_name.

        The file length is always sent as the first argument, ahead of args.

        Returns:
            int: Number of content bytes sent
        """
        return self._file_transfer.send_file(
            path,
            MethodRegistry.class_token(class_name),
            MethodRegistry.token(method_name),
            fmt,
            *args,
        )

    def send_file(self, path: Union[str, pathlib.Path]) -> int:
        """Upload a controller file with validation enabled."""
        return self.load_controller_file(path)

    def load_controller_file(self, path: Union[str, pathlib.Path], validate: bool = True) -> int:
        return self.transfer_file(path, ArcClass.DEVICE, Method.LoadControllerFile, "%d", validate)

    def load_device_file(self, path: Union[str, pathlib.Path]) -> int:
        return self.transfer_file(path, ArcClass.DEVICE, Method.LoadDeviceFile)

    # ============ DISCOVERY ============

    def detect_servers(self, port: int = DEFAULT_PORT) -> ServerDiscovery:
        """Discover servers on the network. Does not use or affect this connection."""
        return detect_servers(
            port,
            broadcast_address=self.settings.broadcast_address,
            window=self.settings.discovery_window,
        )
