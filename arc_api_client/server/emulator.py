"""
ARC API Server Emulator
=======================

A socket server that speaks the ARC API wire protocol without any camera
hardware behind it. Used for client development and integration tests.

Features:
- Threaded client handling, one thread per connection
- "Class::Method" handler registry with the standard OK/EXCEPTION replies
- Length-prefixed file uploads (LoadControllerFile, LoadDeviceFile)
- UDP responder for broadcast server discovery
"""

import logging
import pathlib
import socket
import struct
import threading
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from arc_api_client.client.response import pack_multi_string
from arc_api_client.server.protocol import (
    API_OK_STRING,
    CLIENT_OK_STRING,
    END_OF_LINE,
    ERROR_STRING,
    METHOD_SEPARATOR,
    TCP_PORT,
    ArcClass,
    Method,
)

logger = logging.getLogger(__name__)

SERVER_VERSION = 3.6
RECV_SIZE = 1024
EMULATED_DEVICES = ("PCIe Device 0 (emulated)", "PCIe Device 1 (emulated)")

# Returned by a handler that has already sent every reply of its exchange
NO_REPLY = object()

Handler = Callable[["ClientSession", List[str]], Optional[object]]


@dataclass
class ClientSession:
    """Per-connection state handed to every handler."""

    conn: socket.socket
    addr: Tuple[str, int]
    server: "ArcAPIServerEmulator"
    pending: bytes = b""
    method: str = ""

    def read_exact(self, count: int) -> bytes:
        """Read exactly count raw bytes from the client (file uploads)."""
        data = self.pending[:count]
        self.pending = self.pending[count:]
        while len(data) < count:
            chunk = self.conn.recv(min(65536, count - len(data)))
            if not chunk:
                raise ConnectionResetError(f"Client closed after {len(data)} of {count} bytes")
            data += chunk
        return data

    def reply_ok(self, payload: Optional[str] = None):
        self.server.send_reply(self, API_OK_STRING + (f" {payload}" if payload else ""))

    def expect_client_ok(self):
        """Wait for the client acknowledgement that requests the next part of a reply."""
        text = self.server._read_command(self)
        if text is None:
            raise ConnectionResetError("Client closed while a multi-part reply was pending")
        if text.strip() != CLIENT_OK_STRING:
            raise ValueError(f"Expected {CLIENT_OK_STRING}, got {text.strip()!r}")


@dataclass
class UploadedFile:
    method: str
    arguments: List[str]
    content: bytes = field(repr=False)


class ArcAPIServerEmulator:
    """Threaded ARC API protocol server."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = TCP_PORT,
        end_of_line: bool = True,
        listing_root: Optional[pathlib.Path] = None,
    ):
        """
        Args:
            host: Interface to listen on
            port: TCP port; 0 picks a free port
            end_of_line: Whether commands and replies are CR LF terminated
            listing_root: Directory that GetDirListing paths are resolved against
        """
        self.host = host
        self.port = port
        self.end_of_line = end_of_line
        self.listing_root = pathlib.Path(listing_root or pathlib.Path.cwd())

        self.handlers: Dict[str, Handler] = {}
        self.received_commands: List[str] = []
        self.uploads: List[UploadedFile] = []
        self.server_log: List[str] = []
        self.logging_enabled = False
        self.lock = Lock()

        self.shutdown_event = threading.Event()
        self._listener: Optional[socket.socket] = None
        self._discovery_socket: Optional[socket.socket] = None
        self._threads: List[threading.Thread] = []

        self._register_defaults()

    # ============ HANDLER REGISTRY ============

    def register(self, class_name: str, method_name: str, handler: Handler):
        """Register handler for class_name::method_name, replacing any existing one."""
        self.handlers[f"{class_name}{METHOD_SEPARATOR}{method_name}"] = handler

    def _register_defaults(self):
        server = ArcClass.SERVER.value
        device = ArcClass.DEVICE.value

        self.register(server, Method.GetServerVersion.value, lambda s, a: f"{SERVER_VERSION}")
        self.register(server, Method.IsServerLogging.value, lambda s, a: str(int(self.logging_enabled)))
        self.register(server, Method.EnableServerLog.value, self._enable_server_log)
        self.register(server, Method.LogMsgOnServer.value, self._log_msg_on_server)
        self.register(server, Method.GetDirListing.value, self._get_dir_listing)
        self.register(device, Method.ToString.value, lambda s, a: "ARC API emulated device")
        self.register(device, Method.GetDeviceList.value, self._get_device_list)
        self.register(ArcClass.IMAGE.value, Method.Histogram.value, self._histogram)
        self.register(device, Method.LoadControllerFile.value, self._receive_upload)
        self.register(device, Method.LoadDeviceFile.value, self._receive_upload)

    def _enable_server_log(self, session, args):
        self.logging_enabled = bool(int(args[0]))
        logger.info(f"Server logging {'enabled' if self.logging_enabled else 'disabled'}")

    def _log_msg_on_server(self, session, args):
        message = " ".join(args)
        with self.lock:
            self.server_log.append(message)
        logger.info(f"[{session.addr}] {message}")

    def _get_dir_listing(self, session, args):
        if not args:
            raise ValueError("Missing target directory")
        root = self.listing_root.resolve()
        target = (root / args[0]).resolve()
        if target != root and root not in target.parents:
            raise PermissionError(f"Directory is outside the listing root: {args[0]}")
        if not target.is_dir():
            raise FileNotFoundError(f"Directory not found: {args[0]}")
        recursive = len(args) > 1 and args[1] != "0"
        entries = target.rglob("*") if recursive else target.iterdir()
        names = sorted(str(p.relative_to(target)) for p in entries)
        return pack_multi_string(names)

    def _get_device_list(self, session, args):
        session.reply_ok(str(len(EMULATED_DEVICES)))
        for name in EMULATED_DEVICES:
            session.expect_client_ok()
            session.reply_ok(name)
        return NO_REPLY

    def _histogram(self, session, args):
        if len(args) < 4:
            raise ValueError("Expected buffer address, rows, cols and bpp")
        rows, cols, bpp = int(args[1]), int(args[2]), int(args[3])
        if not 0 < bpp <= 16:
            raise ValueError(f"Unsupported bits per pixel: {bpp}")

        # Synthetic ramp image: pixel i holds i modulo the value range
        bins = [0] * (1 << bpp)
        for i in range(rows * cols):
            bins[i % len(bins)] += 1

        session.reply_ok(str(len(bins)))
        session.expect_client_ok()
        session.conn.sendall(struct.pack(f"<{len(bins)}i", *bins))
        return NO_REPLY

    def _receive_upload(self, session, args):
        if not args:
            raise ValueError("Missing file length")
        length = int(args[0])
        if length < 0:
            raise ValueError(f"Invalid file length: {length}")

        # Length accepted; the raw content follows
        session.reply_ok()
        content = session.read_exact(length)
        with self.lock:
            self.uploads.append(UploadedFile(session.method, args[1:], content))
        logger.info(f"Received {length} byte upload from {session.addr}")
        return None

    # ============ WIRE I/O ============

    def send_reply(self, session: ClientSession, text: str):
        data = (text + (END_OF_LINE if self.end_of_line else "")).encode("utf-8")
        session.conn.sendall(data)
        logger.debug(f"Sent reply to {session.addr}: {text!r}")

    def _read_command(self, session: ClientSession) -> Optional[str]:
        if not self.end_of_line:
            data = session.pending or session.conn.recv(RECV_SIZE)
            session.pending = b""
            return data.decode("utf-8", errors="replace") if data else None

        terminator = END_OF_LINE.encode()
        buffer = session.pending
        while terminator not in buffer:
            chunk = session.conn.recv(RECV_SIZE)
            if not chunk:
                return None
            buffer += chunk
        line, _, session.pending = buffer.partition(terminator)
        return line.decode("utf-8", errors="replace")

    def dispatch(self, session: ClientSession, text: str):
        """Run the handler for one command and send its reply."""
        head, _, arguments = text.strip().partition(" ")
        class_name, sep, method_name = head.rpartition(METHOD_SEPARATOR)
        session.method = method_name or head or "???"

        handler = self.handlers.get(head) if sep else None
        if handler is None:
            logger.warning(f"Unknown command from {session.addr}: {text!r}")
            self.send_reply(session, f"{ERROR_STRING} {session.method} Unknown command: {head}")
            return

        try:
            payload = handler(session, arguments.split())
        except (ConnectionError, socket.timeout):
            raise
        except Exception as e:
            logger.error(f"{head} failed: {e}", exc_info=True)
            self.send_reply(session, f"{ERROR_STRING} {method_name} {e}")
            return
        if payload is not NO_REPLY:
            session.reply_ok(payload)

    def handle_client(self, conn: socket.socket, addr):
        """Handle commands from a connected client until it disconnects."""
        logger.info(f">>> New client connected from {addr}")
        session = ClientSession(conn=conn, addr=addr, server=self)

        try:
            while not self.shutdown_event.is_set():
                text = self._read_command(session)
                if text is None:
                    logger.info(f"Client {addr} disconnected (no data)")
                    break

                logger.debug(f"Received command from {addr}: {text!r}")
                with self.lock:
                    self.received_commands.append(text)
                self.dispatch(session, text)

        except (ConnectionError, socket.timeout, OSError) as e:
            logger.info(f"Connection with {addr} ended: {e}")
        finally:
            conn.close()
            logger.info(f"<<< Client {addr} disconnected and cleaned up")

    # ============ DISCOVERY ============

    def _discovery_loop(self, sock: socket.socket):
        while not self.shutdown_event.is_set():
            try:
                data, addr = sock.recvfrom(RECV_SIZE)
            except socket.timeout:
                continue
            except OSError:
                break
            text = data.decode("utf-8", errors="replace").strip("\0").strip()
            if text == f"{ArcClass.SERVER.value}{METHOD_SEPARATOR}{Method.Find.value}":
                reply = f"{ArcClass.SERVER.value} {SERVER_VERSION}"
                sock.sendto(reply.encode("utf-8"), addr)
                logger.debug(f"Answered discovery probe from {addr}")

    # ============ LIFECYCLE ============

    def start(self, discovery: bool = False) -> Tuple[str, int]:
        """
        Bind and start serving on background threads.

        Args:
            discovery: Also answer broadcast discovery probes on the same port (UDP)

        Returns:
            tuple: The (host, port) actually bound
        """
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind((self.host, self.port))
        listener.listen()
        listener.settimeout(0.5)
        self._listener = listener
        self.port = listener.getsockname()[1]
        logger.info(f"Server listening on {self.host}:{self.port}")

        self._spawn(self._accept_loop)

        if discovery:
            udp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            udp.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            udp.bind((self.host, self.port))
            udp.settimeout(0.5)
            self._discovery_socket = udp
            self._spawn(self._discovery_loop, udp)
            logger.info(f"Discovery responder listening on UDP {self.host}:{self.port}")

        return self.host, self.port

    def _spawn(self, target, *args):
        self._threads = [t for t in self._threads if t.is_alive()]
        thread = threading.Thread(target=target, args=args, daemon=True)
        thread.start()
        self._threads.append(thread)

    def _accept_loop(self):
        while not self.shutdown_event.is_set():
            try:
                conn, addr = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            conn.settimeout(None)
            self._spawn(self.handle_client, conn, addr)

    def stop(self):
        """Stop accepting clients and wait for handler threads to finish."""
        logger.info("Server shutting down. Waiting for client threads to finish...")
        self.shutdown_event.set()
        for sock in (self._listener, self._discovery_socket):
            if sock is not None:
                sock.close()
        for t in self._threads:
            t.join(timeout=5.0)
        logger.info("Server has shut down.")

    def __enter__(self) -> "ArcAPIServerEmulator":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()


def run_server(host: str = "0.0.0.0", port: int = TCP_PORT, end_of_line: bool = True, discovery: bool = True):
    """Run an emulator in the foreground until interrupted."""
    logger.info("=" * 60)
    logger.info("ARC API Server Emulator")
    logger.info("=" * 60)
    logger.info(f"  Host: {host}")
    logger.info(f"  Port: {port}")
    logger.info(f"  End of line: {end_of_line}")
    logger.info(f"  Discovery: {discovery}")
    logger.info("=" * 60)

    server = ArcAPIServerEmulator(host=host, port=port, end_of_line=end_of_line)
    server.start(discovery=discovery)
    try:
        while not server.shutdown_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        server.stop()
