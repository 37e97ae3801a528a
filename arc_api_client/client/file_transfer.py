"""
Length-prefixed file upload over an open ARC API connection.

The byte length travels as the first argument of a normal command. Once the
server acknowledges it, the raw file content is streamed straight over the
transport; chunk boundaries carry no meaning and the server reads exactly the
declared number of bytes before sending its final reply.
"""

import logging
import os
import pathlib
from dataclasses import dataclass
from typing import BinaryIO, Optional, Union

from arc_api_client.client.encoder import Command
from arc_api_client.errors import ConnectionError, FileTransferError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_BYTES = 65536


@dataclass
class FileTransferDescriptor:
    """A file about to be sent. Lives only for the duration of one transfer."""

    path: pathlib.Path
    length: int
    stream: Optional[BinaryIO] = None

    @classmethod
    def resolve(cls, path: Union[str, pathlib.Path]) -> "FileTransferDescriptor":
        path = pathlib.Path(path)
        if not path.is_file():
            raise FileTransferError(f"File not found: {path}")
        try:
            length = os.path.getsize(path)
        except OSError as e:
            raise FileTransferError(f"Cannot determine length of {path}: {e}") from e
        return cls(path=path, length=length)

    def __enter__(self) -> "FileTransferDescriptor":
        try:
            self.stream = open(self.path, "rb")
        except OSError as e:
            raise FileTransferError(f"Cannot open {self.path}: {e}") from e
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.stream is not None:
            self.stream.close()
            self.stream = None


class FileTransfer:
    """Sends files over a client connection."""

    def __init__(self, connection, chunk_bytes: int = DEFAULT_CHUNK_BYTES):
        """
        Args:
            connection: The owning ArcAPIClient
            chunk_bytes: Size of each raw write
        """
        if chunk_bytes <= 0:
            raise ValueError("chunk_bytes must be positive")
        self.connection = connection
        self.chunk_bytes = chunk_bytes

    def send_file(
        self,
        path: Union[str, pathlib.Path],
        class_name: str,
        method_name: str,
        fmt: str = "",
        *args,
    ) -> int:
        """
        Upload a file as the payload of class_name::method_name.

        Args:
            path: Local file to send
            class_name: Class wire token
            method_name: Method wire token
            fmt: Format for any arguments following the length
            *args: Arguments for fmt

        Returns:
            int: Number of content bytes written

        Raises:
            FileTransferError: File unreadable, shorter than declared, or socket failure mid-stream
            RemoteException: Server rejected the length or the content
        """
        descriptor = FileTransferDescriptor.resolve(path)
        full_format = "%d" + (f" {fmt}" if fmt else "")
        command = Command.build(class_name, method_name, full_format, descriptor.length, *args)

        with self.connection.outstanding():
            self.connection.send_command(command)
            self.connection.receive_response().raise_for_status()

            logger.info(f"Sending {descriptor.path} ({descriptor.length} bytes)")
            with descriptor:
                written = self._stream(descriptor)

            self.connection.receive_response().raise_for_status()

        logger.info(f"Transfer of {descriptor.path} complete")
        return written

    def _stream(self, descriptor: FileTransferDescriptor) -> int:
        transport = self.connection.transport
        written = 0
        while written < descriptor.length:
            try:
                chunk = descriptor.stream.read(min(self.chunk_bytes, descriptor.length - written))
            except OSError as e:
                raise FileTransferError(f"Read of {descriptor.path} failed: {e}") from e
            if not chunk:
                raise FileTransferError(
                    f"{descriptor.path} ended after {written} of {descriptor.length} declared bytes"
                )
            try:
                transport.send(chunk)
            except ConnectionError as e:
                raise FileTransferError(
                    f"Connection failed after {written} of {descriptor.length} bytes: {e}"
                ) from e
            written += len(chunk)
            logger.debug(f"Sent {written}/{descriptor.length} bytes")
        return written
