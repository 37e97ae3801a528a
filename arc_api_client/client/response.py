"""
Response parsing for the ARC API wire protocol.

A response is classified as OK, OK with payload, or a remote exception.
Sentinels are matched on whole whitespace-delimited tokens, so payload text
such as "EXCEPTIONAL" is never mistaken for the exception marker.
"""

import enum
import errno
import logging
import os
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from arc_api_client.errors import ConnectionError, ProtocolError, RemoteException
from arc_api_client.server.protocol import (
    API_OK_STRING,
    CLIENT_OK_STRING,
    END_OF_LINE,
    ERROR_STRING,
    MULTI_STRING_DELIMITERS,
    SPACE_ESCAPE,
)

logger = logging.getLogger(__name__)

BULK_CHUNK_BYTES = 65536


def _token_pattern(sentinel: str) -> "re.Pattern":
    words = [re.escape(word) for word in sentinel.split()]
    return re.compile(r"(?<!\S)" + r"\s+".join(words) + r"(?!\S)")


_ERROR_PATTERN = _token_pattern(ERROR_STRING)
_OK_PATTERNS = (_token_pattern(API_OK_STRING), _token_pattern(CLIENT_OK_STRING))

# Winsock codes have no errno equivalent on POSIX hosts
_WINSOCK_MESSAGES = {
    10004: "A blocking operation was interrupted.",
    10013: "An attempt was made to access a socket in a way forbidden by its access permissions.",
    10048: "Only one usage of each socket address is normally permitted.",
    10049: "The requested address is not valid in its context.",
    10050: "A socket operation encountered a dead network.",
    10051: "A socket operation was attempted to an unreachable network.",
    10053: "An established connection was aborted by the software in your host machine.",
    10054: "An existing connection was forcibly closed by the remote host.",
    10057: "A request to send or receive data was disallowed because the socket is not connected.",
    10060: "A connection attempt failed because the connected party did not properly respond.",
    10061: "No connection could be made because the target machine actively refused it.",
    10064: "The remote host is down.",
    10065: "A socket operation was attempted to an unreachable host.",
}


class ResponseStatus(enum.Enum):
    OK = "OK"
    OK_WITH_PAYLOAD = "OK_WITH_PAYLOAD"
    REMOTE_EXCEPTION = "REMOTE_EXCEPTION"


@dataclass(frozen=True)
class Response:
    """A received response and its derived status."""

    raw: str
    status: ResponseStatus
    payload: str = ""
    method_name: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not ResponseStatus.REMOTE_EXCEPTION

    def raise_for_status(self) -> "Response":
        if self.status is ResponseStatus.REMOTE_EXCEPTION:
            raise RemoteException(self.method_name or "", self.message or "")
        return self

    def strings(self) -> List[str]:
        """Unpack a multi-string payload into an ordered list."""
        return unpack_multi_string(self.payload)


def contains_error_word(word: str) -> bool:
    """Return True only if word is exactly the exception sentinel."""
    return word == ERROR_STRING


def parse(raw_text: str) -> Response:
    """
    Classify a complete response.

    Args:
        raw_text: The full response text with any line terminator

    Returns:
        Response: OK, OK_WITH_PAYLOAD or REMOTE_EXCEPTION

    Raises:
        ProtocolError: If the text carries neither an OK nor an exception sentinel
    """
    text = raw_text[: -len(END_OF_LINE)] if raw_text.endswith(END_OF_LINE) else raw_text
    text = text.strip("\0")

    match = _ERROR_PATTERN.search(text)
    if match:
        before = text[: match.start()].strip()
        after = text[match.end():].strip()
        if before:
            method_name = before.rstrip(":").strip()
            message = after
        else:
            parts = after.split(None, 1)
            method_name = parts[0] if parts else ""
            message = parts[1] if len(parts) > 1 else ""
        return Response(
            raw=raw_text,
            status=ResponseStatus.REMOTE_EXCEPTION,
            method_name=method_name,
            message=message,
        )

    for pattern in _OK_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        after = text[match.end():].strip()
        before = text[: match.start()].strip()
        payload = after or before
        if payload:
            return Response(raw=raw_text, status=ResponseStatus.OK_WITH_PAYLOAD, payload=payload)
        return Response(raw=raw_text, status=ResponseStatus.OK)

    raise ProtocolError(f"Malformed response (no OK or {ERROR_STRING} sentinel): {raw_text!r}")


def get_system_message(code: int) -> str:
    """
    Convert a platform error code (errno or Winsock) into readable text.

    Unrecognized codes map to "unknown error <code>".
    """
    if code in _WINSOCK_MESSAGES:
        return f"[ {code} ]: {_WINSOCK_MESSAGES[code]}"
    if code in errno.errorcode:
        return f"( errno: {code} ) - {os.strerror(code)}"
    return f"unknown error {code}"


def pack_multi_string(items: Iterable[str]) -> str:
    """Join strings into one payload, escaping embedded spaces."""
    return MULTI_STRING_DELIMITERS[0].join(item.replace(" ", SPACE_ESCAPE) for item in items)


def unpack_multi_string(payload: str) -> List[str]:
    """Split a "|" or NUL separated payload into its strings, preserving order."""
    parts = re.split("|".join(re.escape(d) for d in MULTI_STRING_DELIMITERS), payload)
    return [part.replace(SPACE_ESCAPE, " ") for part in parts if part.strip()]


class ResponseReader:
    """Assembles one response at a time from a Transport."""

    def __init__(self, transport, buffer_size: int = 1024, max_bytes: int = 1 << 20):
        self.transport = transport
        self.buffer_size = buffer_size
        self.max_bytes = max_bytes
        self._pending = b""

    def reset(self):
        self._pending = b""

    def read(self, end_of_line: bool) -> str:
        """
        Read a complete response.

        In end-of-line mode the response ends at the line terminator. Without
        it the response is one blocking read plus whatever is already queued
        on the socket; that legacy framing is only safe when every reply
        arrives in a single segment, since a reply split across segments is
        cut short and its tail is read as the next response.
        """
        if end_of_line:
            data = self._read_line()
        else:
            data = self._read_available()
        text = data.decode("utf-8", errors="replace")
        logger.debug(f"Received <- {text!r}")
        return text

    def _read_line(self) -> bytes:
        terminator = END_OF_LINE.encode()
        buffer = self._pending
        while terminator not in buffer:
            self._check_size(buffer)
            buffer += self.transport.recv(self.buffer_size)
        end = buffer.index(terminator) + len(terminator)
        self._pending = buffer[end:]
        if self._pending:
            logger.warning(f"{len(self._pending)} unexpected bytes after response terminator")
        return buffer[:end]

    def _read_available(self) -> bytes:
        buffer = self._pending or self.transport.recv(self.buffer_size)
        self._pending = b""
        while True:
            self._check_size(buffer)
            available = self.transport.bytes_available()
            if available <= 0:
                break
            buffer += self.transport.recv(min(available, self.buffer_size))
        return buffer

    def read_exact(self, count: int) -> bytes:
        """
        Read exactly count raw bytes (bulk image, histogram and stats data).

        Raises:
            ConnectionError: If the connection ends before count bytes arrive
        """
        if count < 0:
            raise ProtocolError(f"Cannot receive a negative byte count ({count})")
        data = self._pending[:count]
        self._pending = self._pending[count:]
        while len(data) < count:
            try:
                data += self.transport.recv(min(BULK_CHUNK_BYTES, count - len(data)))
            except ConnectionError as e:
                raise ConnectionError(
                    f"Insufficient data transfer. Expected: {count} bytes. Received: {len(data)} bytes."
                ) from e
        logger.debug(f"Received <- {count} raw bytes")
        return data

    def _check_size(self, buffer: bytes):
        if len(buffer) > self.max_bytes:
            self._pending = b""
            raise ProtocolError(f"Response exceeds {self.max_bytes} bytes without completing")
