"""
Exception hierarchy for the ARC API client.

Every failure raised by this package derives from ArcAPIError so callers can
catch the whole family in one place. None of these are retried internally.
"""


class ArcAPIError(Exception):
    """Base exception for ARC API client errors."""

    pass


class ConnectionError(ArcAPIError):
    """Raised when a socket connect/send/recv fails or the connection is closed."""

    pass


class ProtocolError(ArcAPIError):
    """Raised when a response is malformed or a local precondition fails."""

    pass


class RemoteException(ArcAPIError):
    """Raised when the server reports a failure for a named method."""

    def __init__(self, method_name: str, message: str):
        self.method_name = method_name
        self.message = message
        super().__init__(f"( {method_name or '???'}() ): {message}")


class FileTransferError(ArcAPIError):
    """Raised when a local file cannot be sent or the byte count does not match."""

    pass
