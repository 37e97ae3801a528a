"""
Client package - Connection, encoding and response handling.

Modules:
    transport: Byte-level socket I/O (Transport, SocketTransport)
    encoder: Command construction from typed arguments
    response: Response classification and multi-string payloads
    file_transfer: Length-prefixed file upload
    discovery: Broadcast server discovery
    client: ArcAPIClient connection object
    cli: Command line front end
"""

from arc_api_client.client.client import ArcAPIClient
from arc_api_client.client.discovery import DiscoveredServer, ServerDiscovery, detect_servers
from arc_api_client.client.encoder import Command, parse_format
from arc_api_client.client.response import Response, ResponseStatus, contains_error_word, parse
from arc_api_client.client.transport import SocketTransport, Transport

__all__ = [
    "ArcAPIClient",
    "DiscoveredServer",
    "ServerDiscovery",
    "detect_servers",
    "Command",
    "parse_format",
    "Response",
    "ResponseStatus",
    "contains_error_word",
    "parse",
    "SocketTransport",
    "Transport",
]
