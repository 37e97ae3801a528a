"""
Server package - Wire tokens and a protocol emulator.

Modules:
    protocol: Class/method tokens, sentinels and default port
    emulator: Threaded server speaking the ARC API protocol
"""

from arc_api_client.server.protocol import (
    API_OK_STRING,
    CLIENT_OK_STRING,
    ERROR_STRING,
    TCP_PORT,
    ArcClass,
    Method,
    MethodRegistry,
)

__all__ = [
    "API_OK_STRING",
    "CLIENT_OK_STRING",
    "ERROR_STRING",
    "TCP_PORT",
    "ArcClass",
    "Method",
    "MethodRegistry",
]
