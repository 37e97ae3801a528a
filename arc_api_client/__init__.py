"""
ARC API Client - Remote Camera Controller Access over TCP
=========================================================

A client for the text-based ARC API remote-procedure-call protocol. Provides:

- Connection management over a long-lived TCP socket
- Typed command encoding ("Class::Method args")
- Response classification (OK, OK with payload, remote exception)
- Length-prefixed file upload for controller/configuration files
- Broadcast discovery of servers on the local network
- A protocol emulator for development and testing

Example Usage:
-------------
from arc_api_client import ArcAPIClient, ArcClass, Method

with ArcAPIClient() as client:
    client.connect("192.168.0.10")
    print(client.call_method(ArcClass.DEVICE, Method.ToString))
    client.load_controller_file("tim.lod")

for server in ArcAPIClient().detect_servers():
    print(server.address)
"""

__version__ = "1.0.0"

from arc_api_client.client.client import ArcAPIClient
from arc_api_client.client.discovery import DiscoveredServer, detect_servers
from arc_api_client.errors import (
    ArcAPIError,
    ConnectionError,
    FileTransferError,
    ProtocolError,
    RemoteException,
)
from arc_api_client.server.protocol import TCP_PORT, ArcClass, Method, MethodRegistry

__all__ = [
    "ArcAPIClient",
    "DiscoveredServer",
    "detect_servers",
    "ArcAPIError",
    "ConnectionError",
    "FileTransferError",
    "ProtocolError",
    "RemoteException",
    "TCP_PORT",
    "ArcClass",
    "Method",
    "MethodRegistry",
]
