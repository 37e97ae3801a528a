"""
Command line front end for the ARC API client.

Usage:
    arc-api-client discover [--port PORT] [--window SECONDS]
    arc-api-client call HOST CLASS METHOD [FORMAT] [ARGS...]
    arc-api-client send-file HOST FILE [--no-validate]
    arc-api-client ls HOST DIR [--recursive]
    arc-api-client version HOST
    arc-api-client serve [--host HOST] [--port PORT]
"""

import argparse
import logging
from typing import Any, List, Optional

from arc_api_client.client.client import ArcAPIClient
from arc_api_client.client.encoder import ArgKind, parse_format
from arc_api_client.config import ClientSettings, configure_logging
from arc_api_client.errors import ArcAPIError, ProtocolError
from arc_api_client.server.emulator import run_server

logger = logging.getLogger(__name__)


def coerce_arguments(fmt: str, values: List[str]) -> List[Any]:
    """Convert command line strings to the types the format's conversions expect."""
    kinds = parse_format(fmt).conversions
    if len(kinds) != len(values):
        raise ArcAPIError(f"Format {fmt!r} expects {len(kinds)} argument(s), got {len(values)}")
    out = []
    for position, (kind, value) in enumerate(zip(kinds, values), start=1):
        try:
            if kind is ArgKind.STRING:
                out.append(value)
            elif kind is ArgKind.FLOAT:
                out.append(float(value))
            else:
                out.append(int(value, 0))
        except ValueError as e:
            raise ProtocolError(f"Argument {position} ({value!r}) is not a valid {kind.value} value") from e
    return out


def _client(args, settings: ClientSettings) -> ArcAPIClient:
    client = ArcAPIClient(settings=settings)
    client.set_end_of_line(settings.end_of_line and not args.raw)
    client.connect(args.host, args.port or settings.port)
    return client


def cmd_discover(args, settings: ClientSettings) -> int:
    if args.window is not None:
        settings.discovery_window = args.window
    if args.broadcast is not None:
        settings.broadcast_address = args.broadcast
    found = 0
    for server in ArcAPIClient(settings=settings).detect_servers(args.port or settings.port):
        print(f"{server.address}:{server.port}  {server.metadata or ''}")
        found += 1
    if not found:
        print("No servers found.")
    return 0


def cmd_call(args, settings: ClientSettings) -> int:
    with _client(args, settings) as client:
        values = coerce_arguments(args.format, args.args)
        print(client.call_method(args.clazz, args.method, args.format, *values))
    return 0


def cmd_send_file(args, settings: ClientSettings) -> int:
    with _client(args, settings) as client:
        sent = client.load_controller_file(args.file, validate=not args.no_validate)
        print(f"Sent {sent} bytes")
    return 0


def cmd_ls(args, settings: ClientSettings) -> int:
    with _client(args, settings) as client:
        for name in client.get_dir_listing(args.dir, args.recursive):
            print(name)
    return 0


def cmd_version(args, settings: ClientSettings) -> int:
    with _client(args, settings) as client:
        print(client.get_server_version())
    return 0


def cmd_serve(args, settings: ClientSettings) -> int:
    run_server(host=args.host, port=args.port or settings.port, end_of_line=not args.raw, discovery=not args.no_discovery)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="arc-api-client", description="ARC API remote method client.")
    p.add_argument("--config", help="YAML file overriding the default client settings")
    p.add_argument("--log-level", default=None)
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_connection(x: argparse.ArgumentParser) -> None:
        x.add_argument("host")
        x.add_argument("--port", type=int, default=None)
        x.add_argument("--raw", action="store_true", help="Legacy unterminated framing (no CR LF)")

    discover = sub.add_parser("discover", help="Broadcast for servers")
    discover.add_argument("--port", type=int, default=None)
    discover.add_argument("--window", type=float, default=None, help="Seconds to collect replies")
    discover.add_argument("--broadcast", default=None, help="Broadcast address")
    discover.set_defaults(func=cmd_discover)

    call = sub.add_parser("call", help="Invoke CLASS::METHOD")
    add_connection(call)
    call.add_argument("clazz", metavar="CLASS")
    call.add_argument("method", metavar="METHOD")
    call.add_argument("format", nargs="?", default="")
    call.add_argument("args", nargs="*")
    call.set_defaults(func=cmd_call)

    send_file = sub.add_parser("send-file", help="Load a controller file onto the server")
    add_connection(send_file)
    send_file.add_argument("file")
    send_file.add_argument("--no-validate", action="store_true")
    send_file.set_defaults(func=cmd_send_file)

    ls = sub.add_parser("ls", help="List a directory on the server")
    add_connection(ls)
    ls.add_argument("dir")
    ls.add_argument("--recursive", action="store_true")
    ls.set_defaults(func=cmd_ls)

    version = sub.add_parser("version", help="Print the server version")
    add_connection(version)
    version.set_defaults(func=cmd_version)

    serve = sub.add_parser("serve", help="Run the protocol emulator")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--raw", action="store_true", help="Legacy unterminated framing (no CR LF)")
    serve.add_argument("--no-discovery", action="store_true")
    serve.set_defaults(func=cmd_serve)

    args = p.parse_args(argv)
    settings = ClientSettings.from_config(args.config)
    configure_logging(args.log_level or settings.log_level, settings.log_directory)

    try:
        return int(args.func(args, settings))
    except ArcAPIError as e:
        logger.error(f"{args.cmd} failed: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
