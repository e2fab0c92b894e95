#!/usr/bin/env python3
# --------------
# Listener manager: one listening TCP socket, one bounded accept.
#
# The caller owns every socket handed out here, including the partially
# created one attached to a ListenerError, and must close it.
#
# -------------- EXAMPLES --------------
#########################################################################################
# Listen on every interface, port 12345, and wait up to five seconds for a peer
# python3 listener_manager.py --port 12345 --timeout 5
#########################################################################################
# Listen on loopback only and wait forever
# python3 listener_manager.py --address 127.0.0.1 --port 12345
#########################################################################################

from __future__ import annotations

import argparse
import ipaddress
import os
import socket
import sys
from enum import Enum
from typing import Dict, List, Optional, Tuple

# Pending connections queued by the kernel; the relay serves one peer at a time.
LISTEN_BACKLOG: int = 4

# Returned by accept_with_timeout when the wait expires.
NO_CONNECTION = None

# Addresses meaning "any local interface".
WILDCARD_ADDRESSES = (None, "", "*", "0.0.0.0")

DEFAULTS: Dict[str, object] = {
    "ADDRESS": os.environ.get("NCCORE_LISTEN_ADDRESS", ""),
    "PORT": int(os.environ.get("NCCORE_LISTEN_PORT", "0")),  # 0 lets the kernel pick
    "TIMEOUT": float(os.environ.get("NCCORE_ACCEPT_TIMEOUT", "0")),  # 0 waits forever
}

# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class ListenerErrorKind(Enum):
    CREATE_FAILED = "cannot create socket"
    OPTION_FAILED = "cannot set socket options"
    BIND_FAILED = "cannot bind socket"
    LISTEN_FAILED = "cannot listen on socket"


class ListenerError(Exception):
    """
    Failure of one create_listener stage.

    ``endpoint`` holds the socket created before the failing stage (None when
    creation itself failed). It is left open for the caller to release.
    """

    def __init__(self,
                 kind: ListenerErrorKind,
                 address: Tuple[str, int],
                 endpoint: Optional[socket.socket] = None) -> None:
        super().__init__(f"{kind.value} on {address[0] or '*'}:{address[1]}")
        self.kind = kind
        self.address = address
        self.endpoint = endpoint

# -----------------------------------------------------------------------------
# Listening socket
# -----------------------------------------------------------------------------

def address_family_for(local_address: Optional[str]) -> int:
    # Pick AF_INET6 only for IPv6 literals; names and wildcards stay IPv4.
    if local_address in WILDCARD_ADDRESSES:
        return socket.AF_INET
    try:
        parsed = ipaddress.ip_address(local_address)
    except ValueError:
        return socket.AF_INET
    return socket.AF_INET6 if parsed.version == 6 else socket.AF_INET


def create_listener(local_address: Optional[str] = None, local_port: int = 0) -> socket.socket:
    """
    Create a TCP socket bound to (local_address, local_port) and listening.

    Each stage raises a ListenerError with its own kind: CREATE_FAILED,
    OPTION_FAILED (SO_REUSEADDR), BIND_FAILED, LISTEN_FAILED.
    """
    bind_host = "" if local_address in WILDCARD_ADDRESSES else local_address
    bind_address = (bind_host, local_port)

    try:
        sock = socket.socket(address_family_for(local_address), socket.SOCK_STREAM)
    except OSError as exc:
        raise ListenerError(ListenerErrorKind.CREATE_FAILED, bind_address) from exc

    # Allow quick restarts on a port still in TIME_WAIT.
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    except OSError as exc:
        raise ListenerError(ListenerErrorKind.OPTION_FAILED, bind_address, sock) from exc

    try:
        sock.bind(bind_address)
    except (OSError, OverflowError) as exc:
        raise ListenerError(ListenerErrorKind.BIND_FAILED, bind_address, sock) from exc

    try:
        sock.listen(LISTEN_BACKLOG)
    except OSError as exc:
        raise ListenerError(ListenerErrorKind.LISTEN_FAILED, bind_address, sock) from exc

    return sock


def accept_with_timeout(handle: socket.socket, timeout_seconds: float) -> Optional[socket.socket]:
    """
    Wait up to ``timeout_seconds`` for one inbound connection on ``handle``.

    A non-positive timeout waits indefinitely. Returns the accepted socket, in
    blocking mode, or NO_CONNECTION when the wait expires. The listener's own
    timeout setting is restored before returning.
    """
    previous_timeout = handle.gettimeout()
    handle.settimeout(timeout_seconds if timeout_seconds > 0 else None)
    try:
        connection, _peer = handle.accept()
    except socket.timeout:
        return NO_CONNECTION
    finally:
        handle.settimeout(previous_timeout)

    connection.setblocking(True)
    return connection

# -----------------------------------------------------------------------------
# Command line
# -----------------------------------------------------------------------------

def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Open a listening TCP socket and accept a single connection"
    )

    parser.add_argument(
        "--address",
        default=str(DEFAULTS["ADDRESS"]),
        help="Local address to bind (default: any interface)."
    )

    parser.add_argument(
        "--port",
        type=int,
        default=int(DEFAULTS["PORT"]),
        help="Local port to bind (0 picks a free one)."
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=float(DEFAULTS["TIMEOUT"]),
        help="Seconds to wait for a connection; 0 or less waits forever."
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_cli_parser().parse_args(argv)

    try:
        listener = create_listener(args.address, args.port)
    except ListenerError as exc:
        if exc.endpoint is not None:
            exc.endpoint.close()
        print(f"[listen] Error: {exc} ({exc.__cause__})", file=sys.stderr)
        return 1

    with listener:
        bound_host, bound_port = listener.getsockname()[:2]
        print(f"[listen] listening on {bound_host}:{bound_port}", file=sys.stderr)
        connection = accept_with_timeout(listener, args.timeout)
        if connection is NO_CONNECTION:
            print(f"[listen] no connection within {args.timeout}s", file=sys.stderr)
            return 1
        with connection:
            peer_host, peer_port = connection.getpeername()[:2]
            print(f"[listen] connect from {peer_host}:{peer_port}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
