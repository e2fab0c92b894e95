#!/usr/bin/env python3
#----------------------------------------------------------------------------
# Endpoint resolver – host and service name lookups for the relay tool
#----------------------------------------------------------------------------
#
# Turns user-supplied host and port strings into HostDescriptor and
# PortDescriptor values. Reverse lookups are only performed in verbose mode
# and never fail a call: they only print warnings on stderr.
#
# Execution examples:
#
# 1. Plain forward lookup of a name and a service.
#    Command: python3 endpoint_resolver.py --host example.org --port http
#    Outcome: prints the canonical name, up to eight IPv4 addresses and port 80 (http).
#
# 2. Numeric-only mode refuses DNS names.
#    Command: python3 endpoint_resolver.py --host example.org -n
#    Outcome: exits with status 1 and a "numeric address required" message.
#
# 3. Verbose mode cross-checks every address with a reverse lookup.
#    Command: python3 endpoint_resolver.py --host 8.8.8.8 --port 53 -v -u
#    Outcome: PTR name of the address, corroborated forward, port 53 looked up as udp.

from __future__ import annotations

import argparse
import ipaddress
import os
import re
import socket
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

# Sentinel used for names that no lookup has filled in.
UNKNOWN_NAME: str = "(unknown)"

# Legacy bound on the number of addresses kept for a multi-homed host.
MAX_HOST_ADDRESSES: int = 8

MAX_PORT_NUMBER: int = 65535


def interpret_boolean_choice(value: str) -> bool:

    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    raise ValueError(value)


# Default resolver modes. Environment variables named NCCORE_* override each
# entry; command-line flags of the diagnostic entry point override those.
DEFAULTS: Dict[str, bool] = {
    "NUMERIC": interpret_boolean_choice(os.environ.get("NCCORE_NUMERIC", "no")),
    "VERBOSE": interpret_boolean_choice(os.environ.get("NCCORE_VERBOSE", "no")),
    "UDP": interpret_boolean_choice(os.environ.get("NCCORE_UDP", "no")),
    "DEBUG": interpret_boolean_choice(os.environ.get("NCCORE_DEBUG", "no")),
}


@dataclass
class ResolverOptions:
    """Mode flags consulted by every resolver call."""

    numeric_only: bool = False
    verbose: bool = False
    use_udp: bool = False
    debug: bool = False

    @classmethod
    def from_environment(cls) -> "ResolverOptions":
        """Build options from the NCCORE_* defaults."""

        return cls(
            numeric_only=DEFAULTS["NUMERIC"],
            verbose=DEFAULTS["VERBOSE"],
            use_udp=DEFAULTS["UDP"],
            debug=DEFAULTS["DEBUG"],
        )

    @property
    def protocol(self) -> str:
        return "udp" if self.use_udp else "tcp"


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class ResolutionErrorKind(Enum):
    NUMERIC_REQUIRED = "numeric address required"
    NAME_NOT_FOUND = "host name not found"


class PortErrorKind(Enum):
    INVALID_PORT = "invalid port"


class ResolutionError(Exception):
    """Raised when a host cannot be turned into a HostDescriptor."""

    def __init__(self, kind: ResolutionErrorKind, host: str) -> None:
        super().__init__(f"{kind.value}: {host}")
        self.kind = kind
        self.host = host


class PortError(Exception):
    """Raised when a port specification is empty, out of range or unknown."""

    def __init__(self, kind: PortErrorKind, port: object) -> None:
        super().__init__(f"{kind.value}: {port!r}")
        self.kind = kind
        self.port = port


# -----------------------------------------------------------------------------
# Descriptors
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class HostAddress:
    """One IPv4 address in textual and network-order binary form."""

    text: str
    packed: bytes

    @classmethod
    def from_ip(cls, ip: ipaddress.IPv4Address) -> "HostAddress":
        return cls(text=str(ip), packed=ip.packed)


@dataclass
class HostDescriptor:
    """Result of resolve_host: canonical name plus at most eight addresses."""

    name: str = UNKNOWN_NAME
    addresses: List[HostAddress] = field(default_factory=list)

    def add_address(self, address: HostAddress) -> bool:
        """Append ``address`` unless the descriptor is already full."""

        if len(self.addresses) >= MAX_HOST_ADDRESSES:
            return False
        self.addresses.append(address)
        return True

    @property
    def primary_address(self) -> Optional[str]:
        if not self.addresses:
            return None
        return self.addresses[0].text


@dataclass
class PortDescriptor:
    """Result of resolve_port. ``numeric_text`` always mirrors ``number``."""

    name: str = UNKNOWN_NAME
    number: int = 0
    numeric_text: str = ""
    protocol: str = "tcp"


# -----------------------------------------------------------------------------
# Diagnostics
# -----------------------------------------------------------------------------

WarningSink = Callable[[str], None]


def print_warning(message: str) -> None:
    # Default warning sink: one line on stderr.
    print(message, file=sys.stderr)


def _debug(options: ResolverOptions, message: str) -> None:
    if options.debug:
        print(f"[debug] {message}", file=sys.stderr)


# -----------------------------------------------------------------------------
# Name resolution
# -----------------------------------------------------------------------------

def _parse_ipv4_literal(name: str) -> Optional[ipaddress.IPv4Address]:
    try:
        return ipaddress.IPv4Address(name)
    except ValueError:
        return None


def _forward_lookup(name: str) -> Optional[Tuple[str, List[str]]]:
    # Return (canonical name, address list) or None when the name is unknown.
    try:
        canonical, _aliases, address_list = socket.gethostbyname_ex(name)
    except (OSError, TypeError, ValueError):
        return None
    return canonical, address_list


def _reverse_lookup(address: str) -> Optional[str]:
    try:
        hostname, _aliases, _addresses = socket.gethostbyaddr(address)
    except (OSError, TypeError, ValueError):
        return None
    return hostname or None


def resolve_host(name: str,
                 options: Optional[ResolverOptions] = None,
                 warn: Optional[WarningSink] = None) -> HostDescriptor:
    """
    Resolve ``name`` (dotted-quad IPv4 literal or DNS name) into a HostDescriptor.

    Raises ResolutionError with kind NUMERIC_REQUIRED when ``name`` is not a
    literal and numeric-only mode is on, or NAME_NOT_FOUND when the forward
    lookup of a name fails. Reverse lookups run only in verbose mode and report
    failures and name mismatches through ``warn`` without failing the call.
    """
    if not name:
        raise ValueError("host name must not be empty")
    options = options or ResolverOptions()
    warn = warn or print_warning
    _debug(options, f"resolve_host(name={name!r})")

    descriptor = HostDescriptor()
    literal = _parse_ipv4_literal(name)

    if literal is None:
        if options.numeric_only:
            raise ResolutionError(ResolutionErrorKind.NUMERIC_REQUIRED, name)
        forward = _forward_lookup(name)
        # An unresolved name carries no usable address.
        if forward is None:
            raise ResolutionError(ResolutionErrorKind.NAME_NOT_FOUND, name)
        canonical, address_list = forward
        descriptor.name = canonical or name
        for address_text in address_list:
            if not descriptor.add_address(HostAddress.from_ip(ipaddress.IPv4Address(address_text))):
                break
        if not options.verbose:
            return descriptor

        # Reverse lookups run over the collected copy, never the live resolver result.
        for address in descriptor.addresses:
            reverse_name = _reverse_lookup(address.text)
            if reverse_name is None:
                warn(f"[resolve] Warning: inverse host lookup failed for {address.text}")
                continue
            if reverse_name.lower() != descriptor.name.lower():
                warn(f"[resolve] Warning: host name mismatch! {descriptor.name} - {reverse_name}")
        return descriptor

    descriptor.add_address(HostAddress.from_ip(literal))
    if options.numeric_only or not options.verbose:
        return descriptor

    reverse_name = _reverse_lookup(descriptor.addresses[0].text)
    if reverse_name is None:
        warn(f"[resolve] Warning: inverse name lookup failed for '{name}'")
        return descriptor

    descriptor.name = reverse_name
    corroboration = _forward_lookup(reverse_name)
    if corroboration is None or not corroboration[1]:
        warn(f"[resolve] Warning: direct host lookup failed for {reverse_name}")
    elif corroboration[0].lower() != reverse_name.lower():
        warn(f"[resolve] Warning: host name mismatch! {reverse_name} - {corroboration[0]}")
    # The unverified PTR name is kept on purpose; callers needing strict checks redo them.
    return descriptor


# -----------------------------------------------------------------------------
# Service resolution
# -----------------------------------------------------------------------------

# Same prefix C strtol(…, 10) accepts: blanks, an optional sign, ASCII digits.
_LEADING_INTEGER = re.compile(r"[ \t\n\r\f\v]*[+-]?[0-9]+")


def _port_from_number(port_number: int, options: ResolverOptions) -> PortDescriptor:
    if not 0 < port_number <= MAX_PORT_NUMBER:
        raise PortError(PortErrorKind.INVALID_PORT, port_number)
    descriptor = PortDescriptor(number=port_number, protocol=options.protocol)
    try:
        descriptor.name = socket.getservbyport(port_number, options.protocol)
    except OSError:
        pass  # no symbolic name, the number alone is still valid
    descriptor.numeric_text = str(descriptor.number)
    return descriptor


def resolve_port(port_string: Optional[str] = None,
                 port_number: int = 0,
                 options: Optional[ResolverOptions] = None) -> PortDescriptor:
    """
    Identify a port by service name, decimal string or number.

    When ``port_string`` is given it is authoritative and ``port_number`` is
    ignored. Raises PortError(INVALID_PORT) for empty strings, zero or
    out-of-range values, strings mixing digits and text, and unknown service
    names. The service database is consulted for the tcp or udp protocol
    depending on ``options.use_udp``.
    """
    options = options or ResolverOptions()
    _debug(options, f"resolve_port(port_string={port_string!r}, port_number={port_number})")

    if port_string is None:
        return _port_from_number(port_number, options)

    if not port_string:
        raise PortError(PortErrorKind.INVALID_PORT, port_string)

    match = _LEADING_INTEGER.match(port_string)
    if match is not None:
        if match.end() != len(port_string):
            raise PortError(PortErrorKind.INVALID_PORT, port_string)
        value = int(match.group())
        if not 0 < value <= MAX_PORT_NUMBER:
            raise PortError(PortErrorKind.INVALID_PORT, port_string)
        return _port_from_number(value, options)

    try:
        number = socket.getservbyname(port_string, options.protocol)
    except (OSError, ValueError):
        raise PortError(PortErrorKind.INVALID_PORT, port_string) from None
    # Aliases report the official service name.
    try:
        official_name = socket.getservbyport(number, options.protocol)
    except OSError:
        official_name = port_string
    return PortDescriptor(
        name=official_name,
        number=number,
        numeric_text=str(number),
        protocol=options.protocol,
    )


def format_endpoint(host: HostDescriptor, port: PortDescriptor) -> str:
    """Render ``name [address] number (service)`` for connection reports."""

    return f"{host.name} [{host.primary_address or '?'}] {port.numeric_text} ({port.name})"


# -----------------------------------------------------------------------------
# Command line
# -----------------------------------------------------------------------------

def build_cli_parser() -> argparse.ArgumentParser:
    # Build the diagnostic CLI; defaults come from the NCCORE_* environment.
    parser = argparse.ArgumentParser(
        description="Resolve a host and an optional port the way the relay tool does"
    )

    parser.add_argument(
        "--host",
        required=True,
        help="IPv4 address or DNS name to resolve."
    )

    parser.add_argument(
        "--port",
        help="Service name or decimal port number."
    )

    parser.add_argument(
        "-n", "--numeric",
        action="store_true",
        default=DEFAULTS["NUMERIC"],
        help="Numeric-only IP addresses, no DNS."
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=DEFAULTS["VERBOSE"],
        help="Cross-check addresses with reverse lookups."
    )

    parser.add_argument(
        "-u", "--udp",
        action="store_true",
        default=DEFAULTS["UDP"],
        help="Look services up for udp instead of tcp."
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=DEFAULTS["DEBUG"],
        help="Trace resolver calls on stderr."
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_cli_parser().parse_args(argv)
    options = ResolverOptions(
        numeric_only=args.numeric,
        verbose=args.verbose,
        use_udp=args.udp,
        debug=args.debug,
    )

    try:
        host = resolve_host(args.host, options)
        port = resolve_port(args.port, options=options) if args.port is not None else None
    except (ResolutionError, PortError) as exc:
        print(f"[resolve] Error: {exc}", file=sys.stderr)
        return 1

    print(f"name: {host.name}")
    for address in host.addresses:
        print(f"address: {address.text}")
    if port is not None:
        print(f"port: {port.numeric_text}/{port.protocol} ({port.name})")
        print(f"endpoint: {format_endpoint(host, port)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
