"""SSRF guard for admin-supplied task URLs.

A URL is safe when it uses http or https and every address its host
resolves to is public. The check runs when a task is saved, right before
each execution, and on every redirect hop, because DNS answers can change
between save time and fire time.
"""

import ipaddress
import logging
import socket
from urllib.parse import urlsplit

from jobs.exceptions import UnsafeURLError

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = {"http", "https"}

# Private, loopback, link-local and otherwise reserved networks
BLOCKED_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",  # shared address space (RFC 6598)
        "127.0.0.0/8",
        "169.254.0.0/16",  # link-local, includes cloud metadata 169.254.169.254
        "172.16.0.0/12",
        "192.0.0.0/24",
        "192.0.2.0/24",
        "192.168.0.0/16",
        "198.18.0.0/15",
        "198.51.100.0/24",
        "203.0.113.0/24",
        "224.0.0.0/4",  # multicast
        "240.0.0.0/4",  # reserved, includes broadcast
        "::/128",
        "::1/128",
        "fc00::/7",  # unique local
        "fe80::/10",  # link-local
        "ff00::/8",  # multicast
    )
]

BLOCKED_HOSTNAMES = {
    "metadata.google.internal",
    "metadata.goog",
}


def is_blocked_address(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """Return True if the address belongs to a non-public network."""
    if isinstance(address, ipaddress.IPv6Address):
        mapped = address.ipv4_mapped or address.sixtofour
        if mapped is not None:
            return is_blocked_address(mapped)
    return any(address in network for network in BLOCKED_NETWORKS)


def resolve_host(hostname: str, port: int | None) -> list[str]:
    """Resolve a hostname to the list of addresses a client would connect to."""
    try:
        infos = socket.getaddrinfo(hostname, port, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError) as e:
        raise UnsafeURLError(f"cannot resolve hostname {hostname!r}: {e}") from e
    return [info[4][0] for info in infos]


def _check_address(text: str, hostname: str) -> None:
    # Strip IPv6 zone ids such as fe80::1%eth0
    address = ipaddress.ip_address(text.split("%", 1)[0])
    if is_blocked_address(address):
        if text == hostname:
            raise UnsafeURLError(
                f"URL points to a private/reserved IP address ({text})"
            )
        raise UnsafeURLError(
            f"URL resolves to a private/reserved IP address ({text})"
        )


def public_address(hostname: str, port: int | None) -> str:
    """Resolve a host for connecting and return an address that passed the guard.

    Every answer is checked, not just the one returned, so a rebinding
    resolver cannot slip a private address in behind a public one.

    Raises:
        UnsafeURLError: If the host cannot be resolved or any answer is private
    """
    hostname = hostname.strip("[]").rstrip(".")
    try:
        ipaddress.ip_address(hostname.split("%", 1)[0])
    except ValueError:
        addresses = resolve_host(hostname, port)
    else:
        addresses = [hostname]

    if not addresses:
        raise UnsafeURLError(f"cannot resolve hostname {hostname!r}")

    for address in addresses:
        _check_address(address, hostname)
    return addresses[0]


def validate_task_url(url: str) -> None:
    """Check that a URL is safe for the server to call.

    Raises:
        UnsafeURLError: If the URL is malformed, not http(s), or reaches a
            private, loopback, link-local or metadata address
    """
    if not url or not url.strip():
        raise UnsafeURLError("URL is required")

    try:
        parsed = urlsplit(url.strip())
        port = parsed.port
    except ValueError as e:
        raise UnsafeURLError(f"invalid URL: {e}") from e

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        raise UnsafeURLError("only http and https URLs are allowed")

    hostname = (parsed.hostname or "").rstrip(".")
    if not hostname:
        raise UnsafeURLError("URL must have a hostname")

    if hostname == "localhost" or hostname.endswith(".localhost"):
        raise UnsafeURLError("localhost URLs are not allowed")
    if hostname in BLOCKED_HOSTNAMES:
        raise UnsafeURLError("cloud metadata endpoints are not allowed")

    address = public_address(hostname, port)
    logger.debug(f"URL passed SSRF validation: {hostname} -> {address}")
