"""Local network address discovery for the advertised server address.

Note: the picked address is what the UI shows, the server itself listens on
all interfaces. Results are never cached because interfaces come and go
(VPN connect/disconnect, Wi-Fi roaming).
"""

from __future__ import annotations

import ipaddress
import logging
import re
import socket

import psutil

from easyftp.core.errors import NotFoundError

logger = logging.getLogger(__name__)

_DOTTED_QUAD_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")


def _is_dotted_quad(address: str) -> bool:
    """Return True if the string is a well-formed IPv4 dotted quad."""
    match = _DOTTED_QUAD_RE.match(address)
    return match is not None and all(int(part) <= 255 for part in match.groups())


def _is_candidate(address: str) -> bool:
    """Return True for IPv4 addresses worth advertising."""
    if not _is_dotted_quad(address):
        return False
    ip = ipaddress.IPv4Address(address)
    return not (ip.is_loopback or ip.is_link_local or ip.is_unspecified)


def candidate_addresses() -> list[str]:
    """List advertisable IPv4 addresses in interface enumeration order.

    Interfaces reported down are skipped, as are loopback and link-local
    (169.254/16) addresses.

    Returns:
        Addresses in the order psutil enumerates interfaces, possibly empty.
    """
    try:
        interfaces = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except OSError as e:
        logger.warning("Could not enumerate network interfaces: %s", e)
        return []

    addresses: list[str] = []
    for name, addrs in interfaces.items():
        iface_stats = stats.get(name)
        if iface_stats is not None and not iface_stats.isup:
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.address:
                continue
            if _is_candidate(addr.address) and addr.address not in addresses:
                addresses.append(addr.address)
    return addresses


def discover_address() -> str:
    """Return the first advertisable IPv4 address of this host.

    Returns:
        Dotted-quad IPv4 address.

    Raises:
        NotFoundError: If no up, non-loopback, non-link-local IPv4 address
            exists. Callers decide how to present that.
    """
    addresses = candidate_addresses()
    if not addresses:
        logger.info("No advertisable IPv4 address found")
        raise NotFoundError
    logger.debug("Discovered addresses: %s", addresses)
    return addresses[0]
