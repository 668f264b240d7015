"""
Loopback-only access check for the local gateway
"""

import ipaddress
from typing import Optional

LOOPBACK_HOSTS = frozenset({"127.0.0.1", "::1", "::ffff:127.0.0.1"})
POLICY_VIOLATION = 1008


def is_loopback(host: Optional[str]) -> bool:
    """
    Whether a peer address is the local machine

    Args:
        host: Peer host as reported by the ASGI server

    Returns:
        True for 127.0.0.1, ::1 and the IPv4-mapped ::ffff:127.0.0.1
    """

    if not host:
        return False
    if host in LOOPBACK_HOSTS:
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    mapped = getattr(address, "ipv4_mapped", None)
    return address == ipaddress.ip_address("127.0.0.1") or mapped == ipaddress.ip_address("127.0.0.1")
