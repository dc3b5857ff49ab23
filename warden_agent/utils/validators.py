"""
EdgeWarden IP Validators

IP address validation utilities.

Provides validation functions for:
- IPv4 and IPv6 address validation
- Loopback detection for the local control API

Used to ensure addresses taken from log lines and API bodies are well
formed before they reach the firewall collaborator.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import ipaddress
from typing import Optional


def validate_ip(ip_str: str) -> bool:
    """
    Validate if string is a valid IP address (IPv4 or IPv6).

    Args:
        ip_str: String to validate as IP address

    Returns:
        True if valid IP address, False otherwise

    Example:
        >>> validate_ip("192.168.1.1")
        True
        >>> validate_ip("invalid")
        False
    """
    if not isinstance(ip_str, str):
        return False
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def is_loopback(addr: Optional[str]) -> bool:
    """
    Check whether a peer address is on the loopback interface.

    Accepts 127.0.0.0/8, ::1 and IPv4-mapped loopback (::ffff:127.0.0.1).
    Anything unparsable is treated as non-loopback.
    """
    if not addr:
        return False
    try:
        ip = ipaddress.ip_address(addr)
    except ValueError:
        return False
    mapped = getattr(ip, 'ipv4_mapped', None)
    if mapped is not None:
        ip = mapped
    return ip.is_loopback
