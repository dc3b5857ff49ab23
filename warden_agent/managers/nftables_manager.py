"""
EdgeWarden NFTables Firewall

Deny rules as elements of two nftables sets, one per address family:

    <family> <table> <nft_set_ipv4>   (type ipv4_addr)
    <family> <table> <nft_set_ipv6>   (type ipv6_addr)

The sets and the drop rule referencing them are provisioned by the host
(see config.conf.template); the agent only adds and deletes elements.

`nft create element` fails with "File exists" when the element is already
present, which maps to FirewallResult.DUPLICATE. `nft delete element` on a
missing element fails with "No such file or directory", which maps to
FirewallResult.NOT_FOUND.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import ipaddress
import logging
import re
import shutil
import subprocess

from .firewall import Firewall
from ..models import FirewallResult


NFT_TIMEOUT = 30


class NFTablesFirewall(Firewall):
    """Per-IP element updates on the agent's nftables sets."""

    name = "nftables"

    def __init__(self, config):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.nft_path = shutil.which('nft') or '/usr/sbin/nft'

    def _sanitize_ip_for_nft(self, ip) -> str:
        """
        Validate an IP before it is placed on an nft command line.

        Raises:
            ValueError: If the value is not an IP or contains unexpected characters
        """
        ip_str = str(ipaddress.ip_address(str(ip)))

        if not re.match(r'^[0-9a-fA-F:.]+$', ip_str):
            raise ValueError(f"IP address contains invalid characters: {ip_str}")

        return ip_str

    def _set_for(self, ip_str: str) -> str:
        set_name = self.config.nft_set_ipv4 if ':' not in ip_str else self.config.nft_set_ipv6
        return set_name

    def _run_element_command(self, verb: str, ip) -> subprocess.CompletedProcess:
        ip_str = self._sanitize_ip_for_nft(ip)
        cmd = [
            self.nft_path, verb, 'element',
            self.config.nft_family, self.config.nft_table, self._set_for(ip_str),
            '{', ip_str, '}',
        ]
        return subprocess.run(cmd, capture_output=True, text=True, timeout=NFT_TIMEOUT)

    def add_deny(self, ip: str) -> FirewallResult:
        try:
            result = self._run_element_command('create', ip)
        except ValueError as e:
            self.logger.error(f"Refusing to block invalid address {ip!r}: {e}")
            return FirewallResult.ERROR
        except subprocess.TimeoutExpired:
            self.logger.error(f"Timeout adding {ip} to nftables set")
            return FirewallResult.ERROR
        except OSError as e:
            self.logger.error(f"Failed to run nft for {ip}: {e}")
            return FirewallResult.ERROR

        if result.returncode == 0:
            self.logger.info(f"Added {ip} to nftables set {self._set_for(ip)}")
            return FirewallResult.OK
        if 'File exists' in result.stderr:
            self.logger.info(f"{ip} already present in nftables set")
            return FirewallResult.DUPLICATE

        self.logger.error(f"nft create element failed for {ip}: {result.stderr.strip()}")
        return FirewallResult.ERROR

    def remove_deny(self, ip: str) -> FirewallResult:
        try:
            result = self._run_element_command('delete', ip)
        except ValueError as e:
            self.logger.error(f"Refusing to unblock invalid address {ip!r}: {e}")
            return FirewallResult.ERROR
        except subprocess.TimeoutExpired:
            self.logger.error(f"Timeout removing {ip} from nftables set")
            return FirewallResult.ERROR
        except OSError as e:
            self.logger.error(f"Failed to run nft for {ip}: {e}")
            return FirewallResult.ERROR

        if result.returncode == 0:
            self.logger.info(f"Removed {ip} from nftables set {self._set_for(ip)}")
            return FirewallResult.OK
        if 'No such file or directory' in result.stderr:
            self.logger.info(f"{ip} not present in nftables set")
            return FirewallResult.NOT_FOUND

        self.logger.error(f"nft delete element failed for {ip}: {result.stderr.strip()}")
        return FirewallResult.ERROR
