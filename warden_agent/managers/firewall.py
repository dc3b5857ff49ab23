"""
EdgeWarden Firewall Collaborators

The blocker talks to the outside world through a two-call interface:

    add_deny(ip)    -> FirewallResult
    remove_deny(ip) -> FirewallResult

Implementations:
- NetworkAclFirewall: inbound DENY entries on an AWS VPC network ACL
  (boto3), scoped to TCP monitored_port (all traffic when it is 0).
  Security groups can only allow traffic, so perimeter denies live in the
  subnet's NACL. The agent manages the rule numbers
  [nacl_rule_start, nacl_rule_start + nacl_rule_limit), which must sit
  below the NACL's allow rules (rule numbers are evaluated lowest first).
- NFTablesFirewall: local nftables sets (see nftables_manager.py)

Neither backend retries on its own beyond what the transport does; a
failed call is reported as FirewallResult.ERROR and the blocker decides.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import ipaddress
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import NACL_RULE_CEILING
from ..exceptions import ConfigError
from ..models import FirewallResult


# Rule number already taken (a concurrent writer got there first)
RULE_TAKEN_CODES = {'NetworkAclEntryAlreadyExists'}
NOT_FOUND_CODES = {'InvalidNetworkAclEntry.NotFound'}

ALL_PROTOCOLS = "-1"
TCP = "6"


class Firewall(ABC):
    """Deny-rule collaborator used by the Blocker."""

    name = "firewall"

    @abstractmethod
    def add_deny(self, ip: str) -> FirewallResult:
        """Install a deny rule for ip. DUPLICATE if it already exists."""

    @abstractmethod
    def remove_deny(self, ip: str) -> FirewallResult:
        """Remove the deny rule for ip. NOT_FOUND if it is already gone."""


def _host_cidr(ip: str) -> str:
    address = ipaddress.ip_address(ip)
    return f"{address}/{address.max_prefixlen}"


def _entry_cidr(entry: Dict) -> Optional[str]:
    cidr = entry.get('CidrBlock') or entry.get('Ipv6CidrBlock')
    if not cidr:
        return None
    try:
        return str(ipaddress.ip_network(cidr, strict=False))
    except ValueError:
        return None


class NetworkAclFirewall(Firewall):
    """
    Deny rules as inbound entries of one VPC network ACL.

    The NACL itself is the source of truth: every call re-reads its entries
    (describe_network_acls), finds the rule for the address or the lowest
    free managed rule number, then creates or deletes that entry.
    """

    name = "aws-nacl"

    def __init__(self, config, client=None):
        """
        Initialize the network ACL collaborator.

        Args:
            config: AgentConfig (aws_region, network_acl_id, nacl_rule_start,
                nacl_rule_limit, monitored_port, http_timeout)
            client: Pre-built EC2 client (tests inject a stub)

        Raises:
            ConfigError: If no network ACL is configured
        """
        self.config = config
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()

        if not config.network_acl_id:
            raise ConfigError("network_acl_id is required for the aws-nacl firewall backend")

        start = config.nacl_rule_start
        self.rule_range = range(start, min(start + config.nacl_rule_limit, NACL_RULE_CEILING))

        if client is None:
            boto_config = Config(
                connect_timeout=10,
                read_timeout=config.http_timeout,
                retries={"max_attempts": 3},
            )
            client = boto3.client("ec2", region_name=config.aws_region, config=boto_config)
        self.ec2 = client

    @property
    def acl_id(self) -> str:
        return self.config.network_acl_id

    def _read_rules(self) -> Tuple[Dict[str, int], Set[int]]:
        """
        Current inbound entries of the NACL.

        Returns:
            (deny rules keyed by normalized CIDR -> rule number,
             every inbound rule number in use)
        """
        response = self.ec2.describe_network_acls(NetworkAclIds=[self.acl_id])
        entries = response['NetworkAcls'][0]['Entries']

        deny_rules = {}
        used = set()
        for entry in entries:
            if entry.get('Egress'):
                continue
            used.add(entry['RuleNumber'])
            cidr = _entry_cidr(entry)
            if entry.get('RuleAction') == 'deny' and cidr:
                deny_rules.setdefault(cidr, entry['RuleNumber'])
        return deny_rules, used

    def _create_entry(self, cidr: str, rule_number: int):
        kwargs = {
            'NetworkAclId': self.acl_id,
            'RuleNumber': rule_number,
            'Protocol': ALL_PROTOCOLS,
            'RuleAction': 'deny',
            'Egress': False,
        }
        port = self.config.monitored_port
        if port:
            kwargs['Protocol'] = TCP
            kwargs['PortRange'] = {'From': port, 'To': port}
        if ipaddress.ip_network(cidr).version == 4:
            kwargs['CidrBlock'] = cidr
        else:
            kwargs['Ipv6CidrBlock'] = cidr
        self.ec2.create_network_acl_entry(**kwargs)

    def add_deny(self, ip: str) -> FirewallResult:
        try:
            cidr = _host_cidr(ip)
        except ValueError as e:
            self.logger.error(f"Refusing NACL rule for invalid address {ip!r}: {e}")
            return FirewallResult.ERROR

        with self._lock:
            # Second pass only after losing a rule number to another writer
            for _ in range(2):
                try:
                    deny_rules, used = self._read_rules()
                    if cidr in deny_rules:
                        self.logger.info(f"NACL deny rule for {ip} already exists (rule {deny_rules[cidr]})")
                        return FirewallResult.DUPLICATE

                    free = [n for n in self.rule_range if n not in used]
                    if not free:
                        self.logger.error(
                            f"No free NACL rule numbers in {self.rule_range.start}-"
                            f"{self.rule_range.stop - 1} on {self.acl_id}, cannot block {ip}"
                        )
                        return FirewallResult.ERROR

                    self._create_entry(cidr, free[0])
                    self.logger.info(f"NACL deny rule {free[0]} added for {ip} on {self.acl_id}")
                    return FirewallResult.OK
                except ClientError as e:
                    code = e.response.get('Error', {}).get('Code', '')
                    if code in RULE_TAKEN_CODES:
                        self.logger.warning(f"NACL rule number taken while blocking {ip}, retrying")
                        continue
                    self.logger.error(f"Failed to add NACL deny rule for {ip}: {code} {e}")
                    return FirewallResult.ERROR
                except (BotoCoreError, KeyError, IndexError) as e:
                    self.logger.error(f"Failed to add NACL deny rule for {ip}: {e}")
                    return FirewallResult.ERROR

        self.logger.error(f"Failed to add NACL deny rule for {ip}: rule numbers kept colliding")
        return FirewallResult.ERROR

    def remove_deny(self, ip: str) -> FirewallResult:
        try:
            cidr = _host_cidr(ip)
        except ValueError as e:
            self.logger.error(f"Refusing NACL removal for invalid address {ip!r}: {e}")
            return FirewallResult.ERROR

        with self._lock:
            try:
                deny_rules, _ = self._read_rules()
                rule_number = deny_rules.get(cidr)
                if rule_number is None or rule_number not in self.rule_range:
                    self.logger.info(f"NACL deny rule for {ip} was not present")
                    return FirewallResult.NOT_FOUND

                self.ec2.delete_network_acl_entry(
                    NetworkAclId=self.acl_id, RuleNumber=rule_number, Egress=False
                )
            except ClientError as e:
                code = e.response.get('Error', {}).get('Code', '')
                if code in NOT_FOUND_CODES:
                    self.logger.info(f"NACL deny rule for {ip} already removed")
                    return FirewallResult.NOT_FOUND
                self.logger.error(f"Failed to remove NACL deny rule for {ip}: {code} {e}")
                return FirewallResult.ERROR
            except (BotoCoreError, KeyError, IndexError) as e:
                self.logger.error(f"Failed to remove NACL deny rule for {ip}: {e}")
                return FirewallResult.ERROR

        self.logger.info(f"NACL deny rule {rule_number} removed for {ip} on {self.acl_id}")
        return FirewallResult.OK


def create_firewall(config) -> Firewall:
    """
    Build the collaborator selected by config.firewall_backend.

    Raises:
        ConfigError: On an unknown backend or missing backend settings
    """
    backend = config.firewall_backend
    if backend == 'aws-nacl':
        return NetworkAclFirewall(config)
    if backend == 'nftables':
        from .nftables_manager import NFTablesFirewall
        return NFTablesFirewall(config)
    raise ConfigError(f"Unknown firewall backend: {backend}")
