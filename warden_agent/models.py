"""
EdgeWarden Data Models

Core data structures shared by the agent components.

This module defines:
- RequestEvent: Normalized record parsed from one access log line
- BlockDecision: Output of the detection engine, consumed by the blocker
- BlockedIpEntry: Time-bounded record that an IP is denied at the firewall
- DetectionCounter: Transient per-IP counters used by the detectors
- GeoInfo: ASN/Country attributes resolved for an IP
- VersionManifest: Update descriptor fetched from the controller
- FirewallResult: Outcome of a firewall collaborator call

Serialization: to_dict() methods produce the JSON wire shapes used by the
control API and the controller heartbeat. Timestamps go over the wire as
epoch milliseconds.

Author: EdgeWarden Project
License: GNU GPL v3
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds."""
    return int(value.timestamp() * 1000)


class FirewallResult(Enum):
    """
    Outcome of a firewall collaborator call.

    DUPLICATE and NOT_FOUND are reported separately for logging but are
    successes from the blocker's point of view.
    """
    OK = "ok"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    ERROR = "error"

    @property
    def succeeded(self) -> bool:
        return self is not FirewallResult.ERROR


@dataclass(frozen=True)
class RequestEvent:
    """
    Single HTTP request extracted from an access log line.

    Attributes:
        ip: Client address as written in the log
        path: Request path (including query string)
        status: HTTP status code
        timestamp: When the request happened (UTC)
        method: HTTP method, if the dialect carries it
        user_agent: User agent, if the dialect carries it
        source: Log file the line came from
    """
    ip: str
    path: str
    status: int
    timestamp: datetime
    method: Optional[str] = None
    user_agent: Optional[str] = None
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ip': self.ip,
            'path': self.path,
            'method': self.method,
            'status': self.status,
            'ua': self.user_agent,
            'timestamp': self.timestamp.isoformat(),
            'source': self.source,
        }


@dataclass(frozen=True)
class BlockDecision:
    """A detector verdict: block `ip` because of `reason`."""
    ip: str
    reason: str


@dataclass
class BlockedIpEntry:
    """
    Active block for one IP.

    At most one entry exists per IP. While present, the firewall
    collaborator is expected to hold a matching deny rule.
    """
    ip: str
    reason: str
    blocked_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape used by GET /state: {reason, blockedAt, expiresAt}."""
        return {
            'reason': self.reason,
            'blockedAt': to_epoch_ms(self.blocked_at),
            'expiresAt': to_epoch_ms(self.expires_at),
        }


@dataclass
class DetectionCounter:
    """
    Fixed-window counters for one source IP.

    `count` and `window_start` drive the rate detector. `scan_404` is only
    cleared when the rate window resets (the whole counter is replaced).
    """
    window_start: float
    count: int = 0
    scan_404: int = 0


@dataclass(frozen=True)
class GeoInfo:
    """ASN/Country attributes for an IP. Missing attributes stay None."""
    ip: str
    asn: Optional[int] = None
    org: Optional[str] = None
    country: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'ip': self.ip, 'asn': self.asn, 'org': self.org, 'country': self.country}

    def describe(self) -> str:
        """Short human-readable label, e.g. 'AS13335 Cloudflare, US'."""
        parts = []
        if self.asn:
            parts.append(f"AS{self.asn}" + (f" {self.org}" if self.org else ""))
        if self.country:
            parts.append(self.country)
        return ", ".join(parts) if parts else "unknown origin"


@dataclass(frozen=True)
class VersionManifest:
    """Descriptor of an available agent build."""
    version: str
    download_url: str
    signature: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VersionManifest':
        """
        Build a manifest from the controller's JSON.

        Accepts either `url` or `downloadUrl` for the artifact location.

        Raises:
            ValueError: If version, URL or signature is missing
        """
        if not isinstance(data, dict):
            raise ValueError("manifest is not a JSON object")

        version = data.get('version')
        download_url = data.get('downloadUrl') or data.get('url')
        signature = data.get('signature')

        missing = [name for name, value in (
            ('version', version), ('url', download_url), ('signature', signature)
        ) if not value]
        if missing:
            raise ValueError(f"manifest missing fields: {', '.join(missing)}")

        return cls(version=str(version), download_url=str(download_url), signature=str(signature))


@dataclass
class SystemStats:
    """Host statistics reported with each heartbeat."""
    cpu_load: float = 0.0
    memory_used_pct: int = 0
    uptime: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cpuLoad': self.cpu_load,
            'memoryUsedPct': self.memory_used_pct,
            'uptime': self.uptime,
        }
