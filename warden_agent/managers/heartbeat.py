"""
EdgeWarden Heartbeat

Fire-and-forget status report to the controller:

    POST <controller_url>/agent/heartbeat
    {
      "instanceId": "...",
      "version": "1.0.0",
      "blockedIps": [{"ip": ..., "reason": ..., "blockedAt": ms, "expiresAt": ms}],
      "system": {"cpuLoad": 0.42, "memoryUsedPct": 63, "uptime": 12345.6}
    }

A failed post is logged and retried on the next scheduler tick.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import logging
import os
from typing import Any, Dict, Optional

import requests

from ..models import SystemStats


def _read_meminfo() -> Dict[str, int]:
    values = {}
    with open('/proc/meminfo', 'r') as f:
        for line in f:
            key, _, rest = line.partition(':')
            parts = rest.split()
            if parts and parts[0].isdigit():
                values[key] = int(parts[0])
    return values


def collect_system_stats() -> SystemStats:
    """
    Host load, memory usage and uptime.

    Any figure that cannot be read on this platform is reported as 0.
    """
    stats = SystemStats()

    try:
        stats.cpu_load = round(os.getloadavg()[0], 2)
    except (OSError, AttributeError):
        pass

    try:
        meminfo = _read_meminfo()
        total = meminfo.get('MemTotal', 0)
        available = meminfo.get('MemAvailable', meminfo.get('MemFree', 0))
        if total:
            stats.memory_used_pct = round((total - available) * 100 / total)
    except OSError:
        pass

    try:
        with open('/proc/uptime', 'r') as f:
            stats.uptime = float(f.read().split()[0])
    except (OSError, ValueError, IndexError):
        pass

    return stats


class HeartbeatSender:
    """Builds and posts heartbeat payloads."""

    def __init__(self, state, blocker, session: Optional[requests.Session] = None,
                 stats_provider=collect_system_stats):
        self.state = state
        self.blocker = blocker
        self.session = session or requests.Session()
        self.stats_provider = stats_provider
        self.logger = logging.getLogger(__name__)

    @property
    def url(self) -> str:
        return f"{self.state.config.controller_url.rstrip('/')}/agent/heartbeat"

    def build_payload(self) -> Dict[str, Any]:
        config = self.state.config
        blocked = [dict(ip=ip, **entry.to_dict()) for ip, entry in self.blocker.entries()]
        return {
            'instanceId': config.instance_id,
            'version': self.state.current_version,
            'blockedIps': blocked,
            'system': self.stats_provider().to_dict(),
        }

    def send(self) -> bool:
        """
        Post one heartbeat.

        Returns:
            True if the controller accepted it
        """
        payload = self.build_payload()
        try:
            response = self.session.post(self.url, json=payload,
                                         timeout=self.state.config.http_timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            self.logger.error(f"Heartbeat to {self.url} failed: {e}")
            return False

        self.state.mark_heartbeat()
        self.logger.debug(f"Heartbeat sent ({len(payload['blockedIps'])} blocked IPs)")
        return True
