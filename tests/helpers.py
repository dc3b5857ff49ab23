"""
Shared test helpers.

Author: EdgeWarden Project
License: GNU GPL v3
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from warden_agent.config import AgentConfig
from warden_agent.models import RequestEvent


def make_config(**overrides) -> AgentConfig:
    """AgentConfig built from defaults and overrides only (no config.conf lookup)."""
    overrides.setdefault('instance_id', 'test-host')
    with patch('warden_agent.config.load_config_file', return_value={}):
        return AgentConfig(**overrides)


def make_event(ip="203.0.113.5", path="/", status=200, **kwargs) -> RequestEvent:
    kwargs.setdefault('timestamp', datetime(2023, 10, 10, 13, 55, 36, tzinfo=timezone.utc))
    return RequestEvent(ip=ip, path=path, status=status, **kwargs)


class FakeClock:
    """Manually advanced clock; callable like time.monotonic / utc_now."""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, amount):
        if isinstance(self.now, datetime):
            self.now = self.now + timedelta(seconds=amount)
        else:
            self.now += amount
