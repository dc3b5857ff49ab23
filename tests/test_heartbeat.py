"""
Heartbeat tests.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import unittest
from datetime import datetime, timezone
from unittest.mock import Mock, mock_open, patch

import requests

from warden_agent.managers.blocker import Blocker
from warden_agent.managers.heartbeat import HeartbeatSender, collect_system_stats
from warden_agent.managers.state import AgentState
from warden_agent.models import FirewallResult, SystemStats

from tests.helpers import FakeClock, make_config

MEMINFO = """MemTotal:        8000000 kB
MemFree:          500000 kB
MemAvailable:    2000000 kB
"""


class TestHeartbeatSender(unittest.TestCase):

    def setUp(self):
        self.config = make_config(controller_url="https://ctl.example.test/", instance_id="edge-01")
        self.state = AgentState(self.config)

        firewall = Mock()
        firewall.add_deny.return_value = FirewallResult.OK
        clock = FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
        self.blocker = Blocker(self.config, firewall, clock=clock)

        self.session = Mock()
        self.stats = SystemStats(cpu_load=0.42, memory_used_pct=63, uptime=12345.6)
        self.sender = HeartbeatSender(self.state, self.blocker, session=self.session,
                                      stats_provider=lambda: self.stats)

    def test_payload_shape(self):
        self.blocker.block("203.0.113.5", "high-rate")

        payload = self.sender.build_payload()

        self.assertEqual(payload['instanceId'], "edge-01")
        self.assertEqual(payload['version'], self.config.version)
        self.assertEqual(payload['system'], {'cpuLoad': 0.42, 'memoryUsedPct': 63, 'uptime': 12345.6})
        self.assertEqual(payload['blockedIps'], [{
            'ip': "203.0.113.5",
            'reason': "high-rate",
            'blockedAt': 1714564800000,
            'expiresAt': 1714566600000,
        }])

    def test_send_posts_to_controller(self):
        self.assertTrue(self.sender.send())

        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "https://ctl.example.test/agent/heartbeat")
        self.assertEqual(kwargs['json']['blockedIps'], [])
        self.assertEqual(kwargs['timeout'], 15)
        self.assertIsNotNone(self.state.last_heartbeat)

    def test_failures_return_false(self):
        errors = [
            requests.ConnectionError("connection refused"),
            requests.Timeout("read timed out"),
        ]
        for error in errors:
            with self.subTest(error=type(error).__name__):
                self.session.post.side_effect = error
                self.assertFalse(self.sender.send())

        self.session.post.side_effect = None
        self.session.post.return_value.raise_for_status.side_effect = requests.HTTPError("500")
        self.assertFalse(self.sender.send())

        self.assertIsNone(self.state.last_heartbeat)


class TestSystemStats(unittest.TestCase):

    @patch('warden_agent.managers.heartbeat.os.getloadavg', return_value=(0.5, 0.4, 0.3))
    def test_reads_proc(self, _):
        files = {'/proc/meminfo': MEMINFO, '/proc/uptime': "12345.67 54321.00\n"}

        def fake_open(path, *args, **kwargs):
            return mock_open(read_data=files[path])()

        with patch('builtins.open', side_effect=fake_open):
            stats = collect_system_stats()

        self.assertEqual(stats.cpu_load, 0.5)
        self.assertEqual(stats.memory_used_pct, 75)
        self.assertEqual(stats.uptime, 12345.67)

    @patch('warden_agent.managers.heartbeat.os.getloadavg', side_effect=OSError)
    def test_unreadable_figures_are_zero(self, _):
        with patch('builtins.open', side_effect=FileNotFoundError):
            stats = collect_system_stats()
        self.assertEqual(stats.to_dict(), {'cpuLoad': 0.0, 'memoryUsedPct': 0, 'uptime': 0.0})


if __name__ == '__main__':
    unittest.main()
