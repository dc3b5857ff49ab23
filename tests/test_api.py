"""
Local control API tests (Flask test client).

Author: EdgeWarden Project
License: GNU GPL v3
"""

import unittest
from types import SimpleNamespace
from unittest.mock import Mock

from warden_agent.api import create_app
from warden_agent.managers.blocker import Blocker
from warden_agent.managers.state import AgentState
from warden_agent.models import FirewallResult

from tests.helpers import make_config, make_event

TOKEN = "s3cret-token"


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self.config = make_config(api_token=TOKEN, recent_events_size=5)
        self.firewall = Mock()
        self.firewall.add_deny.return_value = FirewallResult.OK
        self.firewall.remove_deny.return_value = FirewallResult.OK

        self.agent = SimpleNamespace(
            state=AgentState(self.config),
            blocker=Blocker(self.config, self.firewall),
            reload=Mock(),
            kill=Mock(),
        )
        self.client = create_app(self.agent).test_client()

    def call(self, method, path, json=None, data=None, token=TOKEN, remote='127.0.0.1'):
        headers = {'x-agent-token': token} if token is not None else {}
        return self.client.open(path, method=method, json=json, data=data, headers=headers,
                                environ_base={'REMOTE_ADDR': remote})


class TestAuthorization(ApiTestCase):

    def test_ping(self):
        response = self.call('GET', '/ping')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {'ok': True})

    def test_ipv6_loopback_allowed(self):
        self.assertEqual(self.call('GET', '/ping', remote='::1').status_code, 200)

    def test_non_loopback_forbidden_before_token_check(self):
        for token in (TOKEN, "wrong", None):
            with self.subTest(token=token):
                response = self.call('POST', '/block', json={'ip': '203.0.113.5'},
                                     token=token, remote='10.0.0.5')
                self.assertEqual(response.status_code, 403)
        self.firewall.add_deny.assert_not_called()

    def test_missing_or_wrong_token(self):
        for token in (None, "", "wrong", TOKEN + "x"):
            with self.subTest(token=token):
                response = self.call('POST', '/block', json={'ip': '203.0.113.5'}, token=token)
                self.assertEqual(response.status_code, 401)
        self.assertEqual(len(self.agent.blocker), 0)

    def test_empty_configured_token_rejects_everything(self):
        self.config.api_token = ""
        self.assertEqual(self.call('GET', '/ping', token="").status_code, 401)

    def test_auth_applies_to_unknown_routes(self):
        self.assertEqual(self.call('GET', '/nope', token=None).status_code, 401)
        response = self.call('GET', '/nope')
        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.get_json()['ok'])

    def test_wrong_method(self):
        self.assertEqual(self.call('GET', '/block').status_code, 405)


class TestBlockRoutes(ApiTestCase):

    def test_block_and_state(self):
        response = self.call('POST', '/block', json={'ip': '203.0.113.5', 'reason': 'abuse report'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {'ok': True})

        state = self.call('GET', '/state').get_json()
        self.assertEqual(len(state['blocked']), 1)
        ip, entry = state['blocked'][0]
        self.assertEqual(ip, '203.0.113.5')
        self.assertEqual(entry['reason'], 'abuse report')
        self.assertAlmostEqual(entry['expiresAt'] - entry['blockedAt'], 30 * 60 * 1000, delta=1)
        self.assertEqual(state['settings']['api_token'], '***')

    def test_block_default_reason(self):
        self.call('POST', '/block', json={'ip': '203.0.113.5'})
        self.assertEqual(self.agent.blocker.get_entry('203.0.113.5').reason, 'manual')

    def test_block_is_idempotent(self):
        self.call('POST', '/block', json={'ip': '203.0.113.5'})
        self.call('POST', '/block', json={'ip': '203.0.113.5'})
        self.firewall.add_deny.assert_called_once()

    def test_malformed_block_requests(self):
        cases = [
            {'data': 'not json'},
            {'data': ''},
            {'json': ['203.0.113.5']},
            {'json': {}},
            {'json': {'ip': 'not-an-ip'}},
            {'json': {'ip': 12345}},
            {'json': {'ip': '203.0.113.5', 'reason': ['x']}},
        ]
        for kwargs in cases:
            with self.subTest(body=kwargs):
                response = self.call('POST', '/block', **kwargs)
                self.assertEqual(response.status_code, 400)
                self.assertFalse(response.get_json()['ok'])
        self.firewall.add_deny.assert_not_called()

    def test_block_firewall_failure(self):
        self.firewall.add_deny.return_value = FirewallResult.ERROR
        response = self.call('POST', '/block', json={'ip': '203.0.113.5'})

        self.assertEqual(response.status_code, 502)
        self.assertEqual(len(self.agent.blocker), 0)

    def test_unblock(self):
        self.call('POST', '/block', json={'ip': '203.0.113.5'})
        response = self.call('POST', '/unblock', json={'ip': '203.0.113.5'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.call('GET', '/state').get_json()['blocked'], [])

    def test_unblock_unknown_ip(self):
        self.firewall.remove_deny.return_value = FirewallResult.NOT_FOUND
        response = self.call('POST', '/unblock', json={'ip': '198.51.100.9'})
        self.assertEqual(response.status_code, 200)

    def test_unblock_requires_ip(self):
        self.assertEqual(self.call('POST', '/unblock', json={'address': '1.2.3.4'}).status_code, 400)
        self.firewall.remove_deny.assert_not_called()


class TestConfigRoute(ApiTestCase):

    def test_shallow_merge(self):
        response = self.call('POST', '/config', json={'rate_threshold': 120, 'block_minutes': 5})

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(body['ok'])
        self.assertEqual(body['newConfig']['rate_threshold'], 120)
        self.assertEqual(body['newConfig']['scan_threshold'], 20)
        self.assertEqual(body['newConfig']['api_token'], '***')
        self.assertEqual(self.config.block_minutes, 5)

    def test_rejected_merges_change_nothing(self):
        cases = [
            {'rate_threshold': 'lots'},
            {'rate_threshold': 100, 'no_such_key': 1},
            {'firewall_backend': 'nftables'},
            {'network_acl_id': 'acl-0fedcba9876543210'},
            {'log_format': 'syslog'},
            {'http_timeout': 0},
            {'http_timeout': 100000},
            {'block_minutes': -5},
            {'scan_threshold': 0},
            {'heartbeat_interval': 0},
            {'rate_threshold': 100, 'block_minutes': -5},
            ['rate_threshold', 100],
        ]
        for body in cases:
            with self.subTest(body=body):
                response = self.call('POST', '/config', json=body)
                self.assertEqual(response.status_code, 400)
        self.assertEqual(self.config.rate_threshold, 80)
        self.assertEqual(self.config.block_minutes, 30)
        self.assertEqual(self.config.http_timeout, 15)
        self.assertEqual(self.config.scan_threshold, 20)
        self.assertEqual(self.config.heartbeat_interval, 10)
        self.assertEqual(self.config.firewall_backend, 'aws-nacl')
        self.assertEqual(self.config.network_acl_id, '')

    def test_bounds_error_is_reported(self):
        response = self.call('POST', '/config', json={'http_timeout': 0})

        self.assertEqual(response.status_code, 400)
        self.assertIn('http_timeout', response.get_json()['error'])


class TestTailAndLifecycle(ApiTestCase):

    def test_tail_returns_recent_events(self):
        for i in range(7):
            self.agent.state.record_event(make_event(path=f"/p{i}"))

        everything = self.call('POST', '/tail').get_json()
        self.assertTrue(everything['ok'])
        self.assertEqual([e['path'] for e in everything['events']], ["/p2", "/p3", "/p4", "/p5", "/p6"])

        limited = self.call('POST', '/tail', json={'limit': 2}).get_json()
        self.assertEqual([e['path'] for e in limited['events']], ["/p5", "/p6"])

    def test_tail_bad_limit(self):
        for limit in ("ten", -1, True, 1.5):
            with self.subTest(limit=limit):
                self.assertEqual(self.call('POST', '/tail', json={'limit': limit}).status_code, 400)

    def test_restart_reloads(self):
        response = self.call('POST', '/restart')
        self.assertEqual(response.get_json(), {'ok': True})
        self.agent.reload.assert_called_once_with()

    def test_kill(self):
        response = self.call('POST', '/kill')
        self.assertEqual(response.status_code, 200)
        self.agent.kill.assert_called_once_with()

    def test_lifecycle_routes_need_token(self):
        self.call('POST', '/kill', token="nope")
        self.call('POST', '/restart', token="nope")
        self.agent.kill.assert_not_called()
        self.agent.reload.assert_not_called()


if __name__ == '__main__':
    unittest.main()
