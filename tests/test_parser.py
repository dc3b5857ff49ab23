"""
Access log parser tests.

Table-driven checks of the three dialects and the discard rules.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import unittest
from datetime import datetime, timezone

from warden_agent.parsers import parse_line, parse_timestamp


class TestApacheDialect(unittest.TestCase):

    def test_common_log_format_without_zone(self):
        event = parse_line('203.0.113.5 - - [10/Oct/2023:13:55:36] "GET /wp-login.php HTTP/1.1" 404')

        self.assertIsNotNone(event)
        self.assertEqual(event.ip, "203.0.113.5")
        self.assertEqual(event.path, "/wp-login.php")
        self.assertEqual(event.status, 404)
        self.assertEqual(event.method, "GET")
        self.assertEqual(event.timestamp, datetime(2023, 10, 10, 13, 55, 36, tzinfo=timezone.utc))

    def test_combined_log_format_user_agent(self):
        line = ('192.0.2.10 - frank [10/Oct/2023:13:55:36 -0700] "POST /login?next=/ HTTP/1.1" '
                '302 0 "https://example.com/" "Mozilla/5.0 (X11; Linux x86_64)"')
        event = parse_line(line)

        self.assertEqual(event.ip, "192.0.2.10")
        self.assertEqual(event.path, "/login?next=/")
        self.assertEqual(event.status, 302)
        self.assertEqual(event.user_agent, "Mozilla/5.0 (X11; Linux x86_64)")
        self.assertEqual(event.timestamp.hour, 20)

    def test_ipv6_client(self):
        event = parse_line('2001:db8::1 - - [10/Oct/2023:13:55:36 +0000] "GET / HTTP/2.0" 200 10')
        self.assertEqual(event.ip, "2001:db8::1")

    def test_source_is_carried(self):
        event = parse_line('203.0.113.5 - - [10/Oct/2023:13:55:36 +0000] "GET / HTTP/1.1" 200 1',
                           source="/var/log/apache2/access.log")
        self.assertEqual(event.source, "/var/log/apache2/access.log")


class TestJsonDialect(unittest.TestCase):

    def test_structured_line(self):
        line = ('{"remote_addr": "10.0.0.1", "request": "GET /x HTTP/1.1", '
                '"status": 200, "http_user_agent": "curl"}')
        event = parse_line(line)

        self.assertEqual(event.ip, "10.0.0.1")
        self.assertEqual(event.path, "/x")
        self.assertEqual(event.status, 200)
        self.assertEqual(event.user_agent, "curl")
        self.assertEqual(event.to_dict()['ua'], "curl")

    def test_status_as_string_and_iso_time(self):
        line = ('{"remote_addr": "10.0.0.2", "request": "HEAD /health HTTP/1.1", "status": "204", '
                '"time_iso8601": "2023-10-10T13:55:36+02:00"}')
        event = parse_line(line)

        self.assertEqual(event.status, 204)
        self.assertEqual(event.method, "HEAD")
        self.assertEqual(event.timestamp, datetime(2023, 10, 10, 11, 55, 36, tzinfo=timezone.utc))

    def test_rejected_json_lines(self):
        cases = [
            '{"remote_addr": "10.0.0.1", "status": 200}',
            '{"remote_addr": "10.0.0.1", "request": "GET", "status": 200}',
            '{"remote_addr": "not-an-ip", "request": "GET /x HTTP/1.1", "status": 200}',
            '{"remote_addr": "10.0.0.1", "request": "GET /x HTTP/1.1", "status": true}',
            '{"remote_addr": "10.0.0.1", "request": "GET /x HTTP/1.1"',
            '["10.0.0.1", "GET /x HTTP/1.1", 200]',
        ]
        for line in cases:
            with self.subTest(line=line):
                self.assertIsNone(parse_line(line))


class TestNginxDialect(unittest.TestCase):

    def test_request_without_protocol(self):
        event = parse_line('198.51.100.7 - - [10/Oct/2023:13:55:36 +0000] "GET /.env" 400 0 "-" "-"')

        self.assertEqual(event.ip, "198.51.100.7")
        self.assertEqual(event.path, "/.env")
        self.assertEqual(event.status, 400)
        self.assertIsNone(event.user_agent)

    def test_plain_combined(self):
        line = ('198.51.100.7 - - [10/Oct/2023:13:55:36 +0000] "GET /index.html HTTP/1.1" '
                '200 612 "-" "curl/8.0"')
        event = parse_line(line, log_format='nginx')
        self.assertEqual(event.user_agent, "curl/8.0")


class TestDiscard(unittest.TestCase):

    def test_lines_matching_no_dialect(self):
        cases = [
            '',
            '   ',
            'abc',
            'this is not an access log line',
            '999.1.1.1 - - [10/Oct/2023:13:55:36 +0000] "GET / HTTP/1.1" 200 1',
            '203.0.113.5 - - [10/Oct/2023:13:55:36 +0000] "GET / HTTP/1.1" 999 1',
            '203.0.113.5 - - [10/Oct/2023:13:55:36 +0000] "get / HTTP/1.1" 200 1',
        ]
        for line in cases:
            with self.subTest(line=line):
                self.assertIsNone(parse_line(line))

    def test_specific_format_restricts_dialect(self):
        apache = '203.0.113.5 - - [10/Oct/2023:13:55:36 +0000] "GET / HTTP/1.1" 200 1'
        json_line = '{"remote_addr": "10.0.0.1", "request": "GET /x HTTP/1.1", "status": 200}'

        self.assertIsNone(parse_line(apache, log_format='json'))
        self.assertIsNone(parse_line(json_line, log_format='apache'))
        self.assertIsNone(parse_line(apache, log_format='unknown'))
        self.assertIsNotNone(parse_line(json_line, log_format='json'))

    def test_missing_timestamp_uses_received_at(self):
        received = datetime(2024, 1, 1, tzinfo=timezone.utc)
        line = '{"remote_addr": "10.0.0.1", "request": "GET /x HTTP/1.1", "status": 200}'
        self.assertEqual(parse_line(line, received_at=received).timestamp, received)

    def test_deterministic(self):
        line = '203.0.113.5 - - [10/Oct/2023:13:55:36 +0000] "GET /a HTTP/1.1" 200 1'
        self.assertEqual(parse_line(line), parse_line(line))


class TestParseTimestamp(unittest.TestCase):

    def test_formats(self):
        expected = datetime(2023, 10, 10, 13, 55, 36, tzinfo=timezone.utc)
        self.assertEqual(parse_timestamp('10/Oct/2023:13:55:36 +0000'), expected)
        self.assertEqual(parse_timestamp('10/Oct/2023:15:55:36 +0200'), expected)
        self.assertEqual(parse_timestamp('2023-10-10T13:55:36Z'), expected)

    def test_invalid(self):
        self.assertIsNone(parse_timestamp(None))
        self.assertIsNone(parse_timestamp('yesterday'))


if __name__ == '__main__':
    unittest.main()
