"""
EdgeWarden Access Log Parser

Converts one raw access log line into a RequestEvent, or discards it.

Dialects, tried in this order when log_format is 'auto':
1. JSON object per line (nginx `escape=json` style):
       {"remote_addr": "10.0.0.1", "request": "GET /x HTTP/1.1",
        "status": 200, "http_user_agent": "curl"}
2. Apache Common/Combined Log Format:
       203.0.113.5 - - [10/Oct/2023:13:55:36 +0000] "GET /wp-login.php HTTP/1.1" 404 512
3. Nginx plaintext variant, which also accepts request lines without a
   protocol token (HTTP/0.9 style and malformed probes nginx still logs):
       198.51.100.7 - - [10/Oct/2023:13:55:36 +0000] "GET /.env" 400 0 "-" "-"

A line matching no dialect is discarded; there is no retry.

Every function here is pure: no I/O, no clock reads except as the
documented fallback when a line carries no usable timestamp.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..models import RequestEvent
from ..utils.helpers import safe_json_loads
from ..utils.validators import validate_ip


APACHE_CLF = re.compile(
    r'^(?P<ip>\S+) \S+ \S+ \[(?P<timestamp>[^\]]+)\] '
    r'"(?P<method>[A-Z]+) (?P<path>\S+) HTTP/[0-9.]+" '
    r'(?P<status>\d{3})'
    r'(?: \S+(?: "(?P<referer>[^"]*)" "(?P<user_agent>[^"]*)")?)?'
)

NGINX_PLAIN = re.compile(
    r'^(?P<ip>\S+) - \S+ \[(?P<timestamp>[^\]]+)\] '
    r'"(?P<method>[A-Z]+) (?P<path>[^" ]+)(?: [^"]*)?" '
    r'(?P<status>\d{3})'
    r'(?: \S+(?: "(?P<referer>[^"]*)" "(?P<user_agent>[^"]*)")?)?'
)

TIMESTAMP_FORMATS = (
    '%d/%b/%Y:%H:%M:%S %z',
    '%d/%b/%Y:%H:%M:%S',
)

MIN_LINE_LENGTH = 5


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a CLF (`10/Oct/2023:13:55:36 +0000`) or ISO-8601 timestamp to UTC.

    Timestamps without a zone are taken as UTC. Returns None if unparsable.
    """
    if not value:
        return None

    for fmt in TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
            break
        except ValueError:
            continue
    else:
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _to_status(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        status = int(value)
    except (TypeError, ValueError):
        return None
    return status if 100 <= status <= 599 else None


def _build_event(ip, path, status, timestamp, method=None, user_agent=None,
                 source="", received_at=None) -> Optional[RequestEvent]:
    if not validate_ip(ip) or not path:
        return None

    status_code = _to_status(status)
    if status_code is None:
        return None

    when = parse_timestamp(timestamp) or received_at or datetime.now(timezone.utc)

    return RequestEvent(
        ip=ip,
        path=path,
        status=status_code,
        timestamp=when,
        method=method or None,
        user_agent=user_agent if user_agent not in (None, '', '-') else None,
        source=source,
    )


def parse_json_line(line: str, source: str = "", received_at=None) -> Optional[RequestEvent]:
    """Parse a JSON-object log line (nginx escape=json style)."""
    if not line.lstrip().startswith('{'):
        return None

    data = safe_json_loads(line)
    if data is None:
        return None

    request = data.get('request')
    if not isinstance(request, str):
        return None
    tokens = request.split(' ')
    if len(tokens) < 2:
        return None

    return _build_event(
        ip=data.get('remote_addr'),
        path=tokens[1],
        status=data.get('status'),
        timestamp=data.get('time_iso8601') or data.get('time_local'),
        method=tokens[0],
        user_agent=data.get('http_user_agent'),
        source=source,
        received_at=received_at,
    )


def _parse_with(pattern: re.Pattern, line: str, source: str, received_at) -> Optional[RequestEvent]:
    match = pattern.match(line)
    if not match:
        return None

    fields = match.groupdict()
    return _build_event(
        ip=fields['ip'],
        path=fields['path'],
        status=fields['status'],
        timestamp=fields['timestamp'],
        method=fields['method'],
        user_agent=fields.get('user_agent'),
        source=source,
        received_at=received_at,
    )


def parse_apache_line(line: str, source: str = "", received_at=None) -> Optional[RequestEvent]:
    """Parse an Apache Common/Combined Log Format line."""
    return _parse_with(APACHE_CLF, line, source, received_at)


def parse_nginx_line(line: str, source: str = "", received_at=None) -> Optional[RequestEvent]:
    """Parse an Nginx plaintext access log line."""
    return _parse_with(NGINX_PLAIN, line, source, received_at)


DIALECTS: Dict[str, Callable[..., Optional[RequestEvent]]] = {
    'json': parse_json_line,
    'apache': parse_apache_line,
    'nginx': parse_nginx_line,
}


def parse_line(line: str, log_format: str = 'auto', source: str = "",
               received_at: Optional[datetime] = None) -> Optional[RequestEvent]:
    """
    Parse one raw access log line.

    Args:
        line: Raw line without the trailing newline
        log_format: 'auto' to try json, apache, nginx in order, or one dialect name
        source: Log file the line came from (copied onto the event)
        received_at: Timestamp used when the line has none (defaults to now)

    Returns:
        RequestEvent, or None if the line should be discarded
    """
    if not line or len(line.strip()) < MIN_LINE_LENGTH:
        return None

    line = line.rstrip('\r\n')

    if log_format == 'auto':
        parsers = DIALECTS.values()
    else:
        parser = DIALECTS.get(log_format)
        if parser is None:
            return None
        parsers = (parser,)

    for parser in parsers:
        event = parser(line, source=source, received_at=received_at)
        if event is not None:
            return event

    return None
