"""
EdgeWarden Local Control API

Loopback-only, token-authenticated HTTP surface for manual override.

Every request is checked in this order:
1. 403 if the peer address is not loopback (127.0.0.0/8, ::1)
2. 401 if the x-agent-token header does not match api_token
   (an empty configured token rejects everything)
3. route by method + path

Routes:
    POST /block    {ip, reason?}      -> {ok: true}
    POST /unblock  {ip}               -> {ok: true}
    POST /config   {partial config}   -> {ok: true, newConfig: {...}}
    GET  /state                       -> {blocked: [[ip, {reason, blockedAt, expiresAt}]], settings}
    POST /tail     {limit?}           -> {ok: true, events: [...]}
    POST /restart                     -> {ok: true}
    POST /kill                        -> {ok: true}, then SIGTERM to self
    GET  /ping                        -> {ok: true}

Malformed bodies get a 400 JSON error, never a crash.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import hmac
import logging
import threading
from typing import Any, Dict

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.serving import make_server

from ..exceptions import ConfigError
from ..utils.validators import is_loopback, validate_ip

TOKEN_HEADER = 'x-agent-token'
DEFAULT_BLOCK_REASON = 'manual'

logger = logging.getLogger(__name__)


def _error(status: int, message: str):
    return jsonify({'ok': False, 'error': message}), status


def _json_body(required: bool = True) -> Dict[str, Any]:
    """
    Decode the request body as a JSON object.

    Raises:
        ValueError: If the body is missing (when required), not JSON, or not an object
    """
    if not request.get_data():
        if required:
            raise ValueError("request body must be a JSON object")
        return {}

    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict):
        raise ValueError("request body must be a JSON object")
    return body


def _ip_from_body(body: Dict[str, Any]) -> str:
    ip = body.get('ip')
    if not isinstance(ip, str) or not validate_ip(ip.strip()):
        raise ValueError("'ip' must be a valid IPv4 or IPv6 address")
    return ip.strip()


def create_app(agent) -> Flask:
    """
    Build the control API application.

    Args:
        agent: Object exposing `state` (AgentState), `blocker` (Blocker),
            `reload()` and `kill()`
    """
    app = Flask(__name__)
    app.json.sort_keys = False

    @app.before_request
    def authorize():
        remote = request.remote_addr or ''
        if not is_loopback(remote):
            logger.warning(f"Control API request from non-loopback peer {remote} rejected")
            return _error(403, 'forbidden')

        expected = agent.state.config.api_token or ''
        supplied = request.headers.get(TOKEN_HEADER, '')
        if not expected or not hmac.compare_digest(supplied.encode('utf-8'), expected.encode('utf-8')):
            logger.warning(f"Control API request with invalid token: {request.method} {request.path}")
            return _error(401, 'unauthorized')

        return None

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return _error(e.code or 500, e.name.lower())

    @app.route('/block', methods=['POST'])
    def block():
        try:
            body = _json_body()
            ip = _ip_from_body(body)
        except ValueError as e:
            return _error(400, str(e))

        reason = body.get('reason') or DEFAULT_BLOCK_REASON
        if not isinstance(reason, str):
            return _error(400, "'reason' must be a string")

        if not agent.blocker.block(ip, reason):
            return _error(502, 'firewall rejected the block request')
        return jsonify({'ok': True})

    @app.route('/unblock', methods=['POST'])
    def unblock():
        try:
            ip = _ip_from_body(_json_body())
        except ValueError as e:
            return _error(400, str(e))

        agent.blocker.unblock(ip)
        return jsonify({'ok': True})

    @app.route('/config', methods=['POST'])
    def merge_config():
        try:
            partial = _json_body()
            agent.state.merge_config(partial)
        except (ValueError, ConfigError) as e:
            return _error(400, str(e))

        return jsonify({'ok': True, 'newConfig': agent.state.settings()})

    @app.route('/state', methods=['GET'])
    def state():
        blocked = [[ip, entry.to_dict()] for ip, entry in agent.blocker.entries()]
        return jsonify({'blocked': blocked, 'settings': agent.state.settings()})

    @app.route('/tail', methods=['POST'])
    def tail():
        try:
            body = _json_body(required=False)
        except ValueError as e:
            return _error(400, str(e))

        limit = body.get('limit', agent.state.config.recent_events_size)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            return _error(400, "'limit' must be a non-negative integer")

        events = agent.state.recent_events(limit)
        return jsonify({'ok': True, 'events': [event.to_dict() for event in events]})

    @app.route('/restart', methods=['POST'])
    def restart():
        agent.reload()
        return jsonify({'ok': True})

    @app.route('/kill', methods=['POST'])
    def kill():
        logger.warning("Kill requested through control API")
        agent.kill()
        return jsonify({'ok': True})

    @app.route('/ping', methods=['GET'])
    def ping():
        return jsonify({'ok': True})

    return app


class ControlServer:
    """
    Threaded werkzeug server hosting the control API.

    Binding happens in the constructor so a busy port fails startup.
    """

    def __init__(self, app: Flask, host: str, port: int):
        self.host = host
        self.port = port
        self.server = make_server(host, port, app, threaded=True)
        self._thread = None

    def start(self):
        self._thread = threading.Thread(
            target=self.server.serve_forever, name="control-api", daemon=True
        )
        self._thread.start()
        logger.info(f"Control API listening on {self.host}:{self.port}")

    def stop(self):
        self.server.shutdown()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Control API stopped")
