#!/usr/bin/env python3
"""
EdgeWarden - Web Server Edge Protection Agent

Main entry point for the per-host agent.

The agent tails web server access logs, detects abusive clients (request
floods, malicious paths, 404 scans), blocks them at the perimeter
firewall for a bounded time, reports to the controller and keeps itself
up to date with signed releases.

Usage:
    edgewarden --daemon          # Run the agent in the foreground (systemd)
    edgewarden --check-update    # Run one update check/install cycle
    edgewarden --show-config     # Print the effective configuration
    edgewarden --version

Author: EdgeWarden Project
License: GNU GPL v3
"""

import argparse
import json
import logging
import os
import signal
import sys
import threading
from typing import Optional

from warden_agent import __version__
from warden_agent.api import ControlServer, create_app
from warden_agent.config import AgentConfig, load_config
from warden_agent.core.realtime_engine import RealtimePipelineMixin
from warden_agent.core.scheduler import Scheduler
from warden_agent.exceptions import ConfigError
from warden_agent.managers.blocker import Blocker
from warden_agent.managers.firewall import create_firewall
from warden_agent.managers.geolocation import GeoResolver
from warden_agent.managers.heartbeat import HeartbeatSender
from warden_agent.managers.state import AgentState
from warden_agent.managers.updater import Updater
from warden_agent.utils.logging import setup_logging

# Delay between answering /kill and signalling ourselves
KILL_DELAY_SECONDS = 0.2


class WardenAgent(RealtimePipelineMixin):
    """
    Process-level coordinator.

    Owns the AgentState context and every component, starts their threads
    and tears them down on shutdown.
    """

    def __init__(self, config: Optional[AgentConfig] = None, firewall=None, geo=None):
        """
        Build every component. Nothing is started here.

        Args:
            config: Loaded configuration (loaded from disk/env if None)
            firewall: Firewall collaborator override
            geo: GeoResolver override
        """
        self.logger = logging.getLogger(__name__)
        self.state = AgentState(config or load_config())
        config = self.state.config

        self.geo = geo or GeoResolver(config)
        self.geo.load()

        self.firewall = firewall or create_firewall(config)
        self.blocker = Blocker(config, self.firewall, geo=self.geo)

        self._init_pipeline()

        self.heartbeat = HeartbeatSender(self.state, self.blocker)
        self.updater = Updater(self.state)

        self.scheduler = Scheduler()
        self.scheduler.add("heartbeat", lambda: config.heartbeat_interval,
                           self.heartbeat.send, run_immediately=True)
        self.scheduler.add("update-check", lambda: config.update_check_interval,
                           self._scheduled_update_check)
        self.scheduler.add("geo-refresh", lambda: config.geo_refresh_interval, self.geo.refresh)
        self.scheduler.add("expiry-sweep", lambda: config.sweep_interval, self.blocker.sweep)

        self.server: Optional[ControlServer] = None
        self._stop_event = threading.Event()
        self._consumer_thread: Optional[threading.Thread] = None

    def _scheduled_update_check(self):
        if not self.state.config.auto_update:
            return
        self.updater.check_and_install()

    def _setup_signal_handlers(self):
        """
        Install process signal handlers.

        - SIGTERM/SIGINT: graceful shutdown
        - SIGHUP: reload patterns and geo databases, rescan logs
        """
        def handle_shutdown(signum, frame):
            sig_name = signal.Signals(signum).name
            self.logger.info(f"Received {sig_name} - shutting down...")
            self.stop()

        def handle_sighup(signum, frame):
            self.logger.info("Received SIGHUP - reloading...")
            try:
                self.reload()
            except Exception as e:
                self.logger.error(f"Reload failed: {e}")

        signal.signal(signal.SIGTERM, handle_shutdown)
        signal.signal(signal.SIGINT, handle_shutdown)
        if hasattr(signal, 'SIGHUP'):
            signal.signal(signal.SIGHUP, handle_sighup)

    def reload(self):
        """Best-effort subsystem reload (control API /restart and SIGHUP)."""
        self.pattern_loader.reload_patterns()
        self.geo.load()
        added = self.rescan_logs()
        self.logger.info(f"Reload complete ({added} new log file(s))")

    def kill(self):
        """Terminate the process shortly after the current request completes."""
        timer = threading.Timer(KILL_DELAY_SECONDS, os.kill, args=(os.getpid(), signal.SIGTERM))
        timer.daemon = True
        timer.start()

    def stop(self):
        self._stop_event.set()

    def run(self) -> int:
        """
        Run until stopped by a signal or the control API.

        Returns:
            Process exit status (1 if the control port cannot be bound)
        """
        config = self.state.config

        try:
            self.server = ControlServer(create_app(self), config.api_host, config.api_port)
        except OSError as e:
            self.logger.critical(f"Cannot bind control API on {config.api_host}:{config.api_port}: {e}")
            return 1

        if not config.api_token:
            self.logger.warning("api_token is empty - control API will reject every request")

        self._setup_signal_handlers()

        self.logger.info("=" * 60)
        self.logger.info(f"EdgeWarden agent {__version__} starting ({config.instance_id})")
        self.logger.info(f"Firewall backend: {self.firewall.name}")
        self.logger.info("=" * 60)

        self._consumer_thread = threading.Thread(
            target=self.blocker.consume, args=(self.decisions, self._stop_event),
            name="blocker", daemon=True
        )
        self._consumer_thread.start()

        self.tailer.start()
        self.scheduler.start()
        self.server.start()

        try:
            while not self._stop_event.wait(timeout=60):
                self.logger.debug(
                    f"Status: {len(self.blocker)} blocked, {self.engine.tracked_ips()} tracked IPs, "
                    f"{self.events_parsed}/{self.lines_seen} lines parsed"
                )
        finally:
            self._shutdown()

        return 0

    def _shutdown(self):
        self.logger.info("Stopping agent...")
        self._stop_event.set()

        if self.server is not None:
            self.server.stop()
        self.scheduler.stop()
        self.tailer.stop()
        if self._consumer_thread is not None:
            self._consumer_thread.join(timeout=5)
        self.geo.close()

        self.logger.info("Agent stopped")


def main():
    """CLI entry point with argument parsing."""
    parser = argparse.ArgumentParser(description='EdgeWarden - web server edge protection agent')
    parser.add_argument('--daemon', action='store_true', help='Run the agent (foreground, for systemd)')
    parser.add_argument('--check-update', action='store_true', help='Check for and install an agent update once')
    parser.add_argument('--show-config', action='store_true', help='Print the effective configuration')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument('--version', action='version', version=f'edgewarden {__version__}')

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(level=log_level)

    try:
        config = load_config()
    except ConfigError as e:
        logging.getLogger(__name__).critical(f"Invalid configuration: {e}")
        sys.exit(1)

    if args.show_config:
        print(json.dumps(config.snapshot(), indent=2, default=str))
        sys.exit(0)

    setup_logging(level=log_level, config=config)

    if args.check_update:
        updater = Updater(AgentState(config))
        installed = updater.check_and_install()
        print("Update installed" if installed else "No update installed")
        sys.exit(0)

    if args.daemon:
        try:
            agent = WardenAgent(config)
        except ConfigError as e:
            logging.getLogger(__name__).critical(f"Startup failed: {e}")
            sys.exit(1)
        sys.exit(agent.run())

    parser.print_help()


if __name__ == "__main__":
    main()
