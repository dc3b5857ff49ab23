"""
EdgeWarden Real-Time Pipeline

Mixin wiring the tailer to the parser, the recent-events buffer and the
detection engine:

    LogTailer -> parse_line -> AgentState.record_event -> DetectionEngine.process

Runs on the tailer threads (watchdog observer and poller). Detection only
enqueues decisions, so nothing here waits on the network.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import logging
import queue
from typing import List, Optional

from .detection_engine import DetectionEngine
from .log_watcher import LogTailer, discover_default_logs
from .pattern_loader import PatternLoader
from ..parsers import parse_line

# Pending block decisions; detection drops new ones beyond this
DECISION_QUEUE_SIZE = 1000


class RealtimePipelineMixin:
    """
    Adds the log-to-decision pipeline to WardenAgent.

    Expects `self.state` (AgentState), `self.blocker` (Blocker) and
    `self.logger` to be set before _init_pipeline() is called.
    """

    def _init_pipeline(self, pattern_loader: Optional[PatternLoader] = None):
        config = self.state.config

        self.pattern_loader = pattern_loader or PatternLoader(config.patterns_file)
        self.decisions: "queue.Queue" = queue.Queue(maxsize=DECISION_QUEUE_SIZE)
        self.engine = DetectionEngine(
            config, self.pattern_loader, self.decisions,
            is_blocked=self.blocker.is_blocked
        )

        self.lines_seen = 0
        self.events_parsed = 0

        paths = self._resolve_log_paths()
        if not paths:
            self.logger.warning("No access logs configured or discovered, nothing to tail")

        self.tailer = LogTailer(
            paths,
            on_line=self._on_log_line,
            poll_interval=config.poll_interval,
            start_at_end=config.start_at_end,
        )

    def _resolve_log_paths(self) -> List[str]:
        """Configured log files, or auto-discovered ones when none are set."""
        configured = self.state.config.get_log_paths()
        if configured:
            return configured

        discovered = discover_default_logs()
        for path in discovered:
            self.logger.info(f"Discovered access log: {path}")
        return discovered

    def _on_log_line(self, file_path: str, line: str):
        self.lines_seen += 1

        event = parse_line(line, log_format=self.state.config.log_format, source=file_path)
        if event is None:
            return

        self.events_parsed += 1
        self.state.record_event(event)
        self.engine.process(event)

    def rescan_logs(self) -> int:
        """Pick up newly discovered log files and reconcile every file once."""
        before = len(self.tailer.watched_paths)
        for path in self._resolve_log_paths():
            self.tailer.add_file(path, start_at_end=self.state.config.start_at_end)
        self.tailer.reconcile_all()
        return len(self.tailer.watched_paths) - before
