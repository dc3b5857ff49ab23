"""
EdgeWarden Agent State

Shared, process-lifetime context handed to every component: the live
configuration, a bounded buffer of recent request events, and timestamps
of the last heartbeat and update check.

Nothing here is persisted. Block entries live in the Blocker; this object
only references what the control API needs to report.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import AgentConfig, validate_partial
from ..models import RequestEvent, utc_now


class AgentState:
    """
    Process-wide mutable state guarded by a single lock.

    Attributes:
        config: Live AgentConfig (mutated in place by merge_config)
        started_at: Process start time (UTC)
        last_heartbeat: Time of the last successful heartbeat, or None
        last_update_check: Time of the last update check, or None
        current_version: Version the running binary reports
    """

    def __init__(self, config: AgentConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()

        self._recent = deque(maxlen=max(config.recent_events_size, 1))
        self.started_at: datetime = utc_now()
        self.last_heartbeat: Optional[datetime] = None
        self.last_update_check: Optional[datetime] = None
        self.current_version: str = config.version

    def record_event(self, event: RequestEvent):
        """Append an event to the recent-events ring buffer."""
        with self._lock:
            self._recent.append(event)

    def recent_events(self, limit: Optional[int] = None) -> List[RequestEvent]:
        """
        Most recent events, oldest first.

        Args:
            limit: Maximum number to return (None = whole buffer)
        """
        with self._lock:
            events = list(self._recent)
        if limit is not None:
            if limit <= 0:
                return []
            events = events[-limit:]
        return events

    def merge_config(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        """
        Shallow-merge validated values into the live configuration.

        The merge is all-or-nothing: validation runs on the whole partial
        before any field is assigned.

        Returns:
            Mapping of the fields that were applied

        Raises:
            ConfigError: If the partial is invalid
        """
        validated = validate_partial(partial)

        with self._lock:
            for name, value in validated.items():
                setattr(self.config, name, value)

            if 'recent_events_size' in validated:
                self._recent = deque(self._recent, maxlen=max(self.config.recent_events_size, 1))

        if validated:
            self.logger.info(f"Configuration updated: {', '.join(sorted(validated))}")
        return validated

    def mark_heartbeat(self):
        with self._lock:
            self.last_heartbeat = utc_now()

    def mark_update_check(self):
        with self._lock:
            self.last_update_check = utc_now()

    def uptime_seconds(self) -> float:
        return (utc_now() - self.started_at).total_seconds()

    def settings(self) -> Dict[str, Any]:
        """Redacted configuration snapshot."""
        with self._lock:
            return self.config.snapshot()
