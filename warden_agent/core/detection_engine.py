"""
EdgeWarden Detection Engine

Runs the per-event detectors and emits block decisions.

Detectors run in fixed precedence and the first one that fires wins:
1. RateDetector    - "high-rate"
2. PatternDetector - "pattern:<regex>"
3. ScanDetector    - "404-scan"

Decisions are put on a one-way channel (a bounded queue) drained by the
Blocker's consumer thread. The engine performs no network I/O, so a firewall
outage never stalls log processing: events from addresses that are already
blocked are ignored, and when the channel is full new decisions are dropped
(the next offending request re-detects the address).

Per-IP counters live for the process lifetime in an unbounded map and are
lost on restart.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import logging
import queue
import threading
import time
from typing import Callable, Dict, List, Optional

from ..detectors import BaseDetector, PatternDetector, RateDetector, ScanDetector
from ..models import BlockDecision, DetectionCounter, RequestEvent


class DetectionEngine:
    """
    Stateful detector pipeline.

    Thread-safe: the counter map is guarded by a lock because events from
    different log files arrive on different tailer threads.
    """

    def __init__(self, config, pattern_loader, decisions: "queue.Queue[BlockDecision]",
                 clock: Callable[[], float] = time.monotonic,
                 is_blocked: Optional[Callable[[str], bool]] = None):
        """
        Initialize the engine.

        Args:
            config: Live AgentConfig (thresholds)
            pattern_loader: PatternLoader with the malicious path list
            decisions: Channel receiving BlockDecision objects
            clock: Monotonic time source (injectable for tests)
            is_blocked: Predicate for addresses already in the block table;
                their events are skipped
        """
        self.config = config
        self.decisions = decisions
        self.clock = clock
        self.is_blocked = is_blocked
        self.dropped = 0
        self._queue_full = False
        self.logger = logging.getLogger(__name__)

        self.detectors: List[BaseDetector] = [
            RateDetector(config),
            PatternDetector(config, pattern_loader),
            ScanDetector(config),
        ]

        self._counters: Dict[str, DetectionCounter] = {}
        self._lock = threading.Lock()

    def process(self, event: RequestEvent) -> Optional[BlockDecision]:
        """
        Evaluate one event and emit a decision if a detector fires.

        Returns:
            The emitted BlockDecision, or None (also when the channel is full)
        """
        if self.is_blocked is not None and self.is_blocked(event.ip):
            return None

        now = self.clock()

        with self._lock:
            counter = self._counters.get(event.ip)
            if counter is None:
                counter = DetectionCounter(window_start=now)
                self._counters[event.ip] = counter

            reason = None
            for detector in self.detectors:
                reason = detector.check(event, counter, now)
                if reason:
                    break

        if not reason:
            return None

        decision = BlockDecision(ip=event.ip, reason=reason)
        try:
            self.decisions.put_nowait(decision)
        except queue.Full:
            self.dropped += 1
            if not self._queue_full:
                self._queue_full = True
                self.logger.warning(
                    f"Decision queue full, dropping {decision.ip} ({reason}); "
                    f"the blocker is falling behind"
                )
            else:
                self.logger.debug(f"Decision queue full, dropped {decision.ip}")
            return None

        self._queue_full = False
        return decision

    def tracked_ips(self) -> int:
        """Number of IPs with live counters."""
        with self._lock:
            return len(self._counters)
