"""
EdgeWarden Rate Detector

Fixed-window request rate detection.

Per IP: increment the count, then reset the window (count=1, start=now)
if it is older than rate_window_seconds. More than rate_threshold requests
before a reset fires "high-rate". This is a fixed window, not a sliding
one: a burst straddling a window boundary can reach nearly twice the
threshold without firing.

Author: EdgeWarden Project
License: GNU GPL v3
"""

from typing import Optional

from .base import BaseDetector
from ..models import DetectionCounter, RequestEvent

REASON = "high-rate"


class RateDetector(BaseDetector):
    """Fires when one IP exceeds rate_threshold requests in a fixed window."""

    def check(self, event: RequestEvent, counter: DetectionCounter, now: float) -> Optional[str]:
        counter.count += 1

        if now - counter.window_start > self.config.rate_window_seconds:
            # Window elapsed: the whole counter restarts, 404 tally included
            counter.count = 1
            counter.window_start = now
            counter.scan_404 = 0

        if counter.count > self.config.rate_threshold:
            self.logger.warning(f"Rate limit exceeded: {event.ip} ({counter.count} requests)")
            return REASON

        return None
