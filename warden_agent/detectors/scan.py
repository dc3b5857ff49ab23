"""
EdgeWarden 404 Scan Detector

Counts 404 responses per IP. More than scan_threshold fires "404-scan".
The tally is only cleared by the rate detector's window reset.

Author: EdgeWarden Project
License: GNU GPL v3
"""

from typing import Optional

from .base import BaseDetector
from ..models import DetectionCounter, RequestEvent

REASON = "404-scan"


class ScanDetector(BaseDetector):
    """Fires when one IP collects too many 404 responses."""

    def check(self, event: RequestEvent, counter: DetectionCounter, now: float) -> Optional[str]:
        if event.status != 404:
            return None

        counter.scan_404 += 1
        if counter.scan_404 > self.config.scan_threshold:
            self.logger.warning(f"Suspicious 404 scan: {event.ip} ({counter.scan_404} not-found responses)")
            return REASON

        return None
