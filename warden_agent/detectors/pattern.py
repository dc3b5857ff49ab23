"""
EdgeWarden Pattern Detector

Matches the request path against the ordered malicious-path list loaded by
PatternLoader. The first match wins and the reason carries the regex
source, e.g. "pattern:wp-login\\.php".

Author: EdgeWarden Project
License: GNU GPL v3
"""

from typing import Optional

from .base import BaseDetector
from ..models import DetectionCounter, RequestEvent

REASON_PREFIX = "pattern:"


class PatternDetector(BaseDetector):
    """Fires on the first malicious path pattern that matches."""

    def __init__(self, config, pattern_loader):
        super().__init__(config)
        self.pattern_loader = pattern_loader

    def check(self, event: RequestEvent, counter: DetectionCounter, now: float) -> Optional[str]:
        for compiled, description in self.pattern_loader.patterns:
            if compiled.search(event.path):
                self.logger.warning(
                    f"Malicious pattern match: {event.ip} {event.path} ({description})"
                )
                return f"{REASON_PREFIX}{compiled.pattern}"
        return None
