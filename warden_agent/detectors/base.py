"""
EdgeWarden Base Detector

Base class for the per-event detectors run by the DetectionEngine.

Provides:
- Abstract interface for detectors
- Access to live configuration (thresholds are read per call so config
  merges apply immediately)

Detectors are synchronous and side-effect free apart from the counter
they are handed; they never touch the firewall.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..models import DetectionCounter, RequestEvent


class BaseDetector(ABC):
    """
    Base class for all request detectors.

    Subclasses return a block reason or None from check().
    """

    def __init__(self, config):
        """
        Initialize base detector.

        Args:
            config: Live AgentConfig
        """
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.name = self.__class__.__name__

    @abstractmethod
    def check(self, event: RequestEvent, counter: DetectionCounter, now: float) -> Optional[str]:
        """
        Evaluate one event.

        Args:
            event: Parsed request
            counter: Counters for event.ip (may be mutated)
            now: Monotonic clock reading for this event

        Returns:
            Block reason, or None if this detector does not fire
        """
