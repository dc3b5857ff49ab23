from .base import BaseDetector
from .rate import RateDetector
from .pattern import PatternDetector
from .scan import ScanDetector

__all__ = [
    'BaseDetector',
    'RateDetector',
    'PatternDetector',
    'ScanDetector'
]
