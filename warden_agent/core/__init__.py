from .pattern_loader import PatternLoader
from .detection_engine import DetectionEngine
from .log_watcher import LogTailer, discover_default_logs
from .scheduler import Scheduler

__all__ = [
    'PatternLoader',
    'DetectionEngine',
    'LogTailer',
    'discover_default_logs',
    'Scheduler'
]
