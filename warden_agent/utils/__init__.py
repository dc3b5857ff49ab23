from .validators import validate_ip, is_loopback
from .logging import setup_logging
from .helpers import safe_json_loads

__all__ = [
    'validate_ip',
    'is_loopback',
    'setup_logging',
    'safe_json_loads'
]
