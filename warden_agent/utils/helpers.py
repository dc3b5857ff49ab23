"""
EdgeWarden Helper Utilities

General utility functions for data handling.

Author: EdgeWarden Project
License: GNU GPL v3
"""

from typing import Any, Dict, Optional
import json


def safe_json_loads(data: str) -> Optional[Dict[str, Any]]:
    """
    Safely parse a JSON object with error handling.

    Returns None on parse failure, or when the document is valid JSON but
    not an object, instead of raising.

    Example:
        >>> safe_json_loads('{"key": "value"}')
        {'key': 'value'}
        >>> safe_json_loads('invalid json') is None
        True
    """
    try:
        value = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None
