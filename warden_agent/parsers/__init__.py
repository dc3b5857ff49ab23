from .access_log import parse_line, parse_timestamp, DIALECTS

__all__ = ['parse_line', 'parse_timestamp', 'DIALECTS']
