"""
EdgeWarden host security agent.

Tails web server access logs, detects abusive clients and blocks them at
the perimeter firewall for a bounded time window.

Author: EdgeWarden Project
License: GNU GPL v3
"""

__version__ = "1.0.0"
