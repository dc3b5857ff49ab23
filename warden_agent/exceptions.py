"""
EdgeWarden Exceptions

Domain exceptions raised at component boundaries.

Author: EdgeWarden Project
License: GNU GPL v3
"""


class AgentError(Exception):
    """Base class for all agent errors."""


class ConfigError(AgentError):
    """Invalid or inconsistent configuration."""


class FirewallError(AgentError):
    """Firewall collaborator could not be reached or refused a request."""


class UpdateError(AgentError):
    """Self-update could not be completed."""


class SignatureError(UpdateError):
    """Downloaded artifact failed signature verification."""
