"""
EdgeWarden Configuration Module

Centralized configuration management using an INI-style config.conf file.

Configuration precedence (highest to lowest):
1. Explicit keyword arguments and environment variables (WARDEN_*)
2. config.conf file (INI format, all sections flattened)
3. Default values

Config file search locations (first found wins):
1. Path specified in EDGEWARDEN_CONFIG_FILE environment variable
2. /etc/edgewarden/config.conf (system-wide)
3. ~/.local/share/edgewarden/config.conf (user-specific)
4. ./config.conf (current directory)
5. Built-in defaults (if no config file found)

The loaded AgentConfig is owned by AgentState and may be shallow-merged in
place by the control API (see merge_config). Merges live in memory only.

Author: EdgeWarden Project
License: GNU GPL v3
"""

from pydantic_settings import BaseSettings
from pydantic import Field, TypeAdapter, ValidationError, model_validator
from typing import Annotated, Any, Dict, List, Optional
from pathlib import Path
import configparser
import logging
import os
import socket
import warnings

from . import __version__
from .exceptions import ConfigError


CONFIG_SECTIONS = ['agent', 'logs', 'detection', 'enforcement', 'firewall',
                   'geo', 'update', 'api', 'logging']

DEFAULT_LOG_PATHS = (
    "/var/log/apache2/access.log,"
    "/var/log/httpd/access_log,"
    "/var/log/nginx/access.log"
)

LOG_FORMATS = ('auto', 'json', 'apache', 'nginx')
FIREWALL_BACKENDS = ('aws-nacl', 'nftables')
HTTP_TIMEOUT_RANGE = (10, 30)

# Managed NACL deny rules must sort before the allow rules at 100+
NACL_RULE_CEILING = 100

# Enforcement settings fixed for the process lifetime
STARTUP_ONLY_FIELDS = {
    'firewall_backend', 'aws_region', 'network_acl_id', 'nacl_rule_start',
    'nacl_rule_limit', 'monitored_port', 'nft_family', 'nft_table', 'nft_set_ipv4', 'nft_set_ipv6',
}

# Fields the control API never echoes back
REDACTED_FIELDS = {'api_token'}


def find_config_file() -> Optional[Path]:
    """
    Search for config.conf in standard locations.

    Returns:
        Path to config file if found, None otherwise
    """
    # Priority 1: Environment variable override
    env_config = os.environ.get('EDGEWARDEN_CONFIG_FILE')
    if env_config:
        path = Path(env_config)
        if path.exists():
            return path
        warnings.warn(f"EDGEWARDEN_CONFIG_FILE={env_config} does not exist")

    # Priority 2-4: Standard locations
    search_paths = [
        Path('/etc/edgewarden/config.conf'),
        Path.home() / '.local' / 'share' / 'edgewarden' / 'config.conf',
        Path('config.conf'),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


def load_config_file(config_file: Optional[Path] = None) -> Dict[str, str]:
    """
    Load configuration from config.conf file.

    Every known section is flattened into a single dictionary keyed by the
    lowercase option name.

    Returns:
        Dictionary with raw string values
    """
    logger = logging.getLogger(__name__)
    config_file = config_file or find_config_file()

    if not config_file:
        logger.info("No config.conf file found. Using environment variables and defaults.")
        return {}

    # Inline comments must follow whitespace ("150  # note"); a bare '#'
    # stays part of the value
    parser = configparser.ConfigParser(
        interpolation=configparser.ExtendedInterpolation(),
        inline_comment_prefixes=('#',)
    )

    try:
        parser.read(config_file)
        logger.info(f"Loaded configuration from: {config_file}")
    except configparser.Error as e:
        logger.warning(f"Failed to parse {config_file}: {e}. Using defaults.")
        return {}

    config = {}
    for section in CONFIG_SECTIONS:
        if not parser.has_section(section):
            continue
        for key, value in parser.items(section):
            config[key.lower()] = os.path.expanduser(value.strip())

    return config


def _parse_bool(value: str, field_name: str = "field") -> bool:
    """
    Parse boolean value from string with validation.

    Raises:
        ValueError: If value is not a valid boolean string
    """
    value_lower = value.lower().strip()
    if value_lower in ('true', '1', 'yes', 'on'):
        return True
    elif value_lower in ('false', '0', 'no', 'off', ''):
        return False
    else:
        raise ValueError(
            f"Invalid boolean value for {field_name}: '{value}'. "
            f"Use: true/false, 1/0, yes/no, on/off"
        )


class AgentConfig(BaseSettings):
    """
    Agent configuration with validation.

    Loaded once at start. Components keep a reference to this object and
    read attributes at use time, so in-place merges take effect without a
    restart.
    """

    # === Identity ===
    version: str = __version__
    controller_url: str = "https://controller.edgewarden.local"
    instance_id: str = ""

    # === Log Tailing ===
    log_paths: str = Field(
        default=DEFAULT_LOG_PATHS,
        description="Comma-separated access log files (empty = auto-discover)"
    )
    log_format: str = "auto"
    start_at_end: bool = True
    poll_interval: float = Field(default=2.0, gt=0)

    # === Detection Thresholds ===
    rate_threshold: int = Field(default=80, ge=1)
    rate_window_seconds: int = Field(default=10, ge=1)
    scan_threshold: int = Field(default=20, ge=1)
    patterns_file: Optional[str] = None

    # === Enforcement ===
    block_minutes: int = Field(default=30, ge=1)
    firewall_backend: str = "aws-nacl"
    aws_region: str = "us-east-1"
    network_acl_id: str = ""
    nacl_rule_start: int = Field(default=80, ge=1, le=99)
    nacl_rule_limit: int = Field(default=20, ge=1)
    # 0 denies all traffic from the address, not just this TCP port
    monitored_port: int = Field(default=80, ge=0, le=65535)
    nft_family: str = "inet"
    nft_table: str = "filter"
    nft_set_ipv4: str = "edgewarden_ipv4"
    nft_set_ipv6: str = "edgewarden_ipv6"

    # === Scheduler Intervals (seconds) ===
    heartbeat_interval: int = Field(default=10, ge=1)
    update_check_interval: int = Field(default=600, ge=1)
    geo_refresh_interval: int = Field(default=86400, ge=1)
    sweep_interval: int = Field(default=30, ge=1)

    # === Geo Databases ===
    geo_dir: str = "/var/lib/edgewarden/geo"
    geo_asn_db: str = "GeoLite2-ASN.mmdb"
    geo_country_db: str = "GeoLite2-Country.mmdb"
    geo_asn_url: str = ""
    geo_country_url: str = ""

    # === Self Update ===
    auto_update: bool = True
    update_manifest_url: str = ""
    binary_path: str = "/usr/local/bin/edgewarden-agent"
    public_key_path: str = "/etc/edgewarden/pubkey.pem"
    restart_command: str = "systemctl restart edgewarden-agent"

    # === Local Control API ===
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=9876, ge=0, le=65535)
    api_token: str = ""
    recent_events_size: int = Field(default=200, ge=1)

    # === Network ===
    # Clamped to HTTP_TIMEOUT_RANGE at load; merges outside it are rejected
    http_timeout: int = 15

    # === Logging ===
    log_dir: str = "/var/log/edgewarden"
    log_max_bytes: int = Field(default=10485760, ge=1)  # 10MB default
    log_backup_count: int = Field(default=5, ge=0)

    model_config = {
        'env_prefix': 'WARDEN_',
        'case_sensitive': False
    }

    @model_validator(mode='after')
    def apply_config_file(self):
        """Fill fields not set explicitly (or via env) from config.conf."""
        logger = logging.getLogger(__name__)
        config_dict = load_config_file()

        for name, field in type(self).model_fields.items():
            if name in self.model_fields_set or name not in config_dict:
                continue
            raw = config_dict[name]
            if field.annotation is bool:
                setattr(self, name, _parse_bool(raw, name))
                continue
            try:
                setattr(self, name, _field_adapter(name).validate_python(raw))
            except ValidationError:
                logger.warning(f"Invalid value for {name}: {raw!r}, keeping default")

        self._normalize()
        return self

    def _normalize(self):
        logger = logging.getLogger(__name__)

        if not self.instance_id:
            self.instance_id = socket.gethostname()

        if not self.update_manifest_url:
            self.update_manifest_url = f"{self.controller_url.rstrip('/')}/security/agent/version"

        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"log_format must be one of {', '.join(LOG_FORMATS)}: {self.log_format}")

        if self.firewall_backend not in FIREWALL_BACKENDS:
            raise ConfigError(
                f"firewall_backend must be one of {', '.join(FIREWALL_BACKENDS)}: {self.firewall_backend}"
            )

        if self.nacl_rule_start + self.nacl_rule_limit > NACL_RULE_CEILING:
            raise ConfigError(
                f"nacl_rule_start + nacl_rule_limit must not exceed {NACL_RULE_CEILING} "
                f"(managed deny rules must precede the allow rules)"
            )

        low, high = HTTP_TIMEOUT_RANGE
        clamped = min(max(self.http_timeout, low), high)
        if clamped != self.http_timeout:
            logger.warning(f"http_timeout={self.http_timeout} out of range, using {clamped}s")
            self.http_timeout = clamped

    def get_log_paths(self) -> List[str]:
        """Configured log files as a list (empty when auto-discovery is wanted)."""
        return [p.strip() for p in self.log_paths.split(',') if p.strip()]

    def get_geo_paths(self) -> Dict[str, Path]:
        """Absolute paths of the ASN and Country databases."""
        geo_dir = Path(self.geo_dir)
        return {
            'asn': geo_dir / self.geo_asn_db,
            'country': geo_dir / self.geo_country_db,
        }

    def snapshot(self) -> Dict[str, Any]:
        """Full settings as a JSON-ready dict, secrets redacted."""
        data = self.model_dump()
        for name in REDACTED_FIELDS:
            if data.get(name):
                data[name] = "***"
        return data


def _field_adapter(name: str) -> TypeAdapter:
    """Validator for one AgentConfig field, including its Field() bounds."""
    field = AgentConfig.model_fields[name]
    if field.metadata:
        return TypeAdapter(Annotated[(field.annotation, *field.metadata)])
    return TypeAdapter(field.annotation)


def validate_partial(partial: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a partial config against AgentConfig field types and bounds.

    Args:
        partial: Mapping of field name to new value (JSON-decoded)

    Returns:
        Mapping of field name to validated (coerced) value

    Raises:
        ConfigError: On unknown or startup-only keys, values of the wrong
            type and values out of range
    """
    if not isinstance(partial, dict):
        raise ConfigError("config update must be a JSON object")

    fields = AgentConfig.model_fields
    unknown = sorted(k for k in partial if k not in fields)
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

    validated = {}
    for name, value in partial.items():
        try:
            validated[name] = _field_adapter(name).validate_python(value)
        except ValidationError as e:
            raise ConfigError(f"invalid value for {name}: {e.errors()[0]['msg']}") from e

    if 'log_format' in validated and validated['log_format'] not in LOG_FORMATS:
        raise ConfigError(f"log_format must be one of {', '.join(LOG_FORMATS)}")
    fixed = sorted(STARTUP_ONLY_FIELDS.intersection(validated))
    if fixed:
        raise ConfigError(f"cannot be changed at runtime: {', '.join(fixed)}")

    low, high = HTTP_TIMEOUT_RANGE
    if 'http_timeout' in validated and not low <= validated['http_timeout'] <= high:
        raise ConfigError(f"http_timeout must be between {low} and {high} seconds")

    return validated


def load_config(**overrides) -> AgentConfig:
    """
    Load configuration once at process start.

    Raises:
        ConfigError: On invalid configuration
    """
    try:
        return AgentConfig(**overrides)
    except ValueError as e:
        # pydantic wraps validator errors in ValidationError (a ValueError)
        raise ConfigError(str(e)) from e
