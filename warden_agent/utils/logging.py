"""
EdgeWarden Logging Configuration

Process-wide logging for the agent.

setup_logging() is called twice by the CLI: once before the configuration
is loaded (console only, so config errors are visible) and again with the
loaded AgentConfig, which adds the rotating file log under log_dir.
Rotated files are gzip-compressed (agent.log.1.gz, agent.log.2.gz, ...).

Per-line modules (parser, detectors) and the werkzeug request log are
quieted to WARNING unless running with DEBUG.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import gzip
import logging
import logging.handlers
import os
import shutil
import sys
from pathlib import Path

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
LOG_FILE_NAME = 'agent.log'
FALLBACK_LOG_FILE = '/tmp/edgewarden.log'

# Loggers that emit per request line
NOISY_LOGGERS = ('warden_agent.parsers', 'warden_agent.detectors', 'werkzeug')


def _gzip_namer(name):
    return f"{name}.gz"


def _gzip_rotator(source, dest):
    """Compress the just-rotated file into `dest` and drop the original."""
    with open(source, 'rb') as plain, gzip.open(dest, 'wb') as packed:
        shutil.copyfileobj(plain, packed)
    os.remove(source)


def _file_handler(config):
    """Rotating handler under log_dir, else /tmp, else None (console only)."""
    candidates = [Path(config.log_dir) / LOG_FILE_NAME, Path(FALLBACK_LOG_FILE)]

    for log_file in candidates:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(
                str(log_file),
                maxBytes=config.log_max_bytes,
                backupCount=config.log_backup_count
            )
        except OSError as e:
            print(f"Warning: cannot write {log_file}: {e}", file=sys.stderr)
            continue

        handler.namer = _gzip_namer
        handler.rotator = _gzip_rotator
        return handler

    print("Logging to console only", file=sys.stderr)
    return None


def setup_logging(level=logging.INFO, config=None):
    """
    Configure the root logger.

    Args:
        level: Logging level (logging.INFO, logging.DEBUG, etc.)
        config: AgentConfig with log_dir, log_max_bytes and log_backup_count.
            Without it only the console handler is installed.

    Example:
        >>> setup_logging(level=logging.DEBUG)   # early, console only
        >>> setup_logging(config=cfg)            # console + rotating file
    """
    handlers = [logging.StreamHandler(sys.stdout)]

    if config is not None:
        file_handler = _file_handler(config)
        if file_handler is not None:
            handlers.append(file_handler)

    # force=True replaces the handlers from the earlier console-only call
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)

    quiet_level = logging.NOTSET if level == logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
