"""
EdgeWarden Pattern Loader

Loads and caches the YAML malicious-path pattern list.

Order in the YAML file is significant: the pattern detector reports the
first pattern that matches.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import yaml
import re
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


DEFAULT_PATTERNS_FILE = Path(__file__).parent.parent / "rules" / "malicious_paths.yaml"

# Refuse to load absurdly large rule files
MAX_YAML_FILE_SIZE = 1024 * 1024


class PatternLoader:
    """
    Loads and pre-compiles malicious-path patterns from YAML.

    Usage:
        loader = PatternLoader()
        for compiled, description in loader.patterns:
            ...

    Attributes:
        patterns_file: YAML file with a top-level `patterns:` list
        logger: Logger instance
    """

    def __init__(self, patterns_file: Optional[Path] = None):
        """
        Initialize pattern loader.

        Args:
            patterns_file: YAML file to load (defaults to the bundled rules)
        """
        self.patterns_file = Path(patterns_file) if patterns_file else DEFAULT_PATTERNS_FILE
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._compiled: List[Tuple[re.Pattern, str]] = []

        self._load_patterns()

    @property
    def patterns(self) -> List[Tuple[re.Pattern, str]]:
        """Compiled (pattern, description) pairs in file order."""
        # Reload swaps the list reference, readers never see a partial list
        return self._compiled

    def _load_patterns(self):
        """
        Load the YAML pattern file and compile every entry.

        Invalid entries are logged and skipped; the remaining patterns stay
        usable. A missing or unreadable file leaves the current list in place.
        """
        if not self.patterns_file.exists():
            self.logger.error(f"Pattern file not found: {self.patterns_file}")
            self.logger.error("Pattern detection will not match anything")
            return

        if self.patterns_file.stat().st_size > MAX_YAML_FILE_SIZE:
            self.logger.error(f"Pattern file too large, refusing to load: {self.patterns_file}")
            return

        try:
            with open(self.patterns_file, 'r', encoding='utf-8') as f:
                pattern_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            self.logger.error(f"YAML parsing error in {self.patterns_file}: {e}")
            return
        except OSError as e:
            self.logger.error(f"Failed to read patterns from {self.patterns_file}: {e}")
            return

        patterns = pattern_data.get('patterns', []) if isinstance(pattern_data, dict) else []
        compiled = self._compile_patterns(patterns)

        with self._lock:
            self._compiled = compiled

        self.logger.info(f"Loaded {len(compiled)} malicious path patterns from {self.patterns_file.name}")

    def _compile_patterns(self, patterns: List[Dict[str, Any]]) -> List[Tuple[re.Pattern, str]]:
        if not isinstance(patterns, list):
            self.logger.error(f"'patterns' in {self.patterns_file} is not a list")
            return []

        compiled_patterns = []

        for i, pattern_def in enumerate(patterns):
            if not isinstance(pattern_def, dict):
                self.logger.warning(f"Pattern {i} is not a dictionary, skipping")
                continue

            pattern_str = pattern_def.get('regex', '')
            if not pattern_str:
                self.logger.warning(f"Pattern {i} has no 'regex' field, skipping")
                continue

            description = pattern_def.get('description', f'Pattern {i}')

            flags = 0
            for flag_name in pattern_def.get('flags', []) or []:
                if flag_name.upper() == 'IGNORECASE':
                    flags |= re.IGNORECASE
                elif flag_name.upper() == 'MULTILINE':
                    flags |= re.MULTILINE
                elif flag_name.upper() == 'DOTALL':
                    flags |= re.DOTALL

            try:
                compiled_patterns.append((re.compile(pattern_str, flags), description))
            except re.error as e:
                self.logger.error(f"Invalid regex in pattern {i}: {pattern_str} - {e}")

        return compiled_patterns

    def reload_patterns(self):
        """
        Reload all patterns from disk.

        Useful for live updates without restarting service.
        """
        self.logger.info("Reloading malicious path patterns...")
        self._load_patterns()
