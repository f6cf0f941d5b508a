"""
Application configuration manager.
Stores settings in a JSON file under ~/.fetchtube (or $FETCHTUBE_CONFIG).
"""

import json
import logging
import os
from pathlib import Path

from fetchtube.core.constants import (
    CONFIG_PATH, CONFIG_ENV_VAR, DEFAULT_OUTPUT_ROOT, DEFAULT_LOG_DIR,
    DEFAULT_YTDLP_PATH, DEFAULT_FFPROBE_PATH, DEFAULT_QUALITY, QUALITY_TIERS,
    DOWNLOAD_TIMEOUT_SEC, MAX_ATTEMPTS, RETRY_BACKOFF_SEC,
    PROBE_TIMEOUT_SEC, FORMAT_LIST_TIMEOUT_SEC,
)

# Validation bounds
_TIMEOUT_MIN = 10
_TIMEOUT_MAX = 6 * 3600
_ATTEMPTS_MIN = 1
_ATTEMPTS_MAX = 10
_BACKOFF_MIN = 0
_BACKOFF_MAX = 300

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'output_root': str(DEFAULT_OUTPUT_ROOT),
    'log_dir': str(DEFAULT_LOG_DIR),
    'ytdlp_path': DEFAULT_YTDLP_PATH,
    'ffprobe_path': DEFAULT_FFPROBE_PATH,
    'download_timeout_sec': DOWNLOAD_TIMEOUT_SEC,
    'max_attempts': MAX_ATTEMPTS,
    'retry_backoff_sec': RETRY_BACKOFF_SEC,
    'probe_timeout_sec': PROBE_TIMEOUT_SEC,
    'format_list_timeout_sec': FORMAT_LIST_TIMEOUT_SEC,
    'default_quality': DEFAULT_QUALITY,
    'host': '0.0.0.0',
    'port': 5000,
}


def default_config_path() -> Path:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    return Path(env_path).expanduser() if env_path else CONFIG_PATH


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, overrides: dict | None = None):
        self.path = config_path or default_config_path()
        self._data: dict = {}
        self.load()
        for key, value in (overrides or {}).items():
            self._data[key] = self._validate(key, value)

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in ('download_timeout_sec', 'probe_timeout_sec', 'format_list_timeout_sec'):
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r — using default", key, value)
                return _DEFAULTS[key]
            return max(_TIMEOUT_MIN, min(_TIMEOUT_MAX, value))

        if key == 'max_attempts':
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid max_attempts %r — using default", value)
                return MAX_ATTEMPTS
            return max(_ATTEMPTS_MIN, min(_ATTEMPTS_MAX, value))

        if key == 'retry_backoff_sec':
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid retry_backoff_sec %r — using default", value)
                return RETRY_BACKOFF_SEC
            return max(_BACKOFF_MIN, min(_BACKOFF_MAX, value))

        if key == 'default_quality':
            if value not in QUALITY_TIERS:
                logger.warning("Invalid default_quality %r — using %s", value, DEFAULT_QUALITY)
                return DEFAULT_QUALITY

        if key == 'port':
            try:
                value = int(value)
            except (TypeError, ValueError):
                return _DEFAULTS['port']
            return value if 0 < value < 65536 else _DEFAULTS['port']

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def output_root(self) -> Path:
        return Path(self._data.get('output_root', str(DEFAULT_OUTPUT_ROOT))).expanduser()

    @property
    def log_dir(self) -> Path:
        return Path(self._data.get('log_dir', str(DEFAULT_LOG_DIR))).expanduser()

    @property
    def ytdlp_path(self) -> str:
        return self._data.get('ytdlp_path', DEFAULT_YTDLP_PATH)

    @property
    def ffprobe_path(self) -> str:
        return self._data.get('ffprobe_path', DEFAULT_FFPROBE_PATH)

    @property
    def download_timeout_sec(self) -> int:
        return self._data.get('download_timeout_sec', DOWNLOAD_TIMEOUT_SEC)

    @property
    def max_attempts(self) -> int:
        return self._data.get('max_attempts', MAX_ATTEMPTS)

    @property
    def retry_backoff_sec(self) -> float:
        return self._data.get('retry_backoff_sec', RETRY_BACKOFF_SEC)
