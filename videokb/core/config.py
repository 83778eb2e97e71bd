"""
Application configuration manager.
Stores settings in a JSON file under the app data directory.
"""

import json
import logging
from pathlib import Path

from videokb.core.constants import (
    CONFIG_PATH, DB_PATH, JOBS_CACHE_DIR, CookiesMode, DEFAULT_COOKIES_PATH,
    DEFAULT_MAX_WORKERS, MAX_JOB_ATTEMPTS, BACKOFF_BASE_SEC, BACKOFF_MAX_SEC,
    ROUTER_RETRIES, STALE_AFTER_SEC, HEARTBEAT_INTERVAL_SEC, MAX_RECOVERY_ATTEMPTS,
    ACQUIRER_TIMEOUT_SEC, EMBEDDING_TIMEOUT_SEC,
    CHUNK_MIN_WORDS, CHUNK_MAX_WORDS, CHUNK_OVERLAP_WORDS,
    CAPTION_LANGUAGES, STT_COST_PER_MINUTE, STT_MAX_BYTES,
    EMBEDDING_MODEL, EMBEDDING_DIMENSIONS, EMBEDDING_BATCH_SIZE,
    SEARCH_TOP_K, SEARCH_THRESHOLD,
)

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'db_path': str(DB_PATH),
    'workspace_dir': str(JOBS_CACHE_DIR),
    'cookies_mode': CookiesMode.OFF,
    'cookies_path': str(DEFAULT_COOKIES_PATH),
    'keep_debug_artifacts': False,
    'max_workers': DEFAULT_MAX_WORKERS,
    'max_attempts': MAX_JOB_ATTEMPTS,
    'backoff_base_sec': BACKOFF_BASE_SEC,
    'backoff_max_sec': BACKOFF_MAX_SEC,
    'router_retries': ROUTER_RETRIES,
    'stale_after_sec': STALE_AFTER_SEC,
    'heartbeat_interval_sec': HEARTBEAT_INTERVAL_SEC,
    'max_recovery_attempts': MAX_RECOVERY_ATTEMPTS,
    'acquirer_timeout_sec': ACQUIRER_TIMEOUT_SEC,
    'embedding_timeout_sec': EMBEDDING_TIMEOUT_SEC,
    'chunk_min_words': CHUNK_MIN_WORDS,
    'chunk_max_words': CHUNK_MAX_WORDS,
    'chunk_overlap_words': CHUNK_OVERLAP_WORDS,
    'caption_languages': CAPTION_LANGUAGES,
    'stt_cost_per_minute': STT_COST_PER_MINUTE,
    'stt_max_bytes': STT_MAX_BYTES,
    'embedding_model': EMBEDDING_MODEL,
    'embedding_dimensions': EMBEDDING_DIMENSIONS,
    'embedding_batch_size': EMBEDDING_BATCH_SIZE,
    'search_top_k': SEARCH_TOP_K,
    'search_threshold': SEARCH_THRESHOLD,
}

# (min, max) bounds for numeric keys; values outside are clamped
_INT_BOUNDS = {
    'max_workers': (1, 32),
    'max_attempts': (1, 10),
    'router_retries': (0, 5),
    'stale_after_sec': (60, 7 * 24 * 3600),
    'max_recovery_attempts': (0, 10),
    'acquirer_timeout_sec': (5, 600),
    'embedding_timeout_sec': (5, 600),
    'chunk_min_words': (50, 5000),
    'chunk_max_words': (100, 8000),
    'chunk_overlap_words': (0, 1000),
    'stt_max_bytes': (1024 * 1024, 2 * 1024 * 1024 * 1024),
    'embedding_dimensions': (8, 8192),
    'embedding_batch_size': (1, 2048),
    'search_top_k': (1, 100),
}
_FLOAT_BOUNDS = {
    'backoff_base_sec': (0.0, 300.0),
    'backoff_max_sec': (0.0, 3600.0),
    'heartbeat_interval_sec': (0.01, 3600.0),
    'stt_cost_per_minute': (0.0, 1.0),
    'search_threshold': (-1.0, 1.0),
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, overrides: dict | None = None):
        self.path = config_path or CONFIG_PATH
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

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _INT_BOUNDS:
            lo, hi = _INT_BOUNDS[key]
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r; using default", key, value)
                return _DEFAULTS[key]
            return max(lo, min(hi, value))

        if key in _FLOAT_BOUNDS:
            lo, hi = _FLOAT_BOUNDS[key]
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r; using default", key, value)
                return _DEFAULTS[key]
            return max(lo, min(hi, value))

        if key == 'cookies_mode':
            if value not in (CookiesMode.OFF, CookiesMode.USE_FILE):
                logger.warning("Invalid cookies_mode %r; using OFF", value)
                return CookiesMode.OFF

        if key == 'keep_debug_artifacts':
            return bool(value)

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def db_path(self) -> Path:
        return Path(self._data['db_path'])

    @property
    def workspace_dir(self) -> Path:
        return Path(self._data['workspace_dir'])

    @property
    def max_workers(self) -> int:
        return self._data['max_workers']

    @property
    def keep_debug_artifacts(self) -> bool:
        return self._data.get('keep_debug_artifacts', False)

    @property
    def chunk_options(self) -> dict:
        min_words = self._data['chunk_min_words']
        max_words = self._data['chunk_max_words']
        overlap = self._data['chunk_overlap_words']
        # overlap must leave room for new text in every chunk
        overlap = min(overlap, max_words // 2)
        return {
            'min_words': min(min_words, max_words),
            'max_words': max_words,
            'overlap_words': overlap,
        }
