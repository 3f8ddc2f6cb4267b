"""
User configuration management for photocache.

Supports configuration from multiple sources (in order of priority):
1. Runtime parameters (highest priority)
2. Environment variables
3. User config file (~/.photocache/config.json)
4. Default values from config.py (lowest priority)

The config directory can be moved with PHOTOCACHE_CONFIG_DIR.

Example config.json:
{
    "similarity_threshold": 0.7,
    "ttl_hours": 168,
    "default_workers": 4,
    "comparison_timeout": 10.0,
    "batch_timeout": 60.0,
    "lsh_auto_threshold": 500,
    "max_entries": null,
    "max_size_mb": 100,
    "weights": {"hash": 0.4, "structural": 0.35, "color": 0.25},
    "cache_db_file": null
}
"""

import json
import os
from pathlib import Path
from typing import Any, Optional
import logging

from .config import (
    DEFAULT_SIMILARITY_THRESHOLD,
    DEFAULT_TTL_SECONDS,
    DEFAULT_WORKERS,
    DEFAULT_COMPARISON_TIMEOUT,
    DEFAULT_BATCH_TIMEOUT,
    LSH_AUTO_THRESHOLD,
    DEFAULT_MAX_CACHE_BYTES,
    CACHE_DB_FILE,
    HASH_WEIGHT,
    STRUCTURAL_WEIGHT,
    COLOR_WEIGHT,
)

logger = logging.getLogger(__name__)


class UserConfig:
    """
    Reads settings from the config file and environment.

    The file is read lazily on first access and cached until reload().
    Create one per application; instances do not share state.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Args:
            config_dir: Directory holding config.json (overrides the
                        environment and the home-directory default)
        """
        self._config_dir = Path(config_dir) if config_dir else None
        self._config_data: Optional[dict] = None

    @property
    def config_dir(self) -> Path:
        """Get the configuration directory path."""
        if self._config_dir is not None:
            return self._config_dir

        env_dir = os.getenv('PHOTOCACHE_CONFIG_DIR')
        if env_dir:
            return Path(env_dir)

        return Path.home() / '.photocache'

    @property
    def config_file_path(self) -> Path:
        return self.config_dir / 'config.json'

    def _load_config_file(self) -> dict:
        if not self.config_file_path.exists():
            return {}

        try:
            with open(self.config_file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
                logger.debug(f"Loaded configuration from {self.config_file_path}")
                return data
        except Exception as e:
            logger.warning(f"Failed to load config file {self.config_file_path}: {e}")
            return {}

    def _get_config_data(self) -> dict:
        if self._config_data is None:
            self._config_data = self._load_config_file()
        return self._config_data

    def reload(self):
        """Reload configuration from file."""
        self._config_data = None

    def get(self, key: str, default: Any = None, env_var: Optional[str] = None) -> Any:
        """
        Get a configuration value with priority:
        1. Environment variable (if env_var specified)
        2. Config file
        3. Default value

        Environment values are parsed as JSON when possible, so numbers and
        objects can be passed through the environment too.
        """
        if env_var:
            env_value = os.getenv(env_var)
            if env_value is not None:
                try:
                    return json.loads(env_value)
                except (json.JSONDecodeError, TypeError):
                    return env_value

        config_data = self._get_config_data()
        if key in config_data:
            return config_data[key]

        return default

    @property
    def similarity_threshold(self) -> float:
        """Minimum similarity for a fuzzy cache hit (0-1)."""
        return float(self.get(
            'similarity_threshold',
            default=DEFAULT_SIMILARITY_THRESHOLD,
            env_var='PHOTOCACHE_THRESHOLD'
        ))

    @property
    def ttl_hours(self) -> float:
        """Hours a cached result stays servable."""
        return float(self.get(
            'ttl_hours',
            default=DEFAULT_TTL_SECONDS / 3600,
            env_var='PHOTOCACHE_TTL_HOURS'
        ))

    @property
    def default_workers(self) -> int:
        """Number of parallel workers for similarity search and preloading."""
        return int(self.get(
            'default_workers',
            default=DEFAULT_WORKERS,
            env_var='PHOTOCACHE_WORKERS'
        ))

    @property
    def comparison_timeout(self) -> float:
        """Seconds to wait for the metrics of one image pair."""
        return float(self.get(
            'comparison_timeout',
            default=DEFAULT_COMPARISON_TIMEOUT,
            env_var='PHOTOCACHE_COMPARISON_TIMEOUT'
        ))

    @property
    def batch_timeout(self) -> float:
        """Seconds to wait for one similarity search."""
        return float(self.get(
            'batch_timeout',
            default=DEFAULT_BATCH_TIMEOUT,
            env_var='PHOTOCACHE_BATCH_TIMEOUT'
        ))

    @property
    def lsh_auto_threshold(self) -> int:
        """Build LSH buckets once the index holds this many entries."""
        return int(self.get(
            'lsh_auto_threshold',
            default=LSH_AUTO_THRESHOLD,
            env_var='PHOTOCACHE_LSH_THRESHOLD'
        ))

    @property
    def max_entries(self) -> Optional[int]:
        """Most entries kept before least-used eviction (None for no limit)."""
        value = self.get('max_entries', env_var='PHOTOCACHE_MAX_ENTRIES')
        return int(value) if value is not None else None

    @property
    def max_size_mb(self) -> Optional[float]:
        """Stored size in MB kept before least-used eviction (None for no limit)."""
        value = self.get(
            'max_size_mb',
            default=DEFAULT_MAX_CACHE_BYTES / (1024 * 1024),
            env_var='PHOTOCACHE_MAX_SIZE_MB'
        )
        return float(value) if value is not None else None

    @property
    def weights(self) -> dict:
        """Similarity signal weights as {'hash', 'structural', 'color'}."""
        defaults = {'hash': HASH_WEIGHT, 'structural': STRUCTURAL_WEIGHT, 'color': COLOR_WEIGHT}
        custom = self.get('weights', env_var='PHOTOCACHE_WEIGHTS')
        if isinstance(custom, dict):
            defaults.update(custom)
        elif custom is not None:
            logger.warning(f"Ignoring malformed similarity weights: {custom!r}")
        return defaults

    @property
    def cache_db_file(self) -> str:
        """Path to cache database file."""
        custom = self.get('cache_db_file', env_var='PHOTOCACHE_CACHE_DB')
        if custom:
            return custom
        return CACHE_DB_FILE

    def build_manager(self, **overrides):
        """
        Construct a CacheManager wired from these settings.

        Args:
            **overrides: Keyword arguments passed to CacheManager, taking
                         precedence over configured values (db_path is
                         accepted as a shortcut for the storage location)

        Returns:
            A new CacheManager
        """
        from .manager import CacheManager
        from .similarity import SimilarityMatcher, SimilarityWeights
        from .index import SimilarityIndex
        from .storage import CacheStorage

        db_path = overrides.pop('db_path', None) or self.cache_db_file
        workers = overrides.pop('max_workers', self.default_workers)

        if 'storage' not in overrides:
            overrides['storage'] = CacheStorage(db_path)
        if 'matcher' not in overrides:
            overrides.setdefault('owns_matcher', True)
            overrides['matcher'] = SimilarityMatcher(
                weights=SimilarityWeights.from_dict(self.weights),
                max_workers=workers,
                comparison_timeout=self.comparison_timeout,
                batch_timeout=self.batch_timeout,
            )
        if 'index' not in overrides:
            overrides['index'] = SimilarityIndex(lsh_auto_threshold=self.lsh_auto_threshold)
        overrides.setdefault('ttl', self.ttl_hours * 3600)
        overrides.setdefault('similarity_threshold', self.similarity_threshold)
        overrides.setdefault('max_entries', self.max_entries)
        if 'max_size_bytes' not in overrides:
            size_mb = self.max_size_mb
            overrides['max_size_bytes'] = int(size_mb * 1024 * 1024) if size_mb is not None else None

        return CacheManager(max_workers=workers, **overrides)

    def as_dict(self) -> dict:
        """Effective settings after applying environment and file values."""
        return {
            'similarity_threshold': self.similarity_threshold,
            'ttl_hours': self.ttl_hours,
            'default_workers': self.default_workers,
            'comparison_timeout': self.comparison_timeout,
            'batch_timeout': self.batch_timeout,
            'lsh_auto_threshold': self.lsh_auto_threshold,
            'max_entries': self.max_entries,
            'max_size_mb': self.max_size_mb,
            'weights': self.weights,
            'cache_db_file': self.cache_db_file,
        }

    def create_example_config(self) -> bool:
        """Create an example configuration file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        example_config = {
            "_comment": "photocache user configuration",
            "similarity_threshold": DEFAULT_SIMILARITY_THRESHOLD,
            "ttl_hours": DEFAULT_TTL_SECONDS / 3600,
            "default_workers": DEFAULT_WORKERS,
            "comparison_timeout": DEFAULT_COMPARISON_TIMEOUT,
            "batch_timeout": DEFAULT_BATCH_TIMEOUT,
            "lsh_auto_threshold": LSH_AUTO_THRESHOLD,
            "max_entries": None,
            "max_size_mb": DEFAULT_MAX_CACHE_BYTES / (1024 * 1024),
            "weights": {"hash": HASH_WEIGHT, "structural": STRUCTURAL_WEIGHT, "color": COLOR_WEIGHT},
            "cache_db_file": None,
        }

        try:
            with open(self.config_file_path, 'w', encoding='utf-8') as f:
                json.dump(example_config, f, indent=2)
            logger.info(f"Created example config file at {self.config_file_path}")
            return True
        except Exception as e:
            logger.error(f"Failed to create example config: {e}")
            return False
