"""
Unit tests for user configuration.
"""

import json

import pytest

from photocache.config import DEFAULT_SIMILARITY_THRESHOLD, DEFAULT_WORKERS, CACHE_DB_FILE
from photocache.user_config import UserConfig


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for var in ('PHOTOCACHE_CONFIG_DIR', 'PHOTOCACHE_THRESHOLD', 'PHOTOCACHE_TTL_HOURS',
                'PHOTOCACHE_WORKERS', 'PHOTOCACHE_COMPARISON_TIMEOUT', 'PHOTOCACHE_BATCH_TIMEOUT',
                'PHOTOCACHE_LSH_THRESHOLD', 'PHOTOCACHE_WEIGHTS', 'PHOTOCACHE_CACHE_DB',
                'PHOTOCACHE_MAX_ENTRIES', 'PHOTOCACHE_MAX_SIZE_MB'):
        monkeypatch.delenv(var, raising=False)


def write_config(directory, data):
    (directory / 'config.json').write_text(json.dumps(data))


class TestUserConfig:
    """Test UserConfig value resolution."""

    def test_defaults(self, temp_dir):
        config = UserConfig(config_dir=temp_dir)
        assert config.similarity_threshold == DEFAULT_SIMILARITY_THRESHOLD
        assert config.ttl_hours == 168
        assert config.default_workers == DEFAULT_WORKERS
        assert config.cache_db_file == CACHE_DB_FILE
        assert config.weights == {'hash': 0.40, 'structural': 0.35, 'color': 0.25}
        assert config.max_entries is None
        assert config.max_size_mb == 100.0

    def test_config_file(self, temp_dir):
        write_config(temp_dir, {'similarity_threshold': 0.85, 'ttl_hours': 24, 'lsh_auto_threshold': 50})
        config = UserConfig(config_dir=temp_dir)
        assert config.similarity_threshold == 0.85
        assert config.ttl_hours == 24
        assert config.lsh_auto_threshold == 50

    def test_environment_overrides_file(self, temp_dir, monkeypatch):
        write_config(temp_dir, {'similarity_threshold': 0.85})
        monkeypatch.setenv('PHOTOCACHE_THRESHOLD', '0.9')
        assert UserConfig(config_dir=temp_dir).similarity_threshold == 0.9

    def test_config_dir_from_environment(self, temp_dir, monkeypatch):
        write_config(temp_dir, {'default_workers': 9})
        monkeypatch.setenv('PHOTOCACHE_CONFIG_DIR', str(temp_dir))
        config = UserConfig()
        assert config.config_dir == temp_dir
        assert config.default_workers == 9

    def test_partial_weights(self, temp_dir):
        write_config(temp_dir, {'weights': {'color': 0.5}})
        assert UserConfig(config_dir=temp_dir).weights == {'hash': 0.40, 'structural': 0.35, 'color': 0.5}

    def test_weights_from_environment(self, temp_dir, monkeypatch):
        monkeypatch.setenv('PHOTOCACHE_WEIGHTS', '{"hash": 1.0}')
        assert UserConfig(config_dir=temp_dir).weights['hash'] == 1.0

    def test_malformed_weights_ignored(self, temp_dir):
        write_config(temp_dir, {'weights': [1, 2, 3]})
        assert UserConfig(config_dir=temp_dir).weights['hash'] == 0.40

    def test_corrupt_file_falls_back(self, temp_dir):
        (temp_dir / 'config.json').write_text("{not json")
        assert UserConfig(config_dir=temp_dir).similarity_threshold == DEFAULT_SIMILARITY_THRESHOLD

    def test_reload(self, temp_dir):
        config = UserConfig(config_dir=temp_dir)
        assert config.default_workers == DEFAULT_WORKERS
        write_config(temp_dir, {'default_workers': 2})
        assert config.default_workers == DEFAULT_WORKERS
        config.reload()
        assert config.default_workers == 2

    def test_size_limits(self, temp_dir, monkeypatch):
        write_config(temp_dir, {'max_entries': 500, 'max_size_mb': None})
        config = UserConfig(config_dir=temp_dir)
        assert config.max_entries == 500
        assert config.max_size_mb is None

        monkeypatch.setenv('PHOTOCACHE_MAX_ENTRIES', '12')
        monkeypatch.setenv('PHOTOCACHE_MAX_SIZE_MB', '0.5')
        assert config.max_entries == 12
        assert config.max_size_mb == 0.5

    def test_create_example_config(self, temp_dir):
        config = UserConfig(config_dir=temp_dir / "new")
        assert config.create_example_config() is True
        data = json.loads(config.config_file_path.read_text())
        assert data['similarity_threshold'] == DEFAULT_SIMILARITY_THRESHOLD
        assert set(data['weights']) == {'hash', 'structural', 'color'}

    def test_as_dict(self, temp_dir):
        settings = UserConfig(config_dir=temp_dir).as_dict()
        assert set(settings) == {
            'similarity_threshold', 'ttl_hours', 'default_workers', 'comparison_timeout',
            'batch_timeout', 'lsh_auto_threshold', 'weights', 'cache_db_file', 'max_entries',
            'max_size_mb',
        }


class TestBuildManager:
    """Test UserConfig.build_manager."""

    def test_wires_settings(self, temp_dir, temp_cache_db):
        write_config(temp_dir, {'similarity_threshold': 0.8, 'ttl_hours': 2, 'lsh_auto_threshold': 7,
                                'weights': {'color': 1.0}})
        with UserConfig(config_dir=temp_dir).build_manager(db_path=temp_cache_db) as manager:
            assert manager.similarity_threshold == 0.8
            assert manager.ttl == 7200
            assert manager.index.lsh_auto_threshold == 7
            assert manager.matcher.weights.color == 1.0
            assert manager.storage.db_path == temp_cache_db
            assert manager.max_entries is None
            assert manager.max_size_bytes == 100 * 1024 * 1024

    def test_wires_size_limits(self, temp_dir, temp_cache_db):
        write_config(temp_dir, {'max_entries': 40, 'max_size_mb': 2})
        with UserConfig(config_dir=temp_dir).build_manager(db_path=temp_cache_db) as manager:
            assert manager.max_entries == 40
            assert manager.max_size_bytes == 2 * 1024 * 1024

        write_config(temp_dir, {'max_size_mb': None})
        with UserConfig(config_dir=temp_dir).build_manager(db_path=temp_cache_db) as manager:
            assert manager.max_size_bytes is None

    def test_overrides_win(self, temp_dir, temp_cache_db):
        with UserConfig(config_dir=temp_dir).build_manager(
            db_path=temp_cache_db, similarity_threshold=0.95, max_workers=1,
        ) as manager:
            assert manager.similarity_threshold == 0.95
            assert manager.max_workers == 1
            assert manager.matcher.max_workers == 1

    def test_working_cache(self, temp_dir, temp_cache_db, pattern_image, sample_result):
        with UserConfig(config_dir=temp_dir).build_manager(db_path=temp_cache_db) as manager:
            manager.cache_result(pattern_image(1), sample_result())
            assert manager.get_cached_result(pattern_image(1)) is not None
