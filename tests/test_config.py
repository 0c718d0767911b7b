"""
Tests for YAML configuration loading and environment overrides.
"""

import logging

import pytest

from oms.core.config import Environment, OMSConfig
from oms.utils.logger import configure_logging, get_logger

_ENV_VARS = (
    "OMS_ENV", "DATABASE_URL", "OMS_DATA_DIR", "UPSTASH_REDIS_URL", "KV_URL", "REDIS_URL",
    "REDIS_HOST", "REDIS_PORT", "REDIS_DB", "BLOB_READ_WRITE_TOKEN", "OMS_CORS_ORIGINS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "oms.yaml"
    path.write_text(
        "oms:\n"
        "  environment: production\n"
        "  cors_origins: [https://orders.example.com]\n"
        "database:\n"
        "  url: postgresql://db.example.com/oms\n"
        "  connect_timeout_seconds: 3\n"
        "cache:\n"
        "  host: redis.internal\n"
        "  port: 6380\n"
        "fallback:\n"
        "  data_dir: /var/lib/oms\n"
    )
    return path


class TestEnvironment:
    @pytest.mark.parametrize("value,expected", [
        ("production", Environment.PRODUCTION),
        ("prod", Environment.PRODUCTION),
        ("PRODUCTION", Environment.PRODUCTION),
        ("test", Environment.TEST),
        ("development", Environment.DEVELOPMENT),
        ("staging", Environment.DEVELOPMENT),
        (None, Environment.DEVELOPMENT),
    ])
    def test_from_value(self, value, expected):
        assert Environment.from_value(value) == expected

    def test_only_production_forbids_fallback(self):
        assert not Environment.PRODUCTION.allows_fallback
        assert Environment.TEST.allows_fallback
        assert Environment.DEVELOPMENT.allows_fallback


class TestLoading:
    def test_yaml_values(self, clean_env, config_file):
        config = OMSConfig.from_yaml(config_file)
        assert config.environment == Environment.PRODUCTION
        assert config.database_url == "postgresql://db.example.com/oms"
        assert config.db_connect_timeout == 3
        assert (config.redis_host, config.redis_port) == ("redis.internal", 6380)
        assert config.cors_origins == ["https://orders.example.com"]
        assert str(config.data_path) == "/var/lib/oms"

    def test_env_overrides_yaml(self, clean_env, config_file):
        clean_env.setenv("OMS_ENV", "development")
        clean_env.setenv("DATABASE_URL", "sqlite:///local.db")
        clean_env.setenv("KV_URL", "rediss://kv.example.com:6379")
        clean_env.setenv("OMS_CORS_ORIGINS", "https://a.example.com, https://orders.example.com")
        clean_env.setenv("BLOB_READ_WRITE_TOKEN", "tok")

        config = OMSConfig.from_yaml(config_file)

        assert config.environment == Environment.DEVELOPMENT
        assert config.database_url == "sqlite:///local.db"
        assert config.redis_url == "rediss://kv.example.com:6379"
        assert config.blob_token == "tok"
        assert config.cors_origins == ["https://orders.example.com", "https://a.example.com"]

    def test_upstash_url_wins_over_other_urls(self, clean_env, tmp_path):
        clean_env.setenv("UPSTASH_REDIS_URL", "rediss://upstash")
        clean_env.setenv("REDIS_URL", "redis://plain")
        assert OMSConfig.from_yaml(tmp_path / "missing.yaml").redis_url == "rediss://upstash"

    def test_missing_file_uses_defaults(self, clean_env, tmp_path):
        config = OMSConfig.from_yaml(tmp_path / "missing.yaml")
        assert config.environment == Environment.DEVELOPMENT
        assert config.database_url == ""
        assert config.cache_prefix == "oms:"
        assert "http://localhost:5173" in config.cors_origins
        assert config.data_path.is_absolute()


class TestLogging:
    def test_component_loggers_share_the_oms_handler(self):
        assert get_logger("cache").name == "oms.cache"
        assert get_logger() is logging.getLogger("oms")

    def test_configure_logging_is_idempotent(self):
        try:
            root = configure_logging("debug")
            configure_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert root.propagate is False
        finally:
            configure_logging("INFO")
