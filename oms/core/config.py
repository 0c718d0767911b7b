"""
Configuration management for OMS.

Loads settings from YAML config file, then lets environment variables
override them, and provides typed access.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional
import yaml

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of oms package)."""
    return Path(__file__).resolve().parent.parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"


class Environment(str, Enum):
    """Deployment environment; decides whether the local fallback store may be used."""
    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "Environment":
        normalized = (value or "").strip().lower()
        if normalized in ("prod", "production"):
            return cls.PRODUCTION
        if normalized in ("test", "testing"):
            return cls.TEST
        return cls.DEVELOPMENT

    @property
    def allows_fallback(self) -> bool:
        return self is not Environment.PRODUCTION


@dataclass
class OMSConfig:
    """Configuration for the order management service."""

    environment: Environment = Environment.DEVELOPMENT
    cors_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8080",
        "http://127.0.0.1:8080",
    ])

    # Primary store
    database_url: str = ""
    db_connect_timeout: int = 5

    # Fallback store (non-production only)
    data_dir: str = "data"

    # Redis cache
    redis_url: str = ""
    redis_host: str = ""
    redis_port: int = 6379
    redis_db: int = 0
    cache_prefix: str = "oms:"
    cache_socket_timeout: int = 5

    # Blob storage
    blob_base_url: str = "https://blob.vercel-storage.com"
    blob_token: str = ""

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "OMSConfig":
        """Load configuration from YAML file, then apply environment overrides."""
        path = config_path or DEFAULT_CONFIG_PATH
        data = {}
        if path.exists():
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}

        oms_config = data.get('oms', {})
        database_config = data.get('database', {})
        fallback_config = data.get('fallback', {})
        cache_config = data.get('cache', {})
        blob_config = data.get('blob', {})

        config = cls(
            environment=Environment.from_value(oms_config.get('environment')),
            cors_origins=list(oms_config.get('cors_origins') or cls().cors_origins),
            database_url=database_config.get('url') or "",
            db_connect_timeout=int(database_config.get('connect_timeout_seconds', 5)),
            data_dir=fallback_config.get('data_dir', 'data'),
            redis_url=cache_config.get('url') or "",
            redis_host=cache_config.get('host') or "",
            redis_port=int(cache_config.get('port', 6379)),
            redis_db=int(cache_config.get('db', 0)),
            cache_prefix=cache_config.get('prefix', 'oms:'),
            cache_socket_timeout=int(cache_config.get('socket_timeout_seconds', 5)),
            blob_base_url=blob_config.get('base_url', 'https://blob.vercel-storage.com'),
            blob_token=blob_config.get('token') or "",
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Environment variables win over YAML values."""
        env = os.environ
        if env.get("OMS_ENV"):
            self.environment = Environment.from_value(env["OMS_ENV"])
        self.database_url = env.get("DATABASE_URL", self.database_url)
        self.data_dir = env.get("OMS_DATA_DIR", self.data_dir)
        self.redis_url = (
            env.get("UPSTASH_REDIS_URL")
            or env.get("KV_URL")
            or env.get("REDIS_URL")
            or self.redis_url
        )
        self.redis_host = env.get("REDIS_HOST", self.redis_host)
        self.redis_port = int(env.get("REDIS_PORT", self.redis_port))
        self.redis_db = int(env.get("REDIS_DB", self.redis_db))
        self.blob_token = env.get("BLOB_READ_WRITE_TOKEN", self.blob_token)
        extra_origins = env.get("OMS_CORS_ORIGINS", "")
        for origin in (o.strip() for o in extra_origins.split(",")):
            if origin and origin not in self.cors_origins:
                self.cors_origins.append(origin)

    @property
    def data_path(self) -> Path:
        path = Path(self.data_dir)
        return path if path.is_absolute() else _project_root() / path


# Global config instance
_config: Optional[OMSConfig] = None


def get_config() -> OMSConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = OMSConfig.from_yaml()
    return _config


def set_config(config: OMSConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
