"""
Redis cache layer for derived order views (list pages, dashboard stats, analytics).

Redis is ONLY a cache, never the source of truth.
The SQL database is always authoritative.

Every key is namespaced with the configured prefix (``oms:`` by default).
Supports both local Redis and Upstash/Vercel KV via a redis:// or rediss:// URL.

Redis failures never reach callers: they surface as a ``DegradedReason`` on
the returned result and the value is computed directly.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Tuple

import redis

from oms.core.config import OMSConfig
from oms.errors import CacheDegradedError
from oms.utils.logger import get_logger

logger = get_logger("cache")

_GLOB_SPECIAL = "*?[]\\"


class DegradedReason(str, Enum):
    UNCONFIGURED = "unconfigured"
    UNREACHABLE = "unreachable"
    CORRUPT_ENTRY = "corrupt_entry"


@dataclass(frozen=True)
class CacheResult:
    """Outcome of a read-through fetch."""
    value: Any
    hit: bool = False
    degraded: Optional[DegradedReason] = None


@dataclass(frozen=True)
class InvalidationResult:
    deleted: int = 0
    degraded: Optional[DegradedReason] = None

    @property
    def ok(self) -> bool:
        return self.degraded is None


def _round_trip(value: Any) -> Any:
    """Return the value exactly as it would come back from Redis."""
    return json.loads(json.dumps(value))


def _glob_escape(text: str) -> str:
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in text)


class CacheClient:
    """
    Redis cache client with read-through fetch and prefix invalidation.

    ``client`` is any object with the redis-py ``get``/``setex``/``delete``/
    ``scan_iter``/``ping`` methods, or None when caching is not configured.
    """

    def __init__(self, client: Optional[Any] = None, prefix: str = "oms:", metrics=None):
        self.client = client
        self.prefix = prefix
        self.metrics = metrics

    @classmethod
    def from_config(cls, config: OMSConfig, metrics=None) -> "CacheClient":
        """
        Build a client from configuration.

        Connection priority:
        1. URL (UPSTASH_REDIS_URL / KV_URL / REDIS_URL, rediss:// for TLS)
        2. REDIS_HOST + REDIS_PORT + REDIS_DB
        3. Neither: caching disabled, every fetch computes directly
        """
        timeout = config.cache_socket_timeout
        if config.redis_url:
            client = redis.from_url(
                config.redis_url,
                decode_responses=True,
                socket_connect_timeout=timeout,
                socket_timeout=timeout,
            )
        elif config.redis_host:
            client = redis.Redis(
                host=config.redis_host,
                port=config.redis_port,
                db=config.redis_db,
                decode_responses=True,
                socket_connect_timeout=timeout,
                socket_timeout=timeout,
            )
        else:
            logger.info("Redis not configured — caching disabled")
            client = None
        return cls(client=client, prefix=config.cache_prefix, metrics=metrics)

    @property
    def configured(self) -> bool:
        return self.client is not None

    def _key(self, key: str) -> str:
        """Prefix key with namespace."""
        return f"{self.prefix}{key}"

    def _require_client(self):
        if self.client is None:
            raise CacheDegradedError(DegradedReason.UNCONFIGURED)
        return self.client

    def ping(self) -> bool:
        """Check if Redis is reachable."""
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    #
    # Raw access (raises CacheDegradedError)
    #

    def lookup(self, key: str) -> Tuple[bool, Any]:
        """Return (hit, value). Raises CacheDegradedError on any cache failure."""
        client = self._require_client()
        try:
            cached = client.get(self._key(key))
        except redis.RedisError as e:
            raise CacheDegradedError(DegradedReason.UNREACHABLE, str(e)) from e
        if cached is None:
            return False, None
        try:
            return True, json.loads(cached)
        except ValueError as e:
            raise CacheDegradedError(DegradedReason.CORRUPT_ENTRY, f"{key}: {e}") from e

    def store(self, key: str, value: Any, ttl: int) -> None:
        client = self._require_client()
        try:
            client.setex(self._key(key), ttl, json.dumps(value))
        except redis.RedisError as e:
            raise CacheDegradedError(DegradedReason.UNREACHABLE, str(e)) from e

    #
    # Read-through
    #

    def fetch(self, key: str, ttl: int, compute: Callable[[], Any]) -> CacheResult:
        """
        Return the cached value for ``key`` or compute, store and return it.

        ``compute`` runs at most once. Its exceptions propagate unchanged.
        """
        degraded = None
        try:
            hit, cached = self.lookup(key)
        except CacheDegradedError as e:
            degraded = e.reason
            self._record_degraded(key, e)
            hit, cached = False, None

        if hit:
            logger.debug(f"Cache hit {key}")
            if self.metrics is not None:
                self.metrics.record_cache_hit()
            return CacheResult(value=cached, hit=True)

        value = _round_trip(compute())

        # A corrupt entry is overwritten; an unreachable or absent Redis is left alone
        if degraded is None or degraded == DegradedReason.CORRUPT_ENTRY:
            try:
                self.store(key, value, ttl)
            except CacheDegradedError as e:
                degraded = e.reason
                self._record_degraded(key, e)

        if degraded is None:
            logger.debug(f"Cache miss {key}")
            if self.metrics is not None:
                self.metrics.record_cache_miss()
        return CacheResult(value=value, hit=False, degraded=degraded)

    def get_or_compute(self, key: str, ttl: int, compute: Callable[[], Any]) -> Any:
        return self.fetch(key, ttl, compute).value

    #
    # Cache Invalidation
    #

    def invalidate(self, prefix: str) -> InvalidationResult:
        """Delete every key starting with ``prefix``. Returns count of keys deleted."""
        try:
            client = self._require_client()
        except CacheDegradedError as e:
            return InvalidationResult(degraded=e.reason)

        pattern = _glob_escape(self._key(prefix)) + "*"
        try:
            keys = list(client.scan_iter(match=pattern, count=100))
            deleted = client.delete(*keys) if keys else 0
        except redis.RedisError as e:
            logger.warning(f"Cache invalidation error for {prefix!r}: {e}")
            return InvalidationResult(degraded=DegradedReason.UNREACHABLE)
        logger.debug(f"Invalidated {deleted} cache keys under {prefix!r}")
        return InvalidationResult(deleted=int(deleted))

    def flush(self) -> InvalidationResult:
        """Drop every key in this namespace. Use carefully, only for maintenance."""
        return self.invalidate("")

    def _record_degraded(self, key: str, error: CacheDegradedError) -> None:
        if error.reason == DegradedReason.UNCONFIGURED:
            logger.debug(f"Cache unconfigured, computing {key} directly")
        else:
            logger.warning(f"Cache degraded ({error.reason.value}) for {key}: {error}")
        if self.metrics is not None:
            self.metrics.record_cache_degraded(error.reason.value)
