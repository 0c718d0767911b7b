"""
Order service: the single entry point the HTTP routes call.

For every call it decides which store serves the request:

    primary ready                         -> PRIMARY     (reads cached)
    primary not ready, fallback permitted -> FALLBACK    (never cached)
    primary not ready, production         -> UNAVAILABLE (ServiceUnavailableError)

The decision is re-evaluated on every call; nothing is sticky. Successful
writes invalidate the dashboard and order-list cache entries. Results are
returned as JSON-ready dicts in wire format so cached and fresh responses
are identical.
"""

import time
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from oms.cache import CacheClient
from oms.cache_policy import (
    ANALYTICS_TTL,
    ORDERS_TTL,
    STATS_KEY,
    STATS_TTL,
    WRITE_INVALIDATION_PREFIXES,
    analytics_key,
)
from oms.core.config import Environment
from oms.data.database import ConnectivityProvider
from oms.data.local_store import LocalOrderStore
from oms.data.order_store import OrderStore
from oms.errors import OrderNotFoundError, OrderValidationError, ServiceUnavailableError, StoreConnectionError
from oms.metrics import MetricsCollector
from oms.models import OrderCreate, OrderUpdate, parse_order_create, parse_order_update
from oms.query import (
    DEFAULT_ANALYTICS_DAYS,
    DailyRollup,
    Pagination,
    QueryFilter,
    list_cache_key,
    normalize_sort,
    parse_range,
)
from oms.storage.blob import BlobStorage
from oms.utils.logger import get_logger
from oms.utils.time import isoformat, utcnow

logger = get_logger("service")


class StoreMode(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    UNAVAILABLE = "unavailable"


class OrderService:
    """
    Facade over the primary store, the fallback store and the cache.

    Args:
        primary: SQL-backed store, or None when no database is configured
        fallback: JSON-file store, used only when ``environment`` permits it
        cache: read-through cache (may be unconfigured)
        connectivity: answers whether the primary store is ready right now
        environment: decides whether the fallback may be used
        blob: file storage, only consulted by ``health()``
        metrics: latency / error / fallback counters
        clock: source of "now" for overdue checks and analytics windows
    """

    def __init__(
        self,
        primary: Optional[OrderStore],
        fallback: Optional[LocalOrderStore],
        cache: CacheClient,
        connectivity: ConnectivityProvider,
        environment: Environment = Environment.DEVELOPMENT,
        blob: Optional[BlobStorage] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.primary = primary
        self.fallback = fallback
        self.cache = cache
        self.connectivity = connectivity
        self.environment = environment
        self.blob = blob
        self.metrics = metrics or MetricsCollector()
        self.clock = clock
        self._last_mode: Optional[StoreMode] = None

    #
    # Mode selection
    #

    @property
    def fallback_permitted(self) -> bool:
        return self.fallback is not None and self.environment.allows_fallback

    def resolve_mode(self) -> StoreMode:
        if self.primary is not None and self.connectivity.is_ready():
            mode = StoreMode.PRIMARY
        elif self.fallback_permitted:
            mode = StoreMode.FALLBACK
        else:
            mode = StoreMode.UNAVAILABLE
        if mode != self._last_mode:
            if mode == StoreMode.FALLBACK:
                logger.info("Primary store not ready — serving from local fallback store")
            elif mode == StoreMode.UNAVAILABLE:
                logger.error(f"Primary store not ready and fallback not permitted in {self.environment.value}")
            elif self._last_mode is not None:
                logger.info("Primary store ready again")
            self._last_mode = mode
        return mode

    def _select(self, operation: str) -> StoreMode:
        mode = self.resolve_mode()
        if mode == StoreMode.UNAVAILABLE:
            raise ServiceUnavailableError("Database connection unavailable", operation=operation)
        if mode == StoreMode.FALLBACK:
            self.metrics.record_fallback(operation)
        return mode

    @contextmanager
    def _track(self, operation: str):
        start = time.perf_counter()
        try:
            yield
        except (OrderNotFoundError, OrderValidationError):
            raise
        except Exception:
            self.metrics.record_error(operation)
            raise
        finally:
            self.metrics.record_latency(operation, (time.perf_counter() - start) * 1000)

    def _read(
        self,
        operation: str,
        call: Callable[[Union[OrderStore, LocalOrderStore]], Any],
        cache_key: Optional[str] = None,
        ttl: Optional[int] = None,
    ) -> Any:
        """
        Run a read against the selected store. Primary reads with a cache key
        go through the cache. A primary that drops mid-read is retried once
        on the fallback store when permitted.
        """
        mode = self._select(operation)
        if mode == StoreMode.FALLBACK:
            return call(self.fallback)
        try:
            if cache_key is None:
                return call(self.primary)
            return self.cache.get_or_compute(cache_key, ttl, lambda: call(self.primary))
        except StoreConnectionError as e:
            if not self.fallback_permitted:
                raise
            logger.warning(f"Primary store failed during {operation} ({e}); retrying on local fallback store")
            self.metrics.record_fallback(operation)
            return call(self.fallback)

    def _write(self, operation: str, call: Callable[[Union[OrderStore, LocalOrderStore]], Any]) -> Any:
        mode = self._select(operation)
        store = self.primary if mode == StoreMode.PRIMARY else self.fallback
        result = call(store)
        self._invalidate_after_write(operation)
        return result

    def _invalidate_after_write(self, operation: str) -> None:
        for prefix in WRITE_INVALIDATION_PREFIXES:
            outcome = self.cache.invalidate(prefix)
            if outcome.degraded is not None and self.cache.configured:
                logger.warning(f"Cache invalidation of {prefix!r} after {operation} degraded: {outcome.degraded.value}")

    #
    # Reads
    #

    def list_orders(
        self,
        query_filter: Optional[QueryFilter] = None,
        pagination: Optional[Pagination] = None,
        sort: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Paginated, filtered order list.

        Returns:
            {"orders": [...], "pagination": {"total", "page", "pages"}}
        """
        query_filter = query_filter or QueryFilter()
        pagination = pagination or Pagination()
        sort = normalize_sort(sort)

        def compute(store) -> Dict[str, Any]:
            orders, total = store.find(query_filter, sort, pagination.skip, pagination.limit)
            return {
                "orders": [order.to_payload() for order in orders],
                "pagination": pagination.envelope(total),
            }

        with self._track("list_orders"):
            return self._read(
                "list_orders",
                compute,
                cache_key=list_cache_key(query_filter, pagination, sort),
                ttl=ORDERS_TTL,
            )

    def get_order(self, order_id: str) -> Dict[str, Any]:
        def compute(store) -> Optional[Dict[str, Any]]:
            order = store.get_by_id(order_id)
            return order.to_payload() if order is not None else None

        with self._track("get_order"):
            payload = self._read("get_order", compute)
        if payload is None:
            raise OrderNotFoundError(order_id)
        return payload

    def list_overdue(self) -> List[Dict[str, Any]]:
        def compute(store) -> List[Dict[str, Any]]:
            return [order.to_payload() for order in store.find_overdue(self.clock())]

        with self._track("list_overdue"):
            return self._read("list_overdue", compute)

    def dashboard_stats(self) -> Dict[str, Any]:
        """{totalOrders, pendingOrders, completedOrders, lastUpdated}"""
        with self._track("dashboard_stats"):
            return self._read("dashboard_stats", lambda store: store.stats(), cache_key=STATS_KEY, ttl=STATS_TTL)

    def analytics(self, range_spec: Union[str, int, None] = None) -> List[Dict[str, Any]]:
        """
        Sparse daily series over a trailing window, e.g. ``analytics("7d")``.
        """
        days = parse_range(None if range_spec is None else str(range_spec), DEFAULT_ANALYTICS_DAYS)

        def compute(store) -> List[Dict[str, Any]]:
            rollup = DailyRollup.trailing(days, now=self.clock())
            return [bucket.to_dict() for bucket in store.aggregate(rollup)]

        with self._track("analytics"):
            return self._read("analytics", compute, cache_key=analytics_key(days), ttl=ANALYTICS_TTL)

    #
    # Writes
    #

    def create_order(self, payload: Union[OrderCreate, Dict[str, Any]]) -> Dict[str, Any]:
        data = parse_order_create(payload)
        with self._track("create_order"):
            order = self._write("create_order", lambda store: store.create(data))
        return order.to_payload()

    def update_order(self, order_id: str, payload: Union[OrderUpdate, Dict[str, Any]]) -> Dict[str, Any]:
        """Apply the fields present in ``payload``; last write wins."""
        patch = parse_order_update(payload).to_patch()
        with self._track("update_order"):
            order = self._write("update_order", lambda store: self._require(store.update_by_id(order_id, patch), order_id))
        return order.to_payload()

    def delete_order(self, order_id: str) -> Dict[str, Any]:
        with self._track("delete_order"):
            order = self._write("delete_order", lambda store: self._require(store.delete_by_id(order_id), order_id))
        return order.to_payload()

    @staticmethod
    def _require(order, order_id: str):
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    #
    # Health
    #

    def health(self) -> Dict[str, Any]:
        """
        Reachability of each backing service. Never raises.

        The primary store is reported as ``mongodb`` for existing dashboard
        clients and as ``database`` for new ones.
        """
        database = self._probe("database", lambda: self.primary is not None and self.connectivity.is_ready())
        return {
            "mongodb": database,
            "database": database,
            "cache": self._probe("cache", self.cache.ping),
            "blob": self._probe("blob", lambda: self.blob is not None and self.blob.ping()),
            "timestamp": isoformat(self.clock()),
        }

    @staticmethod
    def _probe(name: str, check: Callable[[], bool]) -> bool:
        try:
            return bool(check())
        except Exception as e:
            logger.warning(f"Health check for {name} failed: {e}")
            return False
