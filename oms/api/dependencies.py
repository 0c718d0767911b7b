"""
Process bootstrap for the order service.

The service and everything it owns (engine, stores, cache, blob client) is
built once per process on first use. Tests replace it through
``app.dependency_overrides[get_order_service]``.
"""

import threading
from typing import Optional

from oms.cache import CacheClient
from oms.core.config import OMSConfig, get_config
from oms.data.database import DatabaseConnectivity, build_engine, create_tables, make_session_factory
from oms.data.local_store import LocalOrderStore
from oms.data.order_store import OrderStore
from oms.metrics import metrics_collector
from oms.service import OrderService
from oms.storage.blob import BlobStorage
from oms.utils.logger import get_logger

logger = get_logger("api")

_service: Optional[OrderService] = None
_service_lock = threading.Lock()


def build_order_service(config: OMSConfig) -> OrderService:
    """Wire the order service from configuration."""
    engine = build_engine(config.database_url, config.db_connect_timeout)
    if engine is not None and not create_tables(engine):
        logger.warning("Tables should already exist (managed database), continuing")

    connectivity = DatabaseConnectivity(engine)
    session_factory = make_session_factory(engine)
    primary = OrderStore(session_factory, connectivity) if session_factory is not None else None
    fallback = LocalOrderStore(config.data_path) if config.environment.allows_fallback else None

    logger.info(
        f"Order service: environment={config.environment.value} "
        f"primary={'configured' if primary else 'none'} "
        f"fallback={'enabled' if fallback else 'disabled'}"
    )
    return OrderService(
        primary=primary,
        fallback=fallback,
        cache=CacheClient.from_config(config, metrics=metrics_collector),
        connectivity=connectivity,
        environment=config.environment,
        blob=BlobStorage.from_config(config),
        metrics=metrics_collector,
    )


def get_order_service() -> OrderService:
    """FastAPI dependency returning the process-wide service."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = build_order_service(get_config())
    return _service


def set_order_service(service: Optional[OrderService]) -> None:
    """Replace (or with None, reset) the process-wide service."""
    global _service
    with _service_lock:
        _service = service
