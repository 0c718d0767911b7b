"""
OMS - Order Management Service

Data layer for order tracking with:
- SQL primary store with a JSON-file fallback outside production
- Redis read-through cache with write invalidation
- Filtering, pagination, dashboard stats and daily analytics
"""

__version__ = '0.1.0'

from oms.core.config import Environment, OMSConfig, get_config, set_config
from oms.service import OrderService, StoreMode

__all__ = [
    'Environment',
    'OMSConfig',
    'get_config',
    'set_config',
    'OrderService',
    'StoreMode',
]
