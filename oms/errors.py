# oms/errors.py
from typing import Dict, List, Optional


class OrderServiceError(Exception):
    """Base error for the order service."""
    def __init__(self, msg: str = "", **ctx):
        super().__init__(msg)
        self.msg = msg
        self.ctx = ctx

    def __str__(self):
        base = self.msg or self.__class__.__name__
        if self.ctx:
            details = ", ".join(f"{k}={v}" for k, v in self.ctx.items())
            return f"{base} [{details}]"
        return base


class StoreConnectionError(OrderServiceError, ConnectionError):
    """Primary store is not connected or dropped the connection mid-call."""


class ServiceUnavailableError(OrderServiceError):
    """No store may serve the request (primary down and fallback not permitted)."""


class OrderNotFoundError(OrderServiceError):
    """Update/delete/get target does not exist."""
    def __init__(self, order_id: str):
        super().__init__("Order not found", order_id=order_id)
        self.order_id = order_id


class OrderValidationError(OrderServiceError):
    """Malformed order or roll payload."""
    def __init__(self, msg: str = "Invalid order data", errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(msg)
        self.errors = errors or []

    def __str__(self):
        if not self.errors:
            return self.msg
        fields = "; ".join(f"{e['field']}: {e['message']}" for e in self.errors)
        return f"{self.msg} ({fields})"


class CacheDegradedError(OrderServiceError):
    """Cache medium failed; always handled inside the cache layer."""
    def __init__(self, reason, msg: str = ""):
        super().__init__(msg or str(reason.value))
        self.reason = reason


class BlobStorageError(OrderServiceError):
    """File storage request failed."""
