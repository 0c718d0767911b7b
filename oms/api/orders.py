"""
Order routes, mounted under /api/orders.

Fixed paths (overdue, stats, analytics, health) are declared before
``/{order_id}`` so they are not captured as ids.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from oms.api.dependencies import get_order_service
from oms.errors import OrderValidationError
from oms.models import OrderCreate, OrderUpdate, RollStatus
from oms.query import Pagination, QueryFilter
from oms.service import OrderService

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("")
def list_orders(
    page: Optional[str] = Query(None, description="Page number, defaults to 1"),
    limit: Optional[str] = Query(None, description="Page size, defaults to 10"),
    status: Optional[str] = Query(None, description="Match orders with ANY roll in this status"),
    grade: Optional[str] = Query(None, description="Match orders with ANY roll of this grade"),
    company_name: Optional[str] = Query(None, alias="companyName", description="Case-insensitive substring"),
    sort: Optional[str] = Query(None, description="createdAt, orderDate or companyName; '-' prefix for descending"),
    service: OrderService = Depends(get_order_service),
) -> Dict[str, Any]:
    """Paginated, filtered order list."""
    try:
        query_filter = QueryFilter.from_params(status=status, grade=grade, company_name=company_name)
    except ValueError:
        allowed = ", ".join(s.value for s in RollStatus)
        raise OrderValidationError(
            "Invalid query parameters",
            [{"field": "status", "message": f"must be one of {allowed}"}],
        )
    return service.list_orders(query_filter, Pagination.from_params(page, limit), sort)


@router.get("/overdue")
def list_overdue(service: OrderService = Depends(get_order_service)) -> List[Dict[str, Any]]:
    return service.list_overdue()


@router.get("/stats")
def dashboard_stats(service: OrderService = Depends(get_order_service)) -> Dict[str, Any]:
    return service.dashboard_stats()


@router.get("/analytics")
def analytics(
    range_spec: Optional[str] = Query(None, alias="range", description="Trailing window, e.g. 30d"),
    service: OrderService = Depends(get_order_service),
) -> List[Dict[str, Any]]:
    return service.analytics(range_spec)


@router.get("/health")
def storage_health(service: OrderService = Depends(get_order_service)) -> Dict[str, Any]:
    """Database, cache and blob reachability. Always 200."""
    return service.health()


@router.get("/{order_id}")
def get_order(order_id: str, service: OrderService = Depends(get_order_service)) -> Dict[str, Any]:
    return service.get_order(order_id)


@router.post("", status_code=201)
def create_order(payload: OrderCreate, service: OrderService = Depends(get_order_service)) -> Dict[str, Any]:
    return service.create_order(payload)


@router.put("/{order_id}")
def update_order(
    order_id: str,
    payload: OrderUpdate,
    service: OrderService = Depends(get_order_service),
) -> Dict[str, Any]:
    return service.update_order(order_id, payload)


@router.delete("/{order_id}")
def delete_order(order_id: str, service: OrderService = Depends(get_order_service)) -> Dict[str, str]:
    service.delete_order(order_id)
    return {"message": "Order deleted successfully"}
