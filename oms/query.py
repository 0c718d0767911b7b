"""
Query and aggregation engine for orders.

Pure functions over ``Order`` models: filter predicates, pagination,
sorting, overdue detection, dashboard statistics and daily analytics.
The fallback store uses these directly; the SQL store translates the same
rules into queries and must agree with them.

Zero-roll policy: an order without rolls has no status. It is never
pending, never completed and never overdue.
"""
import hashlib
import json
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from oms.models import Order, RollStatus
from oms.utils.logger import get_logger
from oms.utils.time import isoformat, utcnow

logger = get_logger("query")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
DEFAULT_ANALYTICS_DAYS = 30
DEFAULT_SORT = "-createdAt"

# Largest OFFSET / LIMIT handed to the database (signed 32-bit)
MAX_WINDOW = 2 ** 31 - 1

# Wire sort key -> Order attribute
SORT_FIELDS = {
    "createdAt": "created_at",
    "orderDate": "order_date",
    "companyName": "company_name",
}

_RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*d?\s*$", re.IGNORECASE)


def _coerce_positive(value: Any, default: int) -> int:
    """Clamp missing, malformed or non-positive values to the default."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


@dataclass(frozen=True)
class Pagination:
    """Page window. Always page >= 1 and limit >= 1."""
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @classmethod
    def from_params(cls, page: Any = None, limit: Any = None) -> "Pagination":
        limit = min(_coerce_positive(limit, DEFAULT_LIMIT), MAX_WINDOW)
        # keep skip = (page - 1) * limit within MAX_WINDOW
        page = min(_coerce_positive(page, DEFAULT_PAGE), MAX_WINDOW // limit + 1)
        return cls(page=page, limit=limit)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def envelope(self, total: int) -> Dict[str, int]:
        return {
            "total": total,
            "page": self.page,
            "pages": page_count(total, self.limit),
        }


@dataclass(frozen=True)
class QueryFilter:
    """
    Per-request filter. Absent fields match everything; present fields are ANDed.

    - status / grade: exact match against ANY roll of the order
    - company_name: case-insensitive substring of the company name
    """
    status: Optional[RollStatus] = None
    grade: Optional[str] = None
    company_name: Optional[str] = None

    @classmethod
    def from_params(
        cls,
        status: Optional[str] = None,
        grade: Optional[str] = None,
        company_name: Optional[str] = None,
    ) -> "QueryFilter":
        """
        Build from raw query parameters. Blank strings count as absent.

        Raises:
            ValueError: status is not one of the RollStatus values
        """
        status = (status or "").strip()
        grade = (grade or "").strip()
        company_name = (company_name or "").strip()
        return cls(
            status=RollStatus(status) if status else None,
            grade=grade or None,
            company_name=company_name or None,
        )

    def is_empty(self) -> bool:
        return self.status is None and self.grade is None and self.company_name is None

    def matches(self, order: Order) -> bool:
        if self.company_name is not None:
            if self.company_name.lower() not in (order.company_name or "").lower():
                return False
        if self.status is not None:
            if not any(roll.status == self.status for roll in order.rolls):
                return False
        if self.grade is not None:
            if not any(roll.grade == self.grade for roll in order.rolls):
                return False
        return True

    def to_params(self) -> Dict[str, str]:
        """Present fields only, wire names; used for cache keys."""
        params = {}
        if self.status is not None:
            params["status"] = self.status.value
        if self.grade is not None:
            params["grade"] = self.grade
        if self.company_name is not None:
            params["companyName"] = self.company_name
        return params


def normalize_sort(sort: Optional[str]) -> str:
    """Return a supported sort key, falling back to newest-first."""
    if not sort:
        return DEFAULT_SORT
    field = sort[1:] if sort.startswith("-") else sort
    if field not in SORT_FIELDS:
        logger.debug(f"Unsupported sort key {sort!r}, using {DEFAULT_SORT}")
        return DEFAULT_SORT
    return sort


def sort_orders(orders: Iterable[Order], sort: Optional[str] = None) -> List[Order]:
    sort = normalize_sort(sort)
    descending = sort.startswith("-")
    attribute = SORT_FIELDS[sort.lstrip("-")]

    def key(order: Order):
        value = getattr(order, attribute)
        if isinstance(value, str):
            return value.lower()
        return value

    return sorted(orders, key=key, reverse=descending)


def list_cache_key(query_filter: QueryFilter, pagination: Pagination, sort: Optional[str] = None) -> str:
    """
    Deterministic cache key for a list query.

    Filters are sorted by key so identical queries produce identical keys
    regardless of parameter order.
    """
    raw = json.dumps(
        {
            "f": query_filter.to_params(),
            "p": pagination.page,
            "l": pagination.limit,
            "s": normalize_sort(sort),
        },
        sort_keys=True,
    )
    return f"orders:list:{hashlib.sha256(raw.encode()).hexdigest()[:16]}"


def paginate(
    orders: Iterable[Order],
    query_filter: QueryFilter,
    pagination: Pagination,
    sort: Optional[str] = None,
) -> Tuple[List[Order], int]:
    """Filter, sort and slice an in-memory order list. Returns (page, total)."""
    matched = sort_orders((o for o in orders if query_filter.matches(o)), sort)
    return matched[pagination.skip:pagination.skip + pagination.limit], len(matched)


# ---------------------------------------------------------------------------
# Status rules
# ---------------------------------------------------------------------------

def is_pending(order: Order) -> bool:
    return any(roll.status == RollStatus.PENDING for roll in order.rolls)


def is_completed(order: Order) -> bool:
    return bool(order.rolls) and all(roll.status == RollStatus.DISPATCHED for roll in order.rolls)


def is_overdue(order: Order, now: Optional[datetime] = None) -> bool:
    """
    Expected delivery strictly in the past and at least one roll not dispatched.
    """
    now = now or utcnow()
    if order.expected_delivery is None or not order.expected_delivery < now:
        return False
    return any(roll.status != RollStatus.DISPATCHED for roll in order.rolls)


def find_overdue(orders: Iterable[Order], now: Optional[datetime] = None) -> List[Order]:
    now = now or utcnow()
    overdue = [o for o in orders if is_overdue(o, now)]
    return sorted(overdue, key=lambda o: o.expected_delivery)


def build_stats(total: int, pending: int, completed: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "totalOrders": total,
        "pendingOrders": pending,
        "completedOrders": completed,
        "lastUpdated": isoformat(now or utcnow()),
    }


def compute_stats(orders: Iterable[Order], now: Optional[datetime] = None) -> Dict[str, Any]:
    orders = list(orders)
    return build_stats(
        total=len(orders),
        pending=sum(1 for o in orders if is_pending(o)),
        completed=sum(1 for o in orders if is_completed(o)),
        now=now,
    )


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def parse_range(value: Optional[str], default: int = DEFAULT_ANALYTICS_DAYS) -> int:
    """
    Parse a trailing-window spec such as "30d" or "7" into a day count.

    Malformed or non-positive values fall back to the default. Windows
    reaching past the start of the calendar are cut by ``DailyRollup``.
    """
    if value is None:
        return default
    match = _RANGE_PATTERN.match(str(value))
    if not match:
        return default
    try:
        days = int(match.group(1))
    except ValueError:
        # more digits than int() accepts
        return default
    return days if days > 0 else default


@dataclass(frozen=True)
class DailyRollup:
    """Group orders created at or after ``since`` by calendar day (UTC)."""
    since: datetime

    @classmethod
    def trailing(cls, days: int, now: Optional[datetime] = None) -> "DailyRollup":
        now = now or utcnow()
        days = min(days, (now - datetime.min).days)
        return cls(since=now - timedelta(days=days))


@dataclass(frozen=True)
class DayBucket:
    date: str
    order_count: int
    total_roll_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "orderCount": self.order_count,
            "totalRollCount": self.total_roll_count,
        }


def rollup_by_day(orders: Iterable[Order], rollup: DailyRollup) -> List[DayBucket]:
    """
    Sparse daily series: only days with at least one order appear,
    sorted ascending by date.
    """
    buckets: Dict[str, List[int]] = {}
    for order in orders:
        if order.created_at < rollup.since:
            continue
        day = order.created_at.date().isoformat()
        counts = buckets.setdefault(day, [0, 0])
        counts[0] += 1
        counts[1] += len(order.rolls)
    return [
        DayBucket(date=day, order_count=counts[0], total_roll_count=counts[1])
        for day, counts in sorted(buckets.items())
    ]
