"""
Primary order store backed by SQLAlchemy.

Every operation checks the connectivity provider first and fails fast with
StoreConnectionError when the database is not ready. Driver-level
connection errors raised mid-operation are re-raised the same way. There
is no internal retry; the service decides what to do next.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from oms.data.database import ConnectivityProvider
from oms.data.records import OrderRecord, RollRecord, new_order_id
from oms.errors import StoreConnectionError
from oms.models import Order, OrderCreate, Roll, RollStatus
from oms.query import DailyRollup, DayBucket, QueryFilter, build_stats, normalize_sort
from oms.utils.logger import get_logger
from oms.utils.time import utcnow

logger = get_logger("order_store")

_SORT_COLUMNS = {
    "createdAt": OrderRecord.created_at,
    "orderDate": OrderRecord.order_date,
    "companyName": func.lower(OrderRecord.company_name),
}

_PATCHABLE_FIELDS = ("order_number", "company_name", "broker", "order_date", "expected_delivery", "notes")


def _filter_clauses(query_filter: Optional[QueryFilter]) -> List[Any]:
    if query_filter is None:
        return []
    clauses = []
    if query_filter.company_name is not None:
        clauses.append(
            func.lower(OrderRecord.company_name).contains(query_filter.company_name.lower(), autoescape=True)
        )
    if query_filter.status is not None:
        clauses.append(OrderRecord.rolls.any(RollRecord.status == query_filter.status.value))
    if query_filter.grade is not None:
        clauses.append(OrderRecord.rolls.any(RollRecord.grade == query_filter.grade))
    return clauses


def _order_by(sort: Optional[str]) -> List[Any]:
    sort = normalize_sort(sort)
    column = _SORT_COLUMNS[sort.lstrip("-")]
    if sort.startswith("-"):
        return [column.desc(), OrderRecord.id.desc()]
    return [column.asc(), OrderRecord.id.asc()]


def _as_roll(value: Any) -> Roll:
    return value if isinstance(value, Roll) else Roll.model_validate(value)


class OrderStore:
    """
    Record store adapter over the ``orders`` / ``order_rolls`` tables.
    """

    def __init__(
        self,
        session_factory: Optional[sessionmaker],
        connectivity: ConnectivityProvider,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.connectivity = connectivity
        self.clock = clock

    def is_ready(self) -> bool:
        return self.session_factory is not None and self.connectivity.is_ready()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if not self.is_ready():
            raise StoreConnectionError("Database connection unavailable")
        session = self.session_factory()
        try:
            yield session
        except (OperationalError, InterfaceError) as e:
            session.rollback()
            logger.warning(f"Database connection lost mid-operation: {e.orig}")
            raise StoreConnectionError("Database connection lost", error=str(e.orig)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    #
    # Reads
    #

    def find(
        self,
        query_filter: Optional[QueryFilter] = None,
        sort: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[Order], int]:
        """Return (page of orders, total matching)."""
        with self._session() as session:
            query = session.query(OrderRecord).filter(*_filter_clauses(query_filter))
            total = query.count()
            query = query.order_by(*_order_by(sort)).offset(skip)
            if limit is not None:
                query = query.limit(limit)
            return [record.to_domain() for record in query.all()], total

    def get_by_id(self, order_id: str) -> Optional[Order]:
        with self._session() as session:
            record = session.get(OrderRecord, order_id)
            return record.to_domain() if record is not None else None

    def count_documents(self, query_filter: Optional[QueryFilter] = None) -> int:
        with self._session() as session:
            return session.query(OrderRecord).filter(*_filter_clauses(query_filter)).count()

    def find_overdue(self, now: Optional[datetime] = None) -> List[Order]:
        """Expected delivery strictly before ``now`` with at least one roll not dispatched."""
        now = now or self.clock()
        with self._session() as session:
            records = (
                session.query(OrderRecord)
                .filter(
                    OrderRecord.expected_delivery.isnot(None),
                    OrderRecord.expected_delivery < now,
                    OrderRecord.rolls.any(RollRecord.status != RollStatus.DISPATCHED.value),
                )
                .order_by(OrderRecord.expected_delivery.asc(), OrderRecord.id.asc())
                .all()
            )
            return [record.to_domain() for record in records]

    def stats(self) -> Dict[str, Any]:
        with self._session() as session:
            total = session.query(func.count(OrderRecord.id)).scalar() or 0
            pending = (
                session.query(OrderRecord)
                .filter(OrderRecord.rolls.any(RollRecord.status == RollStatus.PENDING.value))
                .count()
            )
            completed = (
                session.query(OrderRecord)
                .filter(
                    OrderRecord.rolls.any(),
                    ~OrderRecord.rolls.any(RollRecord.status != RollStatus.DISPATCHED.value),
                )
                .count()
            )
        return build_stats(total, pending, completed, now=self.clock())

    def aggregate(self, rollup: DailyRollup) -> List[DayBucket]:
        """Orders and rolls per calendar day since ``rollup.since``; days without orders are absent."""
        with self._session() as session:
            roll_counts = (
                session.query(
                    RollRecord.order_id.label("order_id"),
                    func.count(RollRecord.id).label("roll_count"),
                )
                .group_by(RollRecord.order_id)
                .subquery()
            )
            day = func.date(OrderRecord.created_at)
            rows = (
                session.query(
                    day.label("day"),
                    func.count(OrderRecord.id),
                    func.coalesce(func.sum(roll_counts.c.roll_count), 0),
                )
                .select_from(OrderRecord)
                .outerjoin(roll_counts, roll_counts.c.order_id == OrderRecord.id)
                .filter(OrderRecord.created_at >= rollup.since)
                .group_by(day)
                .order_by(day)
                .all()
            )
        # sqlite returns 'YYYY-MM-DD' strings, postgres returns date objects
        return [
            DayBucket(date=str(day_value), order_count=int(orders), total_roll_count=int(rolls))
            for day_value, orders, rolls in rows
        ]

    #
    # Writes
    #

    def create(self, payload: OrderCreate) -> Order:
        now = self.clock()
        record = OrderRecord(
            id=new_order_id(),
            order_number=payload.order_number,
            company_name=payload.company_name,
            broker=payload.broker,
            order_date=payload.order_date or now,
            expected_delivery=payload.expected_delivery,
            notes=payload.notes,
            created_at=now,
            updated_at=now,
            rolls=[RollRecord.from_domain(roll, i) for i, roll in enumerate(payload.rolls)],
        )
        with self._session() as session:
            session.add(record)
            session.commit()
            order = record.to_domain()
        logger.info(f"Created order {order.id} for {order.company_name!r}")
        return order

    def update_by_id(self, order_id: str, patch: Dict[str, Any]) -> Optional[Order]:
        """
        Apply ``patch`` (snake_case field -> value). ``rolls``, when present,
        replaces the whole roll list. Returns None when the id is unknown.
        """
        with self._session() as session:
            record = session.get(OrderRecord, order_id)
            if record is None:
                return None
            for field, value in patch.items():
                if field == "rolls":
                    record.rolls = [RollRecord.from_domain(_as_roll(roll), i) for i, roll in enumerate(value)]
                elif field in _PATCHABLE_FIELDS:
                    setattr(record, field, value)
            record.updated_at = max(self.clock(), record.updated_at, record.created_at)
            session.commit()
            return record.to_domain()

    def delete_by_id(self, order_id: str) -> Optional[Order]:
        with self._session() as session:
            record = session.get(OrderRecord, order_id)
            if record is None:
                return None
            order = record.to_domain()
            session.delete(record)
            session.commit()
        logger.info(f"Deleted order {order_id}")
        return order
