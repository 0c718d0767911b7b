"""
Local JSON-file order store, used when the primary database is unavailable
outside production.

The whole collection lives in one JSON array at ``<data_dir>/orders.json``.
Writes go to a temp file in the same directory and are moved into place
with ``os.replace``. If the file system refuses a write (read-only
serverless disk, permissions) the store switches to an in-memory list for
the rest of the process.
"""

import json
import os
import random
import string
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from pydantic import ValidationError

from oms.errors import OrderServiceError
from oms.models import Order, OrderCreate, Roll
from oms.query import DailyRollup, DayBucket, QueryFilter, compute_stats, find_overdue, rollup_by_day, sort_orders
from oms.utils.logger import get_logger
from oms.utils.time import utc_ms, utcnow

logger = get_logger("local_store")

ORDERS_FILENAME = "orders.json"
_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LENGTH = 9


class LocalOrderStore:
    """File-backed fallback store with the same operations as OrderStore."""

    def __init__(self, data_dir, clock: Callable[[], datetime] = utcnow):
        self.data_dir = Path(data_dir)
        self.orders_file = self.data_dir / ORDERS_FILENAME
        self.clock = clock
        self._lock = threading.RLock()
        self._initialized = False
        self._in_memory: Optional[List[Dict[str, Any]]] = None
        self._issued_ids: Set[str] = set()

    @property
    def in_memory(self) -> bool:
        return self._in_memory is not None

    def init(self) -> None:
        """Create the data directory and an empty orders file on first use."""
        with self._lock:
            if self._initialized:
                return
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                if not self.orders_file.exists():
                    self._atomic_write([])
                logger.info(f"Local order store ready at {self.orders_file}")
            except OSError as e:
                self._degrade(e, [])
            self._initialized = True

    def _degrade(self, error: OSError, payload: List[Dict[str, Any]]) -> None:
        if self._in_memory is None:
            logger.warning(
                f"Cannot write {self.orders_file} ({error}); "
                "keeping orders in memory for the rest of this process"
            )
        self._in_memory = payload

    def _atomic_write(self, payload: List[Dict[str, Any]]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".orders-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.orders_file)
        except OSError:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    #
    # Whole-collection access
    #

    def read_all(self) -> List[Order]:
        with self._lock:
            self.init()
            if self._in_memory is not None:
                raw = list(self._in_memory)
            else:
                try:
                    text = self.orders_file.read_text(encoding="utf-8")
                except OSError as e:
                    logger.error(f"Error reading {self.orders_file}: {e}")
                    raise OrderServiceError("Cannot read local order file", path=str(self.orders_file)) from e
                try:
                    raw = json.loads(text) if text.strip() else []
                except ValueError as e:
                    raise OrderServiceError("Local order file is corrupt", path=str(self.orders_file)) from e
        try:
            return [Order.model_validate(item) for item in raw]
        except ValidationError as e:
            raise OrderServiceError("Local order file is corrupt", path=str(self.orders_file)) from e

    def write(self, orders: List[Order]) -> None:
        payload = [order.to_payload() for order in orders]
        with self._lock:
            self.init()
            if self._in_memory is not None:
                self._in_memory = payload
                return
            try:
                self._atomic_write(payload)
            except OSError as e:
                self._degrade(e, payload)

    def _generate_id(self, existing: Set[str]) -> str:
        while True:
            suffix = "".join(random.choices(_ID_ALPHABET, k=_ID_SUFFIX_LENGTH))
            candidate = f"{utc_ms()}{suffix}"
            if candidate not in existing and candidate not in self._issued_ids:
                self._issued_ids.add(candidate)
                return candidate

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
        query_filter = query_filter or QueryFilter()
        matched = sort_orders((o for o in self.read_all() if query_filter.matches(o)), sort)
        end = None if limit is None else skip + limit
        return matched[skip:end], len(matched)

    def get_by_id(self, order_id: str) -> Optional[Order]:
        return next((o for o in self.read_all() if o.id == order_id), None)

    def count_documents(self, query_filter: Optional[QueryFilter] = None) -> int:
        query_filter = query_filter or QueryFilter()
        return sum(1 for o in self.read_all() if query_filter.matches(o))

    def find_overdue(self, now: Optional[datetime] = None) -> List[Order]:
        return find_overdue(self.read_all(), now or self.clock())

    def stats(self) -> Dict[str, Any]:
        return compute_stats(self.read_all(), now=self.clock())

    def aggregate(self, rollup: DailyRollup) -> List[DayBucket]:
        return rollup_by_day(self.read_all(), rollup)

    #
    # Writes (read-modify-write under the store lock)
    #

    def create(self, payload: OrderCreate) -> Order:
        with self._lock:
            orders = self.read_all()
            now = self.clock()
            order = Order(
                id=self._generate_id({o.id for o in orders}),
                order_number=payload.order_number,
                company_name=payload.company_name,
                broker=payload.broker,
                order_date=payload.order_date or now,
                expected_delivery=payload.expected_delivery,
                notes=payload.notes,
                rolls=list(payload.rolls),
                created_at=now,
                updated_at=now,
            )
            orders.append(order)
            self.write(orders)
        logger.info(f"Created order {order.id} in local store")
        return order

    def update_by_id(self, order_id: str, patch: Dict[str, Any]) -> Optional[Order]:
        with self._lock:
            orders = self.read_all()
            for index, current in enumerate(orders):
                if current.id != order_id:
                    continue
                changes = {k: v for k, v in patch.items() if k in Order.model_fields and k not in ("id", "created_at")}
                if "rolls" in changes:
                    changes["rolls"] = [r if isinstance(r, Roll) else Roll.model_validate(r) for r in changes["rolls"]]
                changes["updated_at"] = max(self.clock(), current.updated_at, current.created_at)
                updated = current.model_copy(update=changes)
                orders[index] = updated
                self.write(orders)
                return updated
        return None

    def delete_by_id(self, order_id: str) -> Optional[Order]:
        with self._lock:
            orders = self.read_all()
            remaining = [o for o in orders if o.id != order_id]
            if len(remaining) == len(orders):
                return None
            deleted = next(o for o in orders if o.id == order_id)
            self.write(remaining)
        logger.info(f"Deleted order {order_id} from local store")
        return deleted
