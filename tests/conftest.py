"""Pytest configuration for OMS tests."""

import fnmatch
import os
import time
from datetime import datetime, timedelta

import pytest
import redis
from sqlalchemy import create_engine

os.environ.setdefault("OMS_ENV", "test")

from oms.cache import CacheClient  # noqa: E402
from oms.core.config import Environment  # noqa: E402
from oms.data.database import Base, make_session_factory  # noqa: E402
from oms.data import records  # noqa: E402,F401  (registers tables on Base)
from oms.data.local_store import LocalOrderStore  # noqa: E402
from oms.data.order_store import OrderStore  # noqa: E402
from oms.metrics import MetricsCollector  # noqa: E402
from oms.service import OrderService  # noqa: E402


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeClock:
    """Settable "now" shared by stores and service."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeConnectivity:
    """Connectivity provider whose readiness the test flips directly."""

    def __init__(self, ready: bool = True):
        self.ready = ready
        self.checks = 0

    def is_ready(self) -> bool:
        self.checks += 1
        return self.ready


class InMemoryRedis:
    """
    Minimal stand-in for a decode_responses=True redis client:
    get / setex / delete / scan_iter / ping with TTL expiry.
    Set ``fail = True`` to make every call raise redis.ConnectionError.
    """

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("Connection refused")

    def _purge(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        self._purge(key)
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.data[key] = value
        self.expiry[key] = time.monotonic() + ttl
        return True

    def ttl(self, key):
        self._purge(key)
        if key not in self.data:
            return -2
        return int(self.expiry[key] - time.monotonic())

    def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if key in self.data:
                removed += 1
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    def scan_iter(self, match="*", count=None):
        self._check()
        for key in list(self.data):
            self._purge(key)
        return iter([k for k in list(self.data) if fnmatch.fnmatchcase(k, match)])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 15, 12, 0, 0))


@pytest.fixture
def connectivity():
    return FakeConnectivity(ready=True)


@pytest.fixture
def db_engine(tmp_path):
    """Fresh SQLite file database per test."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def primary(db_engine, connectivity, clock):
    return OrderStore(make_session_factory(db_engine), connectivity, clock=clock)


@pytest.fixture
def fallback(tmp_path, clock):
    return LocalOrderStore(tmp_path / "data", clock=clock)


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def cache(fake_redis, metrics):
    return CacheClient(client=fake_redis, prefix="oms:", metrics=metrics)


@pytest.fixture
def service(primary, fallback, cache, connectivity, metrics, clock):
    return OrderService(
        primary=primary,
        fallback=fallback,
        cache=cache,
        connectivity=connectivity,
        environment=Environment.TEST,
        metrics=metrics,
        clock=clock,
    )


@pytest.fixture
def order_payload():
    """Factory for camelCase create bodies."""

    def _make(company="Acme Steel", statuses=("pending",), grade="ALLOYS", **overrides):
        payload = {
            "companyName": company,
            "broker": "Northern Brokers",
            "notes": "",
            "rolls": [
                {
                    "rollNumber": f"R-{i + 1}",
                    "grade": grade,
                    "hardness": "HRC 45-50",
                    "machining": "Rough",
                    "rollDescription": "Work roll",
                    "dimensions": "100x200",
                    "status": status,
                }
                for i, status in enumerate(statuses)
            ],
        }
        payload.update(overrides)
        return payload

    return _make
