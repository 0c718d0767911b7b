"""
Database connection, session management and connectivity checks.
Uses SQLAlchemy for Postgres connections (SQLite for local runs and tests).
"""

import time
from typing import Callable, Optional, Protocol

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from oms.utils.logger import get_logger


logger = get_logger("database")

# Base class for all our database models (must be defined before engine)
Base = declarative_base()


def build_engine(database_url: str, connect_timeout: int = 5) -> Optional[Engine]:
    """
    Create the primary-store engine, or None when no DATABASE_URL is configured.

    Connection establishment is bounded by ``connect_timeout`` seconds so a
    dead database never hangs a request.
    """
    if not database_url:
        logger.info("DATABASE_URL not set — running without primary store")
        return None

    try:
        if database_url.startswith("sqlite"):
            return create_engine(
                database_url,
                pool_pre_ping=True,
                connect_args={"check_same_thread": False, "timeout": connect_timeout},
            )
        # Use NullPool for Supabase/Neon transaction poolers and serverless
        # functions; the pooler manages connections itself.
        return create_engine(
            database_url,
            pool_pre_ping=True,
            poolclass=NullPool,
            connect_args={"connect_timeout": connect_timeout},
        )
    except Exception as e:
        logger.warning(f"Failed to create DB engine: {e} — primary store disabled")
        return None


def make_session_factory(engine: Optional[Engine]) -> Optional[sessionmaker]:
    if engine is None:
        return None
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def create_tables(engine: Optional[Engine]) -> bool:
    """Create tables if they don't exist. In production, use migrations instead."""
    if engine is None:
        return False
    try:
        Base.metadata.create_all(bind=engine)
        return True
    except SQLAlchemyError as e:
        logger.warning(f"Could not run Base.metadata.create_all: {e}")
        return False


class ConnectivityProvider(Protocol):
    """Answers "is the primary store ready right now?". Queried on every operation."""

    def is_ready(self) -> bool:
        ...


class DatabaseConnectivity:
    """
    Connectivity provider backed by a live ``SELECT 1`` against the engine.
    An absent engine is never ready.

    A probe result is reused for ``max_age`` seconds, so the service's mode
    check and the store's own guard share one round trip per request.
    """

    def __init__(self, engine: Optional[Engine], max_age: float = 1.0, timer: Callable[[], float] = time.monotonic):
        self.engine = engine
        self.max_age = max_age
        self.timer = timer
        self._last_state: Optional[bool] = None
        self._checked_at: Optional[float] = None

    def is_ready(self) -> bool:
        if self.engine is None:
            return False
        now = self.timer()
        if self._checked_at is not None and now - self._checked_at < self.max_age:
            return bool(self._last_state)
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            ready = True
        except SQLAlchemyError as e:
            logger.debug(f"Primary store ping failed: {e}")
            ready = False
        self._log_transition(ready)
        self._checked_at = now
        return ready

    def _log_transition(self, ready: bool) -> None:
        if ready == self._last_state:
            return
        if ready:
            logger.info("Primary store connected")
        elif self._last_state is not None:
            logger.warning("Primary store disconnected")
        self._last_state = ready
