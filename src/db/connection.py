"""SQLAlchemy engine for the telemetry warehouse.

Single shared engine with connection pooling.  Warehouse reads go through
``readonly_connection``, which pins the transaction to READ ONLY.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from src.core.config import get_settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared SQLAlchemy engine (lazy-created, cached)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            echo=False,
        )
        logger.info("DB engine created  host=%s  db=%s", settings.postgres_host, settings.postgres_db)
    return _engine


def dispose_engine() -> None:
    """Close pooled connections (app shutdown)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
        logger.info("DB engine disposed")


@contextmanager
def readonly_connection() -> Generator[Connection, None, None]:
    """Yield a connection inside a READ ONLY transaction.

    The transaction is rolled back and the connection returned to the pool
    on exit.
    """
    conn = get_engine().connect()
    trans = conn.begin()
    try:
        conn.execute(text("SET TRANSACTION READ ONLY"))
        yield conn
    finally:
        trans.rollback()
        conn.close()


def ping() -> bool:
    """True if the warehouse answers ``SELECT 1``."""
    try:
        with readonly_connection() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        logger.warning("Warehouse ping failed", exc_info=True)
        return False
