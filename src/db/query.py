"""
Read-only SQL runner.

``execute_readonly``:
  1. Opens a READ ONLY transaction (Postgres-enforced)
  2. Binds parameters through text() -- values are never interpolated
  3. Enforces a per-statement timeout (statement_timeout)
  4. Converts Decimal/date/datetime to plain Python types
"""
from __future__ import annotations

import datetime
import decimal
from typing import Any

from sqlalchemy import text

from src.core.config import get_settings
from src.core.logging import get_logger
from src.db.connection import readonly_connection

logger = get_logger(__name__)


def _serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime)):
        return val.isoformat()
    return val


def execute_readonly(
    sql: str,
    params: dict[str, Any] | None = None,
    timeout_ms: int | None = None,
) -> list[dict[str, Any]]:
    """Execute a read-only query and return rows as plain dicts.

    Raises
    ------
    sqlalchemy.exc.SQLAlchemyError
        Propagated unchanged; callers decide how to surface it.
    """
    timeout_ms = timeout_ms or get_settings().sql_timeout_ms
    logger.debug("Executing SQL (%d chars) params=%s", len(sql), params)

    with readonly_connection() as conn:
        conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        result = conn.execute(text(sql), params or {})
        columns = list(result.keys())
        rows = [
            {col: _serialise_value(val) for col, val in zip(columns, row)}
            for row in result.fetchall()
        ]

    logger.debug("Returned %d rows", len(rows))
    return rows
