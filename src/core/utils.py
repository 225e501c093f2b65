"""
Small shared utilities.
"""
from __future__ import annotations

import datetime
import time
from contextlib import contextmanager
from typing import Any, Generator


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def utc_today() -> datetime.date:
    """Current UTC calendar day."""
    return datetime.datetime.now(datetime.timezone.utc).date()


def format_day(value: Any) -> str:
    """Render a date-like value as ``YYYY-MM-DD``."""
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    return str(value)[:10]
