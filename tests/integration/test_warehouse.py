"""
Integration tests -- read-only runner and warehouse source against live PostgreSQL.

These tests require a running Postgres instance; the rollup tests also need
the tables created by ``python -m pipelines.seed.seed_data``.  They are
skipped automatically when either is missing.
"""
from __future__ import annotations

import datetime

import pytest

from src.db.connection import ping

DB_AVAILABLE = ping()

pytestmark = pytest.mark.skipif(not DB_AVAILABLE, reason="Postgres not reachable")

from src.copilot.metric_resolver import TimeseriesQuery  # noqa: E402
from src.db.metric_source import METRIC_SOURCES, WarehouseMetricSource  # noqa: E402
from src.db.query import execute_readonly  # noqa: E402


def _tables_present() -> bool:
    if not DB_AVAILABLE:
        return False
    rows = execute_readonly(
        "SELECT count(*) AS n FROM information_schema.tables WHERE table_name = ANY(:names)",
        {"names": sorted({s.table for s in METRIC_SOURCES.values()})},
    )
    return rows[0]["n"] == 3


needs_rollups = pytest.mark.skipif(not _tables_present(), reason="rollup tables not seeded")


# ── Read-only runner ─────────────────────────────────────

def test_simple_select():
    assert execute_readonly("SELECT 1 AS n") == [{"n": 1}]


def test_bound_parameters():
    rows = execute_readonly("SELECT CAST(:x AS int) + 1 AS n", {"x": 41})
    assert rows == [{"n": 42}]


def test_write_blocked():
    """READ ONLY transaction must reject writes."""
    with pytest.raises(Exception):
        execute_readonly("CREATE TABLE _copilot_no_write (id INT)")


def test_timeout_fires():
    with pytest.raises(Exception):
        execute_readonly("SELECT pg_sleep(30)", timeout_ms=200)


def test_decimal_and_date_serialised():
    rows = execute_readonly("SELECT 1.5::numeric AS d, DATE '2025-03-01' AS day")
    assert rows == [{"d": 1.5, "day": "2025-03-01"}]


# ── Warehouse source ─────────────────────────────────────

@needs_rollups
@pytest.mark.parametrize("metric", sorted(METRIC_SOURCES))
async def test_unknown_tenant_returns_no_rows(metric):
    today = datetime.date.today()
    query = TimeseriesQuery(
        tenant_id="no-such-game",
        metric=metric,
        start_date=today - datetime.timedelta(days=6),
        end_date=today,
    )
    assert await WarehouseMetricSource().fetch_metric_timeseries(query) == []


@needs_rollups
async def test_dau_by_platform_shape():
    today = datetime.date.today()
    query = TimeseriesQuery(
        tenant_id="no-such-game",
        metric="dau",
        start_date=today - datetime.timedelta(days=6),
        end_date=today,
        granularity="week",
        breakdowns=("platform",),
    )
    rows = await WarehouseMetricSource().fetch_metric_timeseries(query)
    assert all(set(r) == {"date", "value", "platform"} for r in rows)
