"""
Warehouse ``MetricTimeseriesSource`` over the daily rollup tables.

Only metrics with a native rollup are served here; arpdau and revenue by
breakdown are composed from these series by ``src.copilot.metric_resolver``.

Identifiers come from the static ``METRIC_SOURCES`` / ``BREAKDOWN_COLUMNS``
tables, never from the request; tenant and dates are bound parameters.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from src.copilot.metric_resolver import TimeseriesQuery
from src.core.errors import DataSourceError
from src.core.logging import get_logger
from src.db.query import execute_readonly

logger = get_logger(__name__)


@dataclass(frozen=True)
class MetricTable:
    table: str
    date_column: str
    value_expr: str
    extra_where: str = ""
    breakdown_columns: tuple[str, ...] = ("country", "platform")


_RETENTION_EXPR = (
    'CASE WHEN SUM("cohortSize") = 0 THEN 0 '
    'ELSE (SUM("retainedUsers")::double precision / NULLIF(SUM("cohortSize"), 0)) * 100 END'
)

METRIC_SOURCES: dict[str, MetricTable] = {
    "revenue": MetricTable(
        table="monetization_daily_rollups",
        date_column="date",
        value_expr='SUM("totalRevenueUsd")::double precision',
        breakdown_columns=(),
    ),
    "dau": MetricTable(
        table="active_users_daily",
        date_column="date",
        value_expr='SUM("dau")::double precision',
    ),
    "installs": MetricTable(
        table="cohort_retention_daily",
        date_column="installDate",
        value_expr='SUM("cohortSize")::double precision',
        extra_where='AND "dayIndex" = 0',
    ),
    "d1_retention": MetricTable(
        table="cohort_retention_daily",
        date_column="installDate",
        value_expr=_RETENTION_EXPR,
        extra_where='AND "dayIndex" = 1',
    ),
    "d7_retention": MetricTable(
        table="cohort_retention_daily",
        date_column="installDate",
        value_expr=_RETENTION_EXPR,
        extra_where='AND "dayIndex" = 7',
    ),
}

BREAKDOWN_COLUMNS: dict[str, str] = {
    "country": "countryCode",
    "platform": "platform",
}


def build_timeseries_sql(query: TimeseriesQuery) -> tuple[str, dict[str, Any]]:
    """Compile *query* to parameterised SQL.

    Raises
    ------
    DataSourceError
        For a metric without a native rollup or an unsupported breakdown.
    """
    source = METRIC_SOURCES.get(query.metric)
    if source is None:
        raise DataSourceError(f"Metric '{query.metric}' has no native rollup in the warehouse")
    for b in query.breakdowns:
        if b not in source.breakdown_columns:
            raise DataSourceError(
                f"Breakdown '{b}' is not available on {source.table} for metric '{query.metric}'"
            )

    unit = "week" if query.granularity == "week" else "day"
    date_expr = f"date_trunc('{unit}', \"{source.date_column}\")::date"

    select_parts = [f'{date_expr} AS "date"', f'{source.value_expr} AS "value"']
    group_parts = [date_expr]
    for b in query.breakdowns:
        select_parts.append(f'"{BREAKDOWN_COLUMNS[b]}" AS "{b}"')
        group_parts.append(f'"{BREAKDOWN_COLUMNS[b]}"')

    group_by = ", ".join(group_parts)
    sql = (
        f"SELECT {', '.join(select_parts)}\n"
        f'FROM "{source.table}"\n'
        f'WHERE "gameId" = :tenant_id\n'
        f'  AND "{source.date_column}" >= :start_date\n'
        f'  AND "{source.date_column}" <= :end_date\n'
        + (f"  {source.extra_where}\n" if source.extra_where else "")
        + f"GROUP BY {group_by}\n"
        f"ORDER BY {group_by}"
    )
    params = {
        "tenant_id": query.tenant_id,
        "start_date": query.start_date,
        "end_date": query.end_date,
    }
    return sql, params


class WarehouseMetricSource:
    """Postgres rollups via SQLAlchemy; the blocking call runs in a worker thread."""

    def __init__(self, timeout_ms: int | None = None):
        self.timeout_ms = timeout_ms

    async def fetch_metric_timeseries(self, query: TimeseriesQuery) -> list[dict[str, Any]]:
        sql, params = build_timeseries_sql(query)
        try:
            rows = await asyncio.to_thread(execute_readonly, sql, params, self.timeout_ms)
        except SQLAlchemyError as exc:
            logger.exception("Warehouse query failed  metric=%s", query.metric)
            raise DataSourceError(f"Warehouse query failed for metric '{query.metric}': {exc}") from exc

        logger.info(
            "Fetched metric=%s %s..%s breakdowns=%s rows=%d",
            query.metric, query.start_date, query.end_date, list(query.breakdowns), len(rows),
        )
        return rows
