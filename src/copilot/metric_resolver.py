"""
Metric resolver -- turns (metric, window, breakdowns) into time-series rows.

Each metric owns an entry in ``METRIC_RESOLVERS``.  Most metrics have a
native rollup and are fetched straight from the ``MetricTimeseriesSource``.
Two need composition:

  arpdau                 revenue / DAU joined per date (0 when DAU is 0)
  revenue + breakdowns   no per-breakdown revenue exists, so the date's
                         total revenue is apportioned by each group's share
                         of that date's DAU:
                             revenue(date, g) = revenue(date) * dau(date, g) / dau(date)
                         This is an approximation, not a ledger join.

Rows returned by every resolver are normalised to
``{"date": "YYYY-MM-DD", "value": float, <breakdown>: ...}``.
"""
from __future__ import annotations

import asyncio
import datetime
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Protocol

from src.core.utils import format_day

Row = dict[str, Any]


@dataclass(frozen=True)
class TimeseriesQuery:
    """One request to the metric source."""

    tenant_id: str
    metric: str
    start_date: datetime.date
    end_date: datetime.date
    granularity: str = "day"
    breakdowns: tuple[str, ...] = ()


class MetricTimeseriesSource(Protocol):
    """Warehouse capability: pre-aggregated rollups per metric."""

    async def fetch_metric_timeseries(self, query: TimeseriesQuery) -> list[Row]: ...


def _to_float(value: Any) -> float:
    return float(value or 0)


def normalise_rows(rows: list[Row], breakdowns: tuple[str, ...]) -> list[Row]:
    out: list[Row] = []
    for row in rows:
        item: Row = {"date": format_day(row.get("date")), "value": _to_float(row.get("value"))}
        for b in breakdowns:
            item[b] = row.get(b) if row.get(b) is not None else ""
        out.append(item)
    return out


async def _fetch(source: MetricTimeseriesSource, query: TimeseriesQuery) -> list[Row]:
    return normalise_rows(await source.fetch_metric_timeseries(query), query.breakdowns)


# ── Resolvers ────────────────────────────────────────────


async def resolve_native(source: MetricTimeseriesSource, query: TimeseriesQuery) -> list[Row]:
    return await _fetch(source, query)


async def resolve_arpdau(source: MetricTimeseriesSource, query: TimeseriesQuery) -> list[Row]:
    totals = replace(query, breakdowns=())
    revenue_rows, dau_rows = await asyncio.gather(
        _fetch(source, replace(totals, metric="revenue")),
        _fetch(source, replace(totals, metric="dau")),
    )
    dau_by_date = {r["date"]: r["value"] for r in dau_rows}
    out: list[Row] = []
    for r in revenue_rows:
        if r["date"] not in dau_by_date:
            continue
        dau = dau_by_date[r["date"]]
        out.append({"date": r["date"], "value": 0.0 if dau == 0 else r["value"] / dau})
    return sorted(out, key=lambda r: r["date"])


async def resolve_revenue(source: MetricTimeseriesSource, query: TimeseriesQuery) -> list[Row]:
    if not query.breakdowns:
        return await _fetch(source, query)

    revenue_rows, dau_rows = await asyncio.gather(
        _fetch(source, replace(query, breakdowns=())),
        _fetch(source, replace(query, metric="dau")),
    )
    return apportion_by_share(revenue_rows, dau_rows, query.breakdowns)


def apportion_by_share(totals: list[Row], shares: list[Row], breakdowns: tuple[str, ...]) -> list[Row]:
    """Split each date's total across groups in proportion to their share rows."""
    total_by_date = {r["date"]: r["value"] for r in totals}
    share_total: dict[str, float] = defaultdict(float)
    for r in shares:
        share_total[r["date"]] += r["value"]

    out: list[Row] = []
    for r in shares:
        if r["date"] not in total_by_date:
            continue
        denom = share_total[r["date"]]
        item: Row = {"date": r["date"]}
        for b in breakdowns:
            item[b] = r[b]
        item["value"] = 0.0 if denom == 0 else total_by_date[r["date"]] * r["value"] / denom
        out.append(item)
    return sorted(out, key=lambda r: r["date"])


Resolver = Callable[[MetricTimeseriesSource, TimeseriesQuery], Awaitable[list[Row]]]

METRIC_RESOLVERS: dict[str, Resolver] = {
    "revenue":      resolve_revenue,
    "dau":          resolve_native,
    "installs":     resolve_native,
    "d1_retention": resolve_native,
    "d7_retention": resolve_native,
    "arpdau":       resolve_arpdau,
}


async def resolve(
    source: MetricTimeseriesSource,
    query: TimeseriesQuery,
    resolvers: dict[str, Resolver] | None = None,
) -> list[Row]:
    """Fetch rows for *query* using the metric's entry in *resolvers*."""
    return await (resolvers or METRIC_RESOLVERS)[query.metric](source, query)
