"""
AnalyticsExecutor -- deterministic computation of a QueryResult from a
validated plan.

Steps:
  1. Primary window: the last ``n`` days ending today (UTC)
  2. Fetch the unbroken series (and the broken-down series when the plan
     has breakdowns); with ``previous_period`` also fetch the window of
     equal length immediately before.  All fetches run concurrently.
  3. Summary: volume metrics are summed, ratio metrics averaged
  4. Comparison: change and a null-safe percentage change
  5. Breakdown table grouped by the composite breakdown key
  6. Attribution: current vs previous breakdown tables joined on the key,
     ranked by absolute delta
  7. Confidence drops to ``low`` when breakdowns were requested but no
     attribution could be built
"""
from __future__ import annotations

import asyncio
import datetime
from dataclasses import dataclass
from typing import Any

from src.copilot.metric_resolver import (
    METRIC_RESOLVERS,
    MetricTimeseriesSource,
    Resolver,
    Row,
    TimeseriesQuery,
    resolve,
)
from src.core.logging import get_logger
from src.core.utils import utc_today
from src.governance.plan_schema import (
    QueryPlan,
    QueryResult,
    ResultContext,
    Summary,
    TimeseriesPoint,
    is_ratio_metric,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class DateWindow:
    start: datetime.date
    end: datetime.date

    @classmethod
    def last_n_days(cls, n: int, today: datetime.date) -> "DateWindow":
        return cls(start=today - datetime.timedelta(days=n - 1), end=today)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def preceding(self) -> "DateWindow":
        """Window of equal length ending the day before this one starts."""
        end = self.start - datetime.timedelta(days=1)
        return DateWindow(start=end - datetime.timedelta(days=self.days - 1), end=end)


# ── Pure computations ────────────────────────────────────


def aggregate_values(metric: str, values: list[float]) -> float:
    """Average ratio metrics, sum volume metrics; empty -> 0."""
    if not values:
        return 0.0
    total = sum(values)
    if is_ratio_metric(metric):
        return total / len(values)
    return total


def pct_change(change: float, previous: float) -> float | None:
    if previous == 0:
        return None
    return round(change / previous * 100, 2)


def _group_key(row: Row, breakdowns: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(str(row.get(b, "")) for b in breakdowns)


def build_breakdown_table(metric: str, breakdowns: tuple[str, ...], rows: list[Row]) -> list[Row]:
    """Group rows by breakdown values, aggregate, sort by value descending."""
    if not breakdowns:
        return []

    buckets: dict[tuple[str, ...], dict[str, Any]] = {}
    for row in rows:
        key = _group_key(row, breakdowns)
        if key not in buckets:
            buckets[key] = {"fields": {b: row.get(b, "") for b in breakdowns}, "values": []}
        buckets[key]["values"].append(float(row.get("value") or 0))

    table = [
        {**bucket["fields"], "value": aggregate_values(metric, bucket["values"])}
        for bucket in buckets.values()
    ]
    return sorted(table, key=lambda r: r["value"], reverse=True)


def compute_attribution(breakdowns: tuple[str, ...], current: list[Row], previous: list[Row]) -> list[Row]:
    """Join current/previous breakdown tables and rank groups by |delta|."""
    if not breakdowns:
        return []

    previous_by_key = {_group_key(r, breakdowns): r["value"] for r in previous}
    out: list[Row] = []
    for row in current:
        prev = previous_by_key.get(_group_key(row, breakdowns), 0.0)
        entry: Row = {b: row[b] for b in breakdowns}
        entry.update(current=row["value"], previous=prev, delta=row["value"] - prev)
        out.append(entry)
    return sorted(out, key=lambda r: abs(r["delta"]), reverse=True)


# ── Executor ─────────────────────────────────────────────


class AnalyticsExecutor:
    """Resolve a plan against a metric source and compute the result."""

    def __init__(self, source: MetricTimeseriesSource, resolvers: dict[str, Resolver] | None = None):
        self.source = source
        self.resolvers = resolvers or METRIC_RESOLVERS

    async def _series(self, query: TimeseriesQuery) -> list[Row]:
        return await resolve(self.source, query, self.resolvers)

    async def _nothing(self) -> list[Row]:
        return []

    async def execute(
        self,
        question: str,
        tenant_id: str,
        plan: QueryPlan,
        today: datetime.date | None = None,
    ) -> QueryResult:
        window = DateWindow.last_n_days(plan.time_range.n, today or utc_today())
        breakdowns = tuple(plan.breakdowns)
        compare = plan.wants_comparison

        if plan.filters:
            logger.debug("Plan filters are carried in context only: %s", plan.filters)

        def query(w: DateWindow, groups: tuple[str, ...]) -> TimeseriesQuery:
            return TimeseriesQuery(
                tenant_id=tenant_id,
                metric=plan.metric,
                start_date=w.start,
                end_date=w.end,
                granularity=plan.granularity,
                breakdowns=groups,
            )

        previous_window = window.preceding() if compare else None
        current_rows, current_groups, previous_rows, previous_groups = await asyncio.gather(
            self._series(query(window, ())),
            self._series(query(window, breakdowns)) if breakdowns else self._nothing(),
            self._series(query(previous_window, ())) if previous_window else self._nothing(),
            self._series(query(previous_window, breakdowns)) if previous_window and breakdowns else self._nothing(),
        )

        timeseries = [TimeseriesPoint(date=r["date"], value=r["value"]) for r in current_rows]
        value = round(aggregate_values(plan.metric, [p.value for p in timeseries]), 2)

        previous = change = change_pct = None
        attribution: list[Row] = []
        breakdown_table = build_breakdown_table(plan.metric, breakdowns, current_groups)

        if compare:
            previous = round(aggregate_values(plan.metric, [r["value"] for r in previous_rows]), 2)
            change = round(value - previous, 2)
            change_pct = pct_change(change, previous)
            if breakdowns:
                previous_table = build_breakdown_table(plan.metric, breakdowns, previous_groups)
                attribution = compute_attribution(breakdowns, breakdown_table, previous_table)

        confidence = "low" if breakdowns and not attribution else "high"

        logger.info(
            "Executed metric=%s window=%s..%s rows=%d groups=%d attribution=%d confidence=%s",
            plan.metric, window.start, window.end, len(timeseries),
            len(breakdown_table), len(attribution), confidence,
        )

        return QueryResult(
            question=question,
            context=ResultContext(tenant_id=tenant_id, plan=plan),
            summary=Summary(value=value, previous=previous, change=change, change_pct=change_pct),
            timeseries=timeseries,
            breakdown_table=breakdown_table,
            attribution=attribution,
            confidence=confidence,
        )
