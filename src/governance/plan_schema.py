"""
PlanSchema -- the closed vocabulary a query plan may use, plus the typed
QueryPlan / QueryResult models that flow between pipeline stages.

The vocabulary tuples are the single source of truth: the validator, the
planner prompt, the offline planner and the catalog endpoint all read
from here.  Adding a metric means adding it to ``METRICS``,
``METRIC_BREAKDOWN_SUPPORT`` and ``METRIC_AGGREGATION`` (plus a resolver
entry in ``src.copilot.metric_resolver``).
"""
from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

# ── Vocabulary ───────────────────────────────────────────

METRICS: tuple[str, ...] = (
    "revenue",
    "dau",
    "installs",
    "d1_retention",
    "d7_retention",
    "arpdau",
)

BREAKDOWNS: tuple[str, ...] = ("country", "platform")
GRANULARITIES: tuple[str, ...] = ("day", "week")
TIME_RANGE_TYPES: tuple[str, ...] = ("last_n_days",)
COMPARISONS: tuple[str, ...] = ("none", "previous_period")
ANALYSES: tuple[str, ...] = ("trend", "top_contributors")
RESPONSE_MODES: tuple[str, ...] = ("short", "deep")
CONFIDENCE_LEVELS: tuple[str, ...] = ("high", "medium", "low")

# Longest lookback a plan may request; the comparison window doubles it.
MAX_WINDOW_DAYS = 3650

# Which breakdowns each metric can be grouped by.
METRIC_BREAKDOWN_SUPPORT: dict[str, frozenset[str]] = {
    "revenue":      frozenset({"country", "platform"}),
    "dau":          frozenset({"country", "platform"}),
    "installs":     frozenset({"country", "platform"}),
    "d1_retention": frozenset({"country", "platform"}),
    "d7_retention": frozenset({"country", "platform"}),
    "arpdau":       frozenset(),
}

# How bucket values roll up: volumes are summed, ratios are averaged.
METRIC_AGGREGATION: dict[str, str] = {
    "revenue":      "sum",
    "dau":          "sum",
    "installs":     "sum",
    "d1_retention": "mean",
    "d7_retention": "mean",
    "arpdau":       "mean",
}

METRIC_DESCRIPTIONS: dict[str, str] = {
    "revenue":      "Gross revenue in USD",
    "dau":          "Daily active users",
    "installs":     "New installs (day-0 cohort size)",
    "d1_retention": "Share of an install cohort active on day 1 (%)",
    "d7_retention": "Share of an install cohort active on day 7 (%)",
    "arpdau":       "Average revenue per daily active user",
}

CONFIDENCE_SCORES: dict[str, float] = {"high": 0.9, "medium": 0.6, "low": 0.3}

PLAN_KEYS: tuple[str, ...] = (
    "game",
    "metric",
    "granularity",
    "time_range",
    "breakdowns",
    "comparison",
    "analysis",
    "filters",
    "response_mode",
)
TIME_RANGE_KEYS: tuple[str, ...] = ("type", "n")
COMPARISON_KEYS: tuple[str, ...] = ("type",)
FILTER_KEYS: tuple[str, ...] = ("field", "op", "value")

RESULT_KEYS: tuple[str, ...] = (
    "question",
    "context",
    "summary",
    "timeseries",
    "breakdown_table",
    "attribution",
    "confidence",
)
CONTEXT_KEYS: tuple[str, ...] = ("tenant_id", "plan")
SUMMARY_KEYS: tuple[str, ...] = ("value", "previous", "change", "changePct")
TIMESERIES_KEYS: tuple[str, ...] = ("date", "value")
ATTRIBUTION_VALUE_KEYS: tuple[str, ...] = ("current", "previous", "delta")


def is_ratio_metric(metric: str) -> bool:
    return METRIC_AGGREGATION.get(metric) == "mean"


def supported_breakdowns(metric: str) -> frozenset[str]:
    return METRIC_BREAKDOWN_SUPPORT.get(metric, frozenset())


# ── Plan models ──────────────────────────────────────────

MetricName = Literal["revenue", "dau", "installs", "d1_retention", "d7_retention", "arpdau"]
BreakdownName = Literal["country", "platform"]


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class TimeRange(_Strict):
    type: Literal["last_n_days"]
    n: int = Field(..., gt=0, le=MAX_WINDOW_DAYS)


class Comparison(_Strict):
    type: Literal["none", "previous_period"]


class PlanFilter(_Strict):
    field: str
    op: str
    value: Union[str, float, int]


class QueryPlan(_Strict):
    """Validated, immutable representation of an analytics question."""

    game: str
    metric: MetricName
    granularity: Literal["day", "week"]
    time_range: TimeRange
    breakdowns: list[BreakdownName] = Field(default_factory=list)
    comparison: Comparison
    analysis: list[str] = Field(default_factory=list)
    filters: list[PlanFilter] = Field(default_factory=list)
    response_mode: Literal["short", "deep"]

    @property
    def wants_comparison(self) -> bool:
        return self.comparison.type == "previous_period"

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ── Result models ────────────────────────────────────────


class ResultContext(_Strict):
    tenant_id: str
    plan: QueryPlan


class Summary(_Strict):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    value: float
    previous: float | None = None
    change: float | None = None
    change_pct: float | None = Field(None, alias="changePct")


class TimeseriesPoint(_Strict):
    date: str
    value: float


class QueryResult(_Strict):
    """Computed analytics output for one (tenant, plan) pair."""

    question: str
    context: ResultContext
    summary: Summary
    timeseries: list[TimeseriesPoint] = Field(default_factory=list)
    breakdown_table: list[dict[str, Any]] = Field(default_factory=list)
    attribution: list[dict[str, Any]] = Field(default_factory=list)
    confidence: Literal["high", "medium", "low"]

    def to_dict(self) -> dict[str, Any]:
        """JSON-shaped dict using the wire names (``changePct``)."""
        return self.model_dump(mode="json", by_alias=True)
