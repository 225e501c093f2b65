"""
PlanValidator -- structural and semantic checks on planner output and on
executor results.

Checks performed on a candidate plan:
  1. It is an object with no keys outside the fixed plan key set
  2. ``game`` is a non-empty string
  3. ``metric`` / ``granularity`` / ``response_mode`` are in their enums
  4. ``time_range`` has exactly {type, n}, type is last_n_days,
     0 < n <= MAX_WINDOW_DAYS
  5. Every breakdown is a known breakdown
  6. ``comparison`` has exactly {type} with a known comparison kind
  7. ``analysis`` and ``filters`` are arrays; each filter is exactly
     {field, op, value} with a string/number value
  8. Every requested breakdown is supported by the metric

Validation is all-or-nothing: every violation is collected and a single
``SchemaValidationError`` naming the offending fields is raised.
"""
from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from src.core.errors import SchemaValidationError
from src.governance.plan_schema import (
    ATTRIBUTION_VALUE_KEYS,
    BREAKDOWNS,
    COMPARISON_KEYS,
    COMPARISONS,
    CONFIDENCE_LEVELS,
    CONTEXT_KEYS,
    FILTER_KEYS,
    GRANULARITIES,
    MAX_WINDOW_DAYS,
    METRICS,
    PLAN_KEYS,
    RESPONSE_MODES,
    RESULT_KEYS,
    SUMMARY_KEYS,
    TIME_RANGE_KEYS,
    TIME_RANGE_TYPES,
    TIMESERIES_KEYS,
    QueryPlan,
    QueryResult,
    supported_breakdowns,
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value


def _is_nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _key_errors(obj: dict[str, Any], allowed: tuple[str, ...], label: str, required: bool = True) -> list[str]:
    errors: list[str] = []
    extra = [k for k in obj if k not in allowed]
    if extra:
        errors.append(f"{label} has unknown fields: {', '.join(map(str, extra))}")
    if required:
        missing = [k for k in allowed if k not in obj]
        if missing:
            errors.append(f"{label} is missing fields: {', '.join(missing)}")
    return errors


# ── Plan ─────────────────────────────────────────────────


def plan_errors(candidate: Any) -> list[str]:
    """Return every violation in *candidate* (empty list = valid plan)."""
    if not isinstance(candidate, dict):
        return ["Plan must be an object."]

    errors = _key_errors(candidate, PLAN_KEYS, "Plan")

    if "game" in candidate and not _is_nonempty_str(candidate["game"]):
        errors.append("game must be a non-empty string.")

    metric = candidate.get("metric")
    metric_ok = metric in METRICS
    if "metric" in candidate and not metric_ok:
        errors.append(f"Unsupported metric '{metric}'. Allowed: {', '.join(METRICS)}")

    if "granularity" in candidate and candidate["granularity"] not in GRANULARITIES:
        errors.append(
            f"Unsupported granularity '{candidate['granularity']}'. "
            f"Allowed: {', '.join(GRANULARITIES)}"
        )

    if "time_range" in candidate:
        errors.extend(_time_range_errors(candidate["time_range"]))

    breakdowns_ok = False
    if "breakdowns" in candidate:
        breakdowns = candidate["breakdowns"]
        if not isinstance(breakdowns, list):
            errors.append("breakdowns must be an array.")
        else:
            unknown = [b for b in breakdowns if b not in BREAKDOWNS]
            for b in unknown:
                errors.append(f"Unsupported breakdown '{b}'. Allowed: {', '.join(BREAKDOWNS)}")
            breakdowns_ok = not unknown

    if "comparison" in candidate:
        comparison = candidate["comparison"]
        if not isinstance(comparison, dict):
            errors.append("comparison must be an object.")
        else:
            errors.extend(_key_errors(comparison, COMPARISON_KEYS, "comparison"))
            if "type" in comparison and comparison["type"] not in COMPARISONS:
                errors.append(
                    f"Unsupported comparison '{comparison['type']}'. "
                    f"Allowed: {', '.join(COMPARISONS)}"
                )

    if "analysis" in candidate and not isinstance(candidate["analysis"], list):
        errors.append("analysis must be an array.")

    if "filters" in candidate:
        filters = candidate["filters"]
        if not isinstance(filters, list):
            errors.append("filters must be an array.")
        else:
            for i, f in enumerate(filters):
                errors.extend(_filter_errors(f, i))

    if "response_mode" in candidate and candidate["response_mode"] not in RESPONSE_MODES:
        errors.append(
            f"Unsupported response_mode '{candidate['response_mode']}'. "
            f"Allowed: {', '.join(RESPONSE_MODES)}"
        )

    # Cross-field: metric x breakdown compatibility
    if metric_ok and breakdowns_ok:
        supported = supported_breakdowns(metric)
        for b in candidate["breakdowns"]:
            if b not in supported:
                errors.append(
                    f"Breakdown '{b}' is not supported for metric '{metric}'. "
                    f"Supported: {', '.join(sorted(supported)) or 'none'}"
                )

    return errors


def _time_range_errors(time_range: Any) -> list[str]:
    if not isinstance(time_range, dict):
        return ["time_range must be an object."]
    errors = _key_errors(time_range, TIME_RANGE_KEYS, "time_range")
    if "type" in time_range and time_range["type"] not in TIME_RANGE_TYPES:
        errors.append(f"time_range.type must be one of: {', '.join(TIME_RANGE_TYPES)}")
    if "n" in time_range:
        n = time_range["n"]
        if not _is_number(n):
            errors.append("time_range.n must be a number.")
        elif n <= 0:
            errors.append("time_range.n must be positive.")
        elif not float(n).is_integer():
            errors.append("time_range.n must be a whole number of days.")
        elif n > MAX_WINDOW_DAYS:
            errors.append(f"time_range.n must be at most {MAX_WINDOW_DAYS} days.")
    return errors


def _filter_errors(f: Any, index: int) -> list[str]:
    label = f"filters[{index}]"
    if not isinstance(f, dict):
        return [f"{label} must be an object."]
    errors = _key_errors(f, FILTER_KEYS, label)
    if "field" in f and not _is_nonempty_str(f["field"]):
        errors.append(f"{label}.field must be a non-empty string.")
    if "op" in f and not _is_nonempty_str(f["op"]):
        errors.append(f"{label}.op must be a non-empty string.")
    if "value" in f and not (isinstance(f["value"], str) or _is_number(f["value"])):
        errors.append(f"{label}.value must be a string or number.")
    return errors


def validate_plan(candidate: Any) -> QueryPlan:
    """Validate *candidate* and return it as a ``QueryPlan``.

    Raises
    ------
    SchemaValidationError
        Listing every violation found.
    """
    if isinstance(candidate, QueryPlan):
        candidate = candidate.to_dict()
    errors = plan_errors(candidate)
    if errors:
        raise SchemaValidationError(errors)
    try:
        return QueryPlan.model_validate(candidate)
    except ValidationError as exc:
        raise SchemaValidationError(_pydantic_messages(exc)) from exc


# ── Result ───────────────────────────────────────────────


def result_errors(candidate: Any) -> list[str]:
    """Return every structural violation in an executor result."""
    if not isinstance(candidate, dict):
        return ["Result must be an object."]

    errors = _key_errors(candidate, RESULT_KEYS, "Result")

    if "question" in candidate and not _is_nonempty_str(candidate["question"]):
        errors.append("question must be a non-empty string.")

    context = candidate.get("context")
    if "context" in candidate:
        if not isinstance(context, dict):
            errors.append("context must be an object.")
        else:
            errors.extend(_key_errors(context, CONTEXT_KEYS, "context"))
            if "tenant_id" in context and not _is_nonempty_str(context["tenant_id"]):
                errors.append("context.tenant_id must be a non-empty string.")
            if "plan" in context:
                errors.extend(f"context.plan: {e}" for e in plan_errors(context["plan"]))

    summary = candidate.get("summary")
    if "summary" in candidate:
        if not isinstance(summary, dict):
            errors.append("summary must be an object.")
        else:
            errors.extend(_key_errors(summary, SUMMARY_KEYS, "summary"))
            if "value" in summary and not _is_number(summary["value"]):
                errors.append("summary.value must be a number.")
            for key in ("previous", "change", "changePct"):
                if key in summary and summary[key] is not None and not _is_number(summary[key]):
                    errors.append(f"summary.{key} must be a number or null.")

    if "timeseries" in candidate:
        series = candidate["timeseries"]
        if not isinstance(series, list):
            errors.append("timeseries must be an array.")
        else:
            for i, point in enumerate(series):
                label = f"timeseries[{i}]"
                if not isinstance(point, dict):
                    errors.append(f"{label} must be an object.")
                    continue
                errors.extend(_key_errors(point, TIMESERIES_KEYS, label))
                if "date" in point and not _is_nonempty_str(point["date"]):
                    errors.append(f"{label}.date must be a string.")
                if "value" in point and not _is_number(point["value"]):
                    errors.append(f"{label}.value must be a number.")

    if "breakdown_table" in candidate:
        errors.extend(_row_errors(candidate["breakdown_table"], "breakdown_table", ("value",)))

    if "attribution" in candidate:
        errors.extend(_row_errors(candidate["attribution"], "attribution", ATTRIBUTION_VALUE_KEYS))

    if "confidence" in candidate and candidate["confidence"] not in CONFIDENCE_LEVELS:
        errors.append(f"confidence must be one of: {', '.join(CONFIDENCE_LEVELS)}")

    return errors


def _row_errors(rows: Any, label: str, numeric_keys: tuple[str, ...]) -> list[str]:
    if not isinstance(rows, list):
        return [f"{label} must be an array."]
    errors: list[str] = []
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            errors.append(f"{label}[{i}] must be an object.")
            continue
        for key in numeric_keys:
            if not _is_number(row.get(key)):
                errors.append(f"{label}[{i}].{key} must be a number.")
        for key in row:
            if key not in numeric_keys and key not in BREAKDOWNS:
                errors.append(f"{label}[{i}] has unknown field '{key}'.")
    return errors


def validate_result(candidate: Any) -> QueryResult:
    """Validate an executor result before it reaches narration or the caller."""
    if isinstance(candidate, QueryResult):
        candidate = candidate.to_dict()
    errors = result_errors(candidate)
    if errors:
        raise SchemaValidationError(errors)
    try:
        return QueryResult.model_validate(candidate)
    except ValidationError as exc:
        raise SchemaValidationError(_pydantic_messages(exc)) from exc


def _pydantic_messages(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]
