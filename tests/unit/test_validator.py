"""
Unit tests -- plan and result validation.
"""
import pytest

from src.core.errors import SchemaValidationError
from src.governance.plan_schema import BREAKDOWNS, MAX_WINDOW_DAYS, METRIC_BREAKDOWN_SUPPORT, METRICS, QueryPlan
from src.governance.validator import plan_errors, result_errors, validate_plan, validate_result
from tests.fakes import plan_dict


# ── Valid plans ──────────────────────────────────────────

def test_valid_plan_returns_query_plan():
    plan = validate_plan(plan_dict())
    assert isinstance(plan, QueryPlan)
    assert plan.metric == "revenue"
    assert plan.time_range.n == 7


def test_integral_float_n_accepted():
    plan = validate_plan(plan_dict(time_range={"type": "last_n_days", "n": 7.0}))
    assert plan.time_range.n == 7


def test_query_plan_instance_revalidated():
    plan = validate_plan(plan_dict())
    assert validate_plan(plan) == plan


def test_filters_with_number_and_string_values():
    plan = validate_plan(plan_dict(filters=[
        {"field": "platform", "op": "=", "value": "ios"},
        {"field": "dau", "op": ">", "value": 10},
    ]))
    assert len(plan.filters) == 2


# ── Unknown / missing keys ───────────────────────────────

def test_unknown_top_level_key_rejected():
    with pytest.raises(SchemaValidationError, match="unknown fields: sql"):
        validate_plan(plan_dict(sql="SELECT 1"))


def test_missing_key_rejected():
    candidate = plan_dict()
    del candidate["granularity"]
    with pytest.raises(SchemaValidationError, match="missing fields: granularity"):
        validate_plan(candidate)


def test_extra_key_in_time_range_rejected():
    with pytest.raises(SchemaValidationError, match="time_range has unknown fields: unit"):
        validate_plan(plan_dict(time_range={"type": "last_n_days", "n": 7, "unit": "day"}))


def test_extra_key_in_comparison_rejected():
    with pytest.raises(SchemaValidationError, match="comparison has unknown fields"):
        validate_plan(plan_dict(comparison={"type": "none", "baseline": "x"}))


def test_non_object_plan_rejected():
    assert plan_errors(["revenue"]) == ["Plan must be an object."]


# ── Enumerations ─────────────────────────────────────────

@pytest.mark.parametrize("field,value", [
    ("metric", "profit"),
    ("granularity", "month"),
    ("response_mode", "verbose"),
])
def test_enum_violations_name_the_field(field, value):
    with pytest.raises(SchemaValidationError, match=field):
        validate_plan(plan_dict(**{field: value}))


def test_unknown_comparison_type():
    with pytest.raises(SchemaValidationError, match="comparison"):
        validate_plan(plan_dict(comparison={"type": "yoy"}))


def test_unknown_time_range_type():
    with pytest.raises(SchemaValidationError, match="time_range.type"):
        validate_plan(plan_dict(time_range={"type": "last_n_weeks", "n": 2}))


@pytest.mark.parametrize("n", [0, -3, "7", True, 2.5])
def test_bad_window_length(n):
    with pytest.raises(SchemaValidationError, match="time_range.n"):
        validate_plan(plan_dict(time_range={"type": "last_n_days", "n": n}))


def test_window_length_upper_bound():
    assert validate_plan(plan_dict(time_range={"type": "last_n_days", "n": MAX_WINDOW_DAYS})).time_range.n == MAX_WINDOW_DAYS
    with pytest.raises(SchemaValidationError, match=f"time_range.n must be at most {MAX_WINDOW_DAYS}"):
        validate_plan(plan_dict(time_range={"type": "last_n_days", "n": 1_000_000}))


def test_empty_game_rejected():
    with pytest.raises(SchemaValidationError, match="game"):
        validate_plan(plan_dict(game="  "))


def test_analysis_must_be_array():
    with pytest.raises(SchemaValidationError, match="analysis must be an array"):
        validate_plan(plan_dict(analysis="trend"))


def test_filter_missing_value_rejected():
    with pytest.raises(SchemaValidationError, match=r"filters\[0\] is missing fields: value"):
        validate_plan(plan_dict(filters=[{"field": "platform", "op": "="}]))


def test_filter_value_type_rejected():
    with pytest.raises(SchemaValidationError, match=r"filters\[0\]\.value"):
        validate_plan(plan_dict(filters=[{"field": "platform", "op": "in", "value": ["ios"]}]))


# ── Breakdowns ───────────────────────────────────────────

def test_unsupported_breakdown_names_it():
    with pytest.raises(SchemaValidationError) as exc_info:
        validate_plan(plan_dict(metric="dau", breakdowns=["city"]))
    assert any("Unsupported breakdown 'city'" in e for e in exc_info.value.errors)


def test_arpdau_rejects_any_breakdown():
    with pytest.raises(SchemaValidationError, match="not supported for metric 'arpdau'"):
        validate_plan(plan_dict(metric="arpdau", breakdowns=["country"]))


@pytest.mark.parametrize("metric", METRICS)
def test_accepted_breakdowns_match_compatibility_table(metric):
    for b in BREAKDOWNS:
        errors = plan_errors(plan_dict(metric=metric, breakdowns=[b]))
        assert (not errors) == (b in METRIC_BREAKDOWN_SUPPORT[metric])
    assert plan_errors(plan_dict(metric=metric, breakdowns=[])) == []


def test_all_violations_collected():
    with pytest.raises(SchemaValidationError) as exc_info:
        validate_plan(plan_dict(metric="profit", granularity="hour", extra=1))
    assert len(exc_info.value.errors) == 3


# ── Results ──────────────────────────────────────────────

def _result(**overrides):
    base = {
        "question": "revenue last week",
        "context": {"tenant_id": "game-1", "plan": plan_dict()},
        "summary": {"value": 700.0, "previous": None, "change": None, "changePct": None},
        "timeseries": [{"date": "2025-03-31", "value": 100.0}],
        "breakdown_table": [],
        "attribution": [],
        "confidence": "high",
    }
    base.update(overrides)
    return base


def test_valid_result():
    result = validate_result(_result())
    assert result.summary.value == 700.0
    assert result.summary.change_pct is None


def test_result_round_trips_wire_names():
    result = validate_result(_result(summary={"value": 7, "previous": 5, "change": 2, "changePct": 40.0}))
    assert result.to_dict()["summary"]["changePct"] == 40.0
    assert validate_result(result) == result


def test_result_with_invalid_plan_rejected():
    with pytest.raises(SchemaValidationError, match="context.plan"):
        validate_result(_result(context={"tenant_id": "g", "plan": plan_dict(metric="profit")}))


def test_result_summary_value_must_be_number():
    assert "summary.value must be a number." in result_errors(_result(summary={
        "value": "700", "previous": None, "change": None, "changePct": None,
    }))


def test_result_unknown_confidence():
    with pytest.raises(SchemaValidationError, match="confidence"):
        validate_result(_result(confidence="certain"))


def test_attribution_rows_checked():
    errors = result_errors(_result(attribution=[{"country": "US", "current": 1, "previous": 0}]))
    assert "attribution[0].delta must be a number." in errors


def test_breakdown_row_unknown_field():
    errors = result_errors(_result(breakdown_table=[{"city": "Paris", "value": 1.0}]))
    assert "breakdown_table[0] has unknown field 'city'." in errors
