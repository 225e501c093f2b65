"""
Unit tests -- narration integrity check and fallback sentence.
"""
import logging

import pytest

from src.copilot.narration_guard import (
    NarrationGuard,
    allowed_numbers,
    build_fallback_response,
    collect_numeric_leaves,
    extract_numerals,
    format_number,
    verify_narration,
)
from src.core.errors import NarrationIntegrityViolation, NoResponseError
from src.governance.validator import validate_result
from tests.fakes import FakeCompletion, plan_dict


def _result(summary=None, attribution=None, metric="revenue", response_mode="short"):
    return validate_result({
        "question": "How did revenue change?",
        "context": {
            "tenant_id": "game-1",
            "plan": plan_dict(metric=metric, comparison={"type": "previous_period"}, response_mode=response_mode),
        },
        "summary": summary or {"value": 700.0, "previous": 500.0, "change": 200.0, "changePct": 40.0},
        "timeseries": [{"date": "2025-03-31", "value": 100.0}],
        "breakdown_table": [],
        "attribution": attribution if attribution is not None else [
            {"country": "US", "current": 400.0, "previous": 250.0, "delta": 150.0},
        ],
        "confidence": "high",
    })


# ── Pure helpers ─────────────────────────────────────────

def test_extract_numerals():
    assert extract_numerals("Revenue is 700.00, down -12.5% over 7 days") == ["700.00", "-12.5", "7"]
    assert extract_numerals("no numbers here") == []


def test_collect_numeric_leaves_skips_bools_and_strings():
    leaves = collect_numeric_leaves({"a": 1, "b": [2.5, {"c": True}], "d": "3", "e": None})
    assert sorted(leaves) == [1.0, 2.5]


def test_allowed_numbers_rounded_to_two_decimals():
    allowed = allowed_numbers({"x": 1.005, "y": [3, -0.001]})
    assert "3.00" in allowed
    assert "0.00" in allowed
    assert "-0.00" not in allowed


def test_allowed_numbers_covers_plan_window():
    assert "7.00" in allowed_numbers(_result())


def test_format_number_shortest_form():
    assert format_number(700.0) == "700"
    assert format_number(40.5) == "40.5"
    assert format_number(-200.0) == "-200"
    assert format_number(-0.0) == "0"


# ── verify_narration ─────────────────────────────────────

def test_grounded_narration_accepted_verbatim():
    text = "Revenue is 700.00, up from 500.00."
    assert verify_narration(text, _result()) == text


def test_narration_without_numbers_passes():
    assert verify_narration("Revenue went up.", _result()) == "Revenue went up."


def test_rounding_is_applied_to_cited_numbers():
    assert verify_narration("Revenue is 700.001.", _result())


def test_invented_number_rejected():
    with pytest.raises(NarrationIntegrityViolation) as exc_info:
        verify_narration("Revenue is 850.", _result())
    assert exc_info.value.unsupported == ["850"]


# ── Fallback ─────────────────────────────────────────────

def test_fallback_with_comparison():
    assert build_fallback_response(_result()) == (
        "The revenue over the requested period is 700. "
        "Compared to the previous period, change is +200 (40%)."
    )


def test_fallback_negative_change_and_inconclusive():
    result = _result(
        summary={"value": 300.0, "previous": 500.0, "change": -200.0, "changePct": -40.0},
        attribution=[],
    )
    assert build_fallback_response(result) == (
        "The revenue over the requested period is 300. "
        "Compared to the previous period, change is -200 (-40%). Attribution is inconclusive."
    )


def test_fallback_without_change_pct():
    result = _result(summary={"value": 50.0, "previous": 0.0, "change": 50.0, "changePct": None})
    assert build_fallback_response(result).endswith("change is +50.")


def test_fallback_without_comparison():
    result = _result(summary={"value": 12.5, "previous": None, "change": None, "changePct": None}, attribution=[])
    assert build_fallback_response(result) == (
        "The revenue over the requested period is 12.5. Attribution is inconclusive."
    )


def test_fallback_is_itself_grounded():
    result = _result()
    assert verify_narration(build_fallback_response(result), result)


# ── NarrationGuard ───────────────────────────────────────

async def test_guard_returns_grounded_model_text():
    llm = FakeCompletion(text_response="Revenue is 700.00, up from 500.00.")
    narration = await NarrationGuard(llm=llm, mode="openai").narrate(_result(), max_tokens=220)
    assert narration.text == "Revenue is 700.00, up from 500.00."
    assert narration.grounded
    prompt, max_tokens = llm.text_calls[0]
    assert max_tokens == 220
    assert '"changePct":40.0' in prompt


async def test_guard_substitutes_fallback_and_warns(caplog):
    llm = FakeCompletion(text_response="Revenue is 850.")
    with caplog.at_level(logging.WARNING, logger="src.copilot.narration_guard"):
        narration = await NarrationGuard(llm=llm, mode="openai").narrate(_result(), trace_id="t-1")
    assert narration.text == (
        "The revenue over the requested period is 700. "
        "Compared to the previous period, change is +200 (40%)."
    )
    assert not narration.grounded
    assert narration.unsupported == ["850"]
    assert "[trace=t-1]" in caplog.text


async def test_guard_token_budget_follows_response_mode(settings):
    llm = FakeCompletion(text_response="ok")
    guard = NarrationGuard(llm=llm, mode="openai")
    await guard.narrate(_result(response_mode="deep"))
    await guard.narrate(_result(response_mode="short"))
    assert [c[1] for c in llm.text_calls] == [600, 220]


async def test_guard_mock_mode_uses_fallback():
    narration = await NarrationGuard(llm=None, mode="mock").narrate(_result())
    assert narration.text.startswith("The revenue over the requested period is 700.")
    assert narration.grounded


async def test_guard_propagates_model_failure():
    llm = FakeCompletion(text_response=NoResponseError("No response from AI narrator"))
    with pytest.raises(NoResponseError):
        await NarrationGuard(llm=llm, mode="openai").narrate(_result())
