"""
Narration guard -- the model may phrase the answer, it may not invent numbers.

Every numeral in the narration (``-?\\d+(\\.\\d+)?``) is rounded to two
decimals and must appear among the numeric leaves of the QueryResult,
also rounded to two decimals.  A narration with no numerals passes.

When the check fails the narration is replaced by a deterministic sentence
built from ``summary``.  The fallback never raises.

The verification helpers are pure functions; ``NarrationGuard`` is the only
part that talks to a model.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterable

from src.copilot.llm_client import TextCompletion
from src.copilot.prompts import build_narration_prompt
from src.core.config import get_settings
from src.core.errors import NarrationIntegrityViolation
from src.core.logging import get_logger, trace_logger
from src.governance.plan_schema import QueryResult

logger = get_logger(__name__)

_NUMERAL_RE = re.compile(r"-?\d+(?:\.\d+)?")


# ── Pure verification ────────────────────────────────────


def _fixed2(value: float) -> str:
    text = f"{round(value, 2):.2f}"
    return "0.00" if text == "-0.00" else text


def extract_numerals(text: str) -> list[str]:
    """Every numeral token in *text*, in order of appearance."""
    return _NUMERAL_RE.findall(text)


def collect_numeric_leaves(node: Any) -> list[float]:
    """Walk dicts and lists and return every int/float leaf (bools excluded)."""
    out: list[float] = []
    stack = [node]
    while stack:
        item = stack.pop()
        if isinstance(item, bool):
            continue
        if isinstance(item, (int, float)):
            if not math.isnan(item):
                out.append(float(item))
        elif isinstance(item, dict):
            stack.extend(item.values())
        elif isinstance(item, (list, tuple)):
            stack.extend(item)
    return out


def allowed_numbers(result: QueryResult | dict[str, Any]) -> set[str]:
    """The result's numeric closure as 2-decimal strings."""
    data = result.to_dict() if isinstance(result, QueryResult) else result
    return {_fixed2(v) for v in collect_numeric_leaves(data) if math.isfinite(v)}


def unsupported_numerals(text: str, allowed: Iterable[str]) -> list[str]:
    allowed = set(allowed)
    return [n for n in extract_numerals(text) if _fixed2(float(n)) not in allowed]


def verify_narration(text: str, result: QueryResult | dict[str, Any]) -> str:
    """Return *text* unchanged if every numeral is grounded.

    Raises
    ------
    NarrationIntegrityViolation
        Listing the numerals absent from the result.
    """
    bad = unsupported_numerals(text, allowed_numbers(result))
    if bad:
        raise NarrationIntegrityViolation(bad)
    return text


# ── Fallback sentence ────────────────────────────────────


def format_number(value: float) -> str:
    """Shortest form: ``700`` rather than ``700.0``, ``40.5`` stays ``40.5``."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return "0" if value == 0 else repr(value)


def build_fallback_response(result: QueryResult) -> str:
    s = result.summary
    text = (
        f"The {result.context.plan.metric} over the requested period is "
        f"{format_number(s.value)}."
    )
    if s.previous is not None and s.change is not None:
        delta = format_number(s.change)
        if s.change >= 0:
            delta = f"+{delta}"
        text += f" Compared to the previous period, change is {delta}"
        if s.change_pct is not None:
            text += f" ({format_number(s.change_pct)}%)."
        else:
            text += "."
    if not result.attribution:
        text += " Attribution is inconclusive."
    return text


# ── Guard ────────────────────────────────────────────────


@dataclass
class Narration:
    text: str
    grounded: bool
    unsupported: list[str]


class NarrationGuard:
    """Request a narration and substitute the fallback when it is ungrounded."""

    def __init__(self, llm: TextCompletion | None = None, mode: str | None = None):
        self.llm = llm
        self.mode = (mode or get_settings().llm_provider).lower()

    def max_tokens_for(self, result: QueryResult) -> int:
        settings = get_settings()
        if result.context.plan.response_mode == "deep":
            return settings.ai_deep_max_tokens
        return settings.ai_short_max_tokens

    async def narrate(
        self, result: QueryResult, max_tokens: int | None = None, trace_id: str = "-",
    ) -> Narration:
        log = trace_logger(logger, trace_id)

        if self.mode == "mock" or self.llm is None:
            text = build_fallback_response(result)
        else:
            prompt = build_narration_prompt(result)
            text = await self.llm.complete_text(prompt, max_tokens or self.max_tokens_for(result))

        try:
            verify_narration(text, result)
        except NarrationIntegrityViolation as exc:
            log.warning(
                "Narration rejected | question=%s | unsupported=%s",
                result.question, exc.unsupported,
            )
            return Narration(text=build_fallback_response(result), grounded=False, unsupported=exc.unsupported)

        return Narration(text=text, grounded=True, unsupported=[])
