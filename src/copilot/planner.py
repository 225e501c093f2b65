"""
Planner -- converts a natural-language question into a validated QueryPlan.

Two modes:
  mock               -> deterministic keyword extraction (no API key needed, great for tests)
  openai / anthropic -> structured completion via the TextCompletion client

Either way the candidate goes through ``validate_plan``.  The planner does
no repair and no retry: a response that is not JSON, or not a valid plan,
fails the request.
"""
from __future__ import annotations

import datetime
import json
import re
from typing import Any

from src.copilot.llm_client import TextCompletion
from src.copilot.prompts import build_planner_prompt
from src.core.config import get_settings
from src.core.errors import CapabilityDisabledError, PlanParseError
from src.core.logging import get_logger
from src.governance.plan_schema import BREAKDOWNS, QueryPlan
from src.governance.validator import validate_plan

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30

# ── Keyword maps for mock mode ───────────────────────────

_METRIC_KEYWORDS: dict[str, list[str]] = {
    "arpdau":       ["arpdau", "revenue per daily active", "revenue per dau", "revenue per user", "arpu"],
    "d1_retention": ["d1 retention", "day 1 retention", "day-1 retention", "d1"],
    "d7_retention": ["d7 retention", "day 7 retention", "day-7 retention", "d7", "retention"],
    "installs":     ["installs", "install", "downloads", "new users", "new players"],
    "dau":          ["dau", "daily active", "active users", "active players", "players", "users"],
    "revenue":      ["revenue", "sales", "money", "income", "earned", "iap", "purchases"],
}

_BREAKDOWN_KEYWORDS: dict[str, list[str]] = {
    "country":  ["by country", "per country", "countries", "country", "by geo", "region"],
    "platform": ["by platform", "per platform", "platforms", "platform", "ios", "android"],
}

_WEEKLY_KEYWORDS = ["weekly", "by week", "per week", "each week", "week over week"]

_COMPARISON_KEYWORDS = [
    "compare", "compared", "comparison", "vs", "versus", "previous period",
    "prior period", "change", "changed", "drop", "dropped", "increase",
    "decrease", "grew", "growth", "why",
]

_DEEP_KEYWORDS = ["why", "explain", "deep dive", "in detail", "breakdown of"]

_TOP_CONTRIBUTOR_KEYWORDS = ["why", "driver", "drivers", "contributor", "contributors", "top", "which"]

_TIME_RANGE_PATTERNS: list[tuple[str, int]] = [
    # (regex pattern, days per unit)
    (r"last\s+(\d+)\s+days?",   1),
    (r"past\s+(\d+)\s+days?",   1),
    (r"last\s+(\d+)\s+weeks?",  7),
    (r"past\s+(\d+)\s+weeks?",  7),
    (r"last\s+(\d+)\s+months?", 30),
]

_FIXED_RANGES: list[tuple[str, int]] = [
    (r"\b(today|yesterday)\b", 1),
    (r"\b(last|past|this)\s+week\b", 7),
    (r"\b(last|past|this)\s+month\b", 30),
    (r"\b(last|past)\s+quarter\b", 90),
]

_GAME_RE = re.compile(
    r"\b(?:for|in|of)\s+(?:the\s+game\s+)?[\"']([^\"']+)[\"']"
    r"|\b(?:game|title)\s+[\"']?([A-Za-z0-9][\w\- ]*?)[\"']?(?:\s|$|[?.,!])",
    re.IGNORECASE,
)


def _contains(q: str, keyword: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", q) is not None


def _detect_metric(q: str) -> str:
    """First listed metric with a keyword hit wins (most specific metrics first)."""
    for name, keywords in _METRIC_KEYWORDS.items():
        if any(_contains(q, kw) for kw in keywords):
            return name
    return "revenue"


def _detect_window(q: str) -> int:
    for pattern, unit_days in _TIME_RANGE_PATTERNS:
        m = re.search(pattern, q)
        if m:
            return max(int(m.group(1)) * unit_days, 1)
    for pattern, days in _FIXED_RANGES:
        if re.search(pattern, q):
            return days
    return DEFAULT_WINDOW_DAYS


def _detect_game(question: str) -> str:
    m = _GAME_RE.search(question)
    if m:
        name = (m.group(1) or m.group(2) or "").strip()
        if name:
            return name
    return "all"


# ── Mock planner ─────────────────────────────────────────


def plan_mock(question: str) -> dict[str, Any]:
    """Deterministic keyword-based NL -> candidate plan dict (unvalidated)."""
    q = question.lower().strip()

    metric = _detect_metric(q)

    breakdowns = [
        name for name in BREAKDOWNS
        if any(_contains(q, kw) for kw in _BREAKDOWN_KEYWORDS[name])
    ]

    granularity = "week" if any(kw in q for kw in _WEEKLY_KEYWORDS) else "day"
    comparison = "previous_period" if any(_contains(q, kw) for kw in _COMPARISON_KEYWORDS) else "none"

    analysis = ["trend"]
    if breakdowns and any(_contains(q, kw) for kw in _TOP_CONTRIBUTOR_KEYWORDS):
        analysis.append("top_contributors")

    return {
        "game": _detect_game(question),
        "metric": metric,
        "granularity": granularity,
        "time_range": {"type": "last_n_days", "n": _detect_window(q)},
        "breakdowns": breakdowns,
        "comparison": {"type": comparison},
        "analysis": analysis,
        "filters": [],
        "response_mode": "deep" if any(_contains(q, kw) for kw in _DEEP_KEYWORDS) else "short",
    }


# ── LLM response parsing ─────────────────────────────────

_FENCED_JSON_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_FENCED_RE = re.compile(r"```\s*([\s\S]*?)\s*```")


def extract_json(raw: str) -> Any:
    """Parse JSON from a fenced code block or from the raw text."""
    m = _FENCED_JSON_RE.search(raw) or _FENCED_RE.search(raw)
    text = m.group(1) if m else raw.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise PlanParseError(f"Planner response is not valid JSON: {exc.msg} (line {exc.lineno})") from exc


# ── Public API ───────────────────────────────────────────


class QueryPlanner:
    """Compile a question into a QueryPlan.

    Parameters
    ----------
    llm : TextCompletion | None
        Completion client; may be ``None`` in mock mode.
    mode : str
        ``"mock"`` for keyword extraction, anything else for the LLM.
    """

    def __init__(self, llm: TextCompletion | None = None, mode: str | None = None, max_tokens: int | None = None):
        settings = get_settings()
        self.llm = llm
        self.mode = (mode or settings.llm_provider).lower()
        self.max_tokens = max_tokens or settings.ai_planner_max_tokens

    async def plan(self, question: str, now: datetime.datetime | None = None) -> QueryPlan:
        now = now or datetime.datetime.now(datetime.timezone.utc)

        if self.mode == "mock":
            candidate = plan_mock(question)
        else:
            if self.llm is None:
                raise CapabilityDisabledError("AI features are disabled. No completion client configured.")
            prompt = build_planner_prompt(question, now.date().isoformat())
            raw = await self.llm.complete_json(prompt, self.max_tokens)
            candidate = extract_json(raw)

        plan = validate_plan(candidate)
        logger.info("Planner[%s] -> %s", self.mode, plan.model_dump_json())
        return plan
