"""
Prompt templates for the planner and the narrator.
"""
from __future__ import annotations

import json

from src.governance.plan_schema import (
    ANALYSES,
    BREAKDOWNS,
    COMPARISONS,
    GRANULARITIES,
    MAX_WINDOW_DAYS,
    METRIC_BREAKDOWN_SUPPORT,
    METRICS,
    RESPONSE_MODES,
    QueryResult,
)

_PLANNER_PROMPT = """\
SYSTEM:
You are a strict analytics planner. You must output JSON only that matches the schema.
No extra text. No markdown. Use only allowed fields and values.

USER:
Question: "{question}"

Schema:
{{
  "game": "string",
  "metric": "{metrics}",
  "granularity": "{granularities}",
  "time_range": {{"type":"last_n_days","n":number}},
  "breakdowns": [{breakdowns}],
  "comparison": {{"type":"{comparisons}"}},
  "analysis": [{analyses}],
  "filters": [],
  "response_mode": "{response_modes}"
}}

Rules:
- Only return JSON.
- Default granularity=day.
- Default response_mode=short.
- time_range.n is a whole number of days between 1 and {max_days}.
- Breakdowns are only allowed for: {breakdown_metrics}.
- If the question requests a comparison, use comparison.type=previous_period.
- If you are unsure about the game name, still set game to the closest match and set response_mode=deep.
- Today's date: {today}"""

_NARRATION_PROMPT = """\
SYSTEM:
You are a narrator. You ONLY use numbers from the JSON provided.
Do not invent numbers. If attribution is weak or missing, say "inconclusive".
Answer directly without mentioning internals.

USER:
Result JSON:
{result_json}

Answer requirements:
- Direct answer
- Cite key numbers that exist in JSON only
- If confidence is low or attribution empty, say "inconclusive"."""


def _alternatives(values: tuple[str, ...]) -> str:
    return "|".join(values)


def build_planner_prompt(question: str, today_iso: str) -> str:
    return _PLANNER_PROMPT.format(
        question=question.replace('"', "'"),
        metrics=_alternatives(METRICS),
        granularities=_alternatives(GRANULARITIES),
        breakdowns="|".join(f'"{b}"' for b in BREAKDOWNS),
        comparisons=_alternatives(COMPARISONS),
        analyses=",".join(f'"{a}"' for a in ANALYSES),
        response_modes=_alternatives(RESPONSE_MODES),
        breakdown_metrics=", ".join(m for m in METRICS if METRIC_BREAKDOWN_SUPPORT[m]),
        today=today_iso,
        max_days=MAX_WINDOW_DAYS,
    )


def build_narration_prompt(result: QueryResult) -> str:
    return _NARRATION_PROMPT.format(
        result_json=json.dumps(result.to_dict(), separators=(",", ":")),
    )
