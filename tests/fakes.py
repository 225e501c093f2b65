"""
In-memory stand-ins for the warehouse and the language model.

``FakeMetricSource`` answers time-series requests from daily rows, filtering
by the requested window and summing per (date, breakdowns) the way the
warehouse GROUP BY does.  ``FakeCompletion`` records every prompt.
"""
from __future__ import annotations

import datetime
from typing import Any

from src.copilot.metric_resolver import TimeseriesQuery

TODAY = datetime.date(2025, 3, 31)


class FakeMetricSource:
    def __init__(self, rows: dict[str, list[dict[str, Any]]] | None = None, error: Exception | None = None):
        self.rows = rows or {}
        self.error = error
        self.calls: list[TimeseriesQuery] = []

    async def fetch_metric_timeseries(self, query: TimeseriesQuery) -> list[dict[str, Any]]:
        self.calls.append(query)
        if self.error is not None:
            raise self.error

        start, end = query.start_date.isoformat(), query.end_date.isoformat()
        grouped: dict[tuple, float] = {}
        for row in self.rows.get(query.metric, []):
            if not start <= row["date"] <= end:
                continue
            key = (row["date"],) + tuple(row.get(b, "") for b in query.breakdowns)
            grouped[key] = grouped.get(key, 0.0) + row["value"]

        out = []
        for key, value in sorted(grouped.items()):
            item: dict[str, Any] = {"date": key[0], "value": value}
            item.update(zip(query.breakdowns, key[1:]))
            out.append(item)
        return out


class FakeCompletion:
    provider = "fake"

    def __init__(self, json_response: Any = "", text_response: Any = "", enabled: bool = True):
        self.json_response = json_response
        self.text_response = text_response
        self._enabled = enabled
        self.json_calls: list[tuple[str, int]] = []
        self.text_calls: list[tuple[str, int]] = []

    def enabled(self) -> bool:
        return self._enabled

    async def complete_json(self, prompt: str, max_tokens: int) -> str:
        self.json_calls.append((prompt, max_tokens))
        if isinstance(self.json_response, Exception):
            raise self.json_response
        return self.json_response

    async def complete_text(self, prompt: str, max_tokens: int) -> str:
        self.text_calls.append((prompt, max_tokens))
        if isinstance(self.text_response, Exception):
            raise self.text_response
        return self.text_response


def day(offset: int, today: datetime.date = TODAY) -> str:
    """ISO date *offset* days before *today*."""
    return (today - datetime.timedelta(days=offset)).isoformat()


def plan_dict(**overrides: Any) -> dict[str, Any]:
    base: dict[str, Any] = {
        "game": "all",
        "metric": "revenue",
        "granularity": "day",
        "time_range": {"type": "last_n_days", "n": 7},
        "breakdowns": [],
        "comparison": {"type": "none"},
        "analysis": ["trend"],
        "filters": [],
        "response_mode": "short",
    }
    base.update(overrides)
    return base


def revenue_rows(today: datetime.date = TODAY) -> list[dict[str, Any]]:
    """Current 7 days sum to 700 (100/day); the 7 days before sum to 500."""
    current = [{"date": day(i, today), "value": 100.0} for i in range(7)]
    previous = [{"date": day(7 + i, today), "value": 100.0} for i in range(5)]
    return current + previous
