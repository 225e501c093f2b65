"""
Shared fixtures.
"""
from __future__ import annotations

from typing import Any

import pytest

from src.copilot.cache import build_caches
from src.core.config import Settings
from src.governance.validator import validate_plan
from tests.fakes import FakeMetricSource, plan_dict, revenue_rows


@pytest.fixture
def settings() -> Settings:
    return Settings(llm_provider="mock", openai_api_key="", anthropic_api_key="")


@pytest.fixture
def caches(settings):
    return build_caches(settings)


@pytest.fixture
def make_plan():
    def _make(**overrides: Any):
        return validate_plan(plan_dict(**overrides))
    return _make


@pytest.fixture
def revenue_source() -> FakeMetricSource:
    return FakeMetricSource({"revenue": revenue_rows()})
