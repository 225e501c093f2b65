"""
GET /metrics, GET /catalog -- plan vocabulary for clients.
"""
from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from src.governance.plan_schema import (
    ANALYSES,
    BREAKDOWNS,
    COMPARISONS,
    GRANULARITIES,
    METRIC_AGGREGATION,
    METRIC_DESCRIPTIONS,
    METRICS,
    RESPONSE_MODES,
    supported_breakdowns,
)

router = APIRouter()


class MetricItem(BaseModel):
    name: str
    description: str
    aggregation: str
    breakdowns: list[str]


class CatalogResponse(BaseModel):
    metrics: list[MetricItem]
    breakdowns: list[str]
    granularities: list[str]
    comparisons: list[str]
    analyses: list[str]
    response_modes: list[str]


def _metric_items() -> list[MetricItem]:
    return [
        MetricItem(
            name=m,
            description=METRIC_DESCRIPTIONS[m],
            aggregation=METRIC_AGGREGATION[m],
            breakdowns=sorted(supported_breakdowns(m)),
        )
        for m in METRICS
    ]


@router.get("/metrics")
def list_metrics() -> dict:
    """Return metric names."""
    return {"metrics": list(METRICS)}


@router.get("/catalog", response_model=CatalogResponse)
def full_catalog() -> CatalogResponse:
    """Return the full plan vocabulary with the metric/breakdown compatibility table."""
    return CatalogResponse(
        metrics=_metric_items(),
        breakdowns=list(BREAKDOWNS),
        granularities=list(GRANULARITIES),
        comparisons=list(COMPARISONS),
        analyses=list(ANALYSES),
        response_modes=list(RESPONSE_MODES),
    )
