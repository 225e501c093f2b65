"""POST /ask -- main copilot endpoint, plus dry-run planning and cache admin."""
from __future__ import annotations

from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from src.copilot.service import CopilotService
from src.core.errors import (
    CapabilityDisabledError,
    CopilotError,
    DataSourceError,
    NoResponseError,
    RequestTimeoutError,
    SchemaValidationError,
)
from src.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

EXAMPLE_QUESTIONS: list[str] = [
    "What was revenue over the last 7 days compared to the previous period?",
    "Why did revenue drop last week by country?",
    "Show DAU by platform for the last 14 days",
    "How many installs did we get in the past 30 days?",
    "What is our d1 retention over the last 4 weeks?",
    "What was ARPDAU last month?",
]

_STATUS_BY_ERROR: list[tuple[type[CopilotError], int]] = [
    (CapabilityDisabledError, 503),
    (NoResponseError, 502),
    (SchemaValidationError, 422),
    (DataSourceError, 502),
    (RequestTimeoutError, 504),
]


def get_service(request: Request) -> CopilotService:
    """The process-wide service built in the app lifespan."""
    return request.app.state.service


def _raise_http(exc: CopilotError) -> NoReturn:
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    detail: dict[str, Any] = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, SchemaValidationError):
        detail["errors"] = exc.errors
    raise HTTPException(status_code=status, detail=detail) from exc


class AskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=3, max_length=500, description="Natural-language analytics question")
    tenant_id: str = Field(..., alias="tenantId", min_length=1, description="Game id the request is scoped to")


class AskResponse(BaseModel):
    response: str
    confidence: float
    data: dict[str, Any]
    traceId: str
    latencyMs: int


class PlanRequest(BaseModel):
    question: str = Field(..., min_length=3, max_length=500)


class PlanResponse(BaseModel):
    question: str
    plan: dict[str, Any]
    cached: bool


@router.post("", response_model=AskResponse)
async def ask_endpoint(req: AskRequest, service: CopilotService = Depends(get_service)):
    """Full pipeline: question -> plan -> execute -> narrate -> verify."""
    try:
        answer = await service.ask(req.question, req.tenant_id)
    except CopilotError as exc:
        logger.warning("Copilot.ask failed: %s: %s", type(exc).__name__, exc)
        _raise_http(exc)
    return AskResponse(**answer.to_dict())


@router.post("/plan", response_model=PlanResponse)
async def plan_endpoint(req: PlanRequest, service: CopilotService = Depends(get_service)):
    """Dry-run: question -> validated plan, no warehouse access."""
    try:
        plan, cached = await service.plan(req.question)
    except CopilotError as exc:
        logger.warning("Copilot.plan failed: %s: %s", type(exc).__name__, exc)
        _raise_http(exc)
    return PlanResponse(question=req.question, plan=plan.to_dict(), cached=cached)


@router.get("/examples")
def examples_endpoint() -> dict:
    return {"examples": EXAMPLE_QUESTIONS}


@router.get("/cache/stats")
def cache_stats_endpoint(service: CopilotService = Depends(get_service)) -> dict:
    """Return plan/result cache statistics."""
    return service.caches.stats()


@router.post("/cache/clear")
def cache_clear_endpoint(service: CopilotService = Depends(get_service)) -> dict:
    """Flush both caches."""
    return {"cleared": service.caches.clear()}
