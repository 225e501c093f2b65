"""
FastAPI application entry-point.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routers import ask, catalog
from src.copilot.llm_client import describe_provider
from src.copilot.service import CopilotService, build_service
from src.core.logging import get_logger
from src.db.connection import dispose_engine
from src.db.metric_source import WarehouseMetricSource

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "service", None) is None:
        app.state.service = build_service(WarehouseMetricSource())
        logger.info("Copilot service ready  mode=%s", app.state.service.mode)
    yield
    close = getattr(app.state.service.llm, "aclose", None)
    if close is not None:
        await close()
    dispose_engine()


app = FastAPI(
    title="Game Analytics Copilot",
    version="0.1.0",
    description="Natural-language questions over game telemetry, answered with grounded numbers",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ask.router, prefix="/ask", tags=["Copilot"])
app.include_router(catalog.router, tags=["Catalog"])


@app.get("/health")
def health(service: CopilotService = Depends(ask.get_service)):
    if service.mode == "mock":
        provider = {"provider": "mock", "ai_enabled": True}
    else:
        provider = describe_provider(service.llm)
    return {"status": "ok", **provider}
