"""
Copilot service -- orchestrates plan -> execute -> validate -> narrate -> verify.

One request runs linearly:

  RECEIVE -> plan cache -> (PLAN on miss) -> result cache -> (EXECUTE on miss)
          -> VALIDATE RESULT -> NARRATE -> VERIFY -> (FALLBACK if ungrounded)
          -> RETURN

The whole cycle runs under one end-to-end timeout.  Nothing is retried:
a failure before narration fails the request, an ungrounded narration is
replaced by the deterministic fallback.
"""
from __future__ import annotations

import asyncio
import datetime
import uuid
from dataclasses import dataclass, field
from typing import Any

from src.copilot.cache import CopilotCaches, build_caches
from src.copilot.executor import AnalyticsExecutor
from src.copilot.llm_client import LlmClient, TextCompletion
from src.copilot.metric_resolver import MetricTimeseriesSource
from src.copilot.narration_guard import NarrationGuard
from src.copilot.planner import QueryPlanner
from src.core.config import Settings, get_settings
from src.core.errors import CapabilityDisabledError, RequestTimeoutError
from src.core.logging import get_logger, trace_logger
from src.core.utils import timer
from src.governance.plan_schema import CONFIDENCE_SCORES, QueryPlan, QueryResult
from src.governance.validator import validate_result

logger = get_logger(__name__)


@dataclass
class CopilotAnswer:
    response: str
    confidence: float
    data: QueryResult
    trace_id: str
    latency_ms: int = 0
    plan: QueryPlan | None = None
    plan_cached: bool = False
    result_cached: bool = False
    grounded: bool = True
    unsupported: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Wire form returned by ``POST /ask``."""
        return {
            "response": self.response,
            "confidence": self.confidence,
            "data": self.data.to_dict(),
            "traceId": self.trace_id,
            "latencyMs": self.latency_ms,
        }


class CopilotService:
    """End-to-end question -> grounded answer.

    Parameters
    ----------
    planner : QueryPlanner
    executor : AnalyticsExecutor
    narrator : NarrationGuard
    caches : CopilotCaches
        Shared plan/result caches (process-wide).
    llm : TextCompletion | None
        Checked up front outside mock mode so a disabled model fails before
        any warehouse work.
    timeout_seconds : float
        End-to-end budget for one request.
    """

    def __init__(
        self,
        planner: QueryPlanner,
        executor: AnalyticsExecutor,
        narrator: NarrationGuard,
        caches: CopilotCaches,
        llm: TextCompletion | None = None,
        mode: str = "mock",
        timeout_seconds: float = 45.0,
    ):
        self.planner = planner
        self.executor = executor
        self.narrator = narrator
        self.caches = caches
        self.llm = llm
        self.mode = mode
        self.timeout_seconds = timeout_seconds

    def ai_enabled(self) -> bool:
        if self.mode == "mock":
            return True
        enabled = getattr(self.llm, "enabled", None)
        return bool(self.llm) and (enabled() if callable(enabled) else True)

    async def plan(self, question: str) -> tuple[QueryPlan, bool]:
        """Cached plan lookup; compiles and stores on miss."""
        cached = self.caches.get_plan(question)
        if cached is not None:
            return cached, True
        plan = await self.planner.plan(question)
        self.caches.set_plan(question, plan)
        return plan, False

    async def ask(self, question: str, tenant_id: str, today: datetime.date | None = None) -> CopilotAnswer:
        trace_id = str(uuid.uuid4())
        try:
            return await asyncio.wait_for(
                self._ask(question, tenant_id, trace_id, today), timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            trace_logger(logger, trace_id).error(
                "Request timed out after %.1fs | tenant=%s", self.timeout_seconds, tenant_id,
            )
            raise RequestTimeoutError(
                f"Request exceeded the {self.timeout_seconds:g}s time budget"
            ) from exc

    async def _ask(
        self, question: str, tenant_id: str, trace_id: str, today: datetime.date | None,
    ) -> CopilotAnswer:
        log = trace_logger(logger, trace_id)
        log.info("Copilot.ask | tenant=%s | question=%s", tenant_id, question)

        with timer() as t:
            if not self.ai_enabled():
                raise CapabilityDisabledError("AI features are disabled. Please configure OPENAI_API_KEY.")

            plan, plan_cached = await self.plan(question)

            result = self.caches.get_result(tenant_id, plan)
            result_cached = result is not None
            if result is None:
                result = await self.executor.execute(question, tenant_id, plan, today=today)
                self.caches.set_result(tenant_id, plan, result)

            result = validate_result(result)
            narration = await self.narrator.narrate(result, trace_id=trace_id)

        log.info(
            "Query processed | tenant=%s | metric=%s | breakdowns=%s | plan_cached=%s | "
            "result_cached=%s | grounded=%s | latency_ms=%d",
            tenant_id, plan.metric, list(plan.breakdowns), plan_cached,
            result_cached, narration.grounded, t["elapsed_ms"],
        )

        return CopilotAnswer(
            response=narration.text,
            confidence=CONFIDENCE_SCORES[result.confidence],
            data=result,
            trace_id=trace_id,
            latency_ms=t["elapsed_ms"],
            plan=plan,
            plan_cached=plan_cached,
            result_cached=result_cached,
            grounded=narration.grounded,
            unsupported=narration.unsupported,
        )


def build_service(
    source: MetricTimeseriesSource,
    settings: Settings | None = None,
    llm: TextCompletion | None = None,
    caches: CopilotCaches | None = None,
) -> CopilotService:
    """Wire a service from settings; *llm* defaults to the configured provider."""
    settings = settings or get_settings()
    mode = settings.llm_provider.lower()
    if llm is None and mode != "mock":
        llm = LlmClient(settings=settings)

    return CopilotService(
        planner=QueryPlanner(llm=llm, mode=mode, max_tokens=settings.ai_planner_max_tokens),
        executor=AnalyticsExecutor(source),
        narrator=NarrationGuard(llm=llm, mode=mode),
        caches=caches or build_caches(settings),
        llm=llm,
        mode=mode,
        timeout_seconds=settings.ai_request_timeout_seconds,
    )
