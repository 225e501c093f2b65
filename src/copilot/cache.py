"""
Plan and result caching.

``TtlCache`` is a process-local keyed store with a per-entry time-to-live.
Two instances live inside ``CopilotCaches``:

  plan cache   -- compiled QueryPlans keyed by the normalised question
                  (tenant-agnostic; ~1 hour TTL)
  result cache -- QueryResults keyed by (tenant, content hash of plan)
                  (~5 minute TTL, metrics may still be landing)

Entries expire by TTL only; there is no write-through invalidation tied
to the warehouse.  Values are immutable snapshots, so a lost race between
two writers of the same key only costs duplicate work.
"""
from __future__ import annotations

import hashlib
import json
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from src.core.config import Settings, get_settings
from src.core.logging import get_logger
from src.governance.plan_schema import QueryPlan

logger = get_logger(__name__)


# ── Configuration ───────────────────────────────────────

DEFAULT_TTL_SECONDS = 300  # 5 minutes
DEFAULT_MAX_SIZE = 1024

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


# ── Cache entry ─────────────────────────────────────────


@dataclass
class CacheEntry:
    """A single cached value."""
    key: str
    value: Any
    created_at: float
    ttl: float
    hit_count: int = 0

    def is_expired(self, now: float) -> bool:
        return (now - self.created_at) > self.ttl


# ── Cache implementation ────────────────────────────────


class TtlCache:
    """Thread-safe in-memory cache with per-entry TTL.

    Parameters
    ----------
    default_ttl : float
        TTL used when ``set`` is called without one.
    max_size : int
        Maximum number of entries. Oldest entries are evicted when full.
    clock : callable
        Returns the current time in seconds; injectable for tests.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        name: str = "cache",
        clock: Callable[[], float] = time.time,
    ):
        self._store: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._clock = clock
        self.name = name
        self._hits = 0
        self._misses = 0

    # ── Public API ──────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Retrieve a cached value, or ``None`` on miss / expiry."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._store[key]
                self._misses += 1
                return None
            entry.hit_count += 1
            self._hits += 1
        logger.debug("%s HIT key=%s hits=%d", self.name, key[:16], entry.hit_count)
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value* under *key*, replacing any previous entry."""
        with self._lock:
            if len(self._store) >= self._max_size and key not in self._store:
                self._evict_oldest()
            self._store[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock(),
                ttl=self._default_ttl if ttl is None else ttl,
            )
            size = len(self._store)
        logger.debug("%s PUT key=%s size=%d", self.name, key[:16], size)

    def clear(self) -> int:
        """Flush every entry. Returns number of entries removed."""
        with self._lock:
            count = len(self._store)
            self._store.clear()
            return count

    def stats(self) -> dict[str, Any]:
        """Return cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._store),
                "max_size": self._max_size,
                "ttl_seconds": self._default_ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
            }

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, v in self._store.items() if v.is_expired(now)]
            for k in expired:
                del self._store[k]
            return len(expired)

    # ── Internals ───────────────────────────────────────

    def _evict_oldest(self) -> None:
        """Remove the entry with the earliest creation time."""
        if not self._store:
            return
        oldest_key = min(self._store, key=lambda k: self._store[k].created_at)
        del self._store[oldest_key]


# ── Key derivation ──────────────────────────────────────


def _digest(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


def normalize_question(question: str) -> str:
    """Lowercase, collapse non-alphanumerics to single spaces, trim."""
    return _NON_ALNUM_RE.sub(" ", question.lower()).strip()


def content_hash(plan: QueryPlan | dict[str, Any]) -> str:
    """Deterministic hash of the plan's canonical JSON (key order ignored)."""
    data = plan.to_dict() if isinstance(plan, QueryPlan) else plan
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode()).hexdigest()


def plan_cache_key(question: str) -> str:
    return _digest(f"ai|plan|{normalize_question(question)}")


def result_cache_key(tenant_id: str, plan: QueryPlan | dict[str, Any]) -> str:
    return _digest(f"ai|result|{tenant_id}|{content_hash(plan)}")


# ── Cache owner ─────────────────────────────────────────


@dataclass
class CopilotCaches:
    """The two shared caches, built once at startup."""

    plans: TtlCache
    results: TtlCache
    plan_ttl: float = 3600
    result_ttl: float = DEFAULT_TTL_SECONDS

    def get_plan(self, question: str) -> QueryPlan | None:
        return self.plans.get(plan_cache_key(question))

    def set_plan(self, question: str, plan: QueryPlan) -> None:
        self.plans.set(plan_cache_key(question), plan, self.plan_ttl)

    def get_result(self, tenant_id: str, plan: QueryPlan) -> Any | None:
        return self.results.get(result_cache_key(tenant_id, plan))

    def set_result(self, tenant_id: str, plan: QueryPlan, result: Any) -> None:
        self.results.set(result_cache_key(tenant_id, plan), result, self.result_ttl)

    def clear(self) -> dict[str, int]:
        return {"plans": self.plans.clear(), "results": self.results.clear()}

    def stats(self) -> dict[str, dict[str, Any]]:
        return {"plans": self.plans.stats(), "results": self.results.stats()}


def build_caches(settings: Settings | None = None, clock: Callable[[], float] = time.time) -> CopilotCaches:
    """Create empty plan/result caches sized from settings."""
    settings = settings or get_settings()
    return CopilotCaches(
        plans=TtlCache(
            default_ttl=settings.ai_plan_cache_ttl_seconds,
            max_size=settings.ai_cache_max_size,
            name="plan-cache",
            clock=clock,
        ),
        results=TtlCache(
            default_ttl=settings.ai_result_cache_ttl_seconds,
            max_size=settings.ai_cache_max_size,
            name="result-cache",
            clock=clock,
        ),
        plan_ttl=settings.ai_plan_cache_ttl_seconds,
        result_ttl=settings.ai_result_cache_ttl_seconds,
    )
