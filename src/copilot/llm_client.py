"""
LLM client abstraction -- provider-agnostic TextCompletion capability.

Supported providers:
  openai    -- OpenAI Chat Completions (gpt-4o-mini default)
  anthropic -- Anthropic Messages (claude-3-haiku default)
  mock      -- no model; the pipeline plans and narrates deterministically
               and never calls this client

Two operations are exposed: ``complete_json`` (planner) and
``complete_text`` (narrator).  Both raise ``CapabilityDisabledError`` when
the provider is not configured and ``NoResponseError`` on empty content.
No retries happen at this boundary.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from src.core.config import Settings, get_settings
from src.core.errors import CapabilityDisabledError, NoResponseError
from src.core.logging import get_logger

logger = get_logger(__name__)

_JSON_SYSTEM = "Return JSON only."
_TEXT_SYSTEM = "Return a concise answer."


class TextCompletion(Protocol):
    """What the planner and narration guard need from a language model."""

    async def complete_json(self, prompt: str, max_tokens: int) -> str: ...

    async def complete_text(self, prompt: str, max_tokens: int) -> str: ...


def _openai_client(api_key: str) -> Any:
    try:
        import openai  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "The 'openai' package is not installed.  "
            "Run: pip install openai"
        ) from exc
    return openai.AsyncOpenAI(api_key=api_key)


async def _call_openai(
    client: Any, model: str, system: str, prompt: str, max_tokens: int, temperature: float,
) -> str:
    """Call OpenAI Chat Completions."""
    response = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        temperature=temperature,
        max_tokens=max_tokens,
    )
    if not response.choices:
        return ""
    return response.choices[0].message.content or ""


def _anthropic_client(api_key: str) -> Any:
    try:
        import anthropic  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "The 'anthropic' package is not installed.  "
            "Run: pip install anthropic"
        ) from exc
    return anthropic.AsyncAnthropic(api_key=api_key)


async def _call_anthropic(
    client: Any, model: str, system: str, prompt: str, max_tokens: int, temperature: float,
) -> str:
    """Call Anthropic Messages."""
    response = await client.messages.create(
        model=model,
        system=system,
        max_tokens=max_tokens,
        temperature=temperature,
        messages=[{"role": "user", "content": prompt}],
    )
    return "".join(
        getattr(block, "text", "") for block in (response.content or [])
    )


@dataclass(frozen=True)
class Provider:
    """How to build an SDK client and how to call it."""

    make_client: Callable[[str], Any]
    call: Callable[[Any, str, str, str, int, float], Awaitable[str]]


_PROVIDERS: dict[str, Provider] = {
    "openai": Provider(_openai_client, _call_openai),
    "anthropic": Provider(_anthropic_client, _call_anthropic),
}


class LlmClient:
    """TextCompletion backed by the configured (or overridden) provider."""

    def __init__(self, provider: str | None = None, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self.provider = (provider or self._settings.llm_provider).lower()
        self._client: Any = None
        if self.provider != "mock" and self.provider not in _PROVIDERS:
            raise NotImplementedError(
                f"LLM provider '{self.provider}' is not supported.  "
                f"Choose from: mock, {', '.join(_PROVIDERS)}"
            )
        if not self.enabled():
            logger.warning("LLM provider=%s has no API key -- AI planner/narrator disabled", self.provider)

    def _api_key(self) -> str:
        if self.provider == "openai":
            return self._settings.openai_api_key
        if self.provider == "anthropic":
            return self._settings.anthropic_api_key
        return ""

    def _model(self, purpose: str) -> str:
        if self.provider == "anthropic":
            return self._settings.anthropic_model
        if purpose == "planner":
            return self._settings.ai_planner_model
        return self._settings.ai_narrator_model

    def enabled(self) -> bool:
        return bool(self._api_key())

    async def complete_json(self, prompt: str, max_tokens: int) -> str:
        return await self._complete("planner", _JSON_SYSTEM, prompt, max_tokens, temperature=0.1)

    async def complete_text(self, prompt: str, max_tokens: int) -> str:
        return await self._complete("narrator", _TEXT_SYSTEM, prompt, max_tokens, temperature=0.2)

    async def _complete(
        self, purpose: str, system: str, prompt: str, max_tokens: int, temperature: float,
    ) -> str:
        api_key = self._api_key()
        if not api_key:
            key_name = f"{self.provider.upper()}_API_KEY" if self.provider != "mock" else "an LLM provider"
            raise CapabilityDisabledError(
                f"AI features are disabled. Please configure {key_name}."
            )

        provider = _PROVIDERS[self.provider]
        if self._client is None:
            self._client = provider.make_client(api_key)
        logger.info(
            "Calling LLM provider=%s purpose=%s prompt_len=%d max_tokens=%d",
            self.provider, purpose, len(prompt), max_tokens,
        )
        reply = await provider.call(self._client, self._model(purpose), system, prompt, max_tokens, temperature)
        text = reply.strip()
        if not text:
            raise NoResponseError(f"No response from AI {purpose}")
        logger.info("LLM %s response (%d chars)", purpose, len(text))
        return text

    async def aclose(self) -> None:
        """Release the SDK client's connection pool."""
        if self._client is not None:
            await self._client.close()
            self._client = None


def describe_provider(client: Any) -> dict[str, Any]:
    """Health-check view of a completion client."""
    provider = getattr(client, "provider", type(client).__name__)
    enabled = client.enabled() if hasattr(client, "enabled") else True
    return {"provider": provider, "ai_enabled": enabled}
