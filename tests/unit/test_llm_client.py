"""
Unit tests -- LLM client: configuration gates and provider dispatch.
"""
import pytest

from src.copilot import llm_client
from src.copilot.llm_client import LlmClient, describe_provider
from src.core.config import Settings
from src.core.errors import CapabilityDisabledError, NoResponseError


def _settings(**overrides) -> Settings:
    base = {"llm_provider": "openai", "openai_api_key": "", "anthropic_api_key": ""}
    base.update(overrides)
    return Settings(**base)


class _SdkClient:
    def __init__(self, api_key):
        self.api_key = api_key
        self.closed = False

    async def close(self):
        self.closed = True


@pytest.fixture
def recorder(monkeypatch):
    calls = []
    clients = []

    def make_client(api_key):
        clients.append(_SdkClient(api_key))
        return clients[-1]

    def install(provider: str, reply: str):
        async def fake(client, model, system, prompt, max_tokens, temperature):
            calls.append({
                "client": client, "model": model, "system": system,
                "prompt": prompt, "max_tokens": max_tokens, "temperature": temperature,
            })
            return reply
        monkeypatch.setitem(llm_client._PROVIDERS, provider, llm_client.Provider(make_client, fake))
        return calls, clients

    return install


def test_unknown_provider_raises():
    with pytest.raises(NotImplementedError, match="not supported"):
        LlmClient(provider="banana", settings=_settings())


def test_enabled_requires_key():
    assert not LlmClient(settings=_settings()).enabled()
    assert LlmClient(settings=_settings(openai_api_key="sk-test")).enabled()


def test_mock_provider_is_not_enabled():
    assert not LlmClient(provider="mock", settings=_settings()).enabled()


async def test_missing_openai_key_disables():
    client = LlmClient(settings=_settings())
    with pytest.raises(CapabilityDisabledError, match="Please configure OPENAI_API_KEY"):
        await client.complete_json("plan this", 400)


async def test_missing_anthropic_key_disables():
    client = LlmClient(provider="anthropic", settings=_settings())
    with pytest.raises(CapabilityDisabledError, match="ANTHROPIC_API_KEY"):
        await client.complete_text("narrate", 220)


async def test_json_call_uses_planner_settings(recorder):
    calls, _ = recorder("openai", '{"metric": "revenue"}')
    client = LlmClient(settings=_settings(openai_api_key="sk-test", ai_planner_model="planner-model"))
    out = await client.complete_json("plan this", 400)
    assert out == '{"metric": "revenue"}'
    assert calls[0]["model"] == "planner-model"
    assert calls[0]["system"] == "Return JSON only."
    assert calls[0]["temperature"] == 0.1
    assert calls[0]["max_tokens"] == 400


async def test_text_call_uses_narrator_settings(recorder):
    calls, _ = recorder("openai", "Revenue is 700.")
    client = LlmClient(settings=_settings(openai_api_key="sk-test", ai_narrator_model="narrator-model"))
    await client.complete_text("narrate", 220)
    assert calls[0]["model"] == "narrator-model"
    assert calls[0]["system"] == "Return a concise answer."
    assert calls[0]["temperature"] == 0.2


async def test_anthropic_uses_anthropic_model(recorder):
    calls, clients = recorder("anthropic", "ok")
    client = LlmClient(provider="anthropic", settings=_settings(anthropic_api_key="key", anthropic_model="claude-x"))
    await client.complete_text("narrate", 600)
    assert calls[0]["model"] == "claude-x"
    assert clients[0].api_key == "key"
    assert calls[0]["client"] is clients[0]


async def test_empty_response_raises(recorder):
    recorder("openai", "   ")
    client = LlmClient(settings=_settings(openai_api_key="sk-test"))
    with pytest.raises(NoResponseError, match="No response from AI narrator"):
        await client.complete_text("narrate", 220)


def test_describe_provider():
    client = LlmClient(settings=_settings(openai_api_key="sk-test"))
    assert describe_provider(client) == {"provider": "openai", "ai_enabled": True}


async def test_sdk_client_reused_then_closed(recorder):
    calls, clients = recorder("openai", "ok")
    client = LlmClient(settings=_settings(openai_api_key="sk-test"))
    await client.complete_json("plan this", 400)
    await client.complete_text("narrate", 220)
    assert len(clients) == 1
    assert calls[0]["client"] is calls[1]["client"]

    await client.aclose()
    assert clients[0].closed
    await client.aclose()
