"""Unit tests for provider chain fallback and the HTTP provider."""
import json

import httpx
import pytest

from pagedigest.config import LLMSettings
from pagedigest.summarization import (
    CompletionProvider,
    HTTPProvider,
    ProviderChain,
    ProviderHealth,
    build_provider_chain,
)


class MockProvider(CompletionProvider):
    """Mock provider for testing."""

    def __init__(self, name: str, healthy: bool = True, fail_generate: bool = False, raise_error: bool = False):
        self._name = name
        self._healthy = healthy
        self._fail_generate = fail_generate
        self._raise_error = raise_error
        self.generate_calls = []

    @property
    def name(self) -> str:
        return self._name

    async def check_health(self) -> ProviderHealth:
        if self._healthy:
            return ProviderHealth(healthy=True, latency_ms=1.0)
        return ProviderHealth(healthy=False, error="Mock unhealthy")

    async def generate(self, prompt: str, *, system=None) -> str | None:
        self.generate_calls.append((prompt, system))
        if self._raise_error:
            raise RuntimeError("boom")
        if self._fail_generate:
            return None
        return f"{self._name}: {prompt[:20]}"


def completion_response(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


# ==================== ProviderChain ====================

@pytest.mark.asyncio
async def test_provider_chain_single_healthy_provider():
    """Test basic generation with a single provider."""
    provider = MockProvider("test")
    chain = ProviderChain([provider])

    result = await chain.generate("test prompt", system="be brief")

    assert result == "test: test prompt"
    assert provider.generate_calls == [("test prompt", "be brief")]


@pytest.mark.asyncio
async def test_provider_chain_retries_then_falls_back():
    """Test the chain exhausts retries on one provider before moving on."""
    provider1 = MockProvider("provider1", fail_generate=True)
    provider2 = MockProvider("provider2")
    chain = ProviderChain([provider1, provider2], max_retries=2)

    result = await chain.generate("test prompt")

    assert result == "provider2: test prompt"
    assert len(provider1.generate_calls) == 2
    assert len(provider2.generate_calls) == 1


@pytest.mark.asyncio
async def test_provider_chain_exceptions_count_as_failures():
    provider1 = MockProvider("provider1", raise_error=True)
    provider2 = MockProvider("provider2")
    chain = ProviderChain([provider1, provider2], max_retries=1)

    assert await chain.generate("prompt") == "provider2: prompt"


@pytest.mark.asyncio
async def test_provider_chain_all_fail_returns_none():
    chain = ProviderChain([MockProvider("a", fail_generate=True)], max_retries=1)

    assert await chain.generate("prompt") is None


@pytest.mark.asyncio
async def test_provider_disabled_after_session_threshold():
    """Test a provider that keeps failing is skipped for the rest of the session."""
    flaky = MockProvider("flaky", fail_generate=True)
    backup = MockProvider("backup")
    chain = ProviderChain([flaky, backup], max_retries=1, session_fail_threshold=2)

    for _ in range(3):
        await chain.generate("prompt")

    assert len(flaky.generate_calls) == 2
    assert len(backup.generate_calls) == 3

    chain.reset_session()
    await chain.generate("prompt")
    assert len(flaky.generate_calls) == 3


@pytest.mark.asyncio
async def test_check_health_reports_first_healthy():
    chain = ProviderChain([MockProvider("down", healthy=False), MockProvider("up")])

    health = await chain.check_health()
    all_health = await chain.check_all_health()

    assert health.healthy
    assert [name for name, _ in all_health] == ["down", "up"]
    assert all_health[0][1].error == "Mock unhealthy"


@pytest.mark.asyncio
async def test_check_health_all_unhealthy():
    chain = ProviderChain([MockProvider("a", healthy=False), MockProvider("b", healthy=False)])

    health = await chain.check_health()

    assert not health.healthy
    assert health.error == "a: Mock unhealthy; b: Mock unhealthy"


def test_chain_needs_providers():
    with pytest.raises(ValueError):
        ProviderChain([])


def test_chain_name_joins_providers():
    assert ProviderChain([MockProvider("a"), MockProvider("b")]).name == "a+b"


# ==================== HTTPProvider ====================

@pytest.mark.asyncio
async def test_http_provider_posts_chat_completion():
    """Test the request body and auth header sent to the API."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return completion_response("- a summary")

    provider = HTTPProvider(
        "primary",
        "https://llm.example.com/api/v1/",
        api_key="sk-test",
        model="tiny-model",
        transport=httpx.MockTransport(handler),
    )

    result = await provider.generate("Summarize this", system="You summarize.")

    assert result == "- a summary"
    assert captured["url"] == "https://llm.example.com/api/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["model"] == "tiny-model"
    assert captured["body"]["messages"] == [
        {"role": "system", "content": "You summarize."},
        {"role": "user", "content": "Summarize this"},
    ]


@pytest.mark.asyncio
async def test_http_provider_error_returns_none():
    provider = HTTPProvider(
        "primary",
        "https://llm.example.com/api/v1",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )

    assert await provider.generate("prompt") is None


@pytest.mark.asyncio
async def test_http_provider_health_check():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/models"
        return httpx.Response(401)

    provider = HTTPProvider(
        "primary", "https://llm.example.com/api/v1", transport=httpx.MockTransport(handler)
    )

    health = await provider.check_health()

    assert not health.healthy
    assert health.error == "HTTP 401"


@pytest.mark.asyncio
async def test_build_provider_chain_uses_fallback_bases():
    """Test fallback bases are tried in order after the primary."""
    hosts = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        if request.url.host == "primary.example.com":
            return httpx.Response(503)
        return completion_response("from fallback")

    settings = LLMSettings(
        api_base="https://primary.example.com/v1",
        fallback_bases="https://backup.example.com/v1",
        max_retries=1,
    )
    chain = build_provider_chain(settings, "m", transport=httpx.MockTransport(handler))

    result = await chain.generate("prompt")

    assert result == "from fallback"
    assert hosts == ["primary.example.com", "backup.example.com"]
    assert [p.name for p in chain.providers] == ["primary", "fallback-1"]


# ==================== Streaming ====================

def sse_response(*deltas: str) -> httpx.Response:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": delta}}]}) for delta in deltas
    ]
    lines.append("data: [DONE]")
    return httpx.Response(
        200,
        headers={"Content-Type": "text/event-stream"},
        content="\n\n".join(lines).encode() + b"\n\n",
    )


async def collect(chunks):
    return [chunk async for chunk in chunks]


@pytest.mark.asyncio
async def test_http_provider_streams_deltas():
    """Test SSE deltas are yielded in order and the conversation is sent as-is."""
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return sse_response("- vents ", "host life")

    provider = HTTPProvider(
        "primary", "https://llm.example.com/api/v1", transport=httpx.MockTransport(handler)
    )
    conversation = [
        {"role": "user", "content": "Summarize it"},
        {"role": "assistant", "content": "- long"},
        {"role": "user", "content": "Shorter"},
    ]

    chunks = await collect(provider.stream_chat(conversation, system="You summarize."))

    assert chunks == ["- vents ", "host life"]
    assert captured["body"]["stream"] is True
    assert captured["body"]["messages"] == [{"role": "system", "content": "You summarize."}] + conversation


@pytest.mark.asyncio
async def test_default_stream_sends_one_chunk():
    provider = MockProvider("plain")

    chunks = await collect(provider.stream_chat([{"role": "user", "content": "hello"}]))

    assert chunks == ["plain: User: hello"]


@pytest.mark.asyncio
async def test_chain_stream_falls_back_before_first_chunk():
    provider1 = MockProvider("provider1", raise_error=True)
    provider2 = MockProvider("provider2")
    chain = ProviderChain([provider1, provider2], max_retries=2)

    chunks = await collect(chain.stream_chat([{"role": "user", "content": "hi"}]))

    assert chunks == ["provider2: User: hi"]
    assert len(provider1.generate_calls) == 2


@pytest.mark.asyncio
async def test_chain_stream_yields_nothing_when_all_fail():
    chain = ProviderChain([MockProvider("p", fail_generate=True)], max_retries=1)

    assert await collect(chain.stream_chat([{"role": "user", "content": "hi"}])) == []


class BrokenMidStream(MockProvider):
    async def stream_chat(self, messages, *, system=None):
        yield "partial "
        raise RuntimeError("connection reset")


@pytest.mark.asyncio
async def test_chain_stream_does_not_fall_back_after_text_was_sent():
    backup = MockProvider("backup")
    chain = ProviderChain([BrokenMidStream("flaky"), backup])
    chunks = []

    with pytest.raises(RuntimeError, match="connection reset"):
        async for chunk in chain.stream_chat([{"role": "user", "content": "hi"}]):
            chunks.append(chunk)

    assert chunks == ["partial "]
    assert backup.generate_calls == []
