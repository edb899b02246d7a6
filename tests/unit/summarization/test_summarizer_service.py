"""Unit tests for the Summarizer and Critic services."""
import pytest

from pagedigest.config import AppSettings
from pagedigest.errors import SummarizationError
from pagedigest.summarization import (
    CompletionProvider,
    Critic,
    ProviderChain,
    ProviderHealth,
    Summarizer,
    build_critic,
    build_summarizer,
)


class ScriptedProvider(CompletionProvider):
    """Returns a fixed reply and records prompts."""

    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    @property
    def name(self) -> str:
        return "scripted"

    async def generate(self, prompt, *, system=None):
        self.calls.append({"prompt": prompt, "system": system})
        return self.reply

    async def check_health(self) -> ProviderHealth:
        return ProviderHealth(healthy=True, latency_ms=2.0)


@pytest.mark.asyncio
async def test_summarize_strips_and_uses_instructions():
    provider = ScriptedProvider("\n- point one\n- point two\n")
    summarizer = Summarizer(provider, max_words=80)

    text = await summarizer.summarize("Summarize the article")

    assert text == "- point one\n- point two"
    assert provider.calls[0]["prompt"] == "Summarize the article"
    assert "under 80 words" in provider.calls[0]["system"]


@pytest.mark.asyncio
@pytest.mark.parametrize("reply", [None, "", "   "])
async def test_summarize_without_output_raises(reply):
    summarizer = Summarizer(ScriptedProvider(reply))

    with pytest.raises(SummarizationError, match="scripted"):
        await summarizer.summarize("prompt")


@pytest.mark.asyncio
async def test_critic_returns_raw_text():
    """Test the critic hands back unparsed model text."""
    provider = ScriptedProvider("not json, just vibes")
    critic = Critic(provider)

    raw = await critic.critique("- point", "Deep Sea Vents")

    assert raw == "not json, just vibes"
    assert '"Deep Sea Vents"' in provider.calls[0]["prompt"]
    assert "- point" in provider.calls[0]["prompt"]
    assert '"score"' in provider.calls[0]["system"]


@pytest.mark.asyncio
async def test_critic_without_output_raises():
    with pytest.raises(SummarizationError):
        await Critic(ScriptedProvider(None)).critique("s", "t")


@pytest.mark.asyncio
async def test_health_delegates_to_provider():
    health = await Summarizer(ScriptedProvider("x")).check_health()

    assert health.healthy
    assert health.latency_ms == 2.0


def test_builders_use_configured_models():
    settings = AppSettings(
        llm={"summarizer_model": "sum-model", "critic_model": "critic-model"},
        workflow={"summary_max_words": 99},
    )

    summarizer = build_summarizer(settings)
    critic = build_critic(settings)

    assert summarizer.provider.providers[0].model == "sum-model"
    assert critic.provider.providers[0].model == "critic-model"
    assert summarizer.max_words == 99
    assert "under 99 words" in critic.instructions


class FlakyProvider(ScriptedProvider):
    """Returns nothing for the first ``outage`` calls, then the reply."""

    def __init__(self, reply, outage):
        super().__init__(reply)
        self.outage = outage

    async def generate(self, prompt, *, system=None):
        self.calls.append({"prompt": prompt, "system": system})
        if len(self.calls) <= self.outage:
            return None
        return self.reply


@pytest.mark.asyncio
async def test_provider_outage_does_not_outlive_the_summary():
    """Test a provider disabled during earlier summaries is tried again on the next one."""
    provider = FlakyProvider("- back online", outage=3)
    summarizer = Summarizer(ProviderChain([provider], max_retries=1, session_fail_threshold=2))

    for _ in range(3):
        with pytest.raises(SummarizationError):
            await summarizer.summarize("prompt")

    assert await summarizer.summarize("prompt") == "- back online"
    assert len(provider.calls) == 4


@pytest.mark.asyncio
async def test_critic_resets_provider_failures_per_critique():
    provider = FlakyProvider('{"score": 7}', outage=2)
    critic = Critic(ProviderChain([provider], max_retries=1, session_fail_threshold=1))

    for _ in range(2):
        with pytest.raises(SummarizationError):
            await critic.critique("s", "t")

    assert await critic.critique("s", "t") == '{"score": 7}'


# ==================== Chat streaming ====================

class ChatProvider(ScriptedProvider):
    """Streams ``reply`` word by word and records each conversation."""

    def __init__(self, reply):
        super().__init__(reply)
        self.conversations = []

    async def stream_chat(self, messages, *, system=None):
        self.conversations.append((list(messages), system))
        for word in (self.reply or "").split():
            yield word


@pytest.mark.asyncio
async def test_stream_chat_keeps_only_recent_history():
    provider = ChatProvider("short answer")
    summarizer = Summarizer(provider, max_words=60, history_limit=3)
    messages = [{"role": "user", "content": f"message {n}"} for n in range(5)]

    chunks = [chunk async for chunk in summarizer.stream_chat(messages)]

    sent, system = provider.conversations[0]
    assert chunks == ["short", "answer"]
    assert [m["content"] for m in sent] == ["message 2", "message 3", "message 4"]
    assert "under 60 words" in system


@pytest.mark.asyncio
async def test_stream_chat_without_text_raises():
    summarizer = Summarizer(ChatProvider(""))

    with pytest.raises(SummarizationError, match="produced no output"):
        [chunk async for chunk in summarizer.stream_chat([{"role": "user", "content": "hi"}])]


@pytest.mark.asyncio
async def test_stream_chat_wraps_provider_errors():
    summarizer = Summarizer(ScriptedProvider(None))

    with pytest.raises(SummarizationError, match="scripted"):
        [chunk async for chunk in summarizer.stream_chat([{"role": "user", "content": "hi"}])]


def test_chat_history_limit_comes_from_settings():
    settings = AppSettings(workflow={"chat_history_limit": 4})

    assert build_summarizer(settings).history_limit == 4
