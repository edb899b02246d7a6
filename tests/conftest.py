from __future__ import annotations

from pathlib import Path

import pytest

from pagedigest.config import get_settings
from pagedigest.pipeline import PipelineOrchestrator
from pagedigest.workflows import build_summarize_pipeline


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Keep tests away from a developer's .env and real workspace."""
    monkeypatch.chdir(tmp_path)
    for var in ("LOG_LEVEL", "LLM__API_KEY", "LLM__API_BASE", "WORKFLOW__SAVE_THRESHOLD"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ==================== Fake Fixtures ====================

@pytest.fixture
def fetcher():
    from fakes import FakeFetcher

    return FakeFetcher()


@pytest.fixture
def summarizer():
    from fakes import FakeSummarizer

    return FakeSummarizer()


@pytest.fixture
def critic():
    from fakes import FakeCritic

    return FakeCritic(score=8)


@pytest.fixture
def store():
    from fakes import InMemorySummaryStore

    return InMemorySummaryStore()


@pytest.fixture
def recorder():
    from fakes import RecordingObserver

    return RecordingObserver()


@pytest.fixture
def orchestrator(recorder) -> PipelineOrchestrator:
    """Orchestrator with only the recording observer attached."""
    return PipelineOrchestrator(observers=[recorder])


@pytest.fixture
def summarize_pipeline(fetcher, summarizer, critic, store):
    """
    Summarize workflow wired to fakes.

    Example:
        async def test_saves(orchestrator, summarize_pipeline, store):
            result = await orchestrator.run(summarize_pipeline, {"url": "https://example.com/a"})
            assert store.saved
    """
    return build_summarize_pipeline(fetcher, summarizer, critic, store)
