"""
The summarize workflow: fetch-page -> summarizer -> critique -> conditional-save.

Each stage wraps one collaborator. The mappings between stages are pure and
read earlier outputs (page title and url, summary text) from the run
context by stage name.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Optional

from pagedigest.fetching import PageFetcher
from pagedigest.models import (
    CritiqueRequest,
    CritiqueResult,
    FetchResult,
    PageRequest,
    SaveDecision,
    SaveRequest,
    SummaryOutput,
    SummaryPrompt,
)
from pagedigest.pipeline import ModelGradedStage, Pipeline, PipelineBuilder, RunContext, Stage
from pagedigest.storage import SummaryStore
from pagedigest.summarization import Critic, CritiqueParser, Summarizer
from pagedigest.summarization.prompt_builder import build_summary_prompt

logger = logging.getLogger(__name__)

PIPELINE_ID = "summarize-workflow"

FETCH_PAGE = "fetch-page"
SUMMARIZER = "summarizer"
CRITIQUE = "critique"
CONDITIONAL_SAVE = "conditional-save"

SAVE_THRESHOLD = 7.0

FALLBACK_ISSUE = "could not parse"


class FetchPageStage(Stage[PageRequest, FetchResult]):
    name = FETCH_PAGE
    input_model = PageRequest
    output_model = FetchResult

    def __init__(self, fetcher: PageFetcher):
        self.fetcher = fetcher

    async def execute(self, input: PageRequest, context: RunContext) -> FetchResult:
        return await self.fetcher.fetch(input.url, timeout=context.timeout)


class SummarizeStage(Stage[SummaryPrompt, SummaryOutput]):
    name = SUMMARIZER
    input_model = SummaryPrompt
    output_model = SummaryOutput

    def __init__(self, summarizer: Summarizer):
        self.summarizer = summarizer

    async def execute(self, input: SummaryPrompt, context: RunContext) -> SummaryOutput:
        text = await self.summarizer.summarize(input.prompt)
        return SummaryOutput(text=text)


class CritiqueStage(ModelGradedStage[CritiqueRequest, CritiqueResult]):
    """Scores a summary. Unparseable critic output becomes a neutral score of 5."""

    name = CRITIQUE
    input_model = CritiqueRequest
    output_model = CritiqueResult

    def __init__(self, critic: Critic, parser: Optional[CritiqueParser] = None):
        self.critic = critic
        self.parser = parser or CritiqueParser()

    async def generate(self, input: CritiqueRequest, context: RunContext) -> str:
        return await self.critic.critique(input.text, input.title)

    def parse(self, raw: str) -> CritiqueResult:
        return self.parser.parse(raw)

    def fallback(self, raw: str, error: Exception) -> CritiqueResult:
        return CritiqueResult(score=5, issues=[FALLBACK_ISSUE], suggestion="")


class ConditionalSaveStage(Stage[SaveRequest, SaveDecision]):
    """Persists the summary when its score reaches the threshold (inclusive)."""

    name = CONDITIONAL_SAVE
    input_model = SaveRequest
    output_model = SaveDecision

    def __init__(self, store: SummaryStore, threshold: float = SAVE_THRESHOLD):
        self.store = store
        self.threshold = threshold

    async def execute(self, input: SaveRequest, context: RunContext) -> SaveDecision:
        if input.score < self.threshold:
            logger.info(
                f"Score {input.score} below {self.threshold}; not saving",
                extra={"run_id": context.run_id, "url": input.url, "score": input.score},
            )
            return SaveDecision(saved=False)

        location = await asyncio.to_thread(self.store.save, input.title, input.url, input.summary)
        return SaveDecision(saved=True, location=location)


def to_summary_prompt(page: FetchResult, context: RunContext) -> SummaryPrompt:
    return SummaryPrompt(prompt=build_summary_prompt(page.title, page.content))


def to_critique_request(summary: SummaryOutput, context: RunContext) -> CritiqueRequest:
    page = context.get_output(FETCH_PAGE)
    return CritiqueRequest(text=summary.text, title=page.title, url=page.url)


def to_save_request(critique: CritiqueResult, context: RunContext) -> SaveRequest:
    page = context.get_output(FETCH_PAGE)
    summary = context.get_output(SUMMARIZER)
    return SaveRequest(score=critique.score, summary=summary.text, title=page.title, url=page.url)


def build_summarize_pipeline(
    fetcher: PageFetcher,
    summarizer: Summarizer,
    critic: Critic,
    store: SummaryStore,
    *,
    save_threshold: float = SAVE_THRESHOLD,
    timeouts: Optional[Mapping[str, float]] = None,
) -> Pipeline:
    """Wire the four workflow stages and their mappings into a pipeline."""
    timeouts = timeouts or {}
    return (
        PipelineBuilder(PIPELINE_ID, input_model=PageRequest, output_model=SaveDecision)
        .then(FetchPageStage(fetcher), timeout=timeouts.get(FETCH_PAGE))
        .map(to_summary_prompt, output_model=SummaryPrompt)
        .then(SummarizeStage(summarizer), timeout=timeouts.get(SUMMARIZER))
        .map(to_critique_request, output_model=CritiqueRequest)
        .then(CritiqueStage(critic), timeout=timeouts.get(CRITIQUE))
        .map(to_save_request, output_model=SaveRequest)
        .then(ConditionalSaveStage(store, save_threshold), timeout=timeouts.get(CONDITIONAL_SAVE))
        .commit()
    )

