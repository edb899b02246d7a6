"""Wires settings into a ready-to-run workflow (pipeline, orchestrator, run records)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from pagedigest.config import AppSettings
from pagedigest.db import RunRecorder, RunRepository
from pagedigest.fetching import PageFetcher
from pagedigest.pipeline import LoggingObserver, Pipeline, PipelineOrchestrator, RunObserver
from pagedigest.storage import LocalSummaryStore
from pagedigest.summarization import build_critic, build_summarizer

from .summarize import build_summarize_pipeline

logger = logging.getLogger(__name__)


@dataclass
class WorkflowRuntime:
    pipeline: Pipeline
    orchestrator: PipelineOrchestrator
    repository: Optional[RunRepository] = None
    # name -> object exposing ``async check_health()``
    health_checks: Dict[str, object] = field(default_factory=dict)
    # Backs the chat endpoint; anything with ``stream_chat(messages)``
    summarizer: Optional[object] = None


def build_runtime(settings: AppSettings) -> WorkflowRuntime:
    summarizer = build_summarizer(settings)
    critic = build_critic(settings)
    pipeline = build_summarize_pipeline(
        PageFetcher.from_settings(settings.fetch),
        summarizer,
        critic,
        LocalSummaryStore.from_settings(settings.storage),
        save_threshold=settings.workflow.save_threshold,
    )

    observers: list[RunObserver] = [LoggingObserver()]
    repository: Optional[RunRepository] = None
    if settings.database.enabled:
        settings.database.ensure_sqlite_parent()
        repository = RunRepository(settings.database.url, pipelines=[pipeline])
        repository.init_schema()
        observers.append(RunRecorder(repository))
        logger.info("Run records enabled", extra={"database_url": settings.database.url})
    else:
        logger.info("Run records disabled")

    orchestrator = PipelineOrchestrator(
        observers, stage_timeouts=settings.workflow.stage_timeouts
    )
    return WorkflowRuntime(
        pipeline=pipeline,
        orchestrator=orchestrator,
        repository=repository,
        health_checks={"summarizer": summarizer, "critic": critic},
        summarizer=summarizer,
    )
