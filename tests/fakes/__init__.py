"""
Fake implementations for testing.

This package contains fake (test double) implementations of the workflow
collaborators and tiny stages for the orchestrator, following the "fakes
over mocks" philosophy: simplified working implementations that record what
happened to them and avoid network, model and disk access.

Key fakes:
- FakeFetcher, FakeSummarizer, FakeCritic: canned collaborator answers
- InMemorySummaryStore: summary store backed by a list
- CountingStage / ToTextStage / ApprovalStage: orchestrator test stages
- RecordingObserver: captures observer hook order and settled runs
"""

from .pipeline import (
    ApprovalStage,
    CountingStage,
    ExplodingObserver,
    Number,
    RecordingObserver,
    Text,
    ToTextStage,
)
from .workflow import FakeCritic, FakeFetcher, FakeSummarizer, InMemorySummaryStore

__all__ = [
    "ApprovalStage",
    "CountingStage",
    "ExplodingObserver",
    "FakeCritic",
    "FakeFetcher",
    "FakeSummarizer",
    "InMemorySummaryStore",
    "Number",
    "RecordingObserver",
    "Text",
    "ToTextStage",
]
