from pagedigest.workflows.summarize import (
    CONDITIONAL_SAVE,
    CRITIQUE,
    FETCH_PAGE,
    PIPELINE_ID,
    SAVE_THRESHOLD,
    SUMMARIZER,
    ConditionalSaveStage,
    CritiqueStage,
    FetchPageStage,
    SummarizeStage,
    build_summarize_pipeline,
)
from pagedigest.workflows.runtime import WorkflowRuntime, build_runtime

__all__ = [
    "CONDITIONAL_SAVE",
    "CRITIQUE",
    "FETCH_PAGE",
    "PIPELINE_ID",
    "SAVE_THRESHOLD",
    "SUMMARIZER",
    "ConditionalSaveStage",
    "CritiqueStage",
    "FetchPageStage",
    "SummarizeStage",
    "WorkflowRuntime",
    "build_runtime",
    "build_summarize_pipeline",
]
