"""
pagedigest: fetch a web page, summarize it, critique the summary and keep
the good ones.

Subpackages:
- pipeline: stage/mapping abstractions and the run orchestrator
- workflows: the summarize workflow built on the pipeline core
- fetching: page download and text extraction
- summarization: LLM providers, summarizer and critic
- storage: summary persistence
- db: run record persistence
- api: FastAPI surface
"""

from pagedigest.pipeline import PipelineOrchestrator, RunResult, RunStatus
from pagedigest.workflows import build_summarize_pipeline

__all__ = [
    "PipelineOrchestrator",
    "RunResult",
    "RunStatus",
    "build_summarize_pipeline",
]

__version__ = "0.1.0"
