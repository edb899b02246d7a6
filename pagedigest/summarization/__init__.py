"""Model-backed summarization and critique."""

from pagedigest.summarization.providers import (
    CompletionProvider,
    HTTPProvider,
    ProviderChain,
    ProviderHealth,
    build_provider_chain,
)
from pagedigest.summarization.response_parser import CritiqueParser
from pagedigest.summarization.service import Critic, Summarizer, build_critic, build_summarizer

__all__ = [
    "CompletionProvider",
    "Critic",
    "CritiqueParser",
    "HTTPProvider",
    "ProviderChain",
    "ProviderHealth",
    "Summarizer",
    "build_critic",
    "build_provider_chain",
    "build_summarizer",
]
