"""Summarizer and critic: the two model-backed collaborators of the workflow."""
from __future__ import annotations

import logging
from typing import AsyncIterator, Mapping, Optional, Sequence

from pagedigest.config import AppSettings
from pagedigest.errors import SummarizationError

from .prompt_builder import (
    DEFAULT_MAX_WORDS,
    build_critique_prompt,
    critic_instructions,
    summarizer_instructions,
)
from .providers import CompletionProvider, ProviderChain, ProviderHealth, build_provider_chain

logger = logging.getLogger(__name__)

CHAT_HISTORY_LIMIT = 20


class Summarizer:
    """Turns a prompt into summary text.

    Usage:
        summarizer = Summarizer(build_provider_chain(settings.llm, settings.llm.summarizer_model))
        text = await summarizer.summarize(prompt)
    """

    def __init__(
        self,
        provider: CompletionProvider | ProviderChain,
        *,
        max_words: int = DEFAULT_MAX_WORDS,
        instructions: Optional[str] = None,
        history_limit: int = CHAT_HISTORY_LIMIT,
    ):
        self.provider = provider
        self.max_words = max_words
        self.instructions = instructions or summarizer_instructions(max_words)
        self.history_limit = history_limit

    async def summarize(self, prompt: str) -> str:
        """Generate summary text.

        Raises:
            SummarizationError: every provider failed or returned nothing
        """
        # Failure counts are per summary, not per process
        if isinstance(self.provider, ProviderChain):
            self.provider.reset_session()

        text = await self.provider.generate(prompt, system=self.instructions)
        if text is None or not text.strip():
            raise SummarizationError(f"Summarizer ({self.provider.name}) produced no output")
        logger.debug(
            "Summary generated",
            extra={"provider": self.provider.name, "words": len(text.split())},
        )
        return text.strip()

    async def stream_chat(self, messages: Sequence[Mapping[str, str]]) -> AsyncIterator[str]:
        """Stream a reply to a chat conversation.

        Only the last ``history_limit`` messages reach the model.

        Raises:
            SummarizationError: no provider produced any text
        """
        if isinstance(self.provider, ProviderChain):
            self.provider.reset_session()

        history = list(messages)[-self.history_limit:]
        emitted = False
        try:
            async for chunk in self.provider.stream_chat(history, system=self.instructions):
                emitted = True
                yield chunk
        except Exception as exc:
            if emitted:
                raise
            raise SummarizationError(f"Summarizer ({self.provider.name}) failed: {exc}") from exc
        if not emitted:
            raise SummarizationError(f"Summarizer ({self.provider.name}) produced no output")

    async def check_health(self) -> ProviderHealth:
        return await self.provider.check_health()


class Critic:
    """Asks the critic model to grade a summary; returns the raw model text.

    Parsing (and the fallback for unparseable text) belongs to the critique
    stage.
    """

    def __init__(
        self,
        provider: CompletionProvider | ProviderChain,
        *,
        max_words: int = DEFAULT_MAX_WORDS,
        instructions: Optional[str] = None,
    ):
        self.provider = provider
        self.instructions = instructions or critic_instructions(max_words)

    async def critique(self, summary: str, title: str) -> str:
        """Raises SummarizationError when no provider answers."""
        if isinstance(self.provider, ProviderChain):
            self.provider.reset_session()
        raw = await self.provider.generate(
            build_critique_prompt(title, summary), system=self.instructions
        )
        if raw is None:
            raise SummarizationError(f"Critic ({self.provider.name}) produced no output")
        return raw

    async def check_health(self) -> ProviderHealth:
        return await self.provider.check_health()


def build_summarizer(settings: AppSettings) -> Summarizer:
    return Summarizer(
        build_provider_chain(settings.llm, settings.llm.summarizer_model),
        max_words=settings.workflow.summary_max_words,
        history_limit=settings.workflow.chat_history_limit,
    )


def build_critic(settings: AppSettings) -> Critic:
    return Critic(
        build_provider_chain(settings.llm, settings.llm.critic_model),
        max_words=settings.workflow.summary_max_words,
    )
