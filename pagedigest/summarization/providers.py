"""LLM provider abstraction for the summarizer and critic."""
from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Mapping, Optional, Sequence

import httpx

from pagedigest.config import LLMSettings

from .prompt_builder import build_conversation_prompt

logger = logging.getLogger(__name__)


@dataclass
class ProviderHealth:
    """Health status of an LLM provider."""

    healthy: bool
    latency_ms: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"healthy": self.healthy, "latency_ms": self.latency_ms, "error": self.error}


class CompletionProvider(ABC):
    """Abstract base class for chat completion providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name for identification."""
        pass

    @abstractmethod
    async def generate(self, prompt: str, *, system: Optional[str] = None) -> Optional[str]:
        """Generate a response for the given prompt.

        Args:
            prompt: User message
            system: Optional system instructions

        Returns:
            Generated text, or None if failed
        """
        pass

    @abstractmethod
    async def check_health(self) -> ProviderHealth:
        """Check if the provider is healthy and responsive."""
        pass

    async def stream_chat(
        self, messages: Sequence[Mapping[str, str]], *, system: Optional[str] = None
    ) -> AsyncIterator[str]:
        """Stream a reply to a conversation as text chunks.

        Providers without native streaming answer in one chunk. Raises
        RuntimeError when no reply is produced.
        """
        text = await self.generate(build_conversation_prompt(messages), system=system)
        if not text:
            raise RuntimeError(f"{self.name} produced no reply")
        yield text


class ProviderChain:
    """Chain of providers with fallback support.

    Attempts generation using the primary provider, falling back to the
    next one when every retry of the current provider fails.
    """

    def __init__(
        self,
        providers: List[CompletionProvider],
        max_retries: int = 3,
        session_fail_threshold: int = 5,
    ):
        """Initialize provider chain.

        Args:
            providers: List of providers in priority order
            max_retries: Maximum attempts per provider
            session_fail_threshold: Failures before skipping a provider for the session
        """
        if not providers:
            raise ValueError("ProviderChain needs at least one provider")
        self.providers = providers
        self.max_retries = max(1, max_retries)
        self.session_fail_threshold = session_fail_threshold
        self._session_failures: Dict[str, int] = {}

    @property
    def name(self) -> str:
        return "+".join(p.name for p in self.providers)

    def reset_session(self) -> None:
        """Reset session failure counts."""
        self._session_failures = {}

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> Optional[str]:
        """Generate using the best available provider.

        Returns:
            Generated text, or None if all providers failed
        """
        for provider in self._get_available_providers():
            for attempt in range(self.max_retries):
                try:
                    result = await provider.generate(prompt, system=system)
                    if result is not None:
                        return result
                except Exception as e:
                    logger.warning(
                        f"Provider {provider.name} attempt {attempt + 1} failed: {e}"
                    )

            self._record_failure(provider.name)

        logger.error("All providers failed for generation")
        return None

    async def stream_chat(
        self, messages: Sequence[Mapping[str, str]], *, system: Optional[str] = None
    ) -> AsyncIterator[str]:
        """Stream from the best available provider.

        Fallback only happens before the first chunk; once text has been
        sent, a failure is re-raised. Yields nothing if all providers fail.
        """
        for provider in self._get_available_providers():
            for attempt in range(self.max_retries):
                emitted = False
                try:
                    async for chunk in provider.stream_chat(messages, system=system):
                        emitted = True
                        yield chunk
                except Exception as e:
                    if emitted:
                        raise
                    logger.warning(
                        f"Provider {provider.name} stream attempt {attempt + 1} failed: {e}"
                    )
                    continue
                if emitted:
                    return

            self._record_failure(provider.name)

        logger.error("All providers failed for streaming")

    async def check_health(self) -> ProviderHealth:
        """Healthy when at least one provider is."""
        results = await self.check_all_health()
        healthy = [health for _, health in results if health.healthy]
        if healthy:
            return healthy[0]
        errors = "; ".join(f"{name}: {health.error}" for name, health in results if health.error)
        return ProviderHealth(healthy=False, error=errors or None)

    async def check_all_health(self) -> List[tuple[str, ProviderHealth]]:
        """Check health of all providers.

        Returns:
            List of (provider_name, health_status) tuples
        """
        results = []
        for provider in self.providers:
            try:
                health = await provider.check_health()
                results.append((provider.name, health))
            except Exception as e:
                results.append((provider.name, ProviderHealth(healthy=False, error=str(e))))
        return results

    def _get_available_providers(self) -> List[CompletionProvider]:
        """Get providers not disabled for this session."""
        return [
            p for p in self.providers
            if self._session_failures.get(p.name, 0) < self.session_fail_threshold
        ]

    def _record_failure(self, provider_name: str) -> None:
        self._session_failures[provider_name] = (
            self._session_failures.get(provider_name, 0) + 1
        )
        if self._session_failures[provider_name] >= self.session_fail_threshold:
            logger.warning(
                f"Provider {provider_name} disabled for session "
                f"(reached {self.session_fail_threshold} failures)"
            )


class HTTPProvider(CompletionProvider):
    """HTTP-based provider for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: Optional[str] = None,
        model: str = "gpt-3.5-turbo",
        temperature: float = 0.3,
        max_tokens: int = 1000,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize HTTP provider.

        Args:
            name: Provider name
            base_url: API base URL, including the version prefix (e.g. ``.../api/v1``)
            api_key: Optional API key
            model: Model name
            temperature: Sampling temperature
            max_tokens: Completion token cap
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self._name = name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return self._name

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate(self, prompt: str, *, system: Optional[str] = None) -> Optional[str]:
        """Generate using HTTP API."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            async with self._client(self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._headers(),
                    json={
                        "model": self.model,
                        "messages": messages,
                        "temperature": self.temperature,
                        "max_tokens": self.max_tokens,
                    },
                )
                response.raise_for_status()

                result = response.json()
                return result["choices"][0]["message"]["content"]

        except Exception as e:
            logger.error(
                f"HTTP generation failed: {e}",
                extra={"provider": self._name, "model": self.model},
            )
            return None

    async def stream_chat(
        self, messages: Sequence[Mapping[str, str]], *, system: Optional[str] = None
    ) -> AsyncIterator[str]:
        """Stream a chat completion, reading ``data:`` lines of the SSE body."""
        payload_messages = []
        if system:
            payload_messages.append({"role": "system", "content": system})
        payload_messages.extend(
            {"role": message["role"], "content": message["content"]} for message in messages
        )

        async with self._client(self.timeout) as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json={
                    "model": self.model,
                    "messages": payload_messages,
                    "temperature": self.temperature,
                    "max_tokens": self.max_tokens,
                    "stream": True,
                },
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    choices = json.loads(data).get("choices") or []
                    if not choices:
                        continue
                    delta = (choices[0].get("delta") or {}).get("content")
                    if delta:
                        yield delta

    async def check_health(self) -> ProviderHealth:
        """Check API health by listing models."""
        try:
            start = time.time()
            async with self._client(10) as client:
                response = await client.get(f"{self.base_url}/models", headers=self._headers())
                latency = (time.time() - start) * 1000

                return ProviderHealth(
                    healthy=response.status_code == 200,
                    latency_ms=latency,
                    error=None if response.status_code == 200 else f"HTTP {response.status_code}",
                )
        except Exception as e:
            return ProviderHealth(healthy=False, error=str(e))


def build_provider_chain(
    settings: LLMSettings,
    model: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderChain:
    """Primary endpoint plus any configured fallbacks, all serving ``model``."""
    bases = [settings.api_base] + [b for b in settings.fallback_bases if b != settings.api_base]
    providers: List[CompletionProvider] = [
        HTTPProvider(
            name="primary" if index == 0 else f"fallback-{index}",
            base_url=base,
            api_key=settings.api_key_value(),
            model=model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
            transport=transport,
        )
        for index, base in enumerate(bases)
    ]
    return ProviderChain(providers, max_retries=settings.max_retries)
