"""Contracts for the pluggable providers the pipeline consumes.

Concrete adapters live in `researcher.tools`; tests substitute fakes.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Protocol, runtime_checkable

from researcher.models.schemas import AcquiredPage, SearchResult
from researcher.services.cost import TokenUsage

Message = dict[str, str]
UsageCallback = Callable[[TokenUsage], None]


class SearchProvider(Protocol):
    """Raises AuthenticationError / RateLimitError / ProviderError on failure."""

    name: str

    async def search(
        self,
        query: str,
        *,
        max_results: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]: ...


class ContentAcquirer(Protocol):
    """Permanent fetch failures are reported through `AcquiredPage.error`.

    Transient ones (timeouts, throttling, server errors) raise ProviderError so
    the caller can retry.
    """

    name: str

    async def fetch(self, url: str) -> AcquiredPage: ...


@runtime_checkable
class ReleasableAcquirer(Protocol):
    async def release_resources(self) -> None: ...


class LLMProvider(Protocol):
    """Every call reports token usage through `on_usage` when it is set."""

    on_usage: UsageCallback | None

    async def complete(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str: ...

    def stream(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> AsyncIterator[str]: ...

    async def embedding(self, texts: list[str]) -> list[list[float]]: ...
