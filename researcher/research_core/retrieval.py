"""Fan sub-questions out to search providers and merge what comes back."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Any, Mapping

from loguru import logger

from researcher.capabilities import SearchProvider
from researcher.errors import AuthenticationError
from researcher.models.schemas import ResultFilter, SearchOptions, SearchResult
from researcher.research_core.relevance import query_terms
from researcher.services import streaming
from researcher.services.event_bus import EventBus
from researcher.services.retry import retry_async
from researcher.services.working_memory import WorkingMemory
from researcher.tools.web_utils import extract_domain, normalize_url


class RetrievalCoordinator:
    """Runs every sub-question concurrently against an ordered provider list.

    `providers` holds only configured providers. The default provider is tried
    first, the rest follow in mapping order, and the first non-empty answer wins.
    """

    def __init__(
        self,
        providers: Mapping[str, SearchProvider],
        *,
        default_provider: str | None = None,
        memory: WorkingMemory | None = None,
        event_bus: EventBus | None = None,
        retries: int = 3,
        base_delay: float = 1.0,
    ):
        self.providers = dict(providers)
        self.default_provider = default_provider
        self.memory = memory or WorkingMemory()
        self.event_bus = event_bus or EventBus()
        self.retries = retries
        self.base_delay = base_delay

    def provider_order(self) -> list[str]:
        names = list(self.providers)
        if self.default_provider in self.providers:
            names.remove(self.default_provider)
            names.insert(0, self.default_provider)
        return names

    async def _search_provider(
        self,
        name: str,
        query: str,
        options: SearchOptions,
    ) -> list[SearchResult]:
        provider = self.providers[name]

        def on_retry(attempt: int, delay: float, exc: Exception) -> None:
            logger.warning(f"Search retry {attempt} on {name} in {delay:.1f}s: {exc}")
            self.event_bus.emit(streaming.retriever_retry(name, attempt, delay, str(exc)))

        return await retry_async(
            lambda: provider.search(query, max_results=options.max_results, filters=options.filters),
            retries=self.retries,
            base_delay=self.base_delay,
            on_retry=on_retry,
        )

    async def search_single(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Try providers in order until one returns results. Never raises."""
        options = options or SearchOptions()
        last_error: Exception | None = None

        for name in self.provider_order():
            try:
                results = await self._search_provider(name, query, options)
            except Exception as exc:
                last_error = exc
                kind = "authentication" if isinstance(exc, AuthenticationError) else "provider"
                logger.warning(f"Search provider {name} failed ({kind}) for '{query}': {exc}")
                self.event_bus.emit(streaming.retriever_error(query, name, str(exc)))
                continue
            if results:
                logger.debug(f"Search '{query}' answered by {name} with {len(results)} results")
                return results

        if last_error is not None:
            self.event_bus.emit(streaming.search_error(query, str(last_error)))
        return []

    async def search(
        self,
        sub_questions: list[str],
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        options = options or SearchOptions()
        self.event_bus.emit(streaming.retrieval_started(len(sub_questions)))

        settled = await asyncio.gather(
            *(self.search_single(question, options) for question in sub_questions),
            return_exceptions=True,
        )

        gathered: list[SearchResult] = []
        for question, outcome in zip(sub_questions, settled):
            if isinstance(outcome, BaseException):
                logger.error(f"Search for '{question}' crashed: {outcome}")
                self.event_bus.emit(streaming.search_error(question, str(outcome)))
                continue
            self.memory.add_search_results(question, outcome)
            gathered.extend(outcome)

        unique = self.deduplicate(gathered)
        self.event_bus.emit(streaming.retrieval_completed(len(sub_questions), len(unique)))
        return unique

    @staticmethod
    def deduplicate(results: list[SearchResult]) -> list[SearchResult]:
        """First occurrence of each normalized URL wins; then a stable sort by score."""
        seen: set[str] = set()
        unique: list[SearchResult] = []
        for result in results:
            key = normalize_url(result.url)
            if key in seen:
                continue
            seen.add(key)
            unique.append(result)

        if any(result.score is not None for result in unique):
            unique.sort(key=lambda result: result.score or 0.0, reverse=True)
        return unique

    @staticmethod
    def filter_results(results: list[SearchResult], criteria: ResultFilter) -> list[SearchResult]:
        def keep(result: SearchResult) -> bool:
            if criteria.min_content_length and len(result.content or "") < criteria.min_content_length:
                return False
            if criteria.require_snippet and not result.snippet:
                return False
            domain = extract_domain(result.url)
            if criteria.domains and not any(allowed in domain for allowed in criteria.domains):
                return False
            if criteria.exclude_domains and any(excluded in domain for excluded in criteria.exclude_domains):
                return False
            if criteria.max_age_days:
                age = result.age_in_days()
                if age is not None and age > criteria.max_age_days:
                    return False
            return True

        return [result for result in results if keep(result)]

    @staticmethod
    def rank_results(
        results: list[SearchResult],
        query: str,
        *,
        now: datetime | None = None,
    ) -> list[SearchResult]:
        """Boost provider scores by query-term hits and freshness, best first."""
        terms = query_terms(query)
        ranked: list[SearchResult] = []
        for result in results:
            boost = result.score or 0.0
            title = (result.title or "").lower()
            body = result.text.lower()
            boost += sum(2 for term in terms if term in title)
            boost += sum(1 for term in terms if term in body)

            age = result.age_in_days(now)
            if age is not None:
                if age < 7:
                    boost += 2
                elif age < 30:
                    boost += 1
            ranked.append(replace(result, score=boost))

        ranked.sort(key=lambda result: result.score or 0.0, reverse=True)
        return ranked

    def stats(self) -> dict[str, Any]:
        memory_stats = self.memory.get_stats()
        results = self.memory.search_results
        return {
            "search_queries": memory_stats["search_queries"],
            "total_results": len(results),
            "unique_urls": len({normalize_url(result.url) for result in results}),
            "providers": self.provider_order(),
        }
