"""Batched, cached page acquisition with per-URL error isolation."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Callable, Mapping

from loguru import logger

from researcher.capabilities import ContentAcquirer, ReleasableAcquirer
from researcher.models.schemas import AcquiredContent, AcquisitionOptions, SearchResult
from researcher.services import streaming
from researcher.services.event_bus import EventBus
from researcher.services.retry import retry_async
from researcher.services.working_memory import WorkingMemory
from researcher.tools.web_utils import extract_domain, is_valid_url, normalize_url

STATIC = "static"
BROWSER = "browser"

DEFAULT_JS_RENDER_DOMAINS: tuple[str, ...] = (
    "twitter.com",
    "instagram.com",
    "facebook.com",
    "linkedin.com",
    "medium.com",
    "bloomberg.com",
    "wsj.com",
)

MethodSelector = Callable[[str], str]


def _batches(items: list[Any], size: int) -> list[list[Any]]:
    size = max(size, 1)
    return [items[i : i + size] for i in range(0, len(items), size)]


class ContentAcquisitionCoordinator:
    """Fetches pages through named acquirers (`static`, `browser`, ...).

    Batches run one after another; URLs inside a batch run concurrently. A page
    failure never raises, it becomes an error-tagged AcquiredContent.
    """

    def __init__(
        self,
        acquirers: Mapping[str, ContentAcquirer],
        *,
        selector: MethodSelector | None = None,
        memory: WorkingMemory | None = None,
        event_bus: EventBus | None = None,
        concurrency: int = 3,
        timeout_seconds: float = 30.0,
        retries: int = 3,
        base_delay: float = 1.0,
        js_render_domains: tuple[str, ...] = DEFAULT_JS_RENDER_DOMAINS,
    ):
        if not acquirers:
            raise ValueError("At least one content acquirer is required")
        self.acquirers = dict(acquirers)
        self.selector = selector
        self.memory = memory or WorkingMemory()
        self.event_bus = event_bus or EventBus()
        self.concurrency = concurrency
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.base_delay = base_delay
        self.js_render_domains = js_render_domains
        self._scraped = 0
        self._failed = 0
        self._cache_hits = 0

    # --- method selection ---

    def select_method(self, url: str) -> str:
        if self.selector is not None:
            return self.selector(url)
        domain = extract_domain(url)
        if any(js_domain in domain for js_domain in self.js_render_domains):
            return BROWSER
        return STATIC

    def _acquirer_for(self, method: str) -> tuple[str, ContentAcquirer]:
        if method in self.acquirers:
            return method, self.acquirers[method]
        # browser-only domains still get a static attempt when no browser is configured
        fallback = STATIC if STATIC in self.acquirers else next(iter(self.acquirers))
        logger.debug(f"Acquirer '{method}' not configured, using '{fallback}'")
        return fallback, self.acquirers[fallback]

    @staticmethod
    def validate_urls(urls: list[str]) -> tuple[list[str], list[str]]:
        valid: list[str] = []
        invalid: list[str] = []
        for url in urls:
            (valid if is_valid_url(url) else invalid).append(url)
        return valid, invalid

    # --- single URL ---

    def _failure(self, url: str, error: str, method: str | None) -> AcquiredContent:
        logger.warning(f"Acquisition failed for {url}: {error}")
        self.event_bus.emit(streaming.scrape_error(url, error, method))
        return AcquiredContent(url=url, title="Error", content="", error=error)

    async def _fetch_one(self, url: str, method: str, timeout: float) -> AcquiredContent:
        method, acquirer = self._acquirer_for(method)

        async def attempt():
            try:
                return await asyncio.wait_for(acquirer.fetch(url), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise TimeoutError(f"Timed out after {timeout:g}s") from exc

        def on_retry(attempt_no: int, delay: float, exc: Exception) -> None:
            logger.info(f"Retrying {url} ({attempt_no}) in {delay:.1f}s: {exc}")
            self.event_bus.emit(streaming.scrape_retry(url, attempt_no, delay, str(exc)))

        try:
            page = await retry_async(
                attempt,
                retries=self.retries,
                base_delay=self.base_delay,
                on_retry=on_retry,
            )
        except Exception as exc:
            return self._failure(url, str(exc) or type(exc).__name__, method)

        if page.error:
            return self._failure(url, page.error, method)
        return AcquiredContent(url=url, title=page.title, content=page.text, images=list(page.images))

    # --- batches ---

    async def acquire(
        self,
        urls: list[str],
        options: AcquisitionOptions | None = None,
    ) -> list[AcquiredContent]:
        """One result per distinct normalized URL, in input order."""
        options = options or AcquisitionOptions()
        concurrency = options.concurrency or self.concurrency
        timeout = options.timeout_seconds or self.timeout_seconds

        unique: dict[str, str] = {}
        for url in urls:
            unique.setdefault(normalize_url(url), url)
        self.event_bus.emit(streaming.acquisition_started(len(unique), concurrency=concurrency))

        slots: list[AcquiredContent | None] = [None] * len(unique)
        pending: list[tuple[int, str, str]] = []
        cache_hits = 0
        for index, (key, url) in enumerate(unique.items()):
            cached = self.memory.cached_content(key)
            if cached is not None:
                cache_hits += 1
                self.event_bus.emit(streaming.cache_hit(url))
                slots[index] = replace(cached, from_cache=True)
            elif not is_valid_url(url):
                slots[index] = self._failure(url, "Invalid URL", None)
                self.memory.mark_visited(key)
            else:
                pending.append((index, key, url))
        self._cache_hits += cache_hits

        batches = _batches(pending, concurrency)
        for number, batch in enumerate(batches, start=1):
            self.event_bus.emit(streaming.batch_started(number, len(batches), len(batch)))
            settled = await asyncio.gather(
                *(
                    self._fetch_one(url, options.method or self.select_method(url), timeout)
                    for _, _, url in batch
                ),
                return_exceptions=True,
            )
            succeeded = 0
            for (index, key, url), outcome in zip(batch, settled):
                if isinstance(outcome, BaseException):
                    outcome = self._failure(url, str(outcome) or type(outcome).__name__, None)
                if outcome.ok:
                    succeeded += 1
                    self.memory.cache_content(key, outcome)
                else:
                    self.memory.mark_visited(key)
                slots[index] = outcome
            self.event_bus.emit(streaming.batch_completed(number, succeeded, len(batch) - succeeded))

        results = [slot for slot in slots if slot is not None]
        successful = sum(1 for item in results if item.ok)
        failed = len(results) - successful
        self._scraped += successful - cache_hits
        self._failed += failed
        self.event_bus.emit(
            streaming.acquisition_completed(len(results), successful, failed, cache_hits)
        )
        return results

    async def acquire_search_results(
        self,
        results: list[SearchResult],
        options: AcquisitionOptions | None = None,
    ) -> list[AcquiredContent]:
        """Acquire every result's page; failed pages fall back to the search snippet.

        The fallback keeps its `error` so callers can tell it apart from real page text.
        """
        acquired = await self.acquire([result.url for result in results], options)
        by_key = {normalize_url(item.url): item for item in acquired}

        merged: list[AcquiredContent] = []
        for result in results:
            page = by_key.get(normalize_url(result.url))
            if page is not None and page.ok:
                merged.append(
                    replace(page, url=result.url, title=page.title or result.title)
                )
                continue
            merged.append(
                AcquiredContent(
                    url=result.url,
                    title=result.title,
                    content=result.text,
                    error=page.error if page is not None else "Not acquired",
                )
            )
        return merged

    async def acquire_priority(
        self,
        urls: list[str],
        priority_urls: list[str],
        options: AcquisitionOptions | None = None,
    ) -> list[AcquiredContent]:
        """Acquire `priority_urls` one at a time first, then everything else."""
        options = options or AcquisitionOptions()
        priority_keys = {normalize_url(url) for url in priority_urls}
        first = list(priority_urls)
        rest = [url for url in urls if normalize_url(url) not in priority_keys]

        leading = await self.acquire(first, replace(options, concurrency=1))
        trailing = await self.acquire(rest, options)
        return leading + trailing

    async def release_resources(self) -> None:
        """Release every stateful acquirer. Failures are logged, never raised."""
        for name, acquirer in self.acquirers.items():
            if not isinstance(acquirer, ReleasableAcquirer):
                continue
            try:
                await acquirer.release_resources()
            except Exception as exc:
                logger.warning(f"Failed to release acquirer '{name}': {exc}")
                self.event_bus.emit(streaming.cleanup_error(name, str(exc)))

    def stats(self) -> dict[str, Any]:
        memory_stats = self.memory.get_stats()
        return {
            "scraped": self._scraped,
            "cache_hits": self._cache_hits,
            "failed": self._failed,
            "cached_urls": memory_stats["scraped_urls"],
            "visited_urls": memory_stats["visited_urls"],
            "acquirers": list(self.acquirers),
        }
