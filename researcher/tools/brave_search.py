from __future__ import annotations

from typing import Any

import httpx

from researcher.config import BraveConfig
from researcher.errors import ProviderError, classify_http_error
from researcher.models.schemas import SearchResult

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"

FRESHNESS_MAP = {
    "day": "pd",
    "week": "pw",
    "month": "pm",
    "year": "py",
}


class BraveSearch:
    name = "brave"

    def __init__(self, config: BraveConfig):
        self.config = config

    async def search(
        self,
        query: str,
        *,
        max_results: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Execute a Brave web search and normalize results."""
        params: dict[str, Any] = {
            "q": query,
            "count": max_results or self.config.max_results,
        }
        time_range = (filters or {}).get("time_range")
        if time_range in FRESHNESS_MAP:
            params["freshness"] = FRESHNESS_MAP[time_range]

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                response = await client.get(
                    BRAVE_SEARCH_URL,
                    params=params,
                    headers={
                        "Accept": "application/json",
                        "X-Subscription-Token": self.config.api_key,
                    },
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise classify_http_error(self.name, exc) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Brave request failed: {exc}", provider=self.name) from exc

        raw_results = payload.get("web", {}).get("results", [])
        total = max(len(raw_results), 1)
        mapped: list[SearchResult] = []
        for idx, item in enumerate(raw_results):
            snippets = item.get("extra_snippets", []) or []
            description = (item.get("description", "") or "").strip()
            # Brave has no relevance score in this response shape; rank order stands in for one
            mapped.append(
                SearchResult(
                    url=item.get("url", ""),
                    title=item.get("title", "") or "",
                    content=description or " ".join(snippets).strip(),
                    snippet=description or None,
                    score=max(0.0, 1.0 - (idx / total)),
                    published_date=item.get("page_age"),
                )
            )
        return mapped
