from __future__ import annotations

from typing import Any

import httpx

from researcher.config import SerperConfig
from researcher.errors import ProviderError, classify_http_error
from researcher.models.schemas import SearchResult

SERPER_SEARCH_URL = "https://google.serper.dev/search"

TIME_RANGE_MAP = {
    "day": "qdr:d",
    "week": "qdr:w",
    "month": "qdr:m",
    "year": "qdr:y",
}


class SerperSearch:
    """Google results through the Serper API."""

    name = "serper"

    def __init__(self, config: SerperConfig):
        self.config = config

    async def search(
        self,
        query: str,
        *,
        max_results: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        body: dict[str, Any] = {
            "q": query,
            "num": max_results or self.config.max_results,
            "gl": self.config.country,
        }
        time_range = (filters or {}).get("time_range")
        if time_range in TIME_RANGE_MAP:
            body["tbs"] = TIME_RANGE_MAP[time_range]

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                response = await client.post(
                    SERPER_SEARCH_URL,
                    json=body,
                    headers={
                        "X-API-KEY": self.config.api_key,
                        "Content-Type": "application/json",
                    },
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise classify_http_error(self.name, exc) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Serper request failed: {exc}", provider=self.name) from exc

        organic = payload.get("organic", []) or []
        total = max(len(organic), 1)
        results: list[SearchResult] = []
        for idx, item in enumerate(organic):
            snippet = (item.get("snippet") or "").strip()
            results.append(
                SearchResult(
                    url=item.get("link", ""),
                    title=item.get("title", "") or "",
                    content=snippet,
                    snippet=snippet or None,
                    score=max(0.0, 1.0 - (idx / total)),
                    published_date=item.get("date"),
                )
            )
        return results
