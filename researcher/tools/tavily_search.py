from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient
from tavily.errors import InvalidAPIKeyError, MissingAPIKeyError, UsageLimitExceededError

from researcher.config import TavilyConfig
from researcher.errors import AuthenticationError, ProviderError, RateLimitError
from researcher.models.schemas import SearchResult
from researcher.services.env_safety import sanitize_ssl_keylogfile

# filter keys passed through to AsyncTavilyClient.search
PASSTHROUGH_FILTERS = ("topic", "time_range", "include_domains", "exclude_domains", "days")


class TavilySearch:
    name = "tavily"

    def __init__(self, config: TavilyConfig):
        self.config = config

    async def search(
        self,
        query: str,
        *,
        max_results: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Execute a Tavily web search and return structured results."""
        sanitize_ssl_keylogfile()
        client = AsyncTavilyClient(api_key=self.config.api_key)

        kwargs: dict[str, Any] = {
            "query": query,
            "search_depth": self.config.search_depth,
            "max_results": max_results or self.config.max_results,
            "include_images": False,
        }
        for key in PASSTHROUGH_FILTERS:
            value = (filters or {}).get(key)
            if value:
                kwargs[key] = value

        try:
            response = await client.search(**kwargs)
        except (InvalidAPIKeyError, MissingAPIKeyError) as exc:
            raise AuthenticationError(str(exc), provider=self.name, status_code=401) from exc
        except UsageLimitExceededError as exc:
            raise RateLimitError(str(exc), provider=self.name, status_code=429) from exc
        except Exception as exc:
            raise ProviderError(f"Tavily search failed: {exc}", provider=self.name) from exc

        return [
            SearchResult(
                url=r.get("url", ""),
                title=r.get("title", "") or "",
                content=r.get("content", "") or "",
                snippet=r.get("content") or None,
                score=r.get("score"),
                published_date=r.get("published_date"),
            )
            for r in response.get("results", [])
        ]
