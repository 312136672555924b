from __future__ import annotations

import httpx
from loguru import logger

from researcher.config import Settings
from researcher.errors import ProviderError, classify_http_error
from researcher.models.schemas import AcquiredPage
from researcher.services.env_safety import sanitize_ssl_keylogfile
from researcher.tools.content_extractor import extract_main_content

TEXT_CONTENT_TYPES = ("text/plain", "text/markdown")

# worth another attempt: throttling and server-side failures
TRANSIENT_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})


class StaticScraper:
    """Plain HTTP fetch plus HTML extraction. No JavaScript execution.

    Transient failures (network errors, timeouts, 408/429/5xx) raise
    ProviderError so the acquisition coordinator can back off and retry.
    Anything else is reported through `AcquiredPage.error`.
    """

    name = "static"

    def __init__(self, settings: Settings):
        self.timeout_seconds = settings.scrape_timeout_seconds
        self.user_agent = settings.scrape_user_agent
        self.max_chars = settings.scrape_max_content_chars

    async def fetch(self, url: str) -> AcquiredPage:
        sanitize_ssl_keylogfile()
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, follow_redirects=True) as client:
                response = await client.get(url, headers={"User-Agent": self.user_agent})
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status in TRANSIENT_STATUS:
                raise classify_http_error(self.name, exc) from exc
            return AcquiredPage(title="", text="", error=f"HTTP {status}")
        except httpx.TransportError as exc:
            raise ProviderError(f"{type(exc).__name__}: {exc}", provider=self.name) from exc
        except httpx.HTTPError as exc:
            return AcquiredPage(title="", text="", error=f"{type(exc).__name__}: {exc}")

        content_type = response.headers.get("content-type", "").lower()
        if content_type.startswith(TEXT_CONTENT_TYPES):
            return AcquiredPage(title="", text=response.text[: self.max_chars])

        try:
            extracted = extract_main_content(str(response.url), response.text, max_chars=self.max_chars)
        except Exception as exc:
            logger.warning(f"Extraction failed for {url}: {exc}")
            return AcquiredPage(title="", text="", error=f"Extraction failed: {exc}")

        if not extracted.text:
            return AcquiredPage(title=extracted.title, text="", error="No readable content")
        return AcquiredPage(title=extracted.title, text=extracted.text, images=extracted.images)
