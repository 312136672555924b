from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from researcher.config import Settings
from researcher.errors import ProviderError
from researcher.models.schemas import AcquiredPage
from researcher.tools.content_extractor import extract_main_content
from researcher.tools.static_scraper import TRANSIENT_STATUS


class BrowserScraper:
    """Headless Chromium acquirer for JavaScript-heavy sites.

    The browser starts on first fetch and stays up until `release_resources()`.
    Navigation timeouts and 408/425/429/5xx responses raise ProviderError so the
    acquisition coordinator can retry them.
    """

    name = "browser"

    def __init__(self, settings: Settings, *, wait_until: str = "networkidle"):
        self.timeout_ms = int(settings.scrape_timeout_seconds * 1000)
        self.user_agent = settings.scrape_user_agent
        self.max_chars = settings.scrape_max_content_chars
        self.wait_until = wait_until
        self._playwright: Any = None
        self._browser: Any = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self) -> Any:
        async with self._lock:
            if self._browser is None:
                from playwright.async_api import async_playwright

                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
            return self._browser

    async def fetch(self, url: str) -> AcquiredPage:
        try:
            browser = await self._ensure_browser()
        except ImportError:
            return AcquiredPage(title="", text="", error="Playwright is not installed")
        except Exception as exc:
            return AcquiredPage(title="", text="", error=f"Browser launch failed: {exc}")

        context = await browser.new_context(user_agent=self.user_agent)
        try:
            page = await context.new_page()
            response = await page.goto(url, wait_until=self.wait_until, timeout=self.timeout_ms)
            if response is not None and response.status in TRANSIENT_STATUS:
                raise ProviderError(f"HTTP {response.status}", provider=self.name, status_code=response.status)
            if response is not None and response.status >= 400:
                return AcquiredPage(title="", text="", error=f"HTTP {response.status}")
            html = await page.content()
            final_url = page.url
        except ProviderError:
            raise
        except Exception as exc:
            if _is_timeout(exc):
                raise ProviderError(f"{type(exc).__name__}: {exc}", provider=self.name) from exc
            return AcquiredPage(title="", text="", error=f"{type(exc).__name__}: {exc}")
        finally:
            await context.close()

        extracted = extract_main_content(final_url, html, max_chars=self.max_chars)
        if not extracted.text:
            return AcquiredPage(title=extracted.title, text="", error="No readable content")
        return AcquiredPage(title=extracted.title, text=extracted.text, images=extracted.images)

    async def release_resources(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        try:
            if browser is not None:
                await browser.close()
        finally:
            if playwright is not None:
                await playwright.stop()
        logger.debug("Browser acquirer released")


def _is_timeout(exc: BaseException) -> bool:
    # playwright's TimeoutError does not subclass the builtin one
    return isinstance(exc, TimeoutError) or type(exc).__name__ == "TimeoutError"
