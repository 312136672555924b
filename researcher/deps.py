"""Explicit composition of the concrete providers a run needs."""
from __future__ import annotations

from researcher.agents.orchestrator import ResearchOrchestrator
from researcher.capabilities import ContentAcquirer, SearchProvider
from researcher.config import BraveConfig, SearchProviderConfig, SerperConfig, Settings, TavilyConfig
from researcher.errors import ConfigurationError
from researcher.models.schemas import ReportType, Tone
from researcher.services.event_bus import EventBus
from researcher.tools.brave_search import BraveSearch
from researcher.tools.browser_scraper import BrowserScraper
from researcher.tools.llm_client import OpenRouterLLM
from researcher.tools.serper_search import SerperSearch
from researcher.tools.static_scraper import StaticScraper
from researcher.tools.tavily_search import TavilySearch


def build_search_provider(config: SearchProviderConfig) -> SearchProvider:
    if isinstance(config, TavilyConfig):
        return TavilySearch(config)
    if isinstance(config, BraveConfig):
        return BraveSearch(config)
    if isinstance(config, SerperConfig):
        return SerperSearch(config)
    raise ConfigurationError(f"Unsupported search provider config: {config!r}")


def build_search_providers(settings: Settings) -> dict[str, SearchProvider]:
    """Configured providers keyed by name, default retriever first."""
    providers = {config.kind: build_search_provider(config) for config in settings.search_provider_configs()}
    if not providers:
        raise ConfigurationError(
            "No search provider credentials configured (TAVILY_API_KEY, BRAVE_API_KEY or SERPER_API_KEY)"
        )
    return providers


def build_acquirers(settings: Settings, *, browser: bool = True) -> dict[str, ContentAcquirer]:
    acquirers: dict[str, ContentAcquirer] = {"static": StaticScraper(settings)}
    if browser:
        acquirers["browser"] = BrowserScraper(settings)
    return acquirers


def create_orchestrator(
    settings: Settings,
    query: str,
    *,
    report_type: ReportType | str | None = None,
    tone: Tone | str | None = None,
    event_bus: EventBus | None = None,
    browser: bool = True,
) -> ResearchOrchestrator:
    """Validate credentials and wire the default adapters into an orchestrator."""
    settings.require_llm()
    return ResearchOrchestrator(
        settings,
        OpenRouterLLM(settings),
        build_search_providers(settings),
        build_acquirers(settings, browser=browser),
        query=query,
        report_type=report_type,
        tone=tone,
        event_bus=event_bus,
    )
