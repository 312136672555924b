from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from fakes import FakeSearchProvider, make_result
from researcher.errors import AuthenticationError, ProviderError
from researcher.models.events import EventType
from researcher.models.schemas import ResultFilter, SearchOptions
from researcher.research_core.retrieval import RetrievalCoordinator
from researcher.services.event_bus import EventBus
from researcher.services.working_memory import WorkingMemory


def _five_results_three_urls():
    return [
        make_result("https://a.org/q", score=0.4),
        make_result("https://b.org/q", score=0.9),
        make_result("https://A.org/q/", score=0.99),
        make_result("https://c.org/q", score=0.7),
        make_result("https://b.org/q#frag", score=0.1),
    ]


@pytest.mark.asyncio
async def test_search_merges_sub_questions_into_unique_sorted_results():
    provider = FakeSearchProvider("tavily", _five_results_three_urls())
    memory = WorkingMemory()
    coordinator = RetrievalCoordinator({"tavily": provider}, memory=memory)

    results = await coordinator.search(["what is a qubit", "who builds quantum computers"])

    assert [r.url for r in results] == ["https://b.org/q", "https://c.org/q", "https://a.org/q"]
    assert [r.score for r in results] == [0.9, 0.7, 0.4]
    assert sorted(provider.queries) == ["what is a qubit", "who builds quantum computers"]
    assert memory.get_stats()["search_queries"] == 2


def test_deduplicate_keeps_first_occurrence():
    first = make_result("https://x.org/p", title="first", score=0.1)
    second = make_result("https://x.org/p/", title="second", score=0.9)
    assert RetrievalCoordinator.deduplicate([first, second]) == [first]


def test_deduplicate_without_scores_keeps_input_order():
    results = [make_result("https://b.org"), make_result("https://a.org")]
    assert [r.url for r in RetrievalCoordinator.deduplicate(results)] == ["https://b.org", "https://a.org"]


@pytest.mark.asyncio
async def test_search_single_falls_through_to_next_provider():
    bus = EventBus()
    errors = []
    bus.subscribe(errors.append, EventType.RETRIEVER_ERROR)
    broken = FakeSearchProvider("tavily", error=AuthenticationError("bad key", provider="tavily", status_code=401))
    empty = FakeSearchProvider("brave", [])
    working = FakeSearchProvider("serper", [make_result("https://s.org")])
    coordinator = RetrievalCoordinator(
        {"brave": empty, "tavily": broken, "serper": working},
        default_provider="tavily",
        event_bus=bus,
    )

    assert coordinator.provider_order() == ["tavily", "brave", "serper"]
    results = await coordinator.search_single("query")

    assert [r.url for r in results] == ["https://s.org"]
    # authentication failures are not retried
    assert broken.queries == ["query"]
    assert [event.data["provider"] for event in errors] == ["tavily"]


@pytest.mark.asyncio
async def test_search_single_retries_then_reports_search_error():
    bus = EventBus()
    seen = []
    bus.subscribe(lambda event: seen.append(event.event))
    provider = FakeSearchProvider("tavily", error=ProviderError("503", provider="tavily", status_code=503))
    coordinator = RetrievalCoordinator({"tavily": provider}, event_bus=bus, retries=2, base_delay=1.0)

    with patch("researcher.services.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        results = await coordinator.search_single("query")

    assert results == []
    assert len(provider.queries) == 3
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
    assert seen.count(EventType.RETRIEVER_RETRY) == 2
    assert seen[-1] == EventType.SEARCH_ERROR


@pytest.mark.asyncio
async def test_search_with_all_providers_empty_returns_nothing():
    coordinator = RetrievalCoordinator({"tavily": FakeSearchProvider("tavily", [])})
    assert await coordinator.search(["a", "b"], SearchOptions(max_results=3)) == []


def test_filter_results_applies_every_criterion():
    now = datetime.now(timezone.utc)
    results = [
        make_result("https://keep.org/a", content="x" * 50, snippet="s"),
        make_result("https://keep.org/short", content="x", snippet="s"),
        make_result("https://keep.org/nosnippet", content="x" * 50),
        make_result("https://drop.org/a", content="x" * 50, snippet="s"),
        make_result("https://keep.org/old", content="x" * 50, snippet="s", published_date="2001-01-01"),
        make_result("https://spam.keep.org/a", content="x" * 50, snippet="s", published_date=now.isoformat()),
    ]
    kept = RetrievalCoordinator.filter_results(
        results,
        ResultFilter(
            min_content_length=10,
            require_snippet=True,
            domains=["keep.org"],
            exclude_domains=["spam."],
            max_age_days=30,
        ),
    )
    assert [r.url for r in kept] == ["https://keep.org/a"]


def test_rank_results_boosts_term_hits_and_freshness():
    now = datetime(2026, 1, 31, tzinfo=timezone.utc)
    stale = make_result("https://a.org", title="Unrelated", content="nothing", score=1.0)
    titled = make_result("https://b.org", title="Quantum basics", content="quantum", score=0.0)
    fresh = make_result(
        "https://c.org", title="News", content="", score=0.0, published_date="2026-01-30T00:00:00Z"
    )

    ranked = RetrievalCoordinator.rank_results([stale, titled, fresh], "quantum", now=now)

    assert [r.url for r in ranked] == ["https://b.org", "https://c.org", "https://a.org"]
    assert ranked[0].score == 3.0
    assert ranked[1].score == 2.0
    # inputs are left untouched
    assert titled.score == 0.0
