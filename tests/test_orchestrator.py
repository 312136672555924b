from __future__ import annotations

import asyncio
import json

import pytest
from loguru import logger

from fakes import FakeAcquirer, FakeLLM, FakeSearchProvider, ReleasableFakeAcquirer, make_result
from researcher.agents.orchestrator import ResearchOrchestrator, parse_sub_questions
from researcher.config import load_settings
from researcher.errors import ConfigurationError
from researcher.models.events import EventType
from researcher.models.schemas import AcquiredPage, PipelineStage
from researcher.services.event_bus import EventBus

PLAN = "1. What is a qubit?\n2. Who builds quantum computers?"


@pytest.fixture
def settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ("OPENROUTER_API_KEY", "TAVILY_API_KEY", "DEFAULT_RETRIEVER"):
        monkeypatch.delenv(key, raising=False)
    return load_settings(retry_max=0, smart_llm_model="gpt-4o", fast_llm_model="gpt-4o-mini", tone=None)


def _results():
    return [
        make_result("https://arxiv.org/abs/1", title="Qubits explained", content="Qubits are units.", score=0.9),
        make_result("https://site.net/a", title="Builders", content="Companies build them.", score=0.5),
    ]


def _orchestrator(settings, llm, provider=None, acquirer=None, **kwargs) -> ResearchOrchestrator:
    return ResearchOrchestrator(
        settings,
        llm,
        {"tavily": provider or FakeSearchProvider("tavily", _results())},
        {"static": acquirer or FakeAcquirer()},
        query=kwargs.pop("query", "quantum computing"),
        **kwargs,
    )


def test_parse_sub_questions_strips_numbering_and_headings():
    text = "# Questions\n1. First?\n- Second?\n\n3.Third?\n4. Fourth\n5. Fifth\n6. Sixth"
    assert parse_sub_questions(text) == ["First?", "Second?", "Third?", "Fourth", "Fifth"]


def test_constructor_rejects_empty_query_and_missing_providers(settings):
    with pytest.raises(ConfigurationError):
        _orchestrator(settings, FakeLLM(), query="   ")
    with pytest.raises(ConfigurationError):
        ResearchOrchestrator(settings, FakeLLM(), {}, {"static": FakeAcquirer()}, query="q")


@pytest.mark.asyncio
async def test_run_with_no_search_results_still_produces_report(settings):
    bus = EventBus()
    seen = []
    bus.subscribe(lambda event: seen.append(event))
    llm = FakeLLM([PLAN, "# Quantum computing\n\nAnswer from model knowledge."])
    orchestrator = _orchestrator(settings, llm, provider=FakeSearchProvider("tavily", []), event_bus=bus)

    result = await orchestrator.run()

    assert result.sources == []
    assert "Answer from model knowledge." in result.report
    assert result.subtopics == ["What is a qubit?", "Who builds quantum computers?"]
    assert orchestrator.stage == PipelineStage.COMPLETE

    kinds = [event.event for event in seen]
    for started, completed in [
        (EventType.PLANNING_STARTED, EventType.PLANNING_COMPLETED),
        (EventType.RETRIEVAL_STARTED, EventType.RETRIEVAL_COMPLETED),
        (EventType.VALIDATION_STARTED, EventType.VALIDATION_COMPLETED),
        (EventType.ACQUISITION_STARTED, EventType.ACQUISITION_COMPLETED),
        (EventType.CONTEXT_STARTED, EventType.CONTEXT_COMPLETED),
        (EventType.SYNTHESIS_STARTED, EventType.SYNTHESIS_COMPLETED),
    ]:
        assert kinds.index(started) < kinds.index(completed)
    acquisition = next(event for event in seen if event.event == EventType.ACQUISITION_COMPLETED)
    assert acquisition.data["total"] == 0
    assert EventType.ACQUISITION_BATCH_STARTED not in kinds


@pytest.mark.asyncio
async def test_run_executes_every_stage_in_order(settings):
    bus = EventBus()
    seen = []
    bus.subscribe(lambda event: seen.append(event.event))
    llm = FakeLLM([PLAN, "# Report\n\nBody."])
    acquirer = ReleasableFakeAcquirer(pages={"https://arxiv.org/abs/1": "Qubits are quantum bits."})
    provider = FakeSearchProvider("tavily", _results())
    orchestrator = _orchestrator(settings, llm, provider=provider, acquirer=acquirer, event_bus=bus)

    result = await orchestrator.run()

    assert sorted(provider.queries) == ["What is a qubit?", "Who builds quantum computers?"]
    assert [s.url for s in result.sources] == ["https://arxiv.org/abs/1", "https://site.net/a"]
    assert sorted(acquirer.calls) == ["https://arxiv.org/abs/1", "https://site.net/a"]
    assert "Qubits are quantum bits." in result.context
    assert "## References" in result.report
    assert acquirer.released == 1

    order = [
        EventType.RESEARCH_STARTED,
        EventType.PLANNING_STARTED,
        EventType.RETRIEVAL_STARTED,
        EventType.VALIDATION_STARTED,
        EventType.ACQUISITION_STARTED,
        EventType.CONTEXT_STARTED,
        EventType.SYNTHESIS_STARTED,
        EventType.RESEARCH_COMPLETE,
    ]
    positions = [seen.index(kind) for kind in order]
    assert positions == sorted(positions)
    assert seen[-1] == EventType.RESEARCH_COMPLETE


@pytest.mark.asyncio
async def test_failed_pages_fall_back_to_search_snippets(settings):
    failing = FakeAcquirer(
        pages={
            "https://arxiv.org/abs/1": AcquiredPage(title="", text="", error="HTTP 403"),
            "https://site.net/a": AcquiredPage(title="", text="", error="HTTP 500"),
        }
    )
    orchestrator = _orchestrator(settings, FakeLLM([PLAN, "# R\n\nBody."]), acquirer=failing)

    result = await orchestrator.run()

    assert sorted(result.context) == ["Companies build them.", "Qubits are units."]


@pytest.mark.asyncio
async def test_empty_plan_falls_back_to_root_query(settings):
    provider = FakeSearchProvider("tavily", [])
    orchestrator = _orchestrator(settings, FakeLLM(["", "# R\n\nBody."]), provider=provider)

    result = await orchestrator.run()

    assert provider.queries == ["quantum computing"]
    assert result.subtopics == ["quantum computing"]


@pytest.mark.asyncio
async def test_run_failure_releases_resources_and_reraises(settings):
    bus = EventBus()
    errors = []
    bus.subscribe(errors.append, EventType.ERROR)
    acquirer = ReleasableFakeAcquirer()
    orchestrator = _orchestrator(
        settings, FakeLLM(fail_with=RuntimeError("llm down")), acquirer=acquirer, event_bus=bus
    )

    with pytest.raises(RuntimeError, match="llm down"):
        await orchestrator.run()

    assert orchestrator.stage == PipelineStage.ERROR
    assert acquirer.released == 1
    assert errors[0].data["stage"] == "synthesizing"


@pytest.mark.asyncio
async def test_stream_yields_progress_chunks_and_single_terminal(settings):
    llm = FakeLLM([PLAN], stream_chunks=["# Quantum\n\n", "Streamed body."])
    acquirer = ReleasableFakeAcquirer()
    orchestrator = _orchestrator(settings, llm, acquirer=acquirer)

    updates = [update async for update in orchestrator.stream()]

    terminals = [u for u in updates if u.type in ("complete", "error")]
    assert len(terminals) == 1
    assert updates[-1].type == "complete"
    assert updates[0].type == "progress"
    progress = [u.progress for u in updates if u.type == "progress"]
    assert progress == sorted(progress)

    chunks = [u.data["chunk"] for u in updates if u.type == "data" and "chunk" in u.data]
    assert chunks == ["# Quantum\n\n", "Streamed body."]

    report = updates[-1].data["report"]
    assert report.startswith("# Quantum\n\nStreamed body.")
    assert "## References" in report
    assert len(updates[-1].data["sources"]) == 2
    assert acquirer.released == 1


@pytest.mark.asyncio
async def test_stream_failure_ends_with_one_error_update(settings):
    acquirer = ReleasableFakeAcquirer()
    orchestrator = _orchestrator(settings, FakeLLM(fail_with=RuntimeError("llm down")), acquirer=acquirer)

    updates = [update async for update in orchestrator.stream()]

    assert [u.type for u in updates].count("error") == 1
    assert [u.type for u in updates].count("complete") == 0
    assert updates[-1].type == "error"
    assert "llm down" in updates[-1].message
    assert acquirer.released == 1


@pytest.mark.asyncio
async def test_orchestrator_runs_only_once(settings):
    orchestrator = _orchestrator(settings, FakeLLM([PLAN, "# R\n\nBody."]))
    await orchestrator.run()
    with pytest.raises(RuntimeError):
        await orchestrator.run()


@pytest.mark.asyncio
async def test_costs_accumulate_from_llm_usage(settings):
    orchestrator = _orchestrator(settings, FakeLLM([PLAN, "# R\n\n" + "Body text. " * 50]))

    result = await orchestrator.run()

    assert result.costs.total > 0
    assert result.costs.total == pytest.approx(orchestrator.total_cost)
    assert set(result.costs.breakdown) == {"gpt-4o"}
    assert result.metadata.tokens_used > 0
    assert result.metadata.queries_run == 2


@pytest.mark.asyncio
async def test_run_with_timeout_raises_while_run_continues(settings):
    gate = asyncio.Event()

    class SlowProvider(FakeSearchProvider):
        async def search(self, query, *, max_results=10, filters=None):
            await gate.wait()
            return []

    orchestrator = _orchestrator(settings, FakeLLM([PLAN, "# R\n\nBody."]), provider=SlowProvider("tavily"))

    with pytest.raises(asyncio.TimeoutError):
        await orchestrator.run_with_timeout(0.05)

    background = orchestrator._background
    assert not background.done()
    gate.set()
    result = await background
    assert result.report



@pytest.mark.asyncio
async def test_background_run_failure_after_timeout_is_logged(settings):
    gate = asyncio.Event()
    messages = []

    class SlowProvider(FakeSearchProvider):
        async def search(self, query, *, max_results=10, filters=None):
            await gate.wait()
            return []

    def plan_then_fail(messages_in):
        if not llm.calls[:-1]:
            return PLAN
        raise RuntimeError("model unavailable")

    llm = FakeLLM(handler=plan_then_fail)
    orchestrator = _orchestrator(settings, llm, provider=SlowProvider("tavily"))
    sink = logger.add(messages.append, level="ERROR")
    try:
        with pytest.raises(asyncio.TimeoutError):
            await orchestrator.run_with_timeout(0.05)

        background = orchestrator._background
        gate.set()
        await asyncio.wait([background])
        await asyncio.sleep(0)
    finally:
        logger.remove(sink)

    assert isinstance(background.exception(), RuntimeError)
    assert any("Background research run failed: model unavailable" in str(m) for m in messages)


@pytest.mark.asyncio
async def test_export_research_and_stats(settings):
    orchestrator = _orchestrator(settings, FakeLLM([PLAN, "# R\n\nBody.", "# Again\n\nRewritten."]))
    await orchestrator.run()

    exported = json.loads(orchestrator.export_research())
    assert exported["query"] == "quantum computing"
    assert exported["stats"]["stage"] == "complete"
    assert exported["memory"]["subtopics"] == ["What is a qubit?", "Who builds quantum computers?"]
    assert exported["settings"]["openrouter_api_key"] == ""

    rewritten = await orchestrator.write_report()
    assert rewritten.startswith("# Again")
