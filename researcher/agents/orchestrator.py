from __future__ import annotations

import asyncio
import json
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Mapping

from loguru import logger

from researcher.capabilities import ContentAcquirer, LLMProvider, SearchProvider
from researcher.config import Settings, validate_query
from researcher.errors import ConfigurationError, StageError
from researcher.models.schemas import (
    AcquiredContent,
    CostSummary,
    CurationCriteria,
    PipelineStage,
    ReportType,
    ResearchContext,
    ResearchResult,
    RunMetadata,
    SearchOptions,
    SearchResult,
    StreamUpdate,
    Tone,
)
from researcher.research_core.acquisition import ContentAcquisitionCoordinator, MethodSelector
from researcher.research_core.context import ContextBuilder
from researcher.research_core.retrieval import RetrievalCoordinator
from researcher.research_core.synthesis import ReportSynthesizer
from researcher.research_core.validation import SourceValidator
from researcher.services import logger as log_service
from researcher.services import streaming
from researcher.services.cost import CostTracker, TokenUsage
from researcher.services.event_bus import EventBus
from researcher.services.prompt_store import render_prompt
from researcher.services.working_memory import WorkingMemory

MAX_SUB_QUESTIONS = 5

DEFAULT_VALIDATION_POLICY = CurationCriteria(
    min_credibility_score=30,
    require_https=False,
    max_age_days=365,
)

STAGE_ORDER = (
    PipelineStage.IDLE,
    PipelineStage.PLANNING,
    PipelineStage.RETRIEVING,
    PipelineStage.VALIDATING,
    PipelineStage.ACQUIRING,
    PipelineStage.CONTEXT_BUILDING,
    PipelineStage.SYNTHESIZING,
    PipelineStage.COMPLETE,
)

# progress percentage reported when a stage starts
STAGE_PROGRESS = {
    PipelineStage.PLANNING: 5,
    PipelineStage.RETRIEVING: 15,
    PipelineStage.VALIDATING: 30,
    PipelineStage.ACQUIRING: 40,
    PipelineStage.CONTEXT_BUILDING: 60,
    PipelineStage.SYNTHESIZING: 75,
    PipelineStage.COMPLETE: 100,
}


def _log_background_failure(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background research run failed: {exc}")


def parse_sub_questions(text: str, limit: int = MAX_SUB_QUESTIONS) -> list[str]:
    """One question per non-empty line, numbering and bullets stripped, headings skipped."""
    questions: list[str] = []
    for line in text.split("\n"):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        line = re.sub(r"^\d+\.\s*", "", line)
        line = re.sub(r"^-\s*", "", line)
        if line:
            questions.append(line)
    return questions[:limit]


class ResearchOrchestrator:
    """Orchestrates one research run end to end.

    Flow:
      1. Plan sub-questions via LLM
      2. Search every sub-question concurrently, merge and dedupe
      3. Validate sources against the default credibility policy
      4. Acquire the top validated pages in batches
      5. Build a token-budgeted context
      6. Synthesize the report, batch or streamed

    Every stage reports through the EventBus. Acquirer resources are released
    when the run ends, whatever the outcome. An instance runs exactly once.
    """

    def __init__(
        self,
        settings: Settings,
        llm: LLMProvider,
        search_providers: Mapping[str, SearchProvider],
        acquirers: Mapping[str, ContentAcquirer],
        *,
        query: str,
        report_type: ReportType | str | None = None,
        tone: Tone | str | None = None,
        event_bus: EventBus | None = None,
        selector: MethodSelector | None = None,
    ):
        self.query = validate_query(query)
        if not search_providers:
            raise ConfigurationError("No search provider is configured")

        self.settings = settings
        self.report_type = ReportType(report_type or settings.report_type)
        self.run_id = uuid.uuid4().hex[:12]
        self.event_bus = event_bus or EventBus()
        self.memory = WorkingMemory()
        self.cost_tracker = CostTracker()

        self.llm = llm
        self.llm.on_usage = self._record_usage

        self.retrieval = RetrievalCoordinator(
            search_providers,
            default_provider=settings.default_retriever,
            memory=self.memory,
            event_bus=self.event_bus,
            retries=settings.retry_max,
            base_delay=settings.retry_base_delay,
        )
        self.validator = SourceValidator(
            llm=llm,
            event_bus=self.event_bus,
            model=settings.fast_llm_model,
        )
        self.acquisition = ContentAcquisitionCoordinator(
            acquirers,
            selector=selector,
            memory=self.memory,
            event_bus=self.event_bus,
            concurrency=settings.scrape_concurrency,
            timeout_seconds=settings.scrape_timeout_seconds,
            retries=settings.retry_max,
            base_delay=settings.retry_base_delay,
            js_render_domains=settings.js_render_domains,
        )
        self.context_builder = ContextBuilder(
            llm,
            memory=self.memory,
            event_bus=self.event_bus,
            query=self.query,
            model=settings.fast_llm_model,
            token_budget=settings.context_token_budget,
            compression_ratio=settings.compression_ratio,
            compress=settings.compression_enabled,
        )
        self.synthesizer = ReportSynthesizer(
            llm,
            settings,
            memory=self.memory,
            event_bus=self.event_bus,
            tone=tone,
        )

        self.stage = PipelineStage.IDLE
        self.sources: list[SearchResult] = []
        self.research_context: ResearchContext | None = None
        self._started = False
        self._start_time: datetime | None = None
        self._started_at: float | None = None
        self._finished_at: float | None = None
        self._background: asyncio.Task | None = None

    # --- bookkeeping ---

    def _record_usage(self, usage: TokenUsage) -> None:
        self.cost_tracker.add(usage)

    @property
    def total_cost(self) -> float:
        return self.cost_tracker.total_cost

    def _begin(self) -> None:
        if self._started:
            raise RuntimeError("A ResearchOrchestrator runs once; create a new instance for another query")
        self._started = True
        self._start_time = datetime.now(timezone.utc)
        self._started_at = time.monotonic()
        log_service.log_research_step(self.run_id, "run", "started", {"query": self.query})
        self.event_bus.emit(streaming.research_started(self.query))

    def _advance(self, stage: PipelineStage) -> None:
        if STAGE_ORDER.index(stage) <= STAGE_ORDER.index(self.stage):
            raise RuntimeError(f"Illegal stage transition {self.stage.value} -> {stage.value}")
        self.stage = stage
        log_service.log_research_step(self.run_id, stage.value, "started")

    def _fail(self, exc: Exception) -> str:
        failed_stage = getattr(exc, "stage", None) or self.stage.value
        message = f"Research failed during {failed_stage}: {exc}"
        self.stage = PipelineStage.ERROR
        self._finished_at = time.monotonic()
        logger.error(message)
        log_service.log_research_step(self.run_id, failed_stage, "failed", {"error": str(exc)})
        self.event_bus.emit(streaming.error(message, stage=failed_stage))
        return message

    def runtime_ms(self) -> int | None:
        if self._started_at is None:
            return None
        end = self._finished_at if self._finished_at is not None else time.monotonic()
        return int((end - self._started_at) * 1000)

    async def _cleanup(self) -> None:
        await self.acquisition.release_resources()

    # --- stages ---

    async def plan(self, query: str | None = None) -> list[str]:
        """Ask the LLM for 3-5 sub-questions; the root query itself on any failure."""
        query = query or self.query
        self.event_bus.emit(streaming.planning_started(query))
        messages = [
            {"role": "system", "content": render_prompt("planner.system_prompt")},
            {"role": "user", "content": render_prompt("planner.user_prompt", query=query)},
        ]
        try:
            response = await self.llm.complete(
                messages,
                model=self.settings.smart_llm_model,
                temperature=0.7,
                max_tokens=500,
            )
            questions = parse_sub_questions(response)
        except Exception as exc:
            logger.warning(f"Planning failed, researching the query directly: {exc}")
            self.event_bus.emit(streaming.planning_failed(query, str(exc)))
            questions = []

        if not questions:
            questions = [query]
        self.memory.add_subtopics(questions)
        self.event_bus.emit(streaming.planning_completed(query, questions))
        return questions

    def _progress(self, stage: PipelineStage, message: str) -> StreamUpdate:
        self._advance(stage)
        return StreamUpdate(type="progress", message=message, progress=STAGE_PROGRESS[stage])

    async def _prepare(self) -> AsyncGenerator[StreamUpdate, None]:
        """Run every stage before synthesis, reporting as it goes.

        Leaves the assembled ResearchContext in `self.research_context`.
        """
        yield self._progress(PipelineStage.PLANNING, "Planning research")
        questions = await self.plan(self.query)
        if not questions:
            raise StageError(PipelineStage.PLANNING.value, "No sub-questions available")
        yield StreamUpdate(type="data", message="Sub-questions planned", data={"subtopics": questions})

        yield self._progress(PipelineStage.RETRIEVING, "Searching sources")
        results = await self.retrieval.search(
            questions,
            SearchOptions(max_results=self.settings.max_search_results),
        )
        yield StreamUpdate(type="data", message="Search complete", data={"result_count": len(results)})

        yield self._progress(PipelineStage.VALIDATING, "Validating sources")
        self.sources = self.validator.curate(results, DEFAULT_VALIDATION_POLICY)
        if results and not self.sources:
            logger.warning("No source passed validation; continuing with model knowledge only")
        yield StreamUpdate(type="data", message="Sources validated", data={"validated_count": len(self.sources)})

        yield self._progress(PipelineStage.ACQUIRING, "Reading sources")
        top = self.sources[: self.settings.max_sources_to_scrape]
        acquired = await self.acquisition.acquire_search_results(top)
        scraped = sum(1 for item in acquired if item.ok)
        yield StreamUpdate(type="data", message="Sources acquired", data={"scraped_count": scraped})

        yield self._progress(PipelineStage.CONTEXT_BUILDING, "Building context")
        findings = await self._build_findings(acquired)
        self.research_context = ResearchContext(
            query=self.query,
            report_type=self.report_type,
            findings=findings,
            sources=self.sources,
            subtopics=self.memory.subtopics,
        )
        yield StreamUpdate(type="data", message="Context ready", data={"context_items": len(findings)})

    async def _build_findings(self, acquired: list[AcquiredContent]) -> list[str]:
        pages = [item for item in acquired if item.ok and item.content]
        if not pages:
            # every page failed: fall back to the search snippets carried by the failures
            pages = [item for item in acquired if item.content]
        if not pages:
            self.event_bus.emit(streaming.context_started(0))
            self.event_bus.emit(streaming.context_completed(0, 0, 0))
            return []
        return await self.context_builder.build_context(pages)

    def _complete(self, report: str, context: ResearchContext) -> ResearchResult:
        self._advance(PipelineStage.COMPLETE)
        self._finished_at = time.monotonic()
        end_time = datetime.now(timezone.utc)

        result = ResearchResult(
            report=report,
            sources=list(context.sources),
            subtopics=list(context.subtopics),
            context=list(context.findings),
            costs=CostSummary(
                total=self.cost_tracker.total_cost,
                breakdown=self.cost_tracker.cost_by_model(),
            ),
            metadata=RunMetadata(
                start_time=self._start_time or end_time,
                end_time=end_time,
                tokens_used=self.cost_tracker.total_tokens,
                queries_run=len(context.subtopics),
            ),
        )
        log_service.log_research_step(
            self.run_id,
            "run",
            "completed",
            {"report_length": len(report), "sources": len(result.sources), "cost": result.costs.total},
        )
        self.event_bus.emit(
            streaming.research_complete(
                report_length=len(report),
                sources_count=len(result.sources),
                tokens_used=result.metadata.tokens_used,
                total_cost=result.costs.total,
                runtime_ms=self.runtime_ms(),
            )
        )
        return result

    # --- public API ---

    async def run(self) -> ResearchResult:
        """Execute the full pipeline and return the result, raising on fatal failure."""
        self._begin()
        try:
            async for _ in self._prepare():
                pass
            context = self.research_context
            self._advance(PipelineStage.SYNTHESIZING)
            report = await self.synthesizer.generate(context)
            return self._complete(report, context)
        except Exception as exc:
            self._fail(exc)
            raise
        finally:
            await self._cleanup()

    async def stream(self) -> AsyncGenerator[StreamUpdate, None]:
        """Execute the pipeline, yielding progress, report fragments and one terminal update."""
        self._begin()
        try:
            async for update in self._prepare():
                yield update
            context = self.research_context

            yield self._progress(PipelineStage.SYNTHESIZING, "Writing report")
            async for fragment in self.synthesizer.generate_stream(context):
                yield StreamUpdate(type="data", data={"chunk": fragment})

            report = self.synthesizer.add_references(self.synthesizer.last_report or "", context.sources)
            self.memory.add_report(str(self.report_type), report)
            result = self._complete(report, context)
            terminal = StreamUpdate(
                type="complete",
                message="Research complete",
                data={
                    "report": result.report,
                    "sources": [source.to_dict() for source in result.sources],
                    "subtopics": result.subtopics,
                    "costs": {"total": result.costs.total, "breakdown": result.costs.breakdown},
                    "tokens_used": result.metadata.tokens_used,
                    "runtime_ms": self.runtime_ms(),
                },
                progress=STAGE_PROGRESS[PipelineStage.COMPLETE],
            )
        except Exception as exc:
            terminal = StreamUpdate(type="error", message=self._fail(exc))
        finally:
            await self._cleanup()
        yield terminal

    async def run_with_timeout(self, seconds: float) -> ResearchResult:
        """`run()` bounded by a caller deadline.

        On timeout this raises TimeoutError while the run keeps going in the
        background, so already dispatched requests complete normally.
        """
        self._background = asyncio.ensure_future(self.run())
        self._background.add_done_callback(_log_background_failure)
        return await asyncio.wait_for(asyncio.shield(self._background), timeout=seconds)

    async def write_report(self, context: ResearchContext | None = None) -> str:
        """Regenerate a report from the given context or what working memory holds."""
        context = context or self.research_context or ResearchContext(
            query=self.query,
            report_type=self.report_type,
            findings=self.memory.context,
            sources=self.sources,
            subtopics=self.memory.subtopics,
        )
        return await self.synthesizer.generate(context)

    def stats(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stage": self.stage.value,
            "memory": self.memory.get_stats(),
            "retrieval": self.retrieval.stats(),
            "acquisition": self.acquisition.stats(),
            "validator": self.validator.domain_stats(),
            "context": self.context_builder.stats(),
            "costs": self.cost_tracker.summary(),
            "runtime_ms": self.runtime_ms(),
        }

    def export_research(self) -> str:
        payload = {
            "query": self.query,
            "report_type": str(self.report_type),
            "settings": self.settings.redacted(),
            "memory": self.memory.export(),
            "stats": self.stats(),
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }
        return json.dumps(payload, indent=2, default=str)
