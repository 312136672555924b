from __future__ import annotations

from typing import Any

from researcher.models.events import EventType, PipelineEvent


def research_started(query: str) -> PipelineEvent:
    return PipelineEvent(event=EventType.RESEARCH_STARTED, data={"query": query})


def planning_started(query: str) -> PipelineEvent:
    return PipelineEvent(event=EventType.PLANNING_STARTED, data={"query": query})


def planning_completed(query: str, questions: list[str]) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.PLANNING_COMPLETED,
        data={"query": query, "questions": questions, "question_count": len(questions)},
    )


def planning_failed(query: str, error: str) -> PipelineEvent:
    return PipelineEvent(event=EventType.PLANNING_FAILED, data={"query": query, "error": error})


def retrieval_started(queries: int) -> PipelineEvent:
    return PipelineEvent(event=EventType.RETRIEVAL_STARTED, data={"queries": queries})


def retrieval_completed(total_queries: int, result_count: int) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.RETRIEVAL_COMPLETED,
        data={"total_queries": total_queries, "result_count": result_count},
    )


def retriever_error(query: str, provider: str, error: str) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.RETRIEVER_ERROR,
        data={"query": query, "provider": provider, "error": error},
    )


def retriever_retry(provider: str, attempt: int, delay: float, error: str) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.RETRIEVER_RETRY,
        data={"provider": provider, "attempt": attempt, "delay": delay, "error": error},
    )


def search_error(query: str, error: str) -> PipelineEvent:
    return PipelineEvent(event=EventType.SEARCH_ERROR, data={"query": query, "error": error})


def validation_started(total: int) -> PipelineEvent:
    return PipelineEvent(event=EventType.VALIDATION_STARTED, data={"total": total})


def validation_completed(original: int, validated: int) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.VALIDATION_COMPLETED,
        data={
            "original": original,
            "validated_count": validated,
            "filtered": original - validated,
        },
    )


def source_validated(url: str, valid: bool, score: float) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.SOURCE_VALIDATED,
        data={"url": url, "valid": valid, "score": score},
    )


def llm_verification_error(url: str, error: str) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.LLM_VERIFICATION_ERROR, data={"url": url, "error": error}
    )


def acquisition_started(urls: int, **kwargs: Any) -> PipelineEvent:
    return PipelineEvent(event=EventType.ACQUISITION_STARTED, data={"urls": urls, **kwargs})


def acquisition_completed(total: int, successful: int, failed: int, cache_hits: int) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.ACQUISITION_COMPLETED,
        data={
            "total": total,
            "scraped_count": successful,
            "failed": failed,
            "cache_hits": cache_hits,
        },
    )


def batch_started(batch: int, total: int, urls: int) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.ACQUISITION_BATCH_STARTED,
        data={"batch": batch, "total": total, "urls": urls},
    )


def batch_completed(batch: int, successful: int, failed: int) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.ACQUISITION_BATCH_COMPLETED,
        data={"batch": batch, "successful": successful, "failed": failed},
    )


def cache_hit(url: str) -> PipelineEvent:
    return PipelineEvent(event=EventType.CACHE_HIT, data={"url": url})


def scrape_retry(url: str, attempt: int, delay: float, error: str) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.SCRAPE_RETRY,
        data={"url": url, "attempt": attempt, "delay": delay, "error": error},
    )


def scrape_error(url: str, error: str, method: str | None = None) -> PipelineEvent:
    data: dict[str, Any] = {"url": url, "error": error}
    if method:
        data["method"] = method
    return PipelineEvent(event=EventType.SCRAPE_ERROR, data=data)


def cleanup_error(acquirer: str, error: str) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.CLEANUP_ERROR, data={"acquirer": acquirer, "error": error}
    )


def context_started(sources: int) -> PipelineEvent:
    return PipelineEvent(event=EventType.CONTEXT_STARTED, data={"sources": sources})


def context_completed(original_sources: int, context_items: int, total_tokens: int) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.CONTEXT_COMPLETED,
        data={
            "original_sources": original_sources,
            "context_items": context_items,
            "total_tokens": total_tokens,
        },
    )


def chunk_compressed(source: str, original: int, compressed: int) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.CHUNK_COMPRESSED,
        data={"source": source, "original": original, "compressed": compressed},
    )


def compression_error(source: str, error: str) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.COMPRESSION_ERROR, data={"source": source, "error": error}
    )


def synthesis_started(query: str, report_type: str, sources_count: int) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.SYNTHESIS_STARTED,
        data={"query": query, "report_type": report_type, "sources_count": sources_count},
    )


def synthesis_progress(chunk: str) -> PipelineEvent:
    return PipelineEvent(event=EventType.SYNTHESIS_PROGRESS, data={"chunk": chunk})


def synthesis_completed(query: str, report_type: str, length: int) -> PipelineEvent:
    return PipelineEvent(
        event=EventType.SYNTHESIS_COMPLETED,
        data={"query": query, "report_type": report_type, "report_length": length},
    )


def research_complete(
    report_length: int,
    sources_count: int,
    tokens_used: int = 0,
    total_cost: float = 0.0,
    runtime_ms: int | None = None,
) -> PipelineEvent:
    data: dict[str, Any] = {
        "report_length": report_length,
        "sources_count": sources_count,
        "tokens_used": tokens_used,
        "total_cost": total_cost,
    }
    if runtime_ms is not None:
        data["runtime_ms"] = runtime_ms
    return PipelineEvent(event=EventType.RESEARCH_COMPLETE, data=data)


def error(message: str, stage: str | None = None) -> PipelineEvent:
    data: dict[str, Any] = {"message": message}
    if stage:
        data["stage"] = stage
    return PipelineEvent(event=EventType.ERROR, data=data)
