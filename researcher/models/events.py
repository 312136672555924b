from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class EventType(StrEnum):
    RESEARCH_STARTED = "research_started"
    PLANNING_STARTED = "planning_started"
    PLANNING_COMPLETED = "planning_completed"
    PLANNING_FAILED = "planning_failed"
    RETRIEVAL_STARTED = "retrieval_started"
    RETRIEVAL_COMPLETED = "retrieval_completed"
    RETRIEVER_ERROR = "retriever_error"
    RETRIEVER_RETRY = "retriever_retry"
    SEARCH_ERROR = "search_error"
    VALIDATION_STARTED = "validation_started"
    VALIDATION_COMPLETED = "validation_completed"
    SOURCE_VALIDATED = "source_validated"
    LLM_VERIFICATION_ERROR = "llm_verification_error"
    ACQUISITION_STARTED = "acquisition_started"
    ACQUISITION_COMPLETED = "acquisition_completed"
    ACQUISITION_BATCH_STARTED = "acquisition_batch_started"
    ACQUISITION_BATCH_COMPLETED = "acquisition_batch_completed"
    CACHE_HIT = "cache_hit"
    SCRAPE_RETRY = "scrape_retry"
    SCRAPE_ERROR = "scrape_error"
    CLEANUP_ERROR = "cleanup_error"
    CONTEXT_STARTED = "context_started"
    CONTEXT_COMPLETED = "context_completed"
    CHUNK_COMPRESSED = "chunk_compressed"
    COMPRESSION_ERROR = "compression_error"
    SYNTHESIS_STARTED = "synthesis_started"
    SYNTHESIS_PROGRESS = "synthesis_progress"
    SYNTHESIS_COMPLETED = "synthesis_completed"
    RESEARCH_COMPLETE = "research_complete"
    ERROR = "error"


@dataclass
class PipelineEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data, default=str)}\n\n"
