from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import StrEnum
from typing import Any, Literal


class ReportType(StrEnum):
    RESEARCH_REPORT = "research_report"
    DETAILED_REPORT = "detailed_report"
    QUICK_SUMMARY = "quick_summary"
    RESOURCE_REPORT = "resource_report"
    OUTLINE_REPORT = "outline_report"


class Tone(StrEnum):
    OBJECTIVE = "objective"
    FORMAL = "formal"
    ACADEMIC = "academic"
    CASUAL = "casual"
    CREATIVE = "creative"
    ANALYTICAL = "analytical"
    INFORMATIVE = "informative"
    PERSUASIVE = "persuasive"
    EXPLANATORY = "explanatory"
    DESCRIPTIVE = "descriptive"
    CRITICAL = "critical"
    ENTHUSIASTIC = "enthusiastic"
    NEUTRAL = "neutral"
    PROFESSIONAL = "professional"
    HUMOROUS = "humorous"
    EMPATHETIC = "empathetic"
    AUTHORITATIVE = "authoritative"


class PipelineStage(StrEnum):
    IDLE = "idle"
    PLANNING = "planning"
    RETRIEVING = "retrieving"
    VALIDATING = "validating"
    ACQUIRING = "acquiring"
    CONTEXT_BUILDING = "context_building"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"
    ERROR = "error"


def parse_published_date(value: str | None) -> datetime | None:
    """Parse ISO-8601 or RFC 2822 dates as returned by search providers."""
    if not value:
        return None
    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(slots=True)
class SearchResult:
    url: str
    title: str
    content: str
    snippet: str | None = None
    score: float | None = None
    published_date: str | None = None
    author: str | None = None
    images: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.content or self.snippet or ""

    def age_in_days(self, now: datetime | None = None) -> float | None:
        """Days since `published_date`, None when it is missing or unparseable."""
        published = parse_published_date(self.published_date)
        if published is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - published).total_seconds() / 86400

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchResult":
        return cls(
            url=str(data.get("url", "")),
            title=str(data.get("title", "") or ""),
            content=str(data.get("content", "") or ""),
            snippet=data.get("snippet"),
            score=data.get("score"),
            published_date=data.get("published_date"),
            author=data.get("author"),
            images=list(data.get("images") or []),
        )


@dataclass(slots=True)
class SourceValidation:
    url: str
    is_valid: bool = True
    credibility_score: float = 50
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CurationCriteria:
    min_credibility_score: float | None = None
    require_https: bool = False
    allowed_domains: list[str] = field(default_factory=list)
    blocked_domains: list[str] = field(default_factory=list)
    max_age_days: int | None = None
    require_date: bool = False
    min_content_length: int | None = None


@dataclass(slots=True)
class CredibilityVerdict:
    credible: bool
    analysis: str
    concerns: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ResultFilter:
    min_content_length: int | None = None
    require_snippet: bool = False
    domains: list[str] = field(default_factory=list)
    exclude_domains: list[str] = field(default_factory=list)
    max_age_days: int | None = None


@dataclass(slots=True)
class SearchOptions:
    max_results: int = 10
    filters: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AcquiredPage:
    """What a content acquirer returns for one URL."""

    title: str
    text: str
    images: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class AcquiredContent:
    url: str
    title: str
    content: str
    images: list[str] = field(default_factory=list)
    error: str | None = None
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class AcquisitionOptions:
    concurrency: int | None = None
    method: str | None = None
    timeout_seconds: float | None = None


@dataclass(slots=True)
class ContextChunk:
    content: str
    source: str
    relevance: float
    tokens: int


@dataclass(slots=True)
class ResearchContext:
    query: str
    report_type: ReportType
    findings: list[str]
    sources: list[SearchResult]
    subtopics: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ReportTemplate:
    system_prompt: str
    user_prompt: str
    sections: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ReportSection:
    title: str
    content: str
    level: int


@dataclass(slots=True)
class CostSummary:
    total: float
    breakdown: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True)
class RunMetadata:
    start_time: datetime
    end_time: datetime
    tokens_used: int
    queries_run: int


@dataclass(slots=True)
class ResearchResult:
    report: str
    sources: list[SearchResult]
    subtopics: list[str]
    context: list[str]
    costs: CostSummary
    metadata: RunMetadata


UpdateType = Literal["progress", "data", "complete", "error"]


@dataclass(slots=True)
class StreamUpdate:
    type: UpdateType
    message: str | None = None
    data: dict[str, Any] | None = None
    progress: int | None = None
