"""Source credibility scoring and curation."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from loguru import logger

from researcher.capabilities import LLMProvider
from researcher.models.schemas import (
    CredibilityVerdict,
    CurationCriteria,
    SearchResult,
    SourceValidation,
)
from researcher.services import streaming
from researcher.services.event_bus import EventBus
from researcher.services.prompt_store import render_prompt

BASE_SCORE = 50
TRUSTED_BONUS = 30
BLOCKED_PENALTY = -50

DEFAULT_TRUSTED_DOMAINS: tuple[str, ...] = (
    # academic and research
    "arxiv.org",
    "scholar.google.com",
    "pubmed.ncbi.nlm.nih.gov",
    "ieee.org",
    "acm.org",
    "springer.com",
    "sciencedirect.com",
    "nature.com",
    "science.org",
    # news and media
    "reuters.com",
    "apnews.com",
    "bbc.com",
    "nytimes.com",
    "wsj.com",
    "ft.com",
    "economist.com",
    "bloomberg.com",
    # technology
    "github.com",
    "stackoverflow.com",
    "developer.mozilla.org",
    "w3.org",
    # organizations
    "who.int",
    "un.org",
    "worldbank.org",
    # reference
    "wikipedia.org",
    "britannica.com",
)

DEFAULT_BLOCKED_DOMAINS: tuple[str, ...] = ("example.com", "test.com")

# Applied after the trusted/blocked lookup, cumulatively.
TLD_ADJUSTMENTS: tuple[tuple[str, int], ...] = (
    (".edu", 20),
    (".gov", 25),
    (".org", 10),
    (".io", -5),
    (".info", -10),
)

CLICKBAIT_PHRASES = ("shocking", "you won't believe", "one weird trick", "doctors hate")
CITATION_PATTERN = re.compile(r"\[\d+\]|\(\d{4}\)")


@dataclass(slots=True, frozen=True)
class DomainVerdict:
    trusted: bool
    blocked: bool
    score: int


def _domain_matches(domain: str, entry: str) -> bool:
    """Substring match, or suffix match for TLD-style entries such as `.mil`."""
    return entry in domain or (entry.startswith(".") and domain.endswith(entry))


class SourceValidator:
    """Scores sources for credibility and filters them by curation criteria.

    Trusted and blocked lists keep insertion order and the first match in each
    list wins. Domain lookups are cached per instance.
    """

    def __init__(
        self,
        *,
        llm: LLMProvider | None = None,
        event_bus: EventBus | None = None,
        model: str = "gpt-3.5-turbo",
        trusted_domains: tuple[str, ...] = DEFAULT_TRUSTED_DOMAINS,
        blocked_domains: tuple[str, ...] = DEFAULT_BLOCKED_DOMAINS,
    ):
        self.llm = llm
        self.event_bus = event_bus or EventBus()
        self.model = model
        self._trusted: dict[str, None] = dict.fromkeys(trusted_domains)
        self._blocked: dict[str, None] = dict.fromkeys(blocked_domains)
        self._domain_cache: dict[str, DomainVerdict] = {}

    # --- domain lists ---

    @property
    def trusted_domains(self) -> list[str]:
        return list(self._trusted)

    @property
    def blocked_domains(self) -> list[str]:
        return list(self._blocked)

    def add_trusted_domain(self, domain: str) -> None:
        self._trusted.setdefault(domain.lower(), None)
        self._domain_cache.clear()

    def add_blocked_domain(self, domain: str) -> None:
        self._blocked.setdefault(domain.lower(), None)
        self._domain_cache.clear()

    def check_domain(self, domain: str) -> DomainVerdict:
        domain = domain.lower()
        cached = self._domain_cache.get(domain)
        if cached is not None:
            return cached

        score = 0
        trusted = any(_domain_matches(domain, entry) for entry in self._trusted)
        if trusted:
            score += TRUSTED_BONUS
        blocked = any(entry in domain for entry in self._blocked)
        if blocked:
            score += BLOCKED_PENALTY
        for suffix, adjustment in TLD_ADJUSTMENTS:
            if domain.endswith(suffix):
                score += adjustment

        verdict = DomainVerdict(trusted=trusted, blocked=blocked, score=score)
        self._domain_cache[domain] = verdict
        return verdict

    # --- scoring ---

    @staticmethod
    def score_content(source: SearchResult) -> int:
        score = 0
        content = source.text
        title = source.title or ""

        if source.author:
            score += 5
        if len(content) > 500:
            score += 5
        if len(content) > 1000:
            score += 5
        if CITATION_PATTERN.search(content):
            score += 10
        if len(title) > 10:
            score += 5
        lowered = title.lower()
        if any(phrase in lowered for phrase in CLICKBAIT_PHRASES):
            score -= 15
        return score

    def validate(
        self,
        source: SearchResult,
        criteria: CurationCriteria | None = None,
    ) -> SourceValidation:
        criteria = criteria or CurationCriteria()
        validation = SourceValidation(url=source.url, credibility_score=BASE_SCORE)

        try:
            parsed = urlsplit(source.url or "")
            domain = (parsed.hostname or "").lower()
        except ValueError:
            parsed, domain = None, ""
        if parsed is None or not parsed.scheme or not domain:
            validation.is_valid = False
            validation.credibility_score = 0
            validation.reasons.append("Invalid URL")
            return validation

        if criteria.require_https and parsed.scheme != "https":
            validation.warnings.append("Not using HTTPS")
            validation.credibility_score -= 10

        verdict = self.check_domain(domain)
        validation.credibility_score += verdict.score
        if verdict.trusted:
            validation.reasons.append(f"Trusted domain: {domain}")
        if verdict.blocked:
            validation.is_valid = False
            validation.reasons.append(f"Blocked domain: {domain}")

        if criteria.allowed_domains and not any(allowed in domain for allowed in criteria.allowed_domains):
            validation.is_valid = False
            validation.reasons.append("Domain not in allowed list")

        if criteria.blocked_domains and any(blocked in domain for blocked in criteria.blocked_domains):
            validation.is_valid = False
            validation.reasons.append("Domain in blocked list")

        if criteria.max_age_days is not None:
            age = source.age_in_days()
            if age is not None and age > criteria.max_age_days:
                validation.warnings.append(f"Content is {int(age)} days old")
                validation.credibility_score -= 5

        if criteria.require_date and not source.published_date:
            validation.warnings.append("No publication date available")
            validation.credibility_score -= 5

        if criteria.min_content_length is not None and len(source.text) < criteria.min_content_length:
            validation.warnings.append("Content too short")
            validation.credibility_score -= 10

        validation.credibility_score += self.score_content(source)

        if (
            criteria.min_credibility_score is not None
            and validation.credibility_score < criteria.min_credibility_score
        ):
            validation.is_valid = False
            validation.reasons.append(f"Credibility score too low: {validation.credibility_score}")

        validation.credibility_score = max(0, min(100, validation.credibility_score))
        return validation

    def validate_all(
        self,
        sources: list[SearchResult],
        criteria: CurationCriteria | None = None,
    ) -> list[SourceValidation]:
        validations: list[SourceValidation] = []
        for source in sources:
            validation = self.validate(source, criteria)
            validations.append(validation)
            self.event_bus.emit(
                streaming.source_validated(source.url, validation.is_valid, validation.credibility_score)
            )
        return validations

    def curate(
        self,
        sources: list[SearchResult],
        criteria: CurationCriteria | None = None,
    ) -> list[SearchResult]:
        """Valid sources only, most credible first (ties keep input order)."""
        self.event_bus.emit(streaming.validation_started(len(sources)))
        validations = self.validate_all(sources, criteria)
        kept = [
            (validation.credibility_score, source)
            for source, validation in zip(sources, validations)
            if validation.is_valid
        ]
        kept.sort(key=lambda pair: pair[0], reverse=True)
        curated = [source for _, source in kept]
        self.event_bus.emit(streaming.validation_completed(len(sources), len(curated)))
        return curated

    # --- LLM second opinion ---

    @staticmethod
    def _extract_json_object(raw_text: str) -> dict[str, Any]:
        text = raw_text.strip()
        if text.startswith("```"):
            parts = text.split("```")
            if len(parts) >= 2:
                text = parts[1]
            if text.startswith("json"):
                text = text[4:]
            text = text.strip()
        start = text.find("{")
        end = text.rfind("}")
        if start < 0 or end <= start:
            raise json.JSONDecodeError("object not found", text, 0)
        parsed = json.loads(text[start : end + 1])
        if not isinstance(parsed, dict):
            raise json.JSONDecodeError("not an object", text, 0)
        return parsed

    async def verify_with_llm(self, source: SearchResult) -> CredibilityVerdict:
        """Ask the LLM for a credibility opinion; any failure means "credible, no concerns"."""
        fallback = CredibilityVerdict(credible=True, analysis="LLM verification unavailable", concerns=[])
        if self.llm is None:
            return fallback

        prompt = render_prompt(
            "curator.user_prompt",
            title=source.title,
            url=source.url,
            preview=source.snippet or (source.content or "")[:500],
            author_line=f"Author: {source.author}" if source.author else "",
            date_line=f"Published: {source.published_date}" if source.published_date else "",
        )
        messages = [
            {"role": "system", "content": render_prompt("curator.system_prompt")},
            {"role": "user", "content": prompt},
        ]
        try:
            raw = await self.llm.complete(messages, model=self.model, temperature=0.3, max_tokens=500)
            payload = self._extract_json_object(raw)
        except Exception as exc:
            logger.warning(f"LLM credibility check failed for {source.url}: {exc}")
            self.event_bus.emit(streaming.llm_verification_error(source.url, str(exc)))
            return fallback

        concerns = payload.get("concerns") or []
        if not isinstance(concerns, list):
            concerns = [str(concerns)]
        return CredibilityVerdict(
            credible=bool(payload.get("credible", False)),
            analysis=str(payload.get("analysis") or ""),
            concerns=[str(item) for item in concerns],
        )

    # --- stats / config ---

    def domain_stats(self) -> dict[str, Any]:
        scores = [verdict.score for verdict in self._domain_cache.values()]
        return {
            "trusted": len(self._trusted),
            "blocked": len(self._blocked),
            "cached": len(self._domain_cache),
            "average_score": sum(scores) / len(scores) if scores else 0.0,
        }

    def export_config(self) -> dict[str, list[str]]:
        return {
            "trusted_domains": self.trusted_domains,
            "blocked_domains": self.blocked_domains,
        }

    def import_config(self, config: dict[str, list[str]]) -> None:
        for domain in config.get("trusted_domains") or []:
            self._trusted.setdefault(domain.lower(), None)
        for domain in config.get("blocked_domains") or []:
            self._blocked.setdefault(domain.lower(), None)
        self._domain_cache.clear()
