"""Term-overlap relevance scoring shared by ranking and context selection."""
from __future__ import annotations

import re
from typing import Iterable

MIN_TERM_LENGTH = 3


def query_terms(query: str) -> list[str]:
    """Lower-cased whitespace tokens of `query`, dropping terms under 3 chars."""
    return [term for term in (query or "").lower().split() if len(term) >= MIN_TERM_LENGTH]


def score(text: str, terms: Iterable[str]) -> float:
    """Whole-word occurrences of `terms` per 100 words of `text`."""
    if not text:
        return 0.0

    lowered = text.lower()
    hits = 0
    for term in terms:
        term = term.lower()
        if len(term) < MIN_TERM_LENGTH:
            continue
        hits += len(re.findall(rf"\b{re.escape(term)}\b", lowered))

    words = max(len(text.split()), 1)
    return hits / words * 100
