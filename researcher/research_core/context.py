"""Turns acquired pages into a relevance-ranked, token-bounded context set."""
from __future__ import annotations

import math
import re
from typing import Any, Protocol, Sequence

from loguru import logger

from researcher.capabilities import LLMProvider
from researcher.models.schemas import ContextChunk
from researcher.research_core import relevance
from researcher.services import streaming
from researcher.services.cost import estimate_tokens
from researcher.services.event_bus import EventBus
from researcher.services.prompt_store import render_prompt
from researcher.services.working_memory import WorkingMemory

DEFAULT_TOKEN_BUDGET = 8000
DEFAULT_COMPRESSION_RATIO = 0.3
# chunks below this estimate are kept verbatim
COMPRESSION_THRESHOLD = 500
# max_tokens headroom over the compression target
COMPRESSION_OVERSHOOT = 1.2

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")


class ContextSource(Protocol):
    url: str
    content: str


def clean_text(text: str) -> str:
    """Strip HTML tags and markdown links/headings, collapse whitespace."""
    text = re.sub(r"<[^>]*>", "", text or "")
    text = re.sub(r"\[.*?\]\(.*?\)", "", text)
    text = re.sub(r"#+\s", "", text)
    return re.sub(r"\s+", " ", text).strip()


def _context_key(context: str) -> str:
    return re.sub(r"\s+", "", context[:100].lower())


class ContextBuilder:
    def __init__(
        self,
        llm: LLMProvider | None = None,
        *,
        memory: WorkingMemory | None = None,
        event_bus: EventBus | None = None,
        query: str = "",
        model: str = "gpt-3.5-turbo",
        token_budget: int = DEFAULT_TOKEN_BUDGET,
        compression_ratio: float = DEFAULT_COMPRESSION_RATIO,
        compress: bool = True,
    ):
        self.llm = llm
        self.memory = memory or WorkingMemory()
        self.event_bus = event_bus or EventBus()
        self.query = query
        self.model = model
        self.compress = compress
        self.token_budget = token_budget
        self.compression_ratio = compression_ratio
        self.set_token_budget(token_budget)
        self.set_compression_ratio(compression_ratio)

    # --- configuration ---

    def set_token_budget(self, budget: int) -> None:
        if budget <= 0:
            raise ValueError("Token budget must be positive")
        self.token_budget = budget

    def set_compression_ratio(self, ratio: float) -> None:
        self.compression_ratio = max(0.1, min(1.0, ratio))

    # --- pipeline ---

    def create_chunks(self, sources: Sequence[ContextSource]) -> list[ContextChunk]:
        terms = relevance.query_terms(self.query)
        chunks: list[ContextChunk] = []
        for source in sources:
            content = clean_text(source.content)
            if not content:
                continue
            chunks.append(
                ContextChunk(
                    content=content,
                    source=source.url,
                    relevance=relevance.score(content, terms),
                    tokens=estimate_tokens(content),
                )
            )
        return chunks

    def select_chunks(self, chunks: list[ContextChunk]) -> list[ContextChunk]:
        """Greedy fill up to the budget with a one-for-one swap on overflow.

        An overflowing chunk is compared against the last selected chunk; if it
        beats it, it may replace the least relevant selected chunk provided the
        swap keeps the total within budget.
        """
        selected: list[ContextChunk] = []
        total = 0
        for chunk in chunks:
            if total + chunk.tokens <= self.token_budget:
                selected.append(chunk)
                total += chunk.tokens
                continue
            if not selected or chunk.relevance <= selected[-1].relevance:
                continue

            weakest = min(range(len(selected)), key=lambda i: selected[i].relevance)
            if chunk.relevance <= selected[weakest].relevance:
                continue
            swapped_total = total - selected[weakest].tokens + chunk.tokens
            if swapped_total <= self.token_budget:
                selected[weakest] = chunk
                total = swapped_total
        return selected

    async def _compress_to(self, chunk: ContextChunk, target_tokens: int) -> str:
        messages = [
            {"role": "system", "content": render_prompt("context.compression_system_prompt")},
            {
                "role": "user",
                "content": render_prompt(
                    "context.compression_user_prompt",
                    target_tokens=target_tokens,
                    content=chunk.content,
                ),
            },
        ]
        return await self.llm.complete(
            messages,
            model=self.model,
            temperature=0.3,
            max_tokens=max(math.floor(target_tokens * COMPRESSION_OVERSHOOT), 1),
        )

    async def compress_chunks(self, chunks: list[ContextChunk]) -> list[str]:
        """Compress large chunks via the LLM. A failed compression keeps the original."""
        compressed: list[str] = []
        for chunk in chunks:
            if chunk.tokens < COMPRESSION_THRESHOLD or self.llm is None:
                compressed.append(chunk.content)
                continue
            try:
                text = await self._compress_to(chunk, math.floor(chunk.tokens * self.compression_ratio))
            except Exception as exc:
                logger.warning(f"Compression failed for {chunk.source}: {exc}")
                self.event_bus.emit(streaming.compression_error(chunk.source, str(exc)))
                compressed.append(chunk.content)
                continue
            compressed.append(text)
            self.event_bus.emit(streaming.chunk_compressed(chunk.source, chunk.tokens, estimate_tokens(text)))
        return compressed

    async def _fit_oversized(self, chunk: ContextChunk) -> str:
        """Squeeze a chunk that alone exceeds the budget down to the budget."""
        try:
            text = await self._compress_to(chunk, self.token_budget)
        except Exception as exc:
            logger.warning(f"Compression failed for oversized {chunk.source}: {exc}")
            self.event_bus.emit(streaming.compression_error(chunk.source, str(exc)))
            return chunk.content

        ceiling = math.floor(self.token_budget * COMPRESSION_OVERSHOOT)
        if estimate_tokens(text) > ceiling:
            text = self.split_into_chunks(text, ceiling)[0]
        self.event_bus.emit(streaming.chunk_compressed(chunk.source, chunk.tokens, estimate_tokens(text)))
        return text

    async def build_context(self, sources: Sequence[ContextSource]) -> list[str]:
        self.event_bus.emit(streaming.context_started(len(sources)))

        chunks = self.create_chunks(sources)
        chunks.sort(key=lambda chunk: chunk.relevance, reverse=True)
        selected = self.select_chunks(chunks)

        if self.compress and self.llm is not None:
            if selected:
                context = await self.compress_chunks(selected)
            elif chunks:
                # nothing fits as-is: compress the best chunk instead of returning nothing
                context = [await self._fit_oversized(chunks[0])]
            else:
                context = []
        else:
            context = [chunk.content for chunk in selected]

        for item in context:
            self.memory.add_context(item)

        self.event_bus.emit(
            streaming.context_completed(
                len(sources),
                len(context),
                sum(estimate_tokens(item) for item in context),
            )
        )
        return context

    # --- auxiliary operations ---

    @staticmethod
    def merge_context(groups: Sequence[Sequence[str]]) -> list[str]:
        """Concatenate context groups, dropping items whose first 100 chars repeat."""
        merged: dict[str, str] = {}
        for group in groups:
            for item in group:
                merged.setdefault(_context_key(item), item)
        return list(merged.values())

    @staticmethod
    def rank_context(context: list[str], query: str) -> list[str]:
        terms = relevance.query_terms(query)
        return sorted(context, key=lambda item: relevance.score(item, terms), reverse=True)

    @staticmethod
    def split_into_chunks(text: str, max_tokens: int = 1000) -> list[str]:
        """Sentence-bounded segments whose token estimates stay under `max_tokens`."""
        sentences = _SENTENCE_RE.findall(text) or [text]
        chunks: list[str] = []
        current = ""
        current_tokens = 0
        for sentence in sentences:
            sentence_tokens = estimate_tokens(sentence)
            if current and current_tokens + sentence_tokens > max_tokens:
                chunks.append(current.strip())
                current = sentence
                current_tokens = sentence_tokens
            else:
                current += " " + sentence
                current_tokens += sentence_tokens
        if current.strip():
            chunks.append(current.strip())
        return chunks

    async def extract_key_points(self, context: list[str]) -> list[str]:
        if self.llm is None:
            return []
        system_prompt = render_prompt("context.key_points_system_prompt")
        points: list[str] = []
        for item in context:
            messages = [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": render_prompt("context.key_points_user_prompt", content=item)},
            ]
            try:
                points.append(
                    await self.llm.complete(messages, model=self.model, temperature=0.3, max_tokens=500)
                )
            except Exception as exc:
                logger.warning(f"Key point extraction failed: {exc}")
        return points

    def clear_context(self) -> None:
        self.memory.clear_context()

    def stats(self) -> dict[str, Any]:
        context = self.memory.context
        terms = relevance.query_terms(self.query)
        scores = [relevance.score(item, terms) for item in context]
        return {
            "total_context_items": len(context),
            "total_tokens": sum(estimate_tokens(item) for item in context),
            "average_relevance": sum(scores) / len(scores) if scores else 0.0,
            "token_budget": self.token_budget,
            "compression_ratio": self.compression_ratio,
        }
