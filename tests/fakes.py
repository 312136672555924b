"""In-memory stand-ins for the LLM, search and acquisition capabilities."""
from __future__ import annotations

from typing import Any, Callable

from researcher.models.schemas import AcquiredPage, SearchResult
from researcher.services.cost import TokenUsage


class FakeLLM:
    def __init__(
        self,
        responses: list[str] | None = None,
        *,
        default: str = "Generated text.",
        stream_chunks: list[str] | None = None,
        fail_with: Exception | None = None,
        handler: Callable[[list[dict[str, str]]], str] | None = None,
    ):
        self.responses = list(responses or [])
        self.default = default
        self.stream_chunks = stream_chunks or ["# Report\n\n", "Body text."]
        self.fail_with = fail_with
        self.handler = handler
        self.calls: list[dict[str, Any]] = []
        self.on_usage = None

    def _usage(self, model: str, messages, output: str) -> None:
        if self.on_usage is not None:
            prompt = sum(len(m["content"]) for m in messages) // 4
            self.on_usage(TokenUsage(model=model, input_tokens=prompt, output_tokens=len(output) // 4))

    async def complete(self, messages, *, model, temperature=0.7, max_tokens=1000) -> str:
        self.calls.append(
            {"messages": messages, "model": model, "temperature": temperature, "max_tokens": max_tokens}
        )
        if self.fail_with is not None:
            raise self.fail_with
        if self.handler is not None:
            text = self.handler(messages)
        elif self.responses:
            text = self.responses.pop(0)
        else:
            text = self.default
        self._usage(model, messages, text)
        return text

    async def stream(self, messages, *, model, temperature=0.7, max_tokens=1000):
        self.calls.append({"messages": messages, "model": model, "stream": True})
        if self.fail_with is not None:
            raise self.fail_with
        for chunk in self.stream_chunks:
            yield chunk
        self._usage(model, messages, "".join(self.stream_chunks))

    async def embedding(self, texts):
        return [[float(len(text))] for text in texts]


class FakeSearchProvider:
    def __init__(self, name: str = "fake", results: list[SearchResult] | None = None, error: Exception | None = None):
        self.name = name
        self.results = results or []
        self.error = error
        self.queries: list[str] = []

    async def search(self, query, *, max_results=10, filters=None):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeAcquirer:
    """Returns scripted pages per URL; a script entry may be an exception to raise."""

    def __init__(self, name: str = "static", pages: dict[str, Any] | None = None, default_text: str = "Page text."):
        self.name = name
        self.pages = pages or {}
        self.default_text = default_text
        self.calls: list[str] = []

    async def fetch(self, url: str) -> AcquiredPage:
        self.calls.append(url)
        scripted = self.pages.get(url)
        if isinstance(scripted, list):
            scripted = scripted.pop(0) if scripted else None
        if isinstance(scripted, BaseException):
            raise scripted
        if isinstance(scripted, AcquiredPage):
            return scripted
        return AcquiredPage(title=f"Title of {url}", text=scripted or self.default_text)


class ReleasableFakeAcquirer(FakeAcquirer):
    def __init__(self, *args, release_error: Exception | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.release_error = release_error
        self.released = 0

    async def release_resources(self) -> None:
        self.released += 1
        if self.release_error is not None:
            raise self.release_error


def make_result(url: str, *, title: str = "A title", content: str = "", score: float | None = None, **kwargs) -> SearchResult:
    return SearchResult(url=url, title=title, content=content, score=score, **kwargs)
