"""OpenRouter / OpenAI-compatible LLM capability."""
from __future__ import annotations

import time
from typing import Any, AsyncIterator, Awaitable, Callable

from loguru import logger

from researcher.capabilities import Message, UsageCallback
from researcher.config import Settings
from researcher.errors import AuthenticationError, ProviderError, RateLimitError
from researcher.services import logger as log_service
from researcher.services.cost import TokenUsage
from researcher.services.env_safety import sanitize_ssl_keylogfile
from researcher.services.retry import retry_async


def _map_openai_error(exc: Exception) -> ProviderError:
    """Translate openai SDK exceptions onto the provider error taxonomy."""
    import openai

    status = getattr(exc, "status_code", None)
    if isinstance(exc, openai.AuthenticationError):
        return AuthenticationError(str(exc), provider="openrouter", status_code=status or 401)
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(str(exc), provider="openrouter", status_code=status or 429)
    return ProviderError(str(exc), provider="openrouter", status_code=status)


class OpenRouterLLM:
    """LLM capability backed by `openai.AsyncOpenAI`.

    Token usage of every call is logged and forwarded to `on_usage`. Failed
    requests are retried with backoff (`retry_max`, `retry_base_delay`); the SDK's
    own retries are disabled so the two do not compound.
    """

    def __init__(self, settings: Settings, client: Any | None = None):
        self.settings = settings
        self._client = client
        self.on_usage: UsageCallback | None = None

    @property
    def client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI

            sanitize_ssl_keylogfile()
            base_url = self.settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
            self._client = AsyncOpenAI(
                api_key=self.settings.openrouter_api_key,
                base_url=base_url,
                max_retries=0,
            )
        return self._client

    async def _call(self, model: str, caller: str, request: Callable[[], Awaitable[Any]]) -> Any:
        async def attempt():
            try:
                return await request()
            except Exception as exc:
                raise _map_openai_error(exc) from exc

        def on_retry(attempt_no: int, delay: float, exc: Exception) -> None:
            logger.warning(f"LLM {caller} call failed ({model}), retry {attempt_no} in {delay:.1f}s: {exc}")

        try:
            return await retry_async(
                attempt,
                retries=self.settings.retry_max,
                base_delay=self.settings.retry_base_delay,
                on_retry=on_retry,
            )
        except ProviderError as exc:
            log_service.log_llm_call(model=model, caller=caller, status="error", error=str(exc))
            raise

    def _report_usage(self, model: str, caller: str, usage: Any, elapsed_ms: int) -> None:
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0 if usage else 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0 if usage else 0
        log_service.log_llm_call(
            model=model,
            caller=caller,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=elapsed_ms,
        )
        if self.on_usage is not None:
            self.on_usage(
                TokenUsage(model=model, input_tokens=input_tokens, output_tokens=output_tokens)
            )

    async def complete(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        t0 = time.monotonic()
        response = await self._call(
            model,
            "complete",
            lambda: self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            ),
        )

        self._report_usage(model, "complete", getattr(response, "usage", None), int((time.monotonic() - t0) * 1000))
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        return getattr(choices[0].message, "content", None) or ""

    async def stream(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> AsyncIterator[str]:
        t0 = time.monotonic()
        stream = await self._call(
            model,
            "stream",
            lambda: self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            ),
        )

        usage = None
        try:
            async for chunk in stream:
                if getattr(chunk, "usage", None):
                    usage = chunk.usage
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                delta = getattr(choices[0], "delta", None)
                text = getattr(delta, "content", None) if delta else None
                if text:
                    yield text
        finally:
            self._report_usage(model, "stream", usage, int((time.monotonic() - t0) * 1000))

    async def embedding(self, texts: list[str]) -> list[list[float]]:
        model = self.settings.embedding_model
        t0 = time.monotonic()
        response = await self._call(
            model,
            "embedding",
            lambda: self.client.embeddings.create(model=model, input=texts),
        )
        self._report_usage(model, "embedding", getattr(response, "usage", None), int((time.monotonic() - t0) * 1000))
        return [list(item.embedding) for item in response.data]
