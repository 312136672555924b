"""Error taxonomy shared by the pipeline and the provider adapters.

Categories:
    - ConfigurationError: missing credential or invalid query, raised before any
      stage starts and never retried.
    - ProviderError: a search, acquisition or LLM call failed. Retried with
      backoff unless it is an AuthenticationError.
    - StageError: a whole stage has no usable input, terminates the run.
"""
from __future__ import annotations

import httpx


class ResearchError(Exception):
    """Base class for every error raised by the research pipeline."""


class ConfigurationError(ResearchError):
    pass


class ProviderError(ResearchError):
    def __init__(self, message: str, *, provider: str = "", status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class AuthenticationError(ProviderError):
    """Invalid or missing credentials (HTTP 401). Never retried."""


class RateLimitError(ProviderError):
    """Provider throttled the request (HTTP 429)."""


class StageError(ResearchError):
    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage


def classify_http_error(provider: str, exc: httpx.HTTPStatusError) -> ProviderError:
    """Map an httpx status error onto the provider error classes."""
    status = exc.response.status_code
    message = f"{provider} request failed with HTTP {status}"
    if status in (401, 403):
        return AuthenticationError(message, provider=provider, status_code=status)
    if status == 429:
        return RateLimitError(message, provider=provider, status_code=status)
    return ProviderError(message, provider=provider, status_code=status)
