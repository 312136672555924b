from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from researcher.errors import ConfigurationError
from researcher.models.schemas import ReportType, Tone


class _ProviderConfig(BaseModel):
    api_key: str
    max_results: int = 10
    timeout_seconds: float = 30.0

    model_config = {"frozen": True}

    @field_validator("api_key")
    @classmethod
    def _require_key(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("api_key must not be empty")
        return value.strip()


class TavilyConfig(_ProviderConfig):
    kind: Literal["tavily"] = "tavily"
    search_depth: Literal["basic", "advanced"] = "advanced"


class BraveConfig(_ProviderConfig):
    kind: Literal["brave"] = "brave"


class SerperConfig(_ProviderConfig):
    kind: Literal["serper"] = "serper"
    country: str = "us"


SearchProviderConfig = Annotated[
    Union[TavilyConfig, BraveConfig, SerperConfig],
    Field(discriminator="kind"),
]


class Settings(BaseSettings):
    # OpenRouter / OpenAI-compatible LLM
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    fast_llm_model: str = "gpt-3.5-turbo"
    smart_llm_model: str = "gpt-4-turbo"
    embedding_model: str = "text-embedding-3-small"
    temperature: float = 0.4
    max_tokens: int = 4000

    # Search
    default_retriever: str = "tavily"  # tavily | brave | serper
    tavily_api_key: str = ""
    brave_api_key: str = ""
    serper_api_key: str = ""
    max_search_results: int = 10

    # Acquisition
    scrape_concurrency: int = 3
    scrape_timeout_seconds: float = 30.0
    scrape_max_content_chars: int = 50000
    scrape_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    js_render_domains: tuple[str, ...] = (
        "twitter.com",
        "instagram.com",
        "facebook.com",
        "linkedin.com",
        "medium.com",
        "bloomberg.com",
        "wsj.com",
    )

    # Pipeline
    report_type: ReportType = ReportType.RESEARCH_REPORT
    tone: Tone | None = Tone.OBJECTIVE
    max_sources_to_scrape: int = 10
    context_token_budget: int = 8000
    compression_ratio: float = 0.3
    compression_enabled: bool = True

    # Retry
    retry_max: int = 3
    retry_base_delay: float = 1.0

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_to_file: bool = True

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
    }

    def search_provider_configs(self) -> list[SearchProviderConfig]:
        """Tagged configs for every search provider that has credentials.

        The default retriever comes first, the others follow in declaration order.
        """
        candidates: dict[str, SearchProviderConfig | None] = {
            "tavily": (
                TavilyConfig(api_key=self.tavily_api_key, max_results=self.max_search_results)
                if self.tavily_api_key.strip()
                else None
            ),
            "brave": (
                BraveConfig(api_key=self.brave_api_key, max_results=self.max_search_results)
                if self.brave_api_key.strip()
                else None
            ),
            "serper": (
                SerperConfig(api_key=self.serper_api_key, max_results=self.max_search_results)
                if self.serper_api_key.strip()
                else None
            ),
        }
        default = self.default_retriever.lower().strip()
        if default not in candidates:
            raise ConfigurationError(f"Unsupported DEFAULT_RETRIEVER: {self.default_retriever}")

        ordered = [default, *(name for name in candidates if name != default)]
        return [cfg for name in ordered if (cfg := candidates[name]) is not None]

    def require_llm(self) -> None:
        if not self.openrouter_api_key.strip():
            raise ConfigurationError("OPENROUTER_API_KEY is not configured")

    def redacted(self) -> dict:
        """Settings as a plain dict with credentials masked, for exports."""
        data = self.model_dump(mode="json")
        for key in list(data):
            if key.endswith("_api_key") and data[key]:
                data[key] = "***"
        return data


def validate_query(query: str) -> str:
    cleaned = " ".join((query or "").split()).strip()
    if not cleaned:
        raise ConfigurationError("Research query is required")
    return cleaned


def load_settings(**overrides) -> Settings:
    """Build an immutable Settings value from the environment plus overrides."""
    return Settings(**overrides)
