from __future__ import annotations

import pytest
from pydantic import ValidationError

from researcher.config import BraveConfig, TavilyConfig, load_settings, validate_query
from researcher.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ("TAVILY_API_KEY", "BRAVE_API_KEY", "SERPER_API_KEY", "OPENROUTER_API_KEY", "DEFAULT_RETRIEVER"):
        monkeypatch.delenv(key, raising=False)


def test_only_configured_providers_are_returned_default_first():
    settings = load_settings(tavily_api_key="t", serper_api_key="s", default_retriever="serper")
    configs = settings.search_provider_configs()
    assert [config.kind for config in configs] == ["serper", "tavily"]


def test_unknown_default_retriever_is_a_configuration_error():
    settings = load_settings(tavily_api_key="t", default_retriever="bing")
    with pytest.raises(ConfigurationError):
        settings.search_provider_configs()


def test_provider_config_rejects_blank_key():
    with pytest.raises(ValidationError):
        BraveConfig(api_key="   ")
    assert TavilyConfig(api_key=" k ").api_key == "k"


def test_settings_are_immutable():
    settings = load_settings()
    with pytest.raises(ValidationError):
        settings.max_search_results = 3


def test_require_llm_without_key_raises():
    with pytest.raises(ConfigurationError):
        load_settings().require_llm()


def test_redacted_masks_credentials():
    data = load_settings(tavily_api_key="secret", openrouter_api_key="key").redacted()
    assert data["tavily_api_key"] == "***"
    assert data["openrouter_api_key"] == "***"
    assert data["brave_api_key"] == ""


def test_validate_query_collapses_whitespace_and_rejects_empty():
    assert validate_query("  quantum   computing ") == "quantum computing"
    with pytest.raises(ConfigurationError):
        validate_query("   ")
