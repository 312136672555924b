from __future__ import annotations

import pytest

from fakes import FakeLLM, make_result
from researcher.models.events import EventType
from researcher.models.schemas import CurationCriteria
from researcher.research_core.validation import SourceValidator
from researcher.services.event_bus import EventBus


def test_government_domain_with_no_other_signals_scores_75():
    validation = SourceValidator().validate(make_result("https://example.gov/article", title=""))
    assert validation.is_valid is True
    assert validation.credibility_score == 75


def test_trusted_domain_gets_bonus_and_reason():
    validation = SourceValidator().validate(make_result("https://arxiv.org/abs/1234", title=""))
    # base 50 + trusted 30 + .org 10
    assert validation.credibility_score == 90
    assert "Trusted domain: arxiv.org" in validation.reasons


def test_blocked_domain_is_invalid():
    validation = SourceValidator().validate(make_result("https://www.example.com/page", title=""))
    assert validation.is_valid is False
    assert validation.credibility_score == 0
    assert any(reason.startswith("Blocked domain") for reason in validation.reasons)


def test_score_is_clamped_to_100():
    source = make_result(
        "https://www.nature.com/paper",
        title="A well-titled research article",
        content="Findings [1] " + "x" * 1200,
        author="Dr. Smith",
    )
    assert SourceValidator().validate(source).credibility_score == 100


def test_score_is_clamped_to_zero():
    validator = SourceValidator()
    sources = [
        make_result("https://www.example.com/news", title="Shocking result"),
        make_result("http://test.com/a", title="You won't believe this", content="short"),
        make_result("https://cheap.info/a", title=""),
        make_result("https://arxiv.org/abs/1", title="A paper", content="x" * 1200, author="A. Author"),
    ]

    scores = [validator.validate(source, CurationCriteria()).credibility_score for source in sources]

    assert all(0 <= score <= 100 for score in scores)
    assert scores[0] == 0
    assert scores[1] == 0


def test_invalid_url_scores_zero():
    validation = SourceValidator().validate(make_result("not-a-url"))
    assert validation.is_valid is False
    assert validation.credibility_score == 0
    assert validation.reasons == ["Invalid URL"]


def test_clickbait_title_is_penalised():
    validator = SourceValidator()
    plain = validator.validate(make_result("https://site.net/a", title="Plain"))
    bait = validator.validate(make_result("https://site.net/b", title="Shocking"))
    assert plain.credibility_score - bait.credibility_score == 15


def test_criteria_apply_warnings_and_domain_rules():
    validator = SourceValidator()
    criteria = CurationCriteria(
        require_https=True,
        require_date=True,
        min_content_length=100,
        allowed_domains=["site.net"],
    )
    validation = validator.validate(make_result("http://other.net/a", title="", content="short"), criteria)
    assert validation.is_valid is False
    assert "Domain not in allowed list" in validation.reasons
    assert "Not using HTTPS" in validation.warnings
    assert "No publication date available" in validation.warnings
    assert "Content too short" in validation.warnings
    assert validation.credibility_score == 50 - 10 - 5 - 10


def test_min_credibility_marks_low_scores_invalid():
    validation = SourceValidator().validate(
        make_result("https://cheap.info/a", title=""),
        CurationCriteria(min_credibility_score=45),
    )
    assert validation.credibility_score == 40
    assert validation.is_valid is False


def test_curate_sorts_by_score_and_emits_events():
    bus = EventBus()
    seen = []
    bus.subscribe(lambda event: seen.append(event.event))
    validator = SourceValidator(event_bus=bus)

    sources = [
        make_result("https://plain.net/a", title=""),
        make_result("https://example.com/x", title=""),
        make_result("https://agency.gov/b", title=""),
        make_result("https://other.net/c", title=""),
    ]
    curated = validator.curate(sources)

    assert [source.url for source in curated] == [
        "https://agency.gov/b",
        "https://plain.net/a",
        "https://other.net/c",
    ]
    assert seen[0] == EventType.VALIDATION_STARTED
    assert seen.count(EventType.SOURCE_VALIDATED) == 4
    assert seen[-1] == EventType.VALIDATION_COMPLETED


def test_added_domains_invalidate_cache():
    validator = SourceValidator()
    assert validator.check_domain("blog.acme.net").score == 0
    validator.add_trusted_domain("acme.net")
    assert validator.check_domain("blog.acme.net").trusted is True
    assert validator.trusted_domains[-1] == "acme.net"


def test_tld_style_trusted_entry_matches_suffix():
    validator = SourceValidator(trusted_domains=(".mil",))
    assert validator.check_domain("army.mil").trusted is True


def test_export_and_import_config_round_trip():
    source = SourceValidator()
    source.add_blocked_domain("spam.biz")
    target = SourceValidator(trusted_domains=(), blocked_domains=())
    target.import_config(source.export_config())
    assert target.blocked_domains == source.blocked_domains
    assert target.trusted_domains == source.trusted_domains


@pytest.mark.asyncio
async def test_verify_with_llm_parses_fenced_json():
    llm = FakeLLM(['```json\n{"credible": false, "analysis": "thin", "concerns": ["no author"]}\n```'])
    verdict = await SourceValidator(llm=llm).verify_with_llm(make_result("https://a.net"))
    assert verdict.credible is False
    assert verdict.analysis == "thin"
    assert verdict.concerns == ["no author"]


@pytest.mark.asyncio
async def test_verify_with_llm_falls_back_on_unparseable_output():
    bus = EventBus()
    errors = []
    bus.subscribe(errors.append, EventType.LLM_VERIFICATION_ERROR)
    verdict = await SourceValidator(llm=FakeLLM(["no json here"]), event_bus=bus).verify_with_llm(
        make_result("https://a.net")
    )
    assert verdict.credible is True
    assert verdict.analysis == "LLM verification unavailable"
    assert verdict.concerns == []
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_verify_with_llm_without_llm_returns_fallback():
    verdict = await SourceValidator().verify_with_llm(make_result("https://a.net"))
    assert verdict.credible is True
