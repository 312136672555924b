from __future__ import annotations

from datetime import date

import pytest

from fakes import FakeLLM, make_result
from researcher.config import load_settings
from researcher.models.events import EventType
from researcher.models.schemas import ReportTemplate, ReportType, ResearchContext
from researcher.research_core.synthesis import ReportSynthesizer, format_reference_date, tone_modifier
from researcher.services.event_bus import EventBus

TODAY = date(2026, 3, 1)


@pytest.fixture
def settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    return load_settings(smart_llm_model="gpt-4o", tone=None)


def _context(sources=None, report_type=ReportType.RESEARCH_REPORT) -> ResearchContext:
    return ResearchContext(
        query="quantum computing",
        report_type=report_type,
        findings=["Qubits hold superpositions.", "Error correction is hard."],
        sources=sources if sources is not None else [
            make_result("https://a.org", title="Alpha", published_date="2026-01-05T10:00:00Z"),
            make_result("https://b.org", title="Beta"),
        ],
        subtopics=["what is a qubit"],
    )


def test_post_process_adds_title_banner_and_references(settings):
    synthesizer = ReportSynthesizer(FakeLLM(), settings)
    report = synthesizer.post_process("Body text.\n\n\n\n- item", _context(), today=TODAY)

    lines = report.split("\n")
    assert lines[0] == "# quantum computing"
    assert "**Date:** 2026-03-01 | **Sources:** 2 | **Report Type:** research_report" in report
    assert "\n\n\n" not in report
    assert "• item" in report
    assert "1. [Alpha](https://a.org) - 2026-01-05" in report
    assert "2. [Beta](https://b.org)" in report


def test_existing_reference_section_is_not_duplicated(settings):
    synthesizer = ReportSynthesizer(FakeLLM(), settings)
    report = "# Title\n\n## Sources\n\n1. x"
    assert synthesizer.add_references(report, _context().sources) == report


def test_add_references_without_sources_is_noop(settings):
    synthesizer = ReportSynthesizer(FakeLLM(), settings)
    assert synthesizer.add_references("# T", []) == "# T"


def test_template_values_number_findings_and_sources():
    values = ReportSynthesizer.template_values(_context(), today=TODAY)
    assert values["findings"].startswith("1. Qubits hold superpositions.")
    assert "[2] Beta - https://b.org" in values["sources"]
    assert values["subtopics"] == "- what is a qubit"
    assert values["date"] == "2026-03-01"
    assert values["total_sources"] == 2


def test_tone_is_appended_to_system_prompt(settings):
    plain = ReportSynthesizer(FakeLLM(), settings).build_messages(_context())
    toned = ReportSynthesizer(FakeLLM(), settings, tone="formal").build_messages(_context())
    assert toned[0]["content"].startswith(plain[0]["content"])
    assert toned[0]["content"] != plain[0]["content"]
    assert '"quantum computing"' in plain[1]["content"]
    assert tone_modifier("not-a-tone") == ""


def test_unknown_report_type_falls_back_to_research_report(settings):
    synthesizer = ReportSynthesizer(FakeLLM(), settings)
    assert synthesizer.template_for("mystery") is synthesizer.template_for(ReportType.RESEARCH_REPORT)


def test_registered_template_is_used(settings):
    synthesizer = ReportSynthesizer(FakeLLM(), settings)
    synthesizer.register_template(ReportType.QUICK_SUMMARY, ReportTemplate("SYS", "Summarize $query"))
    messages = synthesizer.build_messages(_context(report_type=ReportType.QUICK_SUMMARY))
    assert messages[0]["content"] == "SYS"
    assert messages[1]["content"] == "Summarize quantum computing"
    assert ReportType.QUICK_SUMMARY in synthesizer.available_report_types()


@pytest.mark.asyncio
async def test_generate_stores_processed_report(settings):
    llm = FakeLLM(["# Quantum\n\nFindings."])
    synthesizer = ReportSynthesizer(llm, settings)

    report = await synthesizer.generate(_context())

    assert report.startswith("# Quantum")
    assert "## References" in report
    assert synthesizer.memory.get_report("research_report") == report
    assert llm.calls[0]["model"] == "gpt-4o"


@pytest.mark.asyncio
async def test_generate_stream_yields_fragments_in_order(settings):
    bus = EventBus()
    progress = []
    bus.subscribe(progress.append, EventType.SYNTHESIS_PROGRESS)
    llm = FakeLLM(stream_chunks=["# Title\n", "part one ", "part two"])
    synthesizer = ReportSynthesizer(llm, settings, event_bus=bus)

    fragments = [fragment async for fragment in synthesizer.generate_stream(_context())]

    assert fragments == ["# Title\n", "part one ", "part two"]
    assert [event.data["chunk"] for event in progress] == fragments
    assert synthesizer.last_report == "# Title\npart one part two"
    assert synthesizer.memory.get_report("research_report") == synthesizer.last_report


def test_extract_sections_and_table_of_contents(settings):
    report = "# Top\nintro\n## Middle\nbody\n#### Deep\nx"
    synthesizer = ReportSynthesizer(FakeLLM(), settings)

    sections = synthesizer.extract_sections(report)
    assert [(s.title, s.level) for s in sections] == [("Top", 1), ("Middle", 2), ("Deep", 4)]
    assert sections[0].content == "intro\n"

    toc = synthesizer.table_of_contents(report)
    assert toc == "## Table of Contents\n\n- Top\n  - Middle\n\n"


def test_format_reference_date_handles_rfc_and_unknown():
    assert format_reference_date("Mon, 05 Jan 2026 10:00:00 GMT") == "2026-01-05"
    assert format_reference_date("last week") == "last week"
    assert format_reference_date(None) is None
