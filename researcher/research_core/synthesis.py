"""Report generation from a ResearchContext, batch or streamed."""
from __future__ import annotations

import re
from datetime import date
from typing import AsyncIterator

from loguru import logger

from researcher.capabilities import LLMProvider
from researcher.config import Settings
from researcher.models.schemas import (
    ReportSection,
    ReportTemplate,
    ReportType,
    ResearchContext,
    SearchResult,
    Tone,
    parse_published_date,
)
from researcher.services import streaming
from researcher.services.event_bus import EventBus
from researcher.services.prompt_store import get_entry, render_template
from researcher.services.working_memory import WorkingMemory

MAX_FINDINGS = 20
MAX_REFERENCES = 20

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")


def load_templates() -> dict[ReportType, ReportTemplate]:
    catalog = get_entry("reports")
    templates: dict[ReportType, ReportTemplate] = {}
    for report_type in ReportType:
        entry = catalog.get(report_type.value)
        if not entry:
            continue
        templates[report_type] = ReportTemplate(
            system_prompt=entry["system_prompt"],
            user_prompt=entry["user_prompt"],
            sections=list(entry.get("sections") or []),
        )
    return templates


def tone_modifier(tone: Tone | str | None) -> str:
    if not tone:
        return ""
    tones = get_entry("tones")
    sentence = tones.get(str(tone))
    return f"\n{sentence}" if sentence else ""


def format_reference_date(value: str | None) -> str | None:
    parsed = parse_published_date(value)
    if parsed is not None:
        return parsed.strftime("%Y-%m-%d")
    return value or None


class ReportSynthesizer:
    def __init__(
        self,
        llm: LLMProvider,
        settings: Settings,
        *,
        memory: WorkingMemory | None = None,
        event_bus: EventBus | None = None,
        tone: Tone | str | None = None,
    ):
        self.llm = llm
        self.settings = settings
        self.memory = memory or WorkingMemory()
        self.event_bus = event_bus or EventBus()
        self.tone = tone if tone is not None else settings.tone
        self.templates = load_templates()
        self.last_report: str | None = None

    # --- templates ---

    def register_template(self, report_type: ReportType, template: ReportTemplate) -> None:
        self.templates[report_type] = template

    def available_report_types(self) -> list[ReportType]:
        return list(self.templates)

    def template_for(self, report_type: ReportType | str | None) -> ReportTemplate:
        try:
            key = ReportType(report_type) if report_type else ReportType.RESEARCH_REPORT
        except ValueError:
            logger.warning(f"Unknown report type '{report_type}', using research_report")
            key = ReportType.RESEARCH_REPORT
        return self.templates.get(key) or self.templates[ReportType.RESEARCH_REPORT]

    @staticmethod
    def template_values(context: ResearchContext, today: date | None = None) -> dict[str, object]:
        findings = "\n\n".join(
            f"{index}. {finding}" for index, finding in enumerate(context.findings[:MAX_FINDINGS], start=1)
        )
        subtopics = "\n".join(f"- {topic}" for topic in context.subtopics)
        sources = "\n".join(
            f"[{index}] {source.title} - {source.url}"
            for index, source in enumerate(context.sources[:MAX_FINDINGS], start=1)
        )
        return {
            "query": context.query,
            "findings": findings,
            "subtopics": subtopics,
            "sources": sources,
            "date": (today or date.today()).isoformat(),
            "total_sources": len(context.sources),
        }

    def build_messages(self, context: ResearchContext) -> list[dict[str, str]]:
        template = self.template_for(context.report_type)
        return [
            {"role": "system", "content": template.system_prompt + tone_modifier(self.tone)},
            {"role": "user", "content": render_template(template.user_prompt, **self.template_values(context))},
        ]

    def _label(self, context: ResearchContext) -> str:
        return str(context.report_type or ReportType.RESEARCH_REPORT)

    # --- generation ---

    async def generate(self, context: ResearchContext) -> str:
        label = self._label(context)
        self.event_bus.emit(streaming.synthesis_started(context.query, label, len(context.sources)))

        raw = await self.llm.complete(
            self.build_messages(context),
            model=self.settings.smart_llm_model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )
        report = self.post_process(raw, context)
        self.memory.add_report(label, report)
        self.last_report = report

        self.event_bus.emit(streaming.synthesis_completed(context.query, label, len(report)))
        return report

    async def generate_stream(self, context: ResearchContext) -> AsyncIterator[str]:
        """Yield report fragments as they arrive.

        The full un-post-processed text is kept in working memory and in
        `last_report` once the stream is exhausted.
        """
        label = self._label(context)
        self.event_bus.emit(streaming.synthesis_started(context.query, label, len(context.sources)))

        parts: list[str] = []
        async for fragment in self.llm.stream(
            self.build_messages(context),
            model=self.settings.smart_llm_model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        ):
            parts.append(fragment)
            self.event_bus.emit(streaming.synthesis_progress(fragment))
            yield fragment

        report = "".join(parts)
        self.memory.add_report(label, report)
        self.last_report = report
        self.event_bus.emit(streaming.synthesis_completed(context.query, label, len(report)))

    # --- post-processing ---

    @staticmethod
    def has_references(report: str) -> bool:
        lowered = report.lower()
        return "## references" in lowered or "## sources" in lowered

    @staticmethod
    def references_section(sources: list[SearchResult]) -> str:
        if not sources:
            return ""
        lines = ["", "", "## References", ""]
        for index, source in enumerate(sources[:MAX_REFERENCES], start=1):
            line = f"{index}. [{source.title}]({source.url})"
            published = format_reference_date(source.published_date)
            if published:
                line += f" - {published}"
            lines.append(line)
        return "\n".join(lines) + "\n"

    def add_references(self, report: str, sources: list[SearchResult]) -> str:
        if not sources or self.has_references(report):
            return report
        return report + self.references_section(sources)

    @staticmethod
    def clean_formatting(report: str) -> str:
        report = re.sub(r"\n{3,}", "\n\n", report).strip()
        report = re.sub(r"^- ", "• ", report, flags=re.MULTILINE)
        report = report.replace("****", "**")
        report = re.sub(r"\[(\d+)\]\s*\[", r"[\1] [", report)
        return report.strip()

    def post_process(self, report: str, context: ResearchContext, today: date | None = None) -> str:
        if not report.startswith("#"):
            report = f"# {context.query}\n\n{report}"

        banner = " | ".join(
            [
                f"**Date:** {(today or date.today()).isoformat()}",
                f"**Sources:** {len(context.sources)}",
                f"**Report Type:** {self._label(context)}",
            ]
        )
        title, _, body = report.partition("\n")
        report = f"{title}\n\n{banner}\n\n{body}"

        report = self.add_references(report, context.sources)
        return self.clean_formatting(report)

    # --- structure ---

    @staticmethod
    def extract_sections(report: str) -> list[ReportSection]:
        sections: list[ReportSection] = []
        current: ReportSection | None = None
        for line in report.split("\n"):
            match = _HEADING_RE.match(line)
            if match:
                if current is not None:
                    sections.append(current)
                current = ReportSection(title=match.group(2), content="", level=len(match.group(1)))
            elif current is not None:
                current.content += line + "\n"
        if current is not None:
            sections.append(current)
        return sections

    def table_of_contents(self, report: str) -> str:
        lines = ["## Table of Contents", ""]
        for section in self.extract_sections(report):
            if section.level <= 3:
                lines.append(f"{'  ' * (section.level - 1)}- {section.title}")
        return "\n".join(lines) + "\n\n"
