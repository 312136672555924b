"""Run-scoped store for every intermediate artifact of a research run."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from researcher.models.schemas import AcquiredContent, SearchResult


@dataclass(slots=True)
class MemoryEntry:
    id: str
    type: str
    content: Any
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class WorkingMemory:
    """Owned by exactly one orchestrator; never shared between runs."""

    def __init__(self) -> None:
        self.clear()

    def clear(self) -> None:
        self._entries: dict[str, MemoryEntry] = {}
        self._entries_by_type: dict[str, list[str]] = {}
        self._search_results: list[SearchResult] = []
        self._scraped: dict[str, AcquiredContent] = {}
        self._visited: set[str] = set()
        self._reports: dict[str, str] = {}
        self._context: list[str] = []
        self._subtopics: dict[str, None] = {}
        self._next_id = 1

    # --- generic entries ---

    def add(self, entry_type: str, content: Any, metadata: dict[str, Any] | None = None) -> str:
        entry_id = f"{entry_type}_{self._next_id}"
        self._next_id += 1
        self._entries[entry_id] = MemoryEntry(
            id=entry_id,
            type=entry_type,
            content=content,
            metadata=metadata or {},
        )
        self._entries_by_type.setdefault(entry_type, []).append(entry_id)
        return entry_id

    def get(self, entry_id: str) -> MemoryEntry | None:
        return self._entries.get(entry_id)

    def get_by_type(self, entry_type: str) -> list[MemoryEntry]:
        return [self._entries[i] for i in self._entries_by_type.get(entry_type, [])]

    # --- search ---

    def add_search_results(self, query: str, results: list[SearchResult]) -> None:
        self.add("search_queries", query, {"results": len(results)})
        self._search_results.extend(results)

    @property
    def search_results(self) -> list[SearchResult]:
        return list(self._search_results)

    # --- acquisition cache ---

    def cache_content(self, key: str, content: AcquiredContent) -> None:
        self._scraped[key] = content
        self._visited.add(key)

    def cached_content(self, key: str) -> AcquiredContent | None:
        return self._scraped.get(key)

    def mark_visited(self, key: str) -> None:
        self._visited.add(key)

    def is_visited(self, key: str) -> bool:
        return key in self._visited

    @property
    def scraped_content(self) -> dict[str, AcquiredContent]:
        return dict(self._scraped)

    # --- reports, context, subtopics ---

    def add_report(self, label: str, report: str) -> None:
        self._reports[label] = report

    def get_report(self, label: str) -> str | None:
        return self._reports.get(label)

    @property
    def reports(self) -> dict[str, str]:
        return dict(self._reports)

    def add_context(self, context: str) -> None:
        self._context.append(context)

    @property
    def context(self) -> list[str]:
        return list(self._context)

    def clear_context(self) -> None:
        self._context = []

    def add_subtopics(self, subtopics: list[str]) -> None:
        for topic in subtopics:
            self._subtopics.setdefault(topic, None)

    @property
    def subtopics(self) -> list[str]:
        return list(self._subtopics)

    # --- stats / export ---

    def get_stats(self) -> dict[str, int]:
        stats = {
            "total_entries": len(self._entries),
            "search_queries": len(self._entries_by_type.get("search_queries", [])),
            "search_results": len(self._search_results),
            "scraped_urls": len(self._scraped),
            "visited_urls": len(self._visited),
            "reports": len(self._reports),
            "context_items": len(self._context),
            "subtopics": len(self._subtopics),
        }
        for entry_type, ids in self._entries_by_type.items():
            stats[f"entries.{entry_type}"] = len(ids)
        return stats

    def export(self) -> dict[str, Any]:
        return {
            "entries": [asdict(entry) for entry in self._entries.values()],
            "search_results": [result.to_dict() for result in self._search_results],
            "scraped_content": {key: asdict(value) for key, value in self._scraped.items()},
            "visited_urls": sorted(self._visited),
            "reports": dict(self._reports),
            "context": list(self._context),
            "subtopics": list(self._subtopics),
            "next_id": self._next_id,
        }

    def import_data(self, data: str | dict[str, Any]) -> None:
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as exc:
                raise ValueError("Invalid JSON data") from exc
        if not isinstance(data, dict):
            raise ValueError("Working memory import expects a JSON object")

        self.clear()
        for raw in data.get("entries", []):
            entry = MemoryEntry(**raw)
            self._entries[entry.id] = entry
            self._entries_by_type.setdefault(entry.type, []).append(entry.id)
        self._search_results = [SearchResult.from_dict(item) for item in data.get("search_results", [])]
        self._scraped = {
            key: AcquiredContent(**value) for key, value in data.get("scraped_content", {}).items()
        }
        self._visited = set(data.get("visited_urls", []))
        self._reports = dict(data.get("reports", {}))
        self._context = list(data.get("context", []))
        self._subtopics = dict.fromkeys(data.get("subtopics", []))
        self._next_id = int(data.get("next_id", len(self._entries) + 1))
