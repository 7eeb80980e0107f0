"""
Citation Aggregator
--------------------
Folds the citation annotations of one answer into a per-source summary:

    [A, B, A, A]  ->  [{A, count=3}, {B, count=1}]

Sources are keyed by source_id.  Counts are sorted descending with ties
kept in first-seen order; Python's sort is stable, so sorting the
insertion-ordered entries by count alone gives exactly that.

Display names are resolved lazily at finalize time, only for sources whose
events never carried one.  A failed lookup keeps the raw id as the name.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, Mapping, Optional

from loguru import logger

from docqa.generation.events import Annotation
from docqa.schemas import CitationSummary

NameResolver = Callable[[str], Awaitable[Optional[str]]]


class CitationAggregator:
    def __init__(self) -> None:
        # dicts keep insertion order -> first-seen order for tie-breaking
        self._entries: dict[str, dict] = {}

    def add(self, event: Annotation) -> None:
        entry = self._entries.get(event.source_id)
        if entry is None:
            self._entries[event.source_id] = {
                "filename": event.display_name,
                "count": 1,
            }
            return
        entry["count"] += 1
        if entry["filename"] is None and event.display_name:
            entry["filename"] = event.display_name

    def extend(self, events: Iterable[Annotation]) -> "CitationAggregator":
        for event in events:
            self.add(event)
        return self

    def __len__(self) -> int:
        return len(self._entries)

    def unresolved(self) -> list[str]:
        """Source ids that still have no human-readable name."""
        return [sid for sid, entry in self._entries.items() if not entry["filename"]]

    def summary(self, names: Optional[Mapping[str, str]] = None) -> list[CitationSummary]:
        names = names or {}
        items = [
            CitationSummary(
                source_id=sid,
                filename=entry["filename"] or names.get(sid) or sid,
                count=entry["count"],
            )
            for sid, entry in self._entries.items()
        ]
        return sorted(items, key=lambda item: item.count, reverse=True)

    async def finalize(self, resolver: Optional[NameResolver] = None) -> list[CitationSummary]:
        """Resolve missing names concurrently, then return the sorted summary."""
        pending = self.unresolved()
        if resolver is None or not pending:
            return self.summary()

        results = await asyncio.gather(
            *(resolver(sid) for sid in pending), return_exceptions=True
        )
        names: dict[str, str] = {}
        for sid, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.warning(f"[Citations] Could not resolve name for {sid}: {result}")
            elif result:
                names[sid] = result
        return self.summary(names)
