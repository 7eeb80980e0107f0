"""
Events emitted by the streaming query endpoints.

A stream is zero or more `text` events followed by exactly one terminal
event: `sources` (local index), `summary` (hosted file search) or `error`.
"""
from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from docqa.schemas import CitationSummary, SearchResult, Usage


class TextEvent(BaseModel):
    type: Literal["text"] = "text"
    delta: str


class SourcesEvent(BaseModel):
    type: Literal["sources"] = "sources"
    sources: list[SearchResult]
    citations_summary: list[CitationSummary] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)


class SummaryEvent(BaseModel):
    type: Literal["summary"] = "summary"
    citations_summary: list[CitationSummary]
    vector_store_id: Optional[str] = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


StreamEvent = Union[TextEvent, SourcesEvent, SummaryEvent, ErrorEvent]
TERMINAL_TYPES = frozenset({"sources", "summary", "error"})
