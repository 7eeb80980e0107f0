"""
Core Pydantic schemas for docqa.

A Chunk's integer id doubles as the row number of its embedding in the
FAISS index, so every search hit can be joined back to its text by id.
"""
from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Chunk(BaseModel):
    """One stored window of a document. Immutable once written."""

    id: int = Field(ge=0)                # == FAISS row position of its vector
    document_name: str
    text: str
    chunk_index: int = Field(ge=0)       # Position within the document
    created_at: datetime = Field(default_factory=utcnow)


class DocumentAggregate(BaseModel):
    """Per-document rollup computed by grouping chunks on document_name."""

    document_name: str
    total_chunks: int
    created_at: datetime                 # Earliest chunk timestamp


class SearchResult(BaseModel):
    """A ranked hit: the chunk plus its distance to the query vector."""

    id: int
    text: str
    document_name: str
    chunk_index: int
    distance: float

    @classmethod
    def from_chunk(cls, chunk: Chunk, distance: float) -> "SearchResult":
        return cls(
            id=chunk.id,
            text=chunk.text,
            document_name=chunk.document_name,
            chunk_index=chunk.chunk_index,
            distance=distance,
        )


class CitationSummary(BaseModel):
    """How often one source was cited in a single answer."""

    source_id: str
    filename: str
    count: int = Field(ge=1)


class Usage(BaseModel):
    embedding_tokens: int = 0
    completion_tokens: int = 0


class ConsistencyReport(BaseModel):
    """Index row count versus the chunk store's next free id."""

    index_size: int
    next_free_id: int

    @property
    def consistent(self) -> bool:
        return self.index_size == self.next_free_id

    @property
    def missing_vectors(self) -> int:
        return max(0, self.next_free_id - self.index_size)

    def to_dict(self) -> dict:
        return {
            "index_size": self.index_size,
            "next_free_id": self.next_free_id,
            "consistent": self.consistent,
            "missing_vectors": self.missing_vectors,
        }
