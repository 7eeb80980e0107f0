"""
Query Pipeline
---------------
Orchestrates one question end to end:

    user query
        |
        v
    Embedder (query -> vector)
        |
        v
    VectorIndex.search (top_k ids + distances, ascending)
        |
        v
    ChunkStore.get_by_ids (rows returned in the same rank order)
        |
        v
    RAGGenerator (grounded answer, inline [N] citations)
        |
        v
    QueryResult / stream of TextEvent ... SourcesEvent

The index's order is authoritative: results are zipped position by position
with the ids FAISS returned and are never re-sorted.  If the store cannot
produce a row for every id, the query fails with ConsistencyError rather
than answering from a silently shortened source list.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import AsyncIterator

from langsmith import traceable
from loguru import logger

from docqa.context import AppContext
from docqa.errors import ConsistencyError, DocQAError, InputError
from docqa.generation.citations import CitationAggregator
from docqa.generation.events import Annotation, Done, StreamError, TextDelta
from docqa.generation.generator import RAGResponse
from docqa.schemas import CitationSummary, SearchResult, Usage
from docqa.serving.events import ErrorEvent, SourcesEvent, StreamEvent, SummaryEvent, TextEvent


def validate_query(query: str, top_k: int) -> str:
    query = (query or "").strip()
    if not query:
        raise InputError("Query is required and must be a non-empty string")
    if top_k < 1:
        raise InputError(f"top_k must be >= 1, got {top_k}")
    return query


# ---------------------------------------------------------------------------
# Result schema
# ---------------------------------------------------------------------------

@dataclass
class QueryResult:
    """
    Full output from a single non-streaming query.

    usage.completion_tokens is the total billed for the completion call
    (prompt + completion), usage.embedding_tokens for the query embedding.
    """

    query: str
    answer: str
    sources: list[SearchResult]
    usage: Usage
    citations: list[CitationSummary] = field(default_factory=list)
    model: str = ""
    retrieval_ms: float = 0.0
    generation_ms: float = 0.0

    @property
    def total_ms(self) -> float:
        return self.retrieval_ms + self.generation_ms

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "answer": self.answer,
            "sources": [s.model_dump(mode="json") for s in self.sources],
            "usage": self.usage.model_dump(),
            "citations_summary": [c.model_dump() for c in self.citations],
            "model": self.model,
            "latency_ms": {
                "retrieval": round(self.retrieval_ms, 1),
                "generation": round(self.generation_ms, 1),
                "total": round(self.total_ms, 1),
            },
        }


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class QueryPipeline:
    """
    Usage:
        pipeline = QueryPipeline(context)
        result = pipeline.query("What does the contract say about renewal?", top_k=5)
        for source in result.sources:
            print(source.document_name, source.chunk_index, source.distance)
    """

    def __init__(self, context: AppContext) -> None:
        self.context = context

    @traceable(name="retrieve", run_type="retriever")
    def retrieve(self, query: str, top_k: int) -> tuple[list[SearchResult], int]:
        """
        Embed the query and return ranked sources plus embedding tokens used.

        Raises:
            ConsistencyError: the store returned fewer rows than FAISS ids.
        """
        batch = self.context.embedder.embed_query(query)
        ids, distances = self.context.index.search(batch.vectors[0], top_k)
        chunks = self.context.store.get_by_ids(ids)

        if len(chunks) != len(ids):
            found = {c.id for c in chunks}
            missing = [i for i in ids if i not in found]
            logger.error(f"[QueryPipeline] Index ids without stored chunks: {missing}")
            raise ConsistencyError(
                f"{len(missing)} of {len(ids)} search hits have no stored chunk",
                index_size=self.context.index.size(),
                missing_ids=missing,
            )

        results = [
            SearchResult.from_chunk(chunk, distance)
            for chunk, distance in zip(chunks, distances)
        ]
        logger.info(
            f"[QueryPipeline] Retrieved {len(results)} sources "
            f"(best distance: {results[0].distance:.4f})" if results else "[QueryPipeline] No results"
        )
        return results, batch.total_tokens

    @traceable(name="rag_query", run_type="chain")
    def query(self, user_query: str, top_k: int = 5) -> QueryResult:
        user_query = validate_query(user_query, top_k)
        logger.info(f"[QueryPipeline] Query: {user_query[:100]!r} | top_k={top_k}")

        t0 = time.perf_counter()
        sources, embedding_tokens = self.retrieve(user_query, top_k)
        retrieval_ms = (time.perf_counter() - t0) * 1000

        t1 = time.perf_counter()
        response: RAGResponse = self.context.generator.generate(user_query, sources)
        generation_ms = (time.perf_counter() - t1) * 1000

        citations = CitationAggregator().extend(response.annotations).summary()

        logger.info(
            f"[QueryPipeline] Complete | retrieve={retrieval_ms:.0f}ms "
            f"generate={generation_ms:.0f}ms | tokens={response.total_tokens}"
        )

        return QueryResult(
            query=user_query,
            answer=response.answer,
            sources=sources,
            usage=Usage(
                embedding_tokens=embedding_tokens,
                completion_tokens=response.total_tokens,
            ),
            citations=citations,
            model=response.model,
            retrieval_ms=retrieval_ms,
            generation_ms=generation_ms,
        )

    async def stream(self, user_query: str, top_k: int = 5) -> AsyncIterator[StreamEvent]:
        """
        Stream text events, then one SourcesEvent, or one ErrorEvent on failure.

        Closing this generator closes the upstream generation stream.
        """
        try:
            user_query = validate_query(user_query, top_k)
            sources, embedding_tokens = await asyncio.to_thread(self.retrieve, user_query, top_k)
        except DocQAError as exc:
            logger.error(f"[QueryPipeline] Stream failed before generation: {exc}")
            yield ErrorEvent(error=str(exc))
            return

        aggregator = CitationAggregator()
        completion_tokens = 0
        events = self.context.generator.astream(user_query, sources)
        try:
            async for event in events:
                if isinstance(event, TextDelta):
                    yield TextEvent(delta=event.delta)
                elif isinstance(event, Annotation):
                    aggregator.add(event)
                elif isinstance(event, StreamError):
                    yield ErrorEvent(error=event.message)
                    return
                elif isinstance(event, Done):
                    completion_tokens = event.completion_tokens
        finally:
            await events.aclose()

        yield SourcesEvent(
            sources=sources,
            citations_summary=aggregator.summary(),
            usage=Usage(embedding_tokens=embedding_tokens, completion_tokens=completion_tokens),
        )

    async def stream_file_search(self, user_query: str) -> AsyncIterator[StreamEvent]:
        """Hosted vector-store variant: text events, then one SummaryEvent."""
        user_query = validate_query(user_query, 1)
        generator = self.context.file_search

        aggregator = CitationAggregator()
        events = generator.astream(user_query)
        try:
            async for event in events:
                if isinstance(event, TextDelta):
                    yield TextEvent(delta=event.delta)
                elif isinstance(event, Annotation):
                    aggregator.add(event)
                elif isinstance(event, StreamError):
                    yield ErrorEvent(error=event.message)
                    return
        finally:
            await events.aclose()

        citations = await aggregator.finalize(generator.resolver)
        logger.info(f"[QueryPipeline] File search cited {len(citations)} file(s)")
        yield SummaryEvent(
            citations_summary=citations,
            vector_store_id=generator.vector_store_id,
        )
