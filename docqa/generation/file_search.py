"""
Hosted File-Search Generator
-----------------------------
Answers a query against an OpenAI-hosted vector store through the
Responses API `file_search` tool, instead of the local FAISS index.

SDK stream events are mapped onto docqa's GenerationEvent types:

    response.output_text.delta             -> TextDelta
    response.output_text.annotation.added  -> Annotation  (file_citation only)
    error / response.failed                -> StreamError
    response.completed                     -> usage for Done

All other event types are logged at DEBUG and dropped.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Optional

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from docqa.generation.events import Annotation, Done, GenerationEvent, StreamError, TextDelta
from docqa.generation.prompts import FILE_SEARCH_PROMPT


def _field(payload: Any, name: str) -> Any:
    # Annotation payloads arrive as plain dicts in some SDK versions
    if isinstance(payload, dict):
        return payload.get(name)
    return getattr(payload, name, None)


def annotation_from_payload(payload: Any) -> Optional[Annotation]:
    """Build an Annotation from a file_citation payload; None for other kinds."""
    if _field(payload, "type") != "file_citation":
        return None
    file_id = _field(payload, "file_id")
    if not file_id:
        return None
    return Annotation(
        source_id=file_id,
        quote=_field(payload, "quote"),
        display_name=_field(payload, "filename"),
    )


class FileNameResolver:
    """Looks up a hosted file's filename by id (used for lazy citation names)."""

    def __init__(self, client: Any) -> None:
        self._client = client

    async def __call__(self, file_id: str) -> Optional[str]:
        file = await self._client.files.retrieve(file_id)
        return file.filename


class FileSearchGenerator:
    def __init__(
        self,
        vector_store_id: str,
        model: str = "gpt-4o-mini",
        timeout: Optional[float] = None,
        client: Any = None,
    ) -> None:
        self.vector_store_id = vector_store_id
        self.model = model
        self._client = client if client is not None else AsyncOpenAI(timeout=timeout)
        self.resolver = FileNameResolver(self._client)

    async def astream(self, query: str) -> AsyncIterator[GenerationEvent]:
        try:
            stream = await self._client.responses.create(
                model=self.model,
                input=[
                    {"role": "system", "content": FILE_SEARCH_PROMPT},
                    {"role": "user", "content": query},
                ],
                tools=[{"type": "file_search", "vector_store_ids": [self.vector_store_id]}],
                stream=True,
            )
        except OpenAIError as exc:
            logger.error(f"[FileSearch] Request failed: {exc}")
            yield StreamError(str(exc))
            return

        total_tokens = 0
        try:
            async for event in stream:
                kind = getattr(event, "type", None)
                if kind == "response.output_text.delta":
                    yield TextDelta(event.delta)
                elif kind == "response.output_text.annotation.added":
                    annotation = annotation_from_payload(event.annotation)
                    if annotation is not None:
                        yield annotation
                elif kind == "error":
                    yield StreamError(_field(event, "message") or "error")
                    return
                elif kind == "response.failed":
                    error = _field(event.response, "error")
                    yield StreamError(_field(error, "message") or "response failed")
                    return
                elif kind == "response.completed":
                    usage = _field(event.response, "usage")
                    total_tokens = _field(usage, "total_tokens") or 0
                else:
                    logger.debug(f"[FileSearch] Skipping event type {kind!r}")
        except OpenAIError as exc:
            logger.error(f"[FileSearch] Stream interrupted: {exc}")
            yield StreamError(str(exc))
            return
        finally:
            await stream.close()

        yield Done(completion_tokens=total_tokens)
