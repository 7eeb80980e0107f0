"""
RAG Generator
--------------
Grounded answer synthesis over locally retrieved chunks using OpenAI chat
models, in two flavours with the same context handling:

  generate()  -- one completion call, returns a RAGResponse
  astream()   -- incremental completion, yields GenerationEvents

Inline citation markers such as [1] or [2, 3] in the generated text are
turned into Annotation events for the matching source document, so both
modes feed the same citation aggregation.

Context budget:
  - System prompt + top_k chunks of ~500 words: ~4-5k tokens at top_k=5
  - Completion cap: 1,024 tokens
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from langsmith import traceable
from loguru import logger
from openai import AsyncOpenAI, OpenAI, OpenAIError

from docqa.errors import UpstreamError
from docqa.generation.events import Annotation, Done, GenerationEvent, StreamError, TextDelta
from docqa.generation.prompts import NO_CONTEXT_RESPONSE, SOURCE_TEMPLATE, SYSTEM_PROMPT
from docqa.schemas import SearchResult


# ---------------------------------------------------------------------------
# Model pricing table  (input_$/M, output_$/M)
# ---------------------------------------------------------------------------

_MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.150, 0.600),
    "gpt-4o":      (2.500, 10.000),
}


def _cost_usd(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Compute estimated cost in USD for a given model and token counts."""
    rates = _MODEL_PRICING.get(model, (0.150, 0.600))
    return (prompt_tokens * rates[0] + completion_tokens * rates[1]) / 1_000_000


# ---------------------------------------------------------------------------
# Response schema
# ---------------------------------------------------------------------------

@dataclass
class RAGResponse:
    """Structured result from a single generation call."""

    answer: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    annotations: list[Annotation] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def estimated_cost_usd(self) -> float:
        return _cost_usd(self.model, self.prompt_tokens, self.completion_tokens)


# ---------------------------------------------------------------------------
# Context + citation markers
# ---------------------------------------------------------------------------

def build_context(sources: list[SearchResult]) -> str:
    """Number each source [1]..[N] in rank order with a document header."""
    return "\n\n".join(
        SOURCE_TEMPLATE.format(
            index=i,
            document_name=source.document_name,
            chunk_index=source.chunk_index,
            text=source.text,
        )
        for i, source in enumerate(sources, start=1)
    )


_MARKER = re.compile(r"\[(\d+(?:\s*,\s*\d+)*)\]")
_PARTIAL_MARKER = re.compile(r"\[[\d,\s]*")


class CitationMarkerScanner:
    """
    Finds [N] markers in text that arrives in arbitrary pieces.

    A marker split across two deltas ("[1" then "2]") is held back until it
    closes, so each marker is reported exactly once.
    """

    def __init__(self, sources: list[SearchResult]) -> None:
        self.sources = sources
        self._pending = ""

    def feed(self, delta: str) -> list[Annotation]:
        text = self._pending + delta
        annotations: list[Annotation] = []
        last_end = 0
        for match in _MARKER.finditer(text):
            for number in match.group(1).split(","):
                annotation = self._annotation_for(int(number))
                if annotation is not None:
                    annotations.append(annotation)
            last_end = match.end()

        tail = text[last_end:]
        open_at = tail.rfind("[")
        if open_at != -1 and _PARTIAL_MARKER.fullmatch(tail[open_at:]):
            self._pending = tail[open_at:]
        else:
            self._pending = ""
        return annotations

    def _annotation_for(self, number: int) -> Optional[Annotation]:
        if not 1 <= number <= len(self.sources):
            logger.debug(f"[Generator] Ignoring citation [{number}] (only {len(self.sources)} sources)")
            return None
        name = self.sources[number - 1].document_name
        return Annotation(source_id=name, display_name=name)


# ---------------------------------------------------------------------------
# OpenAI Generator
# ---------------------------------------------------------------------------

class RAGGenerator:
    """
    Grounded answer synthesis using OpenAI chat models.

    Supported models: gpt-4o-mini (default, fast), gpt-4o (higher quality).
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        max_tokens: int = 1024,
        temperature: float = 0.7,
        timeout: Optional[float] = None,
        client: Any = None,
        async_client: Any = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client if client is not None else OpenAI(timeout=timeout)
        self._async_client = async_client if async_client is not None else AsyncOpenAI(timeout=timeout)

    def _messages(self, query: str, sources: list[SearchResult]) -> list[dict]:
        system_message = SYSTEM_PROMPT.format(context=build_context(sources))
        return [
            {"role": "system", "content": system_message},
            {"role": "user", "content": query},
        ]

    @traceable(name="generate_openai", run_type="llm")
    def generate(self, query: str, sources: list[SearchResult]) -> RAGResponse:
        if not sources:
            return RAGResponse(answer=NO_CONTEXT_RESPONSE, model=self.model)

        logger.debug(
            f"[Generator] {self.model} | {len(sources)} chunks | query={query[:60]!r}"
        )

        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=self._messages(query, sources),
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as exc:
            raise UpstreamError(f"Generation request failed: {exc}", service="generation") from exc

        answer = response.choices[0].message.content or ""
        usage = response.usage

        logger.info(
            f"[Generator] Done | prompt={usage.prompt_tokens} "
            f"completion={usage.completion_tokens} | "
            f"cost=${_cost_usd(self.model, usage.prompt_tokens, usage.completion_tokens):.5f}"
        )

        return RAGResponse(
            answer=answer,
            model=self.model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            annotations=CitationMarkerScanner(sources).feed(answer),
        )

    async def astream(self, query: str, sources: list[SearchResult]) -> AsyncIterator[GenerationEvent]:
        """
        Stream the answer as TextDelta / Annotation events, ending with Done.

        Upstream failures become a single StreamError instead of an
        exception.  Closing this generator early closes the OpenAI stream.
        """
        if not sources:
            yield TextDelta(NO_CONTEXT_RESPONSE)
            yield Done()
            return

        try:
            stream = await self._async_client.chat.completions.create(
                model=self.model,
                messages=self._messages(query, sources),
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                stream=True,
                stream_options={"include_usage": True},
            )
        except OpenAIError as exc:
            logger.error(f"[Generator] Stream request failed: {exc}")
            yield StreamError(str(exc))
            return

        scanner = CitationMarkerScanner(sources)
        total_tokens = 0
        try:
            async for chunk in stream:
                if chunk.usage is not None:
                    total_tokens = chunk.usage.total_tokens
                for choice in chunk.choices:
                    delta = choice.delta.content
                    if not delta:
                        continue
                    yield TextDelta(delta)
                    for annotation in scanner.feed(delta):
                        yield annotation
        except OpenAIError as exc:
            logger.error(f"[Generator] Stream interrupted: {exc}")
            yield StreamError(str(exc))
            return
        finally:
            await stream.close()

        yield Done(completion_tokens=total_tokens)
