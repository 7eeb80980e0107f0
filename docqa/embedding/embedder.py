"""
Embedding Client
-----------------
Turns chunk and query text into float32 vectors with an OpenAI embedding
model (text-embedding-3-small by default).

  - Requests are split into batches of `batch_size` texts
  - `dimensions` goes out with every request, so the model returns vectors
    sized for the configured index
  - Each batch is retried with exponential backoff; nothing above this
    module retries
  - Every call reports the tokens it was billed, so query results can carry
    embedding usage
  - LangSmith traces each call when tracing credentials are configured
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterator, Optional

import numpy as np
from langsmith import traceable
from loguru import logger
from openai import OpenAI, OpenAIError
from tenacity import retry, stop_after_attempt, wait_exponential

from docqa.errors import UpstreamError

MODEL = "text-embedding-3-small"
DIMENSIONS = 1536
BATCH_SIZE = 512           # API ceiling is 2048 inputs per request

# text-embedding-3-small list price, USD per million tokens
_PRICE_PER_M_TOKENS = 0.020


@dataclass
class EmbeddingBatch:
    """Vectors for a list of texts plus the tokens billed for them."""

    vectors: np.ndarray    # (len(texts), dimensions), float32, input order
    total_tokens: int = 0


def _batches(texts: list[str], size: int) -> Iterator[tuple[int, list[str]]]:
    for offset in range(0, len(texts), size):
        yield offset // size + 1, texts[offset: offset + size]


class Embedder:
    """
    Usage:
        embedder = Embedder(dimensions=1536)
        batch = embedder.embed_texts(["first chunk", "second chunk"])
        batch.vectors.shape      # (2, 1536)

    `client` replaces the OpenAI client (tests pass a stand-in).
    """

    def __init__(
        self,
        model: str = MODEL,
        dimensions: int = DIMENSIONS,
        batch_size: int = BATCH_SIZE,
        timeout: Optional[float] = None,
        client: Any = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._client = client if client is not None else OpenAI(timeout=timeout)
        self.total_tokens_used = 0
        self.total_api_calls = 0

    @traceable(name="embed_texts", run_type="embedding")
    def embed_texts(self, texts: list[str]) -> EmbeddingBatch:
        """
        Embed `texts` in order.

        Raises:
            UpstreamError: the API failed after retries, or returned vectors
                of the wrong shape.
        """
        if not texts:
            return EmbeddingBatch(vectors=np.empty((0, self.dimensions), dtype=np.float32))

        parts: list[np.ndarray] = []
        tokens = 0
        for number, batch in _batches(texts, self.batch_size):
            try:
                vectors, used = self._request(batch)
            except OpenAIError as exc:
                raise UpstreamError(f"Embedding request failed: {exc}", service="embedding") from exc
            parts.append(vectors)
            tokens += used
            self.total_api_calls += 1
            self.total_tokens_used += used
            logger.debug(f"[Embedder] batch {number}: {len(batch)} texts, {used} tokens")

        matrix = np.concatenate(parts) if len(parts) > 1 else parts[0]
        if matrix.shape != (len(texts), self.dimensions):
            raise UpstreamError(
                f"Embedding service returned shape {matrix.shape}, "
                f"expected ({len(texts)}, {self.dimensions})",
                service="embedding",
            )
        return EmbeddingBatch(vectors=matrix, total_tokens=tokens)

    def embed_query(self, text: str) -> EmbeddingBatch:
        """Single query string; `vectors` has one row."""
        return self.embed_texts([text])

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _request(self, texts: list[str]) -> tuple[np.ndarray, int]:
        # The API rejects empty strings
        payload = [t if t.strip() else " " for t in texts]

        started = time.perf_counter()
        response = self._client.embeddings.create(
            model=self.model, input=payload, dimensions=self.dimensions
        )
        elapsed_ms = (time.perf_counter() - started) * 1000

        rows = sorted(response.data, key=lambda item: item.index)
        vectors = np.asarray([row.embedding for row in rows], dtype=np.float32)
        logger.debug(f"[Embedder] {self.model} responded in {elapsed_ms:.0f}ms")
        return vectors, response.usage.total_tokens

    def usage_summary(self) -> dict:
        return {
            "model": self.model,
            "total_api_calls": self.total_api_calls,
            "total_tokens_used": self.total_tokens_used,
            "estimated_cost_usd": round(self.total_tokens_used / 1_000_000 * _PRICE_PER_M_TOKENS, 6),
        }
