"""
Shared test fixtures for the docqa suite.

Provides: settings rooted in a temp data dir, an AppContext wired to
deterministic stand-ins for the OpenAI embedder and generator, a fake
SDK stream for generator tests, and a fake client for the hosted vector
store.  Nothing here talks to the network.
"""
from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest

from docqa.config import ChunkingConfig, EmbeddingConfig, LoggingConfig, Settings, StorageConfig
from docqa.context import AppContext
from docqa.embedding.embedder import EmbeddingBatch
from docqa.errors import UpstreamError
from docqa.generation.events import Done, StreamError, TextDelta
from docqa.generation.generator import CitationMarkerScanner, RAGResponse
from docqa.generation.prompts import NO_CONTEXT_RESPONSE
from docqa.generation.vector_store import HostedVectorStore

DIMS = 8
VOCAB = ["apple", "banana", "cherry", "grape", "contract", "renewal", "invoice"]


class FakeEmbedder:
    """Bag-of-words vectors over a tiny vocabulary; last slot counts unknown words."""

    def __init__(self, dimensions: int = DIMS, fail_on: str | None = None) -> None:
        self.dimensions = dimensions
        self.fail_on = fail_on
        self.calls = 0

    def vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dimensions, dtype=np.float32)
        for word in text.lower().split():
            word = word.strip(".,?!")
            slot = VOCAB.index(word) if word in VOCAB else self.dimensions - 1
            vec[slot] += 1.0
        return vec

    def embed_texts(self, texts: list[str]) -> EmbeddingBatch:
        self.calls += 1
        if self.fail_on and any(self.fail_on in t for t in texts):
            raise UpstreamError("embedding service unavailable", service="embedding")
        if not texts:
            return EmbeddingBatch(vectors=np.empty((0, self.dimensions), dtype=np.float32))
        return EmbeddingBatch(
            vectors=np.stack([self.vector(t) for t in texts]),
            total_tokens=sum(len(t.split()) for t in texts),
        )

    def embed_query(self, text: str) -> EmbeddingBatch:
        return self.embed_texts([text])


class FakeGenerator:
    """Canned answer; streams it in two pieces that split the [1] marker."""

    model = "fake-model"

    def __init__(self, answer: str = "Apples are listed [1].", fail_stream: bool = False) -> None:
        self.answer = answer
        self.fail_stream = fail_stream
        self.closed = False
        self.calls: list[tuple[str, list]] = []

    def generate(self, query, sources):
        self.calls.append((query, sources))
        if not sources:
            return RAGResponse(answer=NO_CONTEXT_RESPONSE, model=self.model)
        return RAGResponse(
            answer=self.answer,
            model=self.model,
            prompt_tokens=10,
            completion_tokens=5,
            annotations=CitationMarkerScanner(sources).feed(self.answer),
        )

    async def astream(self, query, sources):
        self.calls.append((query, sources))
        scanner = CitationMarkerScanner(sources)
        cut = self.answer.find("[") + 1 or len(self.answer)
        try:
            for piece in (self.answer[:cut], self.answer[cut:]):
                yield TextDelta(piece)
                for annotation in scanner.feed(piece):
                    yield annotation
                if self.fail_stream:
                    yield StreamError("upstream dropped the stream")
                    return
            yield Done(completion_tokens=15)
        finally:
            self.closed = True


class FakeStream:
    """Async-iterable SDK stream with an awaitable close()."""

    def __init__(self, items, error: Exception | None = None) -> None:
        self.items = list(items)
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self.items:
            yield item
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        self.closed = True


class FakeHostedClient:
    """Stand-in for the AsyncOpenAI `files` and `vector_stores` resources."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.created_stores: list[str] = []
        self.uploads: list[dict] = []
        self.attached: list[tuple[str, str]] = []
        self.filenames: dict[str, str] = {}
        self.statuses: dict[str, str] = {}
        self.files = SimpleNamespace(create=self._file_create, retrieve=self._file_retrieve)
        self.vector_stores = SimpleNamespace(
            create=self._store_create,
            files=SimpleNamespace(create=self._attach, list=self._list, retrieve=self._attached_file),
        )

    def _raise_if_failing(self):
        if self.error is not None:
            raise self.error

    async def _store_create(self, name):
        self._raise_if_failing()
        self.created_stores.append(name)
        return SimpleNamespace(id=f"vs_{len(self.created_stores)}", name=name)

    async def _file_create(self, file, purpose):
        self._raise_if_failing()
        name, data, content_type = file
        file_id = f"file-{len(self.uploads) + 1}"
        self.uploads.append({"name": name, "data": data, "content_type": content_type, "purpose": purpose})
        self.filenames[file_id] = name
        return SimpleNamespace(id=file_id, filename=name)

    async def _file_retrieve(self, file_id):
        if file_id not in self.filenames:
            raise RuntimeError(f"no such file {file_id}")
        return SimpleNamespace(id=file_id, filename=self.filenames[file_id], created_at=1700000000)

    async def _attach(self, vector_store_id, file_id):
        self.attached.append((vector_store_id, file_id))
        self.statuses.setdefault(file_id, "in_progress")
        return SimpleNamespace(id=file_id, status=self.statuses[file_id])

    def _list(self, vector_store_id):
        self._raise_if_failing()
        return FakeStream(
            SimpleNamespace(id=fid, status=self.statuses.get(fid), created_at=1600000000)
            for vs, fid in self.attached
            if vs == vector_store_id
        )

    async def _attached_file(self, file_id, vector_store_id):
        self._raise_if_failing()
        return SimpleNamespace(id=file_id, status=self.statuses.get(file_id))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        storage=StorageConfig(data_dir=str(tmp_path / "data")),
        chunking=ChunkingConfig(chunk_size=5, overlap=1),
        embedding=EmbeddingConfig(dimensions=DIMS),
        logging=LoggingConfig(level="DEBUG", file=""),
    )


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def hosted_client():
    return FakeHostedClient()


@pytest.fixture
def hosted_store(settings, hosted_client):
    return HostedVectorStore(settings.storage.vector_store_state_path, client=hosted_client)


@pytest.fixture
def context(settings, fake_embedder, fake_generator, hosted_store):
    ctx = AppContext(
        settings,
        embedder=fake_embedder,
        generator=fake_generator,
        hosted_store=hosted_store,
    )
    yield ctx
    ctx.close()


@pytest.fixture
def stream_factory():
    return FakeStream


@pytest.fixture
def fake_classes():
    """Expose the stand-in classes to tests that need custom instances."""
    return {"embedder": FakeEmbedder, "generator": FakeGenerator, "hosted_client": FakeHostedClient}
