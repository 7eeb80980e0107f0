"""
Application context: the process-wide handles every operation needs.

One AppContext owns exactly one chunk store and one FAISS index, each opened
lazily on first use, plus the lock that serialises ingestion batches.  The
CLI and the API server each build one; tests build one per case.

Collaborators (embedder, generators) can be injected; otherwise they are
created from settings the first time they are needed.
"""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from docqa.config import Settings
from docqa.embedding.faiss_index import VectorIndex
from docqa.errors import InputError
from docqa.schemas import ConsistencyReport
from docqa.storage.chunk_store import ChunkStore
from docqa.storage.ids import IdAllocator


class AppContext:
    def __init__(
        self,
        settings: Settings,
        embedder: Any = None,
        generator: Any = None,
        file_search: Any = None,
        hosted_store: Any = None,
    ) -> None:
        self.settings = settings
        self.ingest_lock = threading.Lock()
        self._init_lock = threading.Lock()
        self._store: Optional[ChunkStore] = None
        self._index: Optional[VectorIndex] = None
        self._embedder = embedder
        self._generator = generator
        self._file_search = file_search
        self._hosted_store = hosted_store

    # --- Shared handles -------------------------------------------------------

    @property
    def store(self) -> ChunkStore:
        if self._store is None:
            with self._init_lock:
                if self._store is None:
                    Path(self.settings.storage.data_dir).mkdir(parents=True, exist_ok=True)
                    self._store = ChunkStore(self.settings.storage.database_url)
        return self._store

    @property
    def index(self) -> VectorIndex:
        if self._index is None:
            with self._init_lock:
                if self._index is None:
                    index = VectorIndex(
                        self.settings.storage.index_path,
                        dimensions=self.settings.embedding.dimensions,
                    )
                    index.load()
                    self._index = index
        return self._index

    @property
    def ids(self) -> IdAllocator:
        return IdAllocator(self.store)

    # --- External collaborators -----------------------------------------------

    @property
    def embedder(self):
        if self._embedder is None:
            from docqa.embedding.embedder import Embedder

            cfg = self.settings.embedding
            self._embedder = Embedder(
                model=cfg.model,
                dimensions=cfg.dimensions,
                batch_size=cfg.batch_size,
                timeout=self.settings.openai.timeout_s,
            )
        return self._embedder

    @property
    def generator(self):
        if self._generator is None:
            from docqa.generation.generator import RAGGenerator

            cfg = self.settings.generation
            self._generator = RAGGenerator(
                model=cfg.model,
                max_tokens=cfg.max_tokens,
                temperature=cfg.temperature,
                timeout=self.settings.openai.timeout_s,
            )
        return self._generator

    @property
    def hosted_store(self):
        if self._hosted_store is None:
            from docqa.generation.vector_store import HostedVectorStore

            cfg = self.settings.generation
            self._hosted_store = HostedVectorStore(
                state_path=self.settings.storage.vector_store_state_path,
                name=cfg.vector_store_name,
                vector_store_id=cfg.vector_store_id,
                timeout=self.settings.openai.timeout_s,
            )
        return self._hosted_store

    @property
    def vector_store_id(self) -> Optional[str]:
        """Configured hosted store id, else the one saved by `docqa store`."""
        from docqa.generation.vector_store import read_saved_store

        saved = read_saved_store(self.settings.storage.vector_store_state_path)
        return self.settings.generation.vector_store_id or saved.get("vector_store_id")

    @property
    def file_search(self):
        if self._file_search is None:
            vector_store_id = self.vector_store_id
            if not vector_store_id:
                raise InputError("Vector store not initialized: run `docqa store` or set generation.vector_store_id")
            from docqa.generation.file_search import FileSearchGenerator

            self._file_search = FileSearchGenerator(
                vector_store_id=vector_store_id,
                model=self.settings.generation.model,
                timeout=self.settings.openai.timeout_s,
            )
        return self._file_search

    # --- Reconciliation -------------------------------------------------------

    def check_consistency(self) -> ConsistencyReport:
        """
        Compare the index row count with the store's next free id.

        The store is ground truth.  A smaller index means vectors for stored
        chunks were lost (crash between commit and flush); a larger one means
        vectors exist with no chunk row.  Both are logged, never repaired
        silently; IngestionPipeline.reindex() is the explicit repair.
        """
        report = ConsistencyReport(
            index_size=self.index.size(),
            next_free_id=self.store.next_free_id(),
        )
        if report.index_size < report.next_free_id:
            logger.error(
                f"[Context] Index is missing {report.missing_vectors} vectors: "
                f"{report.index_size} vectors vs {report.next_free_id} stored chunks. "
                f"Run `docqa reindex` to re-embed them."
            )
        elif report.index_size > report.next_free_id:
            logger.error(
                f"[Context] Index has {report.index_size - report.next_free_id} vectors "
                f"with no stored chunk ({report.index_size} vs {report.next_free_id}). "
                f"Run `docqa reindex --full` to rebuild the index from the store."
            )
        return report

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None
        self._index = None
