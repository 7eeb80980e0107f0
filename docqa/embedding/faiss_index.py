"""
FAISS Vector Index
-------------------
Wraps faiss.IndexFlatL2 (exact squared-L2 search) behind a small
append / search / persist interface.

A vector's id is its row in the index: the n-th vector ever appended is id n.
The chunk store uses the same ids, so the ingestion pipeline must append
vectors in exactly the order it allocated chunk ids.

Persistence:
  - FAISS index -> data/faiss.index (written whole, replaced atomically)
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence

import faiss
import numpy as np
from loguru import logger

from docqa.errors import IndexPersistError

DIMENSIONS = 1536          # text-embedding-3-small native dimensions


class VectorIndex:
    """
    Append-only flat L2 index persisted as a single file.

    Usage:
        index = VectorIndex(Path("data/faiss.index"))
        index.load()
        index.append(vectors)
        ids, distances = index.search(query_vec, k=5)
        index.persist()
    """

    def __init__(self, path: Path, dimensions: int = DIMENSIONS) -> None:
        self.path = Path(path)
        self.dimensions = dimensions
        self.faiss_index: faiss.IndexFlatL2 = faiss.IndexFlatL2(dimensions)

    # --- Build ----------------------------------------------------------------

    def append(self, vectors: Sequence[Sequence[float]] | np.ndarray) -> None:
        """Add vectors at the end of the index, in the given order."""
        matrix = np.ascontiguousarray(vectors, dtype=np.float32)
        if matrix.size == 0:
            return
        if matrix.ndim != 2 or matrix.shape[1] != self.dimensions:
            raise ValueError(
                f"Expected vectors of shape (n, {self.dimensions}), got {matrix.shape}"
            )
        start = self.faiss_index.ntotal
        self.faiss_index.add(matrix)
        logger.debug(
            f"[VectorIndex] Appended {len(matrix)} vectors at rows "
            f"{start}..{self.faiss_index.ntotal - 1}"
        )

    def reset(self) -> None:
        """Drop every vector; the file on disk is untouched until persist()."""
        self.faiss_index = faiss.IndexFlatL2(self.dimensions)
        logger.info("[VectorIndex] Cleared in-memory index")

    # --- Search ---------------------------------------------------------------

    def search(self, query_vec: Sequence[float] | np.ndarray, k: int = 5) -> tuple[list[int], list[float]]:
        """
        Nearest neighbours of `query_vec`.

        Returns:
            (ids, distances), both ascending by distance and of length
            min(k, size()).  An empty index yields two empty lists.
        """
        actual_k = min(k, self.size())
        if actual_k <= 0:
            return [], []

        qv = np.ascontiguousarray(np.asarray(query_vec, dtype=np.float32).reshape(1, -1))
        if qv.shape[1] != self.dimensions:
            raise ValueError(f"Query vector has {qv.shape[1]} dims, index has {self.dimensions}")

        distances, labels = self.faiss_index.search(qv, actual_k)
        ids: list[int] = []
        dists: list[float] = []
        for dist, idx in zip(distances[0], labels[0]):
            if idx >= 0:
                ids.append(int(idx))
                dists.append(float(dist))
        return ids, dists

    def size(self) -> int:
        return int(self.faiss_index.ntotal)

    # --- Persistence ----------------------------------------------------------

    def persist(self) -> None:
        """Write the whole index to disk; the previous file is replaced atomically."""
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            faiss.write_index(self.faiss_index, str(tmp_path))
            os.replace(tmp_path, self.path)
        except (OSError, RuntimeError) as exc:
            raise IndexPersistError(f"Failed to write FAISS index to {self.path}: {exc}") from exc
        logger.info(f"[VectorIndex] {self.size()} vectors saved -> {self.path}")

    def load(self) -> None:
        """Replace in-memory state with the file on disk (or an empty index)."""
        if not self.path.exists():
            self.faiss_index = faiss.IndexFlatL2(self.dimensions)
            logger.info(f"[VectorIndex] No index at {self.path}; starting empty")
            return

        loaded = faiss.read_index(str(self.path))
        if loaded.d != self.dimensions:
            raise ValueError(
                f"Index at {self.path} has {loaded.d} dims, configured for {self.dimensions}"
            )
        self.faiss_index = loaded
        logger.info(f"[VectorIndex] Loaded: {self.size()} vectors from {self.path}")

    @property
    def is_built(self) -> bool:
        return self.faiss_index.ntotal > 0
