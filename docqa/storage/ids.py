"""
Chunk id allocation.

Ids come from the durable chunk store (max id + 1), never from an in-memory
counter, so allocation picks up where it left off after a restart.  Callers
must hold the ingestion lock between reserve_range() and the insert, or two
batches could be handed the same block.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from docqa.storage.chunk_store import ChunkStore


class IdAllocator:
    def __init__(self, store: ChunkStore) -> None:
        self.store = store

    def next_id(self, session: Optional[Session] = None) -> int:
        return self.store.next_free_id(session=session)

    def reserve_range(self, n: int, session: Optional[Session] = None) -> int:
        """Return the first id of a contiguous block of `n` free ids."""
        if n < 0:
            raise ValueError(f"Cannot reserve a negative number of ids: {n}")
        return self.next_id(session=session)
