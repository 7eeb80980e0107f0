"""
Chunk Store
------------
Relational store for chunk text and provenance (SQLite by default).

The FAISS index only knows vectors by row number; this store maps those row
numbers back to document name, chunk position and text.  Lookups by id list
return rows in the order the ids were given, which is what keeps search
results in rank order after the join.

Persistence: data/metadata.db (table `chunks`, secondary index on document_name)
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional, Sequence

from loguru import logger
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docqa.errors import DuplicateIdError, StoreUnavailableError
from docqa.schemas import Chunk, DocumentAggregate
from docqa.storage.models import Base, ChunkRow


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_chunk(row: ChunkRow) -> Chunk:
    return Chunk(
        id=row.id,
        document_name=row.document_name,
        text=row.text,
        chunk_index=row.chunk_index,
        created_at=_as_utc(row.created_at),
    )


class ChunkStore:
    """
    SQLAlchemy-backed chunk metadata store.

    Usage:
        store = ChunkStore("sqlite:///data/metadata.db")
        with store.transaction() as session:
            store.insert_many(chunks, session=session)
        store.get_by_ids([5, 2, 5])
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        kwargs: dict = {"echo": echo}
        if database_url.startswith("sqlite"):
            # Handles are shared across FastAPI worker threads
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool

        try:
            self._engine = create_engine(database_url, **kwargs)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Cannot open chunk store {database_url}: {exc}") from exc

        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)
        logger.info(f"[ChunkStore] Opened {database_url}")

    # --- Transactions -----------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session that commits on clean exit and rolls back on any exception."""
        try:
            with self._session_factory.begin() as session:
                yield session
        except IntegrityError as exc:
            raise DuplicateIdError(f"Chunk id already stored: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Chunk store write failed: {exc}") from exc

    # --- Writes -----------------------------------------------------------------

    def insert(self, chunk: Chunk, session: Optional[Session] = None) -> None:
        self.insert_many([chunk], session=session)

    def insert_many(self, chunks: Sequence[Chunk], session: Optional[Session] = None) -> None:
        """
        Insert chunks in one transaction.

        With `session`, rows join the caller's transaction and are flushed
        immediately so id collisions surface before the caller moves on.
        """
        if session is None:
            with self.transaction() as own_session:
                self._add_rows(own_session, chunks)
            return
        self._add_rows(session, chunks)

    @staticmethod
    def _add_rows(session: Session, chunks: Sequence[Chunk]) -> None:
        session.add_all(
            ChunkRow(
                id=c.id,
                document_name=c.document_name,
                text=c.text,
                chunk_index=c.chunk_index,
                created_at=c.created_at,
            )
            for c in chunks
        )
        try:
            session.flush()
        except IntegrityError as exc:
            raise DuplicateIdError(
                f"Chunk id already stored (ids {chunks[0].id}..{chunks[-1].id})"
            ) from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Chunk store write failed: {exc}") from exc

    # --- Reads ------------------------------------------------------------------

    def get_by_ids(self, ids: Sequence[int]) -> list[Chunk]:
        """
        Fetch chunks in the order of `ids`.

        Repeated ids produce repeated chunks at the matching positions.
        Unknown ids are left out, so the result can be shorter than `ids`.
        """
        if not ids:
            return []
        wanted = {int(i) for i in ids}
        try:
            with self._session_factory() as session:
                rows = session.scalars(select(ChunkRow).where(ChunkRow.id.in_(wanted))).all()
                by_id = {row.id: _to_chunk(row) for row in rows}
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Chunk store read failed: {exc}") from exc

        return [by_id[int(i)] for i in ids if int(i) in by_id]

    def get_from(self, start_id: int) -> list[Chunk]:
        """Every chunk with id >= `start_id`, ascending by id."""
        stmt = select(ChunkRow).where(ChunkRow.id >= start_id).order_by(ChunkRow.id)
        try:
            with self._session_factory() as session:
                return [_to_chunk(row) for row in session.scalars(stmt).all()]
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Chunk store read failed: {exc}") from exc

    def list_documents(self) -> list[DocumentAggregate]:
        """Documents newest first, each with its chunk count and first timestamp."""
        first_seen = func.min(ChunkRow.created_at).label("created_at")
        stmt = (
            select(ChunkRow.document_name, func.count(ChunkRow.id), first_seen)
            .group_by(ChunkRow.document_name)
            .order_by(first_seen.desc(), ChunkRow.document_name)
        )
        try:
            with self._session_factory() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Chunk store read failed: {exc}") from exc

        return [
            DocumentAggregate(
                document_name=name,
                total_chunks=total,
                created_at=_as_utc(created_at),
            )
            for name, total, created_at in rows
        ]

    def next_free_id(self, session: Optional[Session] = None) -> int:
        """1 + the highest stored id, or 0 for an empty store."""
        stmt = select(func.coalesce(func.max(ChunkRow.id), -1) + 1)
        try:
            if session is not None:
                return int(session.scalar(stmt))
            with self._session_factory() as own_session:
                return int(own_session.scalar(stmt))
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Chunk store read failed: {exc}") from exc

    def count(self) -> int:
        try:
            with self._session_factory() as session:
                return int(session.scalar(select(func.count(ChunkRow.id))))
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Chunk store read failed: {exc}") from exc

    def close(self) -> None:
        self._engine.dispose()
