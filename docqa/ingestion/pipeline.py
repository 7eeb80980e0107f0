"""
Ingestion Pipeline - Chunk, Embed, Store, Index
-------------------------------------------------
Per file:

    Received -> Chunked -> Embedded -> Persisted(rows) -> Persisted(vectors)

and once per batch, after every file:

    Flushed (FAISS index written to disk)

Files are independent.  A file that chunks to nothing is skipped; a file
whose embedding call fails is recorded under `failed` and the batch moves
on.  Embedding happens outside the ingestion lock; only the critical
section (reserve ids -> insert rows -> append vectors) and the flush hold it.

Any other failure, inside the critical section or not, aborts the whole
batch with BatchAbortedError after flushing whatever earlier files already
committed.

reindex() is the repair path when the store holds chunks the index lost.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np
from loguru import logger

from docqa.chunking.chunker import chunk_text
from docqa.context import AppContext
from docqa.errors import BatchAbortedError, ConsistencyError, IndexPersistError, InputError, UpstreamError
from docqa.schemas import Chunk, utcnow


@dataclass
class SourceFile:
    name: str
    text: str


def load_source_files(paths: list[str | Path]) -> list[SourceFile]:
    """Read text files from disk, keyed by their base name."""
    files = []
    for path in paths:
        p = Path(path)
        files.append(SourceFile(name=p.name, text=p.read_text(encoding="utf-8", errors="replace")))
    return files


@dataclass
class FileResult:
    file_name: str
    chunk_count: int
    document_id: str
    first_id: int


@dataclass
class FailedFile:
    file_name: str
    error: str


@dataclass
class IngestReport:
    """
    Outcome of one ingestion batch.

    status:
      complete -- every non-empty file committed and the index was flushed
      partial  -- some files committed, but a file failed or the flush failed
      failed   -- nothing was committed
    """

    files: list[FileResult] = field(default_factory=list)
    failed: list[FailedFile] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    flushed: bool = False
    flush_error: Optional[str] = None
    aborted: bool = False

    @property
    def total_chunks(self) -> int:
        return sum(f.chunk_count for f in self.files)

    @property
    def status(self) -> str:
        if not self.files:
            return "failed" if (self.failed or self.aborted) else "complete"
        if self.failed or self.aborted or not self.flushed:
            return "partial"
        return "complete"

    def to_dict(self) -> dict:
        return {
            "success": self.status == "complete",
            "status": self.status,
            "files": [
                {
                    "file_name": f.file_name,
                    "chunk_count": f.chunk_count,
                    "document_id": f.document_id,
                }
                for f in self.files
            ],
            "failed": [{"file_name": f.file_name, "error": f.error} for f in self.failed],
            "skipped": self.skipped,
            "total_chunks": self.total_chunks,
            "flushed": self.flushed,
            "flush_error": self.flush_error,
        }


@dataclass
class ReindexResult:
    """Outcome of rebuilding index rows from the chunk store."""

    start_id: int
    appended: int
    full: bool = False

    def to_dict(self) -> dict:
        return {"start_id": self.start_id, "appended": self.appended, "full": self.full}


class IngestionPipeline:
    """
    Usage:
        pipeline = IngestionPipeline(context)
        report = pipeline.ingest([SourceFile("notes.txt", text)])
    """

    def __init__(self, context: AppContext) -> None:
        self.context = context
        self.chunk_size = context.settings.chunking.chunk_size
        self.overlap = context.settings.chunking.overlap

    def ingest(self, files: list[SourceFile]) -> IngestReport:
        if not files:
            raise InputError("Missing file(s)")

        report = IngestReport()
        logger.info(f"[Ingest] Batch of {len(files)} file(s)")

        for source in files:
            try:
                chunks = chunk_text(source.text, self.chunk_size, self.overlap)
                if not chunks:
                    logger.warning(f"[Ingest] Skipping {source.name}: no words")
                    report.skipped.append(source.name)
                    continue

                try:
                    batch = self.context.embedder.embed_texts(chunks)
                except UpstreamError as exc:
                    logger.error(f"[Ingest] Embedding failed for {source.name}: {exc}")
                    report.failed.append(FailedFile(file_name=source.name, error=str(exc)))
                    continue

                result = self._commit(source.name, chunks, batch.vectors)
            except Exception as exc:
                raise self._abort(report, source.name, exc) from exc

            report.files.append(result)

        if report.files:
            self._flush(report)
        else:
            report.flushed = True

        logger.info(
            f"[Ingest] Batch {report.status} | {len(report.files)} committed | "
            f"{len(report.failed)} failed | {len(report.skipped)} skipped | "
            f"{report.total_chunks} chunks"
        )
        return report

    def reindex(self, full: bool = False) -> ReindexResult:
        """
        Re-embed stored chunks that have no vector and append them in id order.

        The chunk store is ground truth.  Normally only rows from index.size()
        upward are embedded; with `full` every stored chunk is embedded again
        and the index is rebuilt from scratch, which is the only way back from
        an index holding vectors with no chunk row.  Holds the ingestion lock
        throughout and persists the index before returning.

        Raises:
            ConsistencyError: index ahead of the store (without `full`), or
                stored ids with gaps that cannot map onto index rows.
        """
        store = self.context.store
        index = self.context.index

        with self.context.ingest_lock:
            start = 0 if full else index.size()
            next_free = store.next_free_id()
            if start > next_free:
                raise ConsistencyError(
                    f"Index has {start - next_free} vectors with no stored chunk; "
                    f"run a full reindex",
                    index_size=start,
                    next_free_id=next_free,
                )

            chunks = store.get_from(start)
            found = {c.id for c in chunks}
            missing = [i for i in range(start, next_free) if i not in found]
            if missing:
                raise ConsistencyError(
                    f"Stored chunk ids from {start} have {len(missing)} gap(s)",
                    index_size=index.size(),
                    next_free_id=next_free,
                    missing_ids=missing,
                )

            logger.info(f"[Ingest] Reindexing {len(chunks)} chunks from id {start} (full={full})")
            batch = self.context.embedder.embed_texts([c.text for c in chunks]) if chunks else None
            if full:
                index.reset()
            if batch is not None:
                index.append(batch.vectors)
            index.persist()

        logger.info(f"[Ingest] Reindex done: index holds {index.size()} vectors")
        return ReindexResult(start_id=start, appended=len(chunks), full=full)

    def _commit(self, name: str, chunks: list[str], vectors: np.ndarray) -> FileResult:
        """Reserve ids, insert rows and append vectors as one unit."""
        store = self.context.store
        index = self.context.index
        created_at = utcnow()

        with self.context.ingest_lock:
            with store.transaction() as session:
                start = self.context.ids.reserve_range(len(chunks), session=session)
                if index.size() != start:
                    raise ConsistencyError(
                        f"Index has {index.size()} vectors but next chunk id is {start}; "
                        f"run `docqa reindex` first",
                        index_size=index.size(),
                        next_free_id=start,
                    )
                store.insert_many(
                    [
                        Chunk(
                            id=start + i,
                            document_name=name,
                            text=text,
                            chunk_index=i,
                            created_at=created_at,
                        )
                        for i, text in enumerate(chunks)
                    ],
                    session=session,
                )
                logger.debug(f"[Ingest] {name}: rows {start}..{start + len(chunks) - 1} staged")
                # Rows commit only after the vectors are in
                index.append(vectors)

        logger.info(f"[Ingest] {name}: {len(chunks)} chunks committed at ids {start}+")
        return FileResult(
            file_name=name,
            chunk_count=len(chunks),
            document_id=f"{name}-{int(created_at.timestamp() * 1000)}",
            first_id=start,
        )

    def _abort(self, report: IngestReport, name: str, exc: Exception) -> BatchAbortedError:
        """Flush what already committed; the returned error carries the report."""
        logger.error(f"[Ingest] Aborting batch at {name}: {exc}")
        report.aborted = True
        report.failed.append(FailedFile(file_name=name, error=str(exc)))
        if report.files:
            self._flush(report)
        return BatchAbortedError(f"Ingestion aborted at {name}: {exc}", report=report)

    def _flush(self, report: IngestReport) -> None:
        with self.context.ingest_lock:
            try:
                self.context.index.persist()
            except IndexPersistError as exc:
                logger.error(f"[Ingest] {exc}")
                report.flush_error = str(exc)
                return
        report.flushed = True
