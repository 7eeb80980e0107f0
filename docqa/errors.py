"""
Error taxonomy shared by the ingestion and query pipelines.

InputError        -- caller mistakes, rejected before any state changes
UpstreamError     -- embedding / generation service failures
ConsistencyError  -- FAISS index and chunk store disagree
IndexPersistError -- vectors appended but the index file was not written
BatchAbortedError -- failure inside the ingestion critical section
"""
from __future__ import annotations

from typing import Any, Optional


class DocQAError(Exception):
    """Base class for all errors raised by docqa."""


class InputError(DocQAError):
    """Missing files, empty query text, or invalid chunking parameters."""


class UpstreamError(DocQAError):
    """The embedding or generation service failed."""

    def __init__(self, message: str, service: str = "openai") -> None:
        super().__init__(message)
        self.service = service


class ConsistencyError(DocQAError):
    """The vector index and the chunk store no longer line up."""

    def __init__(
        self,
        message: str,
        index_size: Optional[int] = None,
        next_free_id: Optional[int] = None,
        missing_ids: Optional[list[int]] = None,
    ) -> None:
        super().__init__(message)
        self.index_size = index_size
        self.next_free_id = next_free_id
        self.missing_ids = missing_ids or []


class DuplicateIdError(DocQAError):
    """A chunk with the same id already exists in the store."""


class StoreUnavailableError(DocQAError):
    """The chunk store could not be reached or written."""


class IndexPersistError(DocQAError):
    """Writing the FAISS index to disk failed."""


class BatchAbortedError(DocQAError):
    """
    An ingestion batch stopped part way through.

    `report` holds the files committed before the failure so callers can
    tell "nothing happened" apart from "partially happened".
    """

    def __init__(self, message: str, report: Any = None) -> None:
        super().__init__(message)
        self.report = report
