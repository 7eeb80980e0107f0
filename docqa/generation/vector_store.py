"""
Hosted Vector Store
--------------------
Management side of the OpenAI-hosted vector store that the file-search
stream answers from:

    ensure()           -> create the store once, or load the saved id
    upload()           -> files.create, then attach to the store
    list_files()       -> every attached file with filename and status
    get_file(file_id)  -> one attached file's indexing status

The store id is kept in data/openai-vs.json so every process (CLI, API
server) talks to the same store.  generation.vector_store_id, when set,
takes precedence over the saved id and is never overwritten.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import orjson
from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from docqa.errors import InputError, UpstreamError

STORE_NAME = "docqa"
DEFAULT_CONTENT_TYPE = "text/markdown"


def read_saved_store(path: Path) -> dict:
    """The saved {"vector_store_id", "name"} payload, or {} if there is none."""
    path = Path(path)
    if not path.exists():
        return {}
    try:
        data = orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as exc:
        logger.warning(f"[VectorStore] Ignoring unreadable {path}: {exc}")
        return {}
    return data if isinstance(data, dict) else {}


class HostedVectorStore:
    """
    Usage:
        store = HostedVectorStore(Path("data/openai-vs.json"))
        info = await store.ensure()            # {"vector_store_id": ..., "name": ...}
        await store.upload("notes.md", data)
        await store.list_files()
    """

    def __init__(
        self,
        state_path: Path,
        name: str = STORE_NAME,
        vector_store_id: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Any = None,
    ) -> None:
        self.state_path = Path(state_path)
        self.name = name
        self._configured_id = vector_store_id
        self._client = client if client is not None else AsyncOpenAI(timeout=timeout)

    # --- Saved state ----------------------------------------------------------

    def read_state(self) -> dict:
        return read_saved_store(self.state_path)

    def _write_state(self, payload: dict) -> None:
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        self.state_path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))

    @property
    def vector_store_id(self) -> Optional[str]:
        return self._configured_id or self.read_state().get("vector_store_id")

    def _require_id(self) -> str:
        vector_store_id = self.vector_store_id
        if not vector_store_id:
            raise InputError("Vector store not initialized")
        return vector_store_id

    # --- Operations -----------------------------------------------------------

    async def ensure(self) -> dict:
        """Return the store in use, creating and saving a new one if needed."""
        if self._configured_id:
            return {"vector_store_id": self._configured_id, "name": self.name}

        existing = self.read_state()
        if existing.get("vector_store_id"):
            return existing

        try:
            created = await self._client.vector_stores.create(name=self.name)
        except OpenAIError as exc:
            raise UpstreamError(f"Vector store creation failed: {exc}", service="vector_store") from exc

        payload = {"vector_store_id": created.id, "name": created.name or self.name}
        self._write_state(payload)
        logger.info(f"[VectorStore] Created {created.id} -> {self.state_path}")
        return payload

    async def upload(self, file_name: str, data: bytes, content_type: Optional[str] = None) -> dict:
        """Upload one file and attach it to the store; indexing continues server side."""
        vector_store_id = self._require_id()
        try:
            uploaded = await self._client.files.create(
                file=(file_name, data, content_type or DEFAULT_CONTENT_TYPE),
                purpose="assistants",
            )
            await self._client.vector_stores.files.create(
                vector_store_id=vector_store_id,
                file_id=uploaded.id,
            )
        except OpenAIError as exc:
            raise UpstreamError(f"Upload of {file_name} failed: {exc}", service="vector_store") from exc

        logger.info(f"[VectorStore] {file_name} -> {uploaded.id} attached to {vector_store_id}")
        return {"file_id": uploaded.id, "file_name": file_name, "vector_store_id": vector_store_id}

    async def list_files(self) -> dict:
        """Attached files as {id, filename, created_at, status}; empty before ensure()."""
        vector_store_id = self.vector_store_id
        if not vector_store_id:
            return {"files": [], "vector_store_id": None}

        try:
            attached = [f async for f in self._client.vector_stores.files.list(vector_store_id=vector_store_id)]
        except OpenAIError as exc:
            raise UpstreamError(f"Listing vector store files failed: {exc}", service="vector_store") from exc

        files = await asyncio.gather(*(self._describe(f) for f in attached))
        return {"files": list(files), "vector_store_id": vector_store_id}

    async def get_file(self, file_id: str) -> dict:
        """Indexing status of one attached file."""
        vector_store_id = self.vector_store_id
        if not vector_store_id or not file_id:
            raise InputError("Missing ids")

        try:
            attached = await self._client.vector_stores.files.retrieve(
                file_id, vector_store_id=vector_store_id
            )
        except OpenAIError as exc:
            raise UpstreamError(f"Retrieving file {file_id} failed: {exc}", service="vector_store") from exc

        filename, created_at = await self._file_details(file_id)
        return {
            "id": file_id,
            "status": getattr(attached, "status", None) or "unknown",
            "filename": filename,
            "created_at": created_at,
        }

    # --- Helpers --------------------------------------------------------------

    async def _describe(self, attached: Any) -> dict:
        filename, created_at = await self._file_details(attached.id)
        return {
            "id": attached.id,
            "filename": filename or "file",
            "created_at": created_at if created_at is not None else getattr(attached, "created_at", None),
            "status": getattr(attached, "status", None) or "unknown",
        }

    async def _file_details(self, file_id: str) -> tuple[Optional[str], Optional[int]]:
        # Filenames are cosmetic; a failed lookup leaves them blank
        try:
            file = await self._client.files.retrieve(file_id)
        except Exception as exc:
            logger.warning(f"[VectorStore] Could not resolve file {file_id}: {exc}")
            return None, None
        return file.filename, getattr(file, "created_at", None)
