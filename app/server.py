"""
docqa - Web API Server
-----------------------
FastAPI server around the ingestion and query pipelines.

Endpoints:
  GET  /api/health              -> index/store consistency + config summary
  POST /api/ingest              -> multipart upload of one or more text files
  POST /api/query               -> grounded answer + ranked sources
  POST /api/query/stream        -> SSE: text deltas, then one `sources` event
  GET  /api/documents           -> per-document chunk counts + totals
  POST /api/reindex             -> re-embed stored chunks missing from the index
  POST /api/file-search/stream  -> SSE over the hosted OpenAI vector store
  GET  /api/vector-store        -> create or load the hosted vector store
  POST /api/vector-store/ingest -> upload one file and attach it to the store
  GET  /api/vector-store/files  -> attached files with filename + status
  GET  /api/vector-store/files/{id} -> one attached file's status

Run from the project root:
    uvicorn app.server:app --reload --port 8000

The data directory in config/config.yaml is relative to CWD.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field
from starlette.datastructures import UploadFile

from docqa.context import AppContext
from docqa.errors import (
    BatchAbortedError,
    ConsistencyError,
    InputError,
    StoreUnavailableError,
    UpstreamError,
)
from docqa.ingestion.pipeline import IngestionPipeline, SourceFile
from docqa.serving.events import ErrorEvent, StreamEvent
from docqa.serving.pipeline import QueryPipeline, validate_query
from docqa.utils.sse import SSE_HEADERS, encode_sse

NO_STORE = {"Cache-Control": "no-store"}


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class QueryRequest(BaseModel):
    query: str = ""
    top_k: int = Field(5, alias="topK")

    model_config = {"populate_by_name": True}


class FileSearchRequest(BaseModel):
    query: str = ""


class ReindexRequest(BaseModel):
    full: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return context


async def _sse_body(events: AsyncIterator[StreamEvent]) -> AsyncIterator[bytes]:
    """Encode stream events; any unexpected failure becomes one error record."""
    try:
        async for event in events:
            yield encode_sse(event.model_dump(mode="json"))
    except Exception as exc:
        logger.exception(f"[API] Stream failed: {exc}")
        yield encode_sse(ErrorEvent(error=str(exc)).model_dump())
    finally:
        await events.aclose()
        logger.debug("[API] Stream closed")


async def _read_uploads(request: Request) -> list[SourceFile]:
    form = await request.form()
    uploads = [f for f in form.getlist("files") if isinstance(f, UploadFile)]
    if not uploads:
        uploads = [f for f in form.getlist("file") if isinstance(f, UploadFile)]

    files = []
    for upload in uploads:
        raw = await upload.read()
        files.append(SourceFile(name=upload.filename or "upload.txt", text=raw.decode("utf-8", errors="replace")))
    return files


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the API.  Without `context`, one is created from config at startup
    and the consistency check runs before the first request.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = context is None
        if owned:
            from docqa.config import load_settings
            from docqa.utils.logger import setup_logger

            settings = load_settings()
            setup_logger(settings.logging.level, settings.logging.file)
            app.state.context = AppContext(settings)
        else:
            app.state.context = context

        report = app.state.context.check_consistency()
        logger.info(
            f"[Server] Ready | {report.index_size:,} vectors | "
            f"{report.next_free_id:,} chunks | consistent={report.consistent}"
        )
        yield
        if owned:
            app.state.context.close()
        app.state.context = None
        logger.info("[Server] Context released.")

    app = FastAPI(
        title="docqa API",
        description="Document Q&A over a FAISS index with cited answers",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error mapping --------------------------------------------------------

    @app.exception_handler(InputError)
    async def _input_error(request: Request, exc: InputError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(UpstreamError)
    async def _upstream_error(request: Request, exc: UpstreamError):
        return JSONResponse(status_code=502, content={"error": str(exc), "service": exc.service})

    @app.exception_handler(ConsistencyError)
    async def _consistency_error(request: Request, exc: ConsistencyError):
        return JSONResponse(
            status_code=409,
            content={
                "error": str(exc),
                "index_size": exc.index_size,
                "next_free_id": exc.next_free_id,
                "missing_ids": exc.missing_ids,
            },
        )

    @app.exception_handler(StoreUnavailableError)
    async def _store_error(request: Request, exc: StoreUnavailableError):
        return JSONResponse(status_code=503, content={"error": str(exc)})

    @app.exception_handler(BatchAbortedError)
    async def _batch_aborted(request: Request, exc: BatchAbortedError):
        content = {"error": str(exc)}
        if exc.report is not None:
            content["report"] = exc.report.to_dict()
        return JSONResponse(status_code=500, content=content)

    # --- Routes ---------------------------------------------------------------

    @app.get("/api/health")
    async def health(request: Request):
        context = _context(request)
        report = await run_in_threadpool(context.check_consistency)
        return {
            "status": "ok" if report.consistent else "inconsistent",
            **report.to_dict(),
            "embedding_model": context.settings.embedding.model,
            "generation_model": context.settings.generation.model,
            "file_search_enabled": bool(context.vector_store_id),
        }

    @app.post("/api/ingest")
    async def ingest(request: Request):
        context = _context(request)
        files = await _read_uploads(request)
        logger.info(f"[API] Ingest | {len(files)} file(s)")
        report = await run_in_threadpool(IngestionPipeline(context).ingest, files)
        return report.to_dict()

    @app.post("/api/query")
    async def query(request: Request, body: QueryRequest):
        context = _context(request)
        logger.info(f"[API] Query | top_k={body.top_k} | query={body.query[:80]!r}")
        result = await run_in_threadpool(QueryPipeline(context).query, body.query, body.top_k)
        return result.to_dict()

    @app.post("/api/query/stream")
    async def query_stream(request: Request, body: QueryRequest):
        context = _context(request)
        user_query = validate_query(body.query, body.top_k)
        logger.info(f"[API] Stream query | top_k={body.top_k} | query={user_query[:80]!r}")
        events = QueryPipeline(context).stream(user_query, body.top_k)
        return StreamingResponse(_sse_body(events), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.get("/api/documents")
    async def documents(request: Request):
        context = _context(request)
        docs = await run_in_threadpool(context.store.list_documents)
        return {
            "documents": [d.model_dump(mode="json") for d in docs],
            "stats": {
                "total_documents": len(docs),
                "total_chunks": sum(d.total_chunks for d in docs),
                "total_vectors": context.index.size(),
            },
        }

    @app.post("/api/reindex")
    async def reindex(request: Request, body: Optional[ReindexRequest] = None):
        context = _context(request)
        full = body.full if body is not None else False
        logger.info(f"[API] Reindex | full={full}")
        result = await run_in_threadpool(IngestionPipeline(context).reindex, full)
        report = await run_in_threadpool(context.check_consistency)
        return {**result.to_dict(), **report.to_dict()}

    # --- Hosted vector store --------------------------------------------------

    @app.get("/api/vector-store")
    async def vector_store(request: Request):
        return await _context(request).hosted_store.ensure()

    @app.post("/api/vector-store/ingest")
    async def vector_store_ingest(request: Request):
        context = _context(request)
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise InputError("Missing file")
        data = await upload.read()
        name = upload.filename or "upload.md"
        logger.info(f"[API] Vector store upload | {name} | {len(data)} bytes")
        return await context.hosted_store.upload(name, data, upload.content_type)

    @app.get("/api/vector-store/files")
    async def vector_store_files(request: Request):
        listing = await _context(request).hosted_store.list_files()
        return JSONResponse(listing, headers=NO_STORE)

    @app.get("/api/vector-store/files/{file_id}")
    async def vector_store_file(request: Request, file_id: str):
        status = await _context(request).hosted_store.get_file(file_id)
        return JSONResponse(status, headers=NO_STORE)

    @app.post("/api/file-search/stream")
    async def file_search_stream(request: Request, body: FileSearchRequest):
        context = _context(request)
        user_query = validate_query(body.query, 1)
        generator = context.file_search  # InputError when no vector store is configured
        logger.info(f"[API] File search | store={generator.vector_store_id} | query={user_query[:80]!r}")
        events = QueryPipeline(context).stream_file_search(user_query)
        return StreamingResponse(_sse_body(events), media_type="text/event-stream", headers=SSE_HEADERS)

    return app


app = create_app()
