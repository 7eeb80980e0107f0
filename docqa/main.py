"""
docqa - CLI Entry Point
------------------------
Typer commands over the same pipelines the API server uses.

Usage:
    python -m docqa.main ingest notes.txt report.txt   # chunk, embed, index
    python -m docqa.main ask "What changed in Q3?"      # grounded answer
    python -m docqa.main ask "..." --stream             # token-by-token
    python -m docqa.main ask "..." --server http://localhost:8000
    python -m docqa.main documents                      # what is indexed
    python -m docqa.main status                         # index/store consistency
    python -m docqa.main reindex                        # re-embed chunks the index lost
    python -m docqa.main store                          # create / show the hosted vector store
    python -m docqa.main store-ingest guide.md          # upload to the hosted store
    python -m docqa.main store-files                    # hosted files + indexing status
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import orjson
import typer
from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from docqa.config import load_settings
from docqa.context import AppContext
from docqa.errors import BatchAbortedError, DocQAError
from docqa.utils.logger import setup_logger

app = typer.Typer(
    name="docqa",
    help="Document Q&A over a local FAISS index with cited answers",
    add_completion=False,
)
console = Console()


# --- Helpers ------------------------------------------------------------------

def _open_context(config: Optional[str]) -> AppContext:
    settings = load_settings(config)
    setup_logger(settings.logging.level, settings.logging.file)
    return AppContext(settings)


def _print_json(data: dict) -> None:
    console.print_json(orjson.dumps(data).decode())


ConfigOption = typer.Option(None, "--config", "-c", help="Path to config YAML")


# --- Commands -----------------------------------------------------------------

@app.command()
def ingest(
    paths: list[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Text files to ingest"),
    config: Optional[str] = ConfigOption,
    json_out: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Chunk, embed and index one or more text files as a single batch."""
    from docqa.ingestion.pipeline import IngestionPipeline, load_source_files

    context = _open_context(config)
    try:
        report = IngestionPipeline(context).ingest(load_source_files(paths))
    except BatchAbortedError as exc:
        console.print(f"[red]Batch aborted:[/red] {exc}")
        if exc.report is not None:
            _print_json(exc.report.to_dict())
        raise typer.Exit(1)
    except DocQAError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    finally:
        context.close()

    if json_out:
        _print_json(report.to_dict())
        return

    colour = {"complete": "green", "partial": "yellow", "failed": "red"}[report.status]
    console.print(f"[{colour}]Ingestion {report.status}[/{colour}] | {report.total_chunks} chunks")
    for f in report.files:
        console.print(f"  [green][OK][/green] {f.file_name:40s} {f.chunk_count:5d} chunks")
    for f in report.failed:
        console.print(f"  [red][FAIL][/red] {f.file_name:40s} {f.error}")
    for name in report.skipped:
        console.print(f"  [dim][SKIP] {name} (empty)[/dim]")
    if report.flush_error:
        console.print(f"[red]Index not saved:[/red] {report.flush_error}")
    if report.status != "complete":
        raise typer.Exit(1)


@app.command()
def ask(
    query: str = typer.Argument(..., help="Question to answer"),
    top_k: Optional[int] = typer.Option(None, "--top-k", help="Chunks retrieved as context [default: query.top_k]"),
    stream: bool = typer.Option(False, "--stream", help="Print the answer as it is generated"),
    json_out: bool = typer.Option(False, "--json", help="Print result as JSON (non-streaming only)"),
    server: Optional[str] = typer.Option(None, "--server", help="Query a running docqa server instead"),
    config: Optional[str] = ConfigOption,
) -> None:
    """Answer a question from the indexed documents."""
    if server:
        if top_k is None:
            top_k = load_settings(config).query.top_k
        _ask_remote(server, query, top_k)
        return

    from docqa.serving.pipeline import QueryPipeline

    context = _open_context(config)
    if top_k is None:
        top_k = context.settings.query.top_k
    pipeline = QueryPipeline(context)
    try:
        if stream:
            asyncio.run(_print_local_stream(pipeline, query, top_k))
            return
        with console.status("[cyan]Thinking...[/cyan]"):
            result = pipeline.query(query, top_k=top_k)
    except DocQAError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    finally:
        context.close()

    if json_out:
        _print_json(result.to_dict())
        return

    console.print()
    console.print(
        Panel(Markdown(result.answer), title="[bold green]Answer[/bold green]", border_style="green")
    )
    _print_sources([s.model_dump() for s in result.sources])
    console.print(
        f"[dim]retrieve={result.retrieval_ms:.0f}ms  generate={result.generation_ms:.0f}ms  |  "
        f"tokens: embedding={result.usage.embedding_tokens} "
        f"completion={result.usage.completion_tokens}[/dim]\n"
    )


async def _print_local_stream(pipeline, query: str, top_k: int) -> None:
    async for event in pipeline.stream(query, top_k=top_k):
        _print_stream_record(event.model_dump(mode="json"))


def _ask_remote(server: str, query: str, top_k: int) -> None:
    from docqa.client import stream_query

    try:
        for record in stream_query(server, query, top_k=top_k):
            _print_stream_record(record)
    except DocQAError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)


def _print_stream_record(record: dict) -> None:
    kind = record.get("type")
    if kind == "text":
        console.print(record.get("delta", ""), end="", markup=False, highlight=False)
    elif kind == "sources":
        console.print()
        _print_sources(record.get("sources", []))
        _print_citations(record.get("citations_summary", []))
    elif kind == "summary":
        console.print()
        _print_citations(record.get("citations_summary", []))
    elif kind == "error":
        console.print(f"\n[red]Error:[/red] {record.get('error')}")
        raise typer.Exit(1)


def _print_sources(sources: list[dict]) -> None:
    if not sources:
        return
    table = Table("No.", "Document", "Chunk", "Distance", box=box.SIMPLE, header_style="bold dim")
    for i, source in enumerate(sources, start=1):
        name = source["document_name"]
        table.add_row(
            str(i),
            name[:55] + ("..." if len(name) > 55 else ""),
            str(source["chunk_index"]),
            f"{source['distance']:.4f}",
        )
    console.print(table)


def _print_citations(citations: list[dict]) -> None:
    if not citations:
        return
    cited = ", ".join(f"{c['filename']} x{c['count']}" for c in citations)
    console.print(f"[dim]Cited: {cited}[/dim]")


@app.command()
def documents(
    config: Optional[str] = ConfigOption,
    json_out: bool = typer.Option(False, "--json", help="Print as JSON"),
) -> None:
    """List indexed documents with chunk counts."""
    context = _open_context(config)
    try:
        docs = context.store.list_documents()
        total_vectors = context.index.size()
    finally:
        context.close()

    stats = {
        "total_documents": len(docs),
        "total_chunks": sum(d.total_chunks for d in docs),
        "total_vectors": total_vectors,
    }
    if json_out:
        _print_json({"documents": [d.model_dump(mode="json") for d in docs], "stats": stats})
        return

    table = Table("Document", "Chunks", "Created (UTC)", box=box.SIMPLE, header_style="bold dim")
    for doc in docs:
        table.add_row(doc.document_name, str(doc.total_chunks), doc.created_at.strftime("%Y-%m-%d %H:%M:%S"))
    console.print(table)
    console.print(
        f"  Documents : {stats['total_documents']}\n"
        f"  Chunks    : {stats['total_chunks']}\n"
        f"  Vectors   : {stats['total_vectors']}"
    )


@app.command()
def status(config: Optional[str] = ConfigOption) -> None:
    """Compare FAISS vector count with stored chunks; exit 1 if they diverge."""
    context = _open_context(config)
    try:
        report = context.check_consistency()
    finally:
        context.close()

    console.print()
    console.print("[bold]Index / store consistency[/bold]")
    console.print(f"  Vectors in index : {report.index_size}")
    console.print(f"  Next chunk id    : {report.next_free_id}")
    if report.consistent:
        console.print("  Status           : [green]consistent[/green]")
        return
    console.print("  Status           : [red]inconsistent[/red]")
    if report.missing_vectors:
        console.print(
            f"  [yellow]{report.missing_vectors} stored chunks have no vector; "
            f"run `docqa reindex` to re-embed them.[/yellow]"
        )
    else:
        console.print(
            "  [yellow]Index holds vectors with no stored chunk; "
            "run `docqa reindex --full` to rebuild it.[/yellow]"
        )
    raise typer.Exit(1)


@app.command()
def reindex(
    full: bool = typer.Option(False, "--full", help="Re-embed every stored chunk and rebuild the index"),
    config: Optional[str] = ConfigOption,
) -> None:
    """Re-embed stored chunks that have no vector, so index and store line up again."""
    from docqa.ingestion.pipeline import IngestionPipeline

    context = _open_context(config)
    try:
        with console.status("[cyan]Re-embedding stored chunks...[/cyan]"):
            result = IngestionPipeline(context).reindex(full=full)
        report = context.check_consistency()
    except DocQAError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    finally:
        context.close()

    console.print(
        f"[green]Reindexed[/green] {result.appended} chunks from id {result.start_id} | "
        f"index now {report.index_size} vectors"
    )
    if not report.consistent:
        raise typer.Exit(1)


# --- Hosted vector store ------------------------------------------------------

@app.command()
def store(config: Optional[str] = ConfigOption) -> None:
    """Create the hosted OpenAI vector store, or show the one already saved."""
    context = _open_context(config)
    try:
        info = asyncio.run(context.hosted_store.ensure())
    except DocQAError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    finally:
        context.close()
    console.print(f"Vector store: [bold]{info['vector_store_id']}[/bold] ({info.get('name', '')})")


@app.command("store-ingest")
def store_ingest(
    paths: list[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Files to upload"),
    config: Optional[str] = ConfigOption,
) -> None:
    """Upload files to the hosted vector store; OpenAI indexes them in the background."""
    context = _open_context(config)

    async def _upload_all() -> list[dict]:
        hosted = context.hosted_store
        return [await hosted.upload(p.name, p.read_bytes()) for p in paths]

    try:
        uploaded = asyncio.run(_upload_all())
    except DocQAError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    finally:
        context.close()
    for item in uploaded:
        console.print(f"  [green][OK][/green] {item['file_name']:40s} {item['file_id']}")


@app.command("store-files")
def store_files(
    file_id: Optional[str] = typer.Argument(None, help="Show only this file"),
    config: Optional[str] = ConfigOption,
    json_out: bool = typer.Option(False, "--json", help="Print as JSON"),
) -> None:
    """List files attached to the hosted vector store with their indexing status."""
    context = _open_context(config)
    hosted = context.hosted_store
    try:
        if file_id:
            files = [asyncio.run(hosted.get_file(file_id))]
        else:
            files = asyncio.run(hosted.list_files())["files"]
    except DocQAError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)
    finally:
        context.close()

    if json_out:
        _print_json({"files": files, "vector_store_id": hosted.vector_store_id})
        return
    table = Table("File", "Name", "Status", box=box.SIMPLE, header_style="bold dim")
    for f in files:
        table.add_row(f["id"], f["filename"] or "file", f["status"])
    console.print(table)


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
