"""
docrag command-line interface
-----------------------------
Typer commands over :class:`~docrag.service.RAGService`.

Usage:
    docrag add ./docs/readme.md               # Chunk, embed and store a file
    docrag query "How do I configure it?"     # Ask a question
    docrag query "How does X work?" --compress
    docrag list                               # Stored documents
    docrag delete doc_1700000000000_ab12cd    # Remove one document
    docrag status                             # Embedding model, store and responders
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from docrag.config import settings
from docrag.errors import RAGError
from docrag.ingestion.extractor import get_mime_type
from docrag.service import QueryResult, RAGService

app = typer.Typer(
    name="docrag",
    help="Ask questions answered from your own documents.",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


def get_service() -> RAGService:
    return RAGService.from_settings()


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro*, turning domain errors into a one-line message and exit code 1."""
    try:
        return asyncio.run(coro)
    except RAGError as exc:
        err_console.print(f"[red]Error:[/red] {escape(exc.message)}")
        raise typer.Exit(code=1) from exc


# --- Helpers ------------------------------------------------------------------


async def _read_and_add(service: RAGService, path: Path, name: str) -> Any:
    mime = get_mime_type(path.name) or "text/plain"
    extracted = await service.uploads.extractor.extract(path.read_bytes(), mime, path.name)
    for warning in extracted.warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    return await service.add_document(extracted.text, name=name, source=str(path), type=mime)


def _print_result(result: QueryResult, compress: bool) -> None:
    console.print("\n[bold]Answer:[/bold]")
    console.print(escape(result.answer))

    console.print("\n[bold]Sources:[/bold]")
    if not result.sources:
        console.print("  No sources found")
    for i, source in enumerate(result.sources, 1):
        console.print(f"  {i}. {escape(source.document_name)} (chunk {source.chunk_index})")
        console.print(f"     {escape(source.snippet)}", style="dim")

    timing = result.timing
    console.print("\n[bold]Timing:[/bold]")
    console.print(f"  Embedding:  {timing.embedding}ms")
    console.print(f"  Search:     {timing.search}ms")
    if compress and timing.filtering is not None:
        filter_tokens = result.sub_agent_result.tokens_used if result.sub_agent_result else 0
        console.print(f"  Filtering:  {timing.filtering}ms ({filter_tokens} tokens)")
    else:
        console.print("  Filtering:  skipped")
    console.print(f"  Response:   {timing.response}ms ({result.tokens_used.total} tokens)")
    console.print(f"  Total:      {timing.total}ms")

    console.print(f"\nResponder: {result.responder_used}")
    if result.responder_fallback and result.responder_fallback_message:
        console.print(f"[yellow]{escape(result.responder_fallback_message)}[/yellow]")


# --- Commands -----------------------------------------------------------------


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def add(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Text file to add"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name (defaults to the file name)"),
) -> None:
    """Add a document to the store."""
    service = get_service()
    display_name = name or file.name
    console.print(f"Adding document: {escape(display_name)}")
    result = _run(_read_and_add(service, file, display_name))

    console.print("\n[green]Document added successfully![/green]")
    console.print(f"  ID: {result.document_id}")
    console.print(f"  Chunks: {result.chunks}")


@app.command()
def query(
    question: list[str] = typer.Argument(..., help="The question to answer"),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", help="Chunks to retrieve"),
    compress: bool = typer.Option(
        False, "--compress", help="Filter and condense chunks with the relevance model first"
    ),
    document_id: Optional[str] = typer.Option(None, "--document", "-d", help="Only search this document"),
    responder: Optional[str] = typer.Option(None, "--responder", "-r", help="primary or secondary"),
) -> None:
    """Answer a question from the stored documents.

    \b
    Modes:
      default      retrieved chunks go straight to the responder
      --compress   the relevance model selects and condenses chunks first
    """
    text = " ".join(question)
    service = get_service()
    console.print(f'\nQuerying: "{escape(text)}"')
    console.print(f"Mode: {'relevance filter -> responder' if compress else 'direct to responder'}")

    result = _run(
        service.query(text, top_k=top_k, document_id=document_id, compress=compress, responder=responder)
    )
    _print_result(result, compress)


@app.command("list")
def list_documents() -> None:
    """List stored documents, newest first."""
    summaries = _run(get_service().document_summaries())
    if not summaries:
        console.print('No documents found. Use the "add" command to add documents.')
        return

    table = Table(title="Documents")
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Chunks", justify="right")
    for summary in summaries:
        table.add_row(summary.document_id, escape(summary.document_name), str(summary.chunk_count))
    console.print(table)
    console.print(f"Total: {len(summaries)} document(s)")


@app.command()
def delete(document_id: str = typer.Argument(..., help="ID of the document to delete")) -> None:
    """Delete a document and all of its chunks."""
    _run(get_service().delete_document(document_id))
    console.print(f"[green]Deleted document {document_id}[/green]")


@app.command()
def status() -> None:
    """Check the embedding model, vector store and responders."""
    service = get_service()

    async def _collect() -> tuple[dict[str, Any], dict[str, Any]]:
        return await service.is_ready(), await service.responder_status()

    ready, responders = _run(_collect())
    if ready["ready"]:
        console.print("System status: [green]READY[/green]")
    else:
        console.print("System status: [red]NOT READY[/red]")
        console.print(f"  Error: {escape(ready['error'])}")

    for kind in ("primary", "secondary"):
        state = "available" if responders[kind] else "unavailable"
        console.print(f"  Responder {kind}: {state}")
    console.print(f"  Default responder: {responders['default']}")

    if not ready["ready"]:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
