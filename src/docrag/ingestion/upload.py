"""Document ingestion with staged progress reporting.

:class:`DocumentIngestor` chunks, embeds and stores a document's text.
:class:`UploadController` wraps it for file uploads and turns the whole
pipeline into an ordered stream of :class:`UploadEvent` values:

=============  ===========
stage          percent
=============  ===========
reading        0 - 10
extracting     10 - 30
chunking       30 - 35
embedding      35 - 90
storing        90 - 100
complete       100
=============  ===========

A stream ends with exactly one terminal event: ``complete`` on success or
``error`` on failure.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import string
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from docrag.config import settings
from docrag.errors import InvalidInputError, PayloadTooLargeError, RAGError
from docrag.ingestion.chunker import chunk_text
from docrag.ingestion.embedder import Embedder
from docrag.ingestion.extractor import PlainTextExtractor, TextExtractor, get_mime_type, is_supported
from docrag.retrieval.base import VectorStoreBase
from docrag.retrieval.models import ChunkRecord
from docrag.schemas import CamelModel, UploadProgress, UploadStage

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 50
READ_CHUNK_BYTES = 64 * 1024

EMBEDDING_START = 35
EMBEDDING_SPAN = 55

SCANNED_WARNING = (
    "This file appears to be scanned or has minimal text content. Text extraction may be incomplete."
)

_ID_ALPHABET = string.digits + string.ascii_lowercase

ProgressCallback = Callable[[UploadProgress], None]


def new_document_id() -> str:
    """``doc_<epoch ms>_<6 random base-36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"doc_{int(time.time() * 1000)}_{suffix}"


def embedding_percent(current: int, total: int) -> int:
    if total <= 0:
        return EMBEDDING_START
    return EMBEDDING_START + (current * EMBEDDING_SPAN) // total


class IngestResult(CamelModel):
    document_id: str
    chunks: int


@dataclass
class UploadEvent:
    """One server-sent event: its name and JSON payload."""

    event: str
    data: dict[str, Any] = field(default_factory=dict)


class ProgressTracker:
    """Emits ``progress`` events whose percent never goes backwards."""

    def __init__(self, emit: Callable[[UploadEvent], None]) -> None:
        self._emit = emit
        self.percent = 0
        self.stage = UploadStage.READING

    def update(self, progress: UploadProgress) -> None:
        self.stage = progress.stage
        self.percent = max(self.percent, min(100, progress.percent))
        progress = progress.model_copy(update={"percent": self.percent})
        self._emit(UploadEvent("progress", progress.to_wire()))

    def __call__(self, stage: UploadStage, percent: int, **extra: Any) -> None:
        self.update(UploadProgress(stage=stage, percent=max(0, min(100, percent)), **extra))


class DocumentIngestor:
    """Chunk, embed and store one document.

    Parameters
    ----------
    store:
        Destination vector store.
    embedder:
        Embedding collaborator.
    chunk_size, chunk_overlap:
        Word-window parameters.
    batch_size:
        Chunks embedded per batch; progress is reported after each.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        *,
        chunk_size: int = settings.chunk_size,
        chunk_overlap: int = settings.chunk_overlap,
        batch_size: int = settings.embedding_batch_size,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.batch_size = batch_size

    async def add_document(
        self,
        text: str,
        *,
        name: str,
        source: Optional[str] = None,
        type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestResult:
        """Store *text* as a new document and return its id and chunk count.

        Raises
        ------
        InvalidInputError
            If *name* is empty or *text* yields no chunks.
        StoreError
            If the store rejects the write.
        """
        if not name or not name.strip():
            raise InvalidInputError("Document name must be a non-empty string")

        def report(stage: UploadStage, percent: int, **extra: Any) -> None:
            if on_progress is not None:
                on_progress(UploadProgress(stage=stage, percent=percent, **extra))

        document_id = new_document_id()

        report(UploadStage.CHUNKING, 30)
        chunks = chunk_text(text, self.chunk_size, self.chunk_overlap)
        if not chunks:
            raise InvalidInputError("Document text is empty")
        report(UploadStage.CHUNKING, 35, chunk_count=len(chunks))

        logger.info("Generating embeddings for %d chunks...", len(chunks))

        def on_batch(current: int, total: int) -> None:
            report(UploadStage.EMBEDDING, embedding_percent(current, total), current=current, total=total)

        report(UploadStage.EMBEDDING, EMBEDDING_START, current=0, total=len(chunks))
        vectors = await self.embedder.embed_batch(chunks, batch_size=self.batch_size, on_progress=on_batch)

        report(UploadStage.STORING, 90)
        timestamp = int(time.time() * 1000)
        rows = [
            ChunkRecord(
                id=f"{document_id}_{i}",
                text=chunk,
                vector=vector,
                document_id=document_id,
                document_name=name,
                chunk_index=i,
                timestamp=timestamp,
                source=source,
                type=type,
            )
            for i, (chunk, vector) in enumerate(zip(chunks, vectors))
        ]
        await self.store.add_documents(rows)
        logger.info("Added document %s with %d chunks", document_id, len(chunks))
        return IngestResult(document_id=document_id, chunks=len(chunks))


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


class UploadController:
    """Runs a file upload through extraction and ingestion as an event stream.

    Parameters
    ----------
    ingestor:
        Chunks, embeds and stores the extracted text.
    extractor:
        Turns raw bytes into text; plain-text formats by default.
    max_upload_bytes:
        Uploads larger than this fail during the reading stage.
    """

    def __init__(
        self,
        ingestor: DocumentIngestor,
        extractor: Optional[TextExtractor] = None,
        *,
        max_upload_bytes: int = settings.max_upload_bytes,
    ) -> None:
        self.ingestor = ingestor
        self.extractor = extractor or PlainTextExtractor()
        self.max_upload_bytes = max_upload_bytes

    async def stream(
        self,
        reader: AsyncReadable,
        *,
        filename: str,
        mime_type: Optional[str] = None,
        name: Optional[str] = None,
    ) -> AsyncIterator[UploadEvent]:
        """Yield upload events in order until the terminal event.

        Closing the iterator early cancels the ingestion task.
        """
        queue: asyncio.Queue[Optional[UploadEvent]] = asyncio.Queue()
        task = asyncio.ensure_future(self._run(queue, reader, filename, mime_type, name))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not task.done():
                logger.info("Upload of %s cancelled by client", filename)
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _read_all(self, reader: AsyncReadable) -> bytes:
        buffer = bytearray()
        while True:
            chunk = await reader.read(READ_CHUNK_BYTES)
            if not chunk:
                return bytes(buffer)
            buffer.extend(chunk)
            if len(buffer) > self.max_upload_bytes:
                raise PayloadTooLargeError(
                    f"File too large. Maximum size is {self.max_upload_bytes // (1024 * 1024)}MB"
                )

    async def _run(
        self,
        queue: asyncio.Queue[Optional[UploadEvent]],
        reader: AsyncReadable,
        filename: str,
        mime_type: Optional[str],
        name: Optional[str],
    ) -> None:
        progress = ProgressTracker(queue.put_nowait)
        display_name = name or filename
        try:
            progress(UploadStage.READING, 0)
            data = await self._read_all(reader)
            progress(UploadStage.READING, 10)

            progress(UploadStage.EXTRACTING, 10)
            mime = mime_type if is_supported(mime_type) else get_mime_type(filename)
            if not is_supported(mime):
                raise InvalidInputError(
                    f"Unsupported file type: {mime_type or 'unknown'}. Supported: TXT, MD, CSV, JSON, HTML"
                )
            extracted = await self.extractor.extract(data, mime, filename)
            for warning in extracted.warnings:
                logger.warning("Extraction warning for %s: %s", filename, warning)

            text = extracted.text.strip()
            if not text:
                raise InvalidInputError(
                    "No text could be extracted from this file. The document may be empty, scanned, or image-based."
                )
            if extracted.is_scanned or len(text) < MIN_CONTENT_LENGTH:
                queue.put_nowait(UploadEvent("warning", {"message": SCANNED_WARNING, "isScanned": True}))
            progress(UploadStage.EXTRACTING, 30)

            result = await self.ingestor.add_document(
                text,
                name=display_name,
                source=filename,
                type=mime,
                on_progress=progress.update,
            )

            progress(UploadStage.COMPLETE, 100)
            queue.put_nowait(
                UploadEvent("complete", {"documentId": result.document_id, "chunks": result.chunks, "name": display_name})
            )
        except RAGError as exc:
            logger.warning("Upload of %s failed during %s: %s", filename, progress.stage.value, exc.message)
            queue.put_nowait(UploadEvent("error", {"message": exc.message, "stage": progress.stage.value}))
        except Exception as exc:
            logger.exception("Upload of %s failed during %s", filename, progress.stage.value)
            queue.put_nowait(
                UploadEvent("error", {"message": f"Failed to process document: {exc}", "stage": progress.stage.value})
            )
        finally:
            queue.put_nowait(None)
