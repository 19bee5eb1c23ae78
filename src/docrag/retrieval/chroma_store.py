"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from enum import Enum
from typing import Any, Optional

import chromadb

from docrag.config import settings
from docrag.errors import InvalidInputError, RAGError, StoreError
from docrag.retrieval.base import VectorStoreBase, clamp_limit, validate_rows
from docrag.retrieval.models import (
    PREVIEW_LENGTH,
    ChunkPreview,
    ChunkRecord,
    DocumentDetails,
    DocumentSummary,
    MetadataFilter,
    SearchResult,
    StoredChunk,
    validate_document_id,
)

logger = logging.getLogger(__name__)


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        if f.field == "document_id":
            validate_document_id(f.value)
        clauses.append({f.field: {"$eq": f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _is_missing_collection(exc: Exception) -> bool:
    message = str(exc).lower()
    return "does not exist" in message or "not found" in message


def _is_existing_collection(exc: Exception) -> bool:
    return "already exists" in str(exc).lower()


def _store_error(message: str, exc: Exception) -> StoreError:
    """Log the backend failure and return an error safe to show users."""
    logger.error("%s: %r", message, exc)
    return StoreError(message)


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_LENGTH:
        return text
    return text[:PREVIEW_LENGTH] + "..."


class _InitState(str, Enum):
    UNINITIALISED = "uninitialised"
    CONNECTING = "connecting"
    READY = "ready"


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed chunk store.

    The client is created lazily on first use.  The collection itself is
    only created by the first write; until then reads return empty
    results instead of failing.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    client:
        A ready Chroma client.  When *None*, an ``HttpClient`` is built if
        *host* is set, otherwise a ``PersistentClient`` rooted at *path*.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    path:
        Directory of the local persistent store.
    page_size:
        Number of rows fetched per page when aggregating documents.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        client: Any = None,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        path: str = settings.chroma_path,
        page_size: int = settings.store_page_size,
    ) -> None:
        super().__init__(collection_name)
        self._host = host
        self._port = port
        self._path = path
        self._page_size = page_size
        self._client = client
        self._collection: Any = None
        self._state = _InitState.UNINITIALISED
        self._init_task: Optional[asyncio.Task] = None

    # -- lifecycle ------------------------------------------------------------

    @property
    def state(self) -> str:
        return self._state.value

    def _make_client(self) -> Any:
        if self._host:
            logger.info("Connecting to Chroma server at %s:%d", self._host, self._port)
            return chromadb.HttpClient(host=self._host, port=self._port)
        logger.info("Opening local Chroma store at %s", self._path)
        return chromadb.PersistentClient(path=self._path)

    def _open_collection(self) -> Any:
        try:
            return self._client.get_collection(self.collection_name, embedding_function=None)
        except Exception as exc:
            if _is_missing_collection(exc):
                return None
            raise

    async def _connect(self) -> None:
        if self._client is None:
            self._client = await asyncio.to_thread(self._make_client)
        self._collection = await asyncio.to_thread(self._open_collection)

    async def _ensure_ready(self) -> None:
        """Run the lazy initialisation once; concurrent callers share it."""
        if self._state is _InitState.READY:
            return
        if self._init_task is None:
            self._state = _InitState.CONNECTING
            self._init_task = asyncio.ensure_future(self._connect())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception as exc:
            if self._init_task is task:
                self._init_task = None
                self._state = _InitState.UNINITIALISED
            raise _store_error("Vector store is unavailable", exc) from exc
        self._init_task = None
        self._state = _InitState.READY

    async def _readable_collection(self) -> Any:
        await self._ensure_ready()
        if self._collection is None:
            self._collection = await asyncio.to_thread(self._open_collection)
        if self._collection is None:
            logger.warning("Collection %r does not exist yet; returning empty result", self.collection_name)
        return self._collection

    def _create_or_open(self) -> Any:
        try:
            return self._client.create_collection(self.collection_name, embedding_function=None)
        except Exception as exc:
            if not _is_existing_collection(exc):
                raise
            # Another writer created it first.
            logger.info("Collection %r was created concurrently; opening it", self.collection_name)
            return self._client.get_collection(self.collection_name, embedding_function=None)

    async def _writable_collection(self) -> Any:
        await self._ensure_ready()
        if self._collection is None:
            self._collection = await asyncio.to_thread(self._create_or_open)
        return self._collection

    # -- writes ---------------------------------------------------------------

    async def add_documents(self, rows: list[ChunkRecord]) -> None:
        validate_rows(rows)
        try:
            collection = await self._writable_collection()
            await asyncio.to_thread(
                collection.add,
                ids=[row.id for row in rows],
                embeddings=[row.vector for row in rows],
                documents=[row.text for row in rows],
                metadatas=[row.metadata() for row in rows],
            )
        except RAGError:
            raise
        except Exception as exc:
            raise _store_error("Failed to store document chunks", exc) from exc
        logger.debug("Stored %d chunks in %r", len(rows), self.collection_name)

    async def delete_document(self, document_id: str) -> None:
        where = _build_chroma_where([MetadataFilter.document(document_id)])
        collection = await self._readable_collection()
        if collection is None:
            return
        try:
            await asyncio.to_thread(collection.delete, where=where)
        except Exception as exc:
            raise _store_error(f"Failed to delete document {document_id}", exc) from exc
        logger.info("Deleted document %s", document_id)

    async def delete_all(self) -> None:
        await self._ensure_ready()
        try:
            await asyncio.to_thread(self._client.delete_collection, self.collection_name)
        except Exception as exc:
            if not _is_missing_collection(exc):
                raise _store_error("Failed to clear vector store", exc) from exc
        self._collection = None
        logger.info("Cleared collection %r", self.collection_name)

    # -- reads ----------------------------------------------------------------

    async def search(
        self,
        query_vector: list[float],
        *,
        limit: int = 5,
        filters: Optional[list[MetadataFilter]] = None,
    ) -> list[SearchResult]:
        if not query_vector:
            raise InvalidInputError("Query vector must be a non-empty array")
        where = _build_chroma_where(filters) if filters else None

        collection = await self._readable_collection()
        if collection is None:
            return []

        results = await asyncio.to_thread(
            collection.query,
            query_embeddings=[query_vector],
            n_results=clamp_limit(limit),
            where=where,
            include=["documents", "metadatas", "distances"],
        )

        ids = (results.get("ids") or [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        hits = [
            SearchResult.from_store(chunk_id, text, meta, distance=float(dist))
            for chunk_id, text, meta, dist in zip(ids, docs, metas, distances)
        ]
        hits.sort(key=lambda hit: hit.distance)
        return hits

    def _iter_pages(self, collection: Any, where: dict[str, Any] | None) -> Iterator[list[StoredChunk]]:
        offset = 0
        while True:
            page = collection.get(
                limit=self._page_size,
                offset=offset,
                where=where,
                include=["metadatas", "documents"],
            )
            ids = page.get("ids") or []
            if not ids:
                return
            docs = page.get("documents") or [None] * len(ids)
            metas = page.get("metadatas") or [None] * len(ids)
            yield [StoredChunk.from_store(i, d, m) for i, d, m in zip(ids, docs, metas)]
            if len(ids) < self._page_size:
                return
            offset += self._page_size

    async def _all_rows(self, where: dict[str, Any] | None = None) -> list[StoredChunk]:
        collection = await self._readable_collection()
        if collection is None:
            return []

        def _collect() -> list[StoredChunk]:
            rows: list[StoredChunk] = []
            for page in self._iter_pages(collection, where):
                rows.extend(page)
            return rows

        return await asyncio.to_thread(_collect)

    @staticmethod
    def _summarise(rows: list[StoredChunk]) -> list[DocumentSummary]:
        grouped: dict[str, DocumentSummary] = {}
        for row in rows:
            summary = grouped.get(row.document_id)
            if summary is None:
                grouped[row.document_id] = DocumentSummary(
                    document_id=row.document_id,
                    document_name=row.document_name,
                    chunk_count=1,
                    timestamp=row.timestamp,
                    source=row.source,
                    type=row.type,
                )
                continue
            summary.chunk_count += 1
            summary.timestamp = min(summary.timestamp, row.timestamp)
            summary.source = summary.source or row.source
            summary.type = summary.type or row.type
        # Newest documents first.
        return sorted(grouped.values(), key=lambda s: s.timestamp, reverse=True)

    async def get_document_summaries(self) -> list[DocumentSummary]:
        return self._summarise(await self._all_rows())

    async def get_document_details(self, document_id: str) -> Optional[DocumentDetails]:
        where = _build_chroma_where([MetadataFilter.document(document_id)])
        rows = await self._all_rows(where)
        if not rows:
            return None

        summary = self._summarise(rows)[0]
        rows.sort(key=lambda row: row.chunk_index)
        return DocumentDetails(
            **summary.model_dump(),
            chunks=[ChunkPreview(chunk_index=row.chunk_index, snippet=_preview(row.text)) for row in rows],
        )

    async def count_chunks(self) -> int:
        collection = await self._readable_collection()
        if collection is None:
            return 0
        return await asyncio.to_thread(collection.count)

    async def has_data(self) -> bool:
        return await self._readable_collection() is not None

    async def health_check(self) -> bool:
        try:
            await self._ensure_ready()
            await asyncio.to_thread(self._client.heartbeat)
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
