"""Semantic retriever — query embedding, metadata-aware search, context assembly.

This module is the retrieval entry point shared by the query workflow and
the search-only mode.  Search-only never calls a language model: it
returns the hits plus a formatted context block that can be pasted into
any assistant.

Usage::

    from docrag.retrieval.retriever import SemanticRetriever

    retriever = SemanticRetriever(store, embedder)
    outcome   = await retriever.search("How is the upload limit enforced?", top_k=5)
    print(outcome.context)
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from pydantic import Field

from docrag.config import settings
from docrag.errors import InvalidInputError
from docrag.ingestion.embedder import Embedder
from docrag.retrieval.base import VectorStoreBase
from docrag.retrieval.models import MetadataFilter
from docrag.schemas import CamelModel, RetrievedChunk, Source

logger = logging.getLogger(__name__)

NO_RESULTS_CONTEXT = "No relevant documents found."


def elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def build_context(chunks: list[RetrievedChunk]) -> str:
    """Context block handed to a responder, one attributed section per chunk."""
    return "\n\n---\n\n".join(
        f"[Source: {chunk.document_name}, Chunk {chunk.chunk_index}]\n{chunk.text}" for chunk in chunks
    )


def build_sources(chunks: list[RetrievedChunk]) -> list[Source]:
    return [chunk.to_source() for chunk in chunks]


def format_search_context(chunks: list[RetrievedChunk]) -> str:
    """Markdown context returned by search-only mode."""
    if not chunks:
        return NO_RESULTS_CONTEXT
    return "\n\n---\n\n".join(
        f"## Source: {chunk.document_name} (Chunk {chunk.chunk_index})\n\n{chunk.text}" for chunk in chunks
    )


class SearchTiming(CamelModel):
    embedding: int = 0
    search: int = 0
    total: int = 0


class SearchOutcome(CamelModel):
    context: str
    chunks: list[RetrievedChunk] = Field(default_factory=list)
    timing: SearchTiming = Field(default_factory=SearchTiming)


class SemanticRetriever:
    """High-level retriever over any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.
    embedder:
        Turns the query into a vector.
    default_k:
        Default number of results.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        *,
        default_k: int = settings.top_k,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.default_k = default_k

    async def embed_query(self, query: str) -> list[float]:
        if not query or not query.strip():
            raise InvalidInputError("Query must be a non-empty string")
        return await self._embedder.embed(query)

    async def search_by_embedding(
        self,
        embedding: list[float],
        *,
        limit: Optional[int] = None,
        document_id: Optional[str] = None,
    ) -> list[RetrievedChunk]:
        """Nearest chunks to *embedding*, optionally restricted to one document."""
        filters = [MetadataFilter.document(document_id)] if document_id else None
        hits = await self._store.search(embedding, limit=limit or self.default_k, filters=filters)
        return [hit.to_retrieved() for hit in hits]

    async def search(
        self,
        query: str,
        *,
        top_k: Optional[int] = None,
        document_id: Optional[str] = None,
    ) -> SearchOutcome:
        """Search-only mode: embed, search and format, with no model call.

        Parameters
        ----------
        query:
            Natural-language query string.
        top_k:
            Number of results (defaults to ``self.default_k``).
        document_id:
            Restrict the search to one document.

        Returns
        -------
        SearchOutcome
            Formatted context, the ranked chunks and per-stage timing in ms.
        """
        if document_id:
            MetadataFilter.document(document_id)
        timing = SearchTiming()
        start_total = time.perf_counter()
        logger.info("Searching: %r", query[:50])

        start = time.perf_counter()
        vector = await self.embed_query(query)
        timing.embedding = elapsed_ms(start)
        logger.debug("Embedding generated in %dms", timing.embedding)

        start = time.perf_counter()
        chunks = await self.search_by_embedding(vector, limit=top_k, document_id=document_id)
        timing.search = elapsed_ms(start)
        timing.total = elapsed_ms(start_total)
        logger.debug("Found %d chunks in %dms", len(chunks), timing.search)

        logger.info("Search completed in %dms", timing.total)
        return SearchOutcome(context=format_search_context(chunks), chunks=chunks, timing=timing)
