"""
Retrieval — chunk storage, vector search, and context assembly.

This module wraps the vector store behind a clean interface so that
the query workflow never needs to know which DB is backing retrieval.

Public surface
--------------
- :class:`SemanticRetriever` — query embedding, search and context formatting.
- :class:`VectorStoreBase` — abstract backend (subclass for other stores).
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`ChunkRecord`, :class:`SearchResult`, :class:`DocumentSummary`,
  :class:`DocumentDetails`, :class:`MetadataFilter` — data models.
"""

from docrag.retrieval.base import VectorStoreBase
from docrag.retrieval.models import (
    ChunkRecord,
    DocumentDetails,
    DocumentSummary,
    MetadataFilter,
    SearchResult,
    StoreStats,
    validate_document_id,
)
from docrag.retrieval.retriever import SearchOutcome, SemanticRetriever, build_context, build_sources

__all__ = [
    "ChromaVectorStore",
    "ChunkRecord",
    "DocumentDetails",
    "DocumentSummary",
    "MetadataFilter",
    "SearchOutcome",
    "SearchResult",
    "SemanticRetriever",
    "StoreStats",
    "VectorStoreBase",
    "build_context",
    "build_sources",
    "validate_document_id",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from docrag.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
