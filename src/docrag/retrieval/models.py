"""Domain models for stored chunks, search hits and document aggregates."""

from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import BaseModel, Field

from docrag.errors import InvalidInputError
from docrag.schemas import CamelModel, RetrievedChunk

DOCUMENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
PREVIEW_LENGTH = 200


def validate_document_id(document_id: str) -> str:
    """Reject document ids that are not plain identifiers.

    Ids end up inside store filter clauses, so only letters, digits,
    ``_`` and ``-`` are accepted.
    """
    if not isinstance(document_id, str) or not DOCUMENT_ID_PATTERN.match(document_id):
        raise InvalidInputError(f"Invalid document id: {document_id!r}")
    return document_id


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"document_id"``, ``"source"``).
    value:
        The value the field must equal.
    """

    field: str
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, value=value)

    @classmethod
    def document(cls, document_id: str) -> MetadataFilter:
        """Filter matching every chunk of one document (id is validated)."""
        return cls.equals("document_id", validate_document_id(document_id))


class StoredChunk(CamelModel):
    """A persisted chunk as returned by reads (no vector)."""

    id: str
    text: str
    document_id: str
    document_name: str
    chunk_index: int
    timestamp: int = Field(description="Insertion time, epoch milliseconds")
    source: Optional[str] = None
    type: Optional[str] = None

    def metadata(self) -> dict[str, Any]:
        """Flat metadata dict for the store (``None`` values dropped)."""
        meta: dict[str, Any] = {
            "document_id": self.document_id,
            "document_name": self.document_name,
            "chunk_index": self.chunk_index,
            "timestamp": self.timestamp,
        }
        if self.source is not None:
            meta["source"] = self.source
        if self.type is not None:
            meta["type"] = self.type
        return meta

    @classmethod
    def from_store(cls, chunk_id: str, text: Optional[str], meta: Optional[dict[str, Any]], **extra: Any) -> StoredChunk:
        meta = meta or {}
        return cls(
            id=chunk_id,
            text=text or "",
            document_id=str(meta.get("document_id", "")),
            document_name=str(meta.get("document_name", "")),
            chunk_index=int(meta.get("chunk_index", 0)),
            timestamp=int(meta.get("timestamp", 0)),
            source=meta.get("source"),
            type=meta.get("type"),
            **extra,
        )


class ChunkRecord(StoredChunk):
    """A chunk plus its embedding, ready to be written."""

    vector: list[float]


class SearchResult(StoredChunk):
    """A stored chunk with its distance to the query (smaller is closer)."""

    distance: float

    def to_retrieved(self) -> RetrievedChunk:
        return RetrievedChunk(
            text=self.text,
            document_id=self.document_id,
            document_name=self.document_name,
            chunk_index=self.chunk_index,
            score=self.distance,
        )


class ChunkPreview(CamelModel):
    chunk_index: int
    snippet: str


class DocumentSummary(CamelModel):
    """A document aggregated from its chunks."""

    document_id: str
    document_name: str
    chunk_count: int
    timestamp: int
    source: Optional[str] = None
    type: Optional[str] = None


class DocumentDetails(DocumentSummary):
    chunks: list[ChunkPreview] = Field(default_factory=list)


class StoreStats(CamelModel):
    document_count: int = 0
    chunk_count: int = 0
    table_exists: bool = False
