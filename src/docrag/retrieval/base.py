"""Abstract base class for vector-store backends.

Adding a new backend only requires subclassing :class:`VectorStoreBase`
and implementing the abstract coroutines.  Document-level views are
derived from chunk rows, so no backend needs a separate document table.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from docrag.errors import InvalidInputError
from docrag.retrieval.models import (
    ChunkRecord,
    DocumentDetails,
    DocumentSummary,
    MetadataFilter,
    SearchResult,
    StoreStats,
)

MIN_SEARCH_LIMIT = 1
MAX_SEARCH_LIMIT = 1000


def clamp_limit(limit: int) -> int:
    return max(MIN_SEARCH_LIMIT, min(MAX_SEARCH_LIMIT, int(limit)))


def validate_rows(rows: list[ChunkRecord]) -> None:
    """Reject empty or incomplete rows before any I/O happens."""
    if not rows:
        raise InvalidInputError("Documents array cannot be empty")
    for row in rows:
        if not row.id or not row.text or not row.document_id or not row.document_name:
            raise InvalidInputError("Invalid document: missing required fields (id, vector, text, metadata)")
        if not row.vector:
            raise InvalidInputError("Invalid document: vector must be a non-empty array")


class VectorStoreBase(ABC):
    """Backend-agnostic chunk store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / table.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def add_documents(self, rows: list[ChunkRecord]) -> None:
        """Persist chunk rows, creating the collection on first write."""
        ...

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        *,
        limit: int = 5,
        filters: Optional[list[MetadataFilter]] = None,
    ) -> list[SearchResult]:
        """Return the rows nearest to *query_vector*, most similar first.

        Parameters
        ----------
        query_vector:
            Dense vector for the query.
        limit:
            Number of results, clamped to ``[1, 1000]``.
        filters:
            Optional metadata filters applied by the store.
        """
        ...

    @abstractmethod
    async def get_document_summaries(self) -> list[DocumentSummary]:
        """Aggregate every stored chunk into one summary per document."""
        ...

    @abstractmethod
    async def get_document_details(self, document_id: str) -> Optional[DocumentDetails]:
        """Summary plus ordered chunk previews, or ``None`` when unknown."""
        ...

    @abstractmethod
    async def count_chunks(self) -> int: ...

    @abstractmethod
    async def delete_document(self, document_id: str) -> None: ...

    @abstractmethod
    async def delete_all(self) -> None: ...

    @abstractmethod
    async def has_data(self) -> bool:
        """Return ``True`` once the collection has been created."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- derived operations ---------------------------------------------------

    async def list_documents(self) -> list[str]:
        """Ids of every stored document."""
        return [summary.document_id for summary in await self.get_document_summaries()]

    async def get_stats(self) -> StoreStats:
        if not await self.has_data():
            return StoreStats()
        summaries = await self.get_document_summaries()
        return StoreStats(
            document_count=len(summaries),
            chunk_count=await self.count_chunks(),
            table_exists=True,
        )
