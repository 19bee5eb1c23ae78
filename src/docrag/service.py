"""Service facade — the single entry point used by the HTTP layer.

:class:`RAGService` owns one instance of every collaborator (store,
embedder, responders) and exposes the operations of the system as plain
coroutines: query, streaming query, search-only, ingestion and document
management.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any, Optional

from langchain_core.language_models import BaseChatModel
from pydantic import Field

from docrag.agent.graph import build_query_graph, create_initial_state
from docrag.agent.nodes import QueryNodes
from docrag.config import settings
from docrag.errors import DocumentNotFoundError, InvalidInputError, ResponderError, ResponderErrorCode
from docrag.ingestion.chunker import estimate_chunks
from docrag.ingestion.embedder import Embedder
from docrag.ingestion.extractor import TextExtractor
from docrag.ingestion.upload import DocumentIngestor, IngestResult, UploadController
from docrag.responders.base import ResponseOptions
from docrag.responders.orchestrator import OrchestratedAnswer, ResponderOrchestrator, parse_responder_kind
from docrag.retrieval.base import VectorStoreBase
from docrag.retrieval.models import DocumentDetails, DocumentSummary, MetadataFilter, StoreStats
from docrag.retrieval.retriever import SearchOutcome, SemanticRetriever, elapsed_ms
from docrag.schemas import CamelModel, ChunkEstimate, SubAgentResult

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 10_000
MAX_TOP_K = 100


class QueryTiming(CamelModel):
    embedding: int = 0
    search: int = 0
    filtering: Optional[int] = None
    response: int = 0
    total: int = 0


class QueryResult(OrchestratedAnswer):
    timing: QueryTiming = Field(default_factory=QueryTiming)
    sub_agent_result: Optional[SubAgentResult] = None


def validate_query_options(query: Any, top_k: Optional[int], document_id: Optional[str]) -> None:
    """Reject bad query input before any I/O happens."""
    if not isinstance(query, str) or not query.strip():
        raise InvalidInputError("Query must be a non-empty string")
    if len(query) > MAX_QUERY_LENGTH:
        raise InvalidInputError(f"Query exceeds maximum length of {MAX_QUERY_LENGTH} characters")
    if top_k is not None and not 1 <= top_k <= MAX_TOP_K:
        raise InvalidInputError(f"topK must be between 1 and {MAX_TOP_K}")
    if document_id:
        MetadataFilter.document(document_id)


class RAGService:
    """Retrieval-augmented question answering over uploaded documents.

    Parameters
    ----------
    store:
        Vector-store backend.
    embedder:
        Embedding collaborator shared by ingestion and queries.
    orchestrator:
        Responder selection and answer generation.
    extractor:
        File-to-text collaborator for uploads.
    filter_llm:
        Chat model for the relevance filter (configured default if *None*).
    top_k:
        Default number of chunks per query.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        orchestrator: ResponderOrchestrator,
        *,
        extractor: Optional[TextExtractor] = None,
        filter_llm: Optional[BaseChatModel] = None,
        top_k: int = settings.top_k,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.orchestrator = orchestrator
        self.top_k = top_k
        self.retriever = SemanticRetriever(store, embedder, default_k=top_k)
        self.ingestor = DocumentIngestor(store, embedder)
        self.uploads = UploadController(self.ingestor, extractor)

        nodes = QueryNodes(self.retriever, orchestrator, filter_llm=filter_llm)
        self._graph = build_query_graph(nodes)
        self._context_graph = build_query_graph(nodes, generate=False)

    @classmethod
    def from_settings(cls) -> RAGService:
        """Wire the default collaborators from the global settings."""
        from docrag.ingestion.embedder import HuggingFaceEmbedder
        from docrag.responders.api import ApiResponder
        from docrag.responders.cli import CliResponder
        from docrag.retrieval.chroma_store import ChromaVectorStore

        return cls(
            ChromaVectorStore(),
            HuggingFaceEmbedder(),
            ResponderOrchestrator(CliResponder(), ApiResponder()),
        )

    # -- queries --------------------------------------------------------------

    async def query(
        self,
        query: str,
        *,
        top_k: Optional[int] = None,
        document_id: Optional[str] = None,
        compress: bool = False,
        system_prompt: Optional[str] = None,
        responder: Optional[str] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> QueryResult:
        """Answer *query* from the stored documents.

        Parameters
        ----------
        query:
            The user's question.
        top_k:
            Chunks handed to the responder.
        document_id:
            Restrict retrieval to one document.
        compress:
            Let the relevance filter select and condense the candidates.
        system_prompt:
            Replacement for the responder's default system prompt.
        responder:
            Per-query backend override.
        abort:
            Cancels answer generation when set.

        Returns
        -------
        QueryResult
            Answer, sources, token usage, backend used and per-stage timing.
        """
        validate_query_options(query, top_k, document_id)
        parse_responder_kind(responder)
        start = time.perf_counter()
        logger.info("Processing query: %r", query[:50])

        state = await self._graph.ainvoke(
            create_initial_state(
                query,
                top_k=top_k or self.top_k,
                document_id=document_id,
                compress=compress,
                system_prompt=system_prompt,
                responder=responder,
                abort=abort,
            )
        )
        answer: OrchestratedAnswer = state["answer"]
        timing = QueryTiming(**state.get("timing", {}), total=elapsed_ms(start))
        sub_agent_result = state.get("sub_agent_result")

        if sub_agent_result is not None:
            logger.info(
                "Query completed in %dms (filter: %d tokens, %s: %d tokens)",
                timing.total,
                sub_agent_result.tokens_used,
                answer.responder_used,
                answer.tokens_used.total,
            )
        else:
            logger.info(
                "Query completed in %dms (direct to %s: %d tokens)",
                timing.total,
                answer.responder_used,
                answer.tokens_used.total,
            )
        return QueryResult(**answer.model_dump(), timing=timing, sub_agent_result=sub_agent_result)

    async def stream_query(
        self,
        query: str,
        *,
        top_k: Optional[int] = None,
        document_id: Optional[str] = None,
        compress: bool = False,
        system_prompt: Optional[str] = None,
        responder: Optional[str] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[tuple[str, Any]]:
        """Streaming variant of :meth:`query`.

        Yields ``(event, payload)`` pairs: one ``sources`` event, then a
        ``token`` event per answer fragment, then ``complete`` with the
        final :class:`QueryResult`.
        """
        validate_query_options(query, top_k, document_id)
        parse_responder_kind(responder)
        start = time.perf_counter()
        logger.info("Processing streaming query: %r", query[:50])

        state = await self._context_graph.ainvoke(
            create_initial_state(
                query,
                top_k=top_k or self.top_k,
                document_id=document_id,
                compress=compress,
                system_prompt=system_prompt,
                responder=responder,
                abort=abort,
            )
        )
        timing: dict[str, int] = dict(state.get("timing", {}))
        sources = state.get("sources", [])
        yield "sources", sources

        answer: Optional[OrchestratedAnswer] = state.get("answer")
        if answer is None:
            response_start = time.perf_counter()
            stream = self.orchestrator.stream_with(
                state["selection"],
                query,
                state["context"],
                sources,
                ResponseOptions(system_prompt=system_prompt),
                abort=abort,
            )
            async for fragment in stream:
                yield "token", fragment
            if stream.answer is None:
                raise ResponderError(
                    "Responder stream ended without an answer", ResponderErrorCode.UNKNOWN, stream.selection.kind
                )
            answer = stream.answer
            timing["response"] = elapsed_ms(response_start)
        else:
            yield "token", answer.answer

        result = QueryResult(
            **answer.model_dump(),
            timing=QueryTiming(**timing, total=elapsed_ms(start)),
            sub_agent_result=state.get("sub_agent_result"),
        )
        logger.info("Streaming query completed in %dms via %s", result.timing.total, result.responder_used)
        yield "complete", result

    async def search(
        self,
        query: str,
        *,
        top_k: Optional[int] = None,
        document_id: Optional[str] = None,
    ) -> SearchOutcome:
        """Search-only mode: ranked chunks and formatted context, no model call."""
        validate_query_options(query, top_k, document_id)
        return await self.retriever.search(query, top_k=top_k, document_id=document_id)

    # -- documents ------------------------------------------------------------

    async def add_document(
        self,
        text: str,
        *,
        name: str,
        source: Optional[str] = None,
        type: Optional[str] = None,
    ) -> IngestResult:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError("Document text must be a non-empty string")
        return await self.ingestor.add_document(text, name=name, source=source, type=type)

    def estimate(self, text: str) -> ChunkEstimate:
        return estimate_chunks(text, self.ingestor.chunk_size, self.ingestor.chunk_overlap)

    async def list_documents(self) -> list[str]:
        return await self.store.list_documents()

    async def document_summaries(self) -> list[DocumentSummary]:
        return await self.store.get_document_summaries()

    async def document_details(self, document_id: str) -> DocumentDetails:
        details = await self.store.get_document_details(document_id)
        if details is None:
            raise DocumentNotFoundError(document_id)
        return details

    async def delete_document(self, document_id: str) -> None:
        await self.store.delete_document(document_id)

    async def stats(self) -> StoreStats:
        return await self.store.get_stats()

    # -- health ---------------------------------------------------------------

    async def responder_status(self) -> dict[str, Any]:
        """Availability of both backends and the one a query would use now."""
        available = await self.orchestrator.availability()
        try:
            default = (await self.orchestrator.select()).kind
        except ResponderError:
            default = "none"
        return {**available, "default": default}

    async def is_ready(self) -> dict[str, Any]:
        """Readiness of the embedding model, the vector store and the configured responder."""
        try:
            if not await self.embedder.check_ready():
                return {"ready": False, "error": "Embedding model is not ready"}
            if not await self.store.health_check():
                return {"ready": False, "error": "Vector store is not reachable"}
            preferred = self.orchestrator.default or "primary"
            available = await self.orchestrator.availability()
        except Exception as exc:
            logger.warning("Readiness check failed", exc_info=True)
            return {"ready": False, "error": str(exc) or "Unknown error"}
        return {"ready": True, "responder": preferred, "responderReady": available[preferred]}
