"""Unit tests for the RAGService facade."""

from __future__ import annotations

from typing import Any

import pytest

from docrag.agent.nodes import NO_DOCUMENTS_ANSWER
from docrag.errors import DocumentNotFoundError, InvalidInputError, ResponderError, ResponderErrorCode
from docrag.retrieval.chroma_store import ChromaVectorStore
from docrag.service import RAGService, validate_query_options
from fakes import FakeResponder, UnreachableChromaClient

TEXT = " ".join(f"uploads{i % 7} limit" for i in range(75))


async def _events(service: RAGService, query: str, **options: Any) -> list[tuple[str, Any]]:
    return [item async for item in service.stream_query(query, **options)]


# ── Validation ─────────────────────────────────────────────────────────


class TestValidateQueryOptions:
    @pytest.mark.parametrize(
        ("query", "top_k", "document_id"),
        [
            ("", None, None),
            ("   ", None, None),
            (None, None, None),
            ("x" * 10_001, None, None),
            ("q", 0, None),
            ("q", 101, None),
            ("q", None, "doc'1"),
        ],
    )
    def test_rejected(self, query: Any, top_k: Any, document_id: Any) -> None:
        with pytest.raises(InvalidInputError):
            validate_query_options(query, top_k, document_id)

    def test_accepted(self) -> None:
        validate_query_options("x" * 10_000, 100, "doc_1")


# ── Query ──────────────────────────────────────────────────────────────


class TestQuery:
    @pytest.mark.asyncio
    async def test_query_returns_answer_with_timing(self, service: RAGService) -> None:
        await service.add_document(TEXT, name="limits.md")
        result = await service.query("What is the upload limit?")

        assert result.answer == "Primary answer"
        assert result.responder_used == "primary"
        assert len(result.sources) == 2
        assert result.timing.total >= result.timing.response
        assert result.timing.filtering is None
        assert result.tokens_used.total == 15

    @pytest.mark.asyncio
    async def test_query_without_documents(self, service: RAGService, primary: FakeResponder) -> None:
        result = await service.query("anything?")
        assert result.answer == NO_DOCUMENTS_ANSWER
        assert result.sources == []
        assert primary.calls == []

    @pytest.mark.asyncio
    async def test_invalid_responder(self, service: RAGService) -> None:
        with pytest.raises(InvalidInputError):
            await service.query("q", responder="other")

    @pytest.mark.asyncio
    async def test_responder_errors_propagate(self, service: RAGService, primary: FakeResponder) -> None:
        await service.add_document(TEXT, name="limits.md")
        primary.error = ResponderError("quota", ResponderErrorCode.RATE_LIMIT, "primary")
        with pytest.raises(ResponderError):
            await service.query("q")


# ── Streaming ──────────────────────────────────────────────────────────


class TestStreamQuery:
    @pytest.mark.asyncio
    async def test_event_order(self, service: RAGService, primary: FakeResponder) -> None:
        await service.add_document(TEXT, name="limits.md")
        primary.fragments = ["The limit ", "is 10MB."]
        events = await _events(service, "What is the upload limit?")

        assert [name for name, _ in events] == ["sources", "token", "token", "complete"]
        assert len(events[0][1]) == 2
        result = events[-1][1]
        assert result.answer == "The limit is 10MB."
        assert result.responder_used == "primary"
        assert result.timing.total >= result.timing.response

    @pytest.mark.asyncio
    async def test_no_documents_streams_canned_answer(self, service: RAGService) -> None:
        events = await _events(service, "anything?")
        assert events[0] == ("sources", [])
        assert events[1] == ("token", NO_DOCUMENTS_ANSWER)
        assert events[2][0] == "complete"

    @pytest.mark.asyncio
    async def test_validation_happens_before_streaming(self, service: RAGService) -> None:
        with pytest.raises(InvalidInputError):
            await _events(service, "")


# ── Search-only and documents ──────────────────────────────────────────


class TestDocuments:
    @pytest.mark.asyncio
    async def test_search_only_never_calls_responders(
        self, service: RAGService, primary: FakeResponder, secondary: FakeResponder
    ) -> None:
        await service.add_document(TEXT, name="limits.md")
        outcome = await service.search("upload limit", top_k=1)
        assert len(outcome.chunks) == 1
        assert outcome.context.startswith("## Source: limits.md (Chunk ")
        assert primary.calls == [] and secondary.calls == []

    @pytest.mark.asyncio
    async def test_add_list_details_delete(self, service: RAGService) -> None:
        result = await service.add_document(TEXT, name="limits.md", source="limits.md", type="text/markdown")
        assert result.chunks == 2

        assert await service.list_documents() == [result.document_id]
        summary = (await service.document_summaries())[0]
        assert summary.chunk_count == 2

        details = await service.document_details(result.document_id)
        assert [c.chunk_index for c in details.chunks] == [0, 1]

        await service.delete_document(result.document_id)
        assert await service.list_documents() == []
        with pytest.raises(DocumentNotFoundError):
            await service.document_details(result.document_id)

    @pytest.mark.asyncio
    async def test_add_empty_text(self, service: RAGService) -> None:
        with pytest.raises(InvalidInputError):
            await service.add_document("  ", name="x.txt")

    def test_estimate(self, service: RAGService) -> None:
        estimate = service.estimate(TEXT)
        assert estimate.word_count == 150
        assert estimate.estimated_chunks == 2

    @pytest.mark.asyncio
    async def test_stats(self, service: RAGService) -> None:
        await service.add_document(TEXT, name="a.md")
        await service.add_document("short note", name="b.md")
        stats = await service.stats()
        assert (stats.document_count, stats.chunk_count, stats.table_exists) == (2, 3, True)


# ── Health ─────────────────────────────────────────────────────────────


class TestHealth:
    @pytest.mark.asyncio
    async def test_responder_status(self, service: RAGService, primary: FakeResponder) -> None:
        primary.available = False
        assert await service.responder_status() == {"primary": False, "secondary": True, "default": "secondary"}

    @pytest.mark.asyncio
    async def test_responder_status_none_available(
        self, service: RAGService, primary: FakeResponder, secondary: FakeResponder
    ) -> None:
        primary.available = secondary.available = False
        assert (await service.responder_status())["default"] == "none"

    @pytest.mark.asyncio
    async def test_ready(self, service: RAGService) -> None:
        assert await service.is_ready() == {"ready": True, "responder": "primary", "responderReady": True}

    @pytest.mark.asyncio
    async def test_not_ready_without_embedder(self, service: RAGService, embedder: Any) -> None:
        embedder.ready = False
        status = await service.is_ready()
        assert status["ready"] is False
        assert "Embedding model" in status["error"]

    @pytest.mark.asyncio
    async def test_not_ready_when_store_unreachable(self, embedder: Any, orchestrator: Any) -> None:
        service = RAGService(ChromaVectorStore("documents", client=UnreachableChromaClient()), embedder, orchestrator)
        assert await service.is_ready() == {"ready": False, "error": "Vector store is not reachable"}
