"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakes import FakeChromaClient, FakeEmbedder, FakeResponder
from langchain_core.messages import AIMessage

from docrag.responders.orchestrator import ResponderOrchestrator
from docrag.retrieval.chroma_store import ChromaVectorStore
from docrag.service import RAGService


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture()
def chroma_client() -> FakeChromaClient:
    return FakeChromaClient()


@pytest.fixture()
def store(chroma_client: FakeChromaClient) -> ChromaVectorStore:
    return ChromaVectorStore("documents", client=chroma_client, page_size=3)


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def primary() -> FakeResponder:
    return FakeResponder("primary", answer="Primary answer")


@pytest.fixture()
def secondary() -> FakeResponder:
    return FakeResponder("secondary", answer="Secondary answer")


@pytest.fixture()
def orchestrator(primary: FakeResponder, secondary: FakeResponder) -> ResponderOrchestrator:
    return ResponderOrchestrator(primary, secondary, default="", ttl_s=30.0)


@pytest.fixture()
def filter_llm() -> MagicMock:
    """Relevance-filter model that always keeps the first candidate."""
    llm = MagicMock()
    llm.ainvoke = AsyncMock(
        return_value=AIMessage(
            content=json.dumps(
                {"selectedIndices": [0], "relevantContext": "Filtered context", "reasoning": "first chunk answers it"}
            ),
            usage_metadata={"input_tokens": 30, "output_tokens": 10, "total_tokens": 40},
        )
    )
    return llm


@pytest.fixture()
def service(
    store: ChromaVectorStore, embedder: FakeEmbedder, orchestrator: ResponderOrchestrator, filter_llm: MagicMock
) -> RAGService:
    return RAGService(store, embedder, orchestrator, filter_llm=filter_llm, top_k=3)
