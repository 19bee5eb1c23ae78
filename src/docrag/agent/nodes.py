"""Graph nodes — each method is one step in the query workflow.

Node contract
-------------
* Accepts the full :class:`QueryState` dict.
* Returns a *partial* dict with **only the keys that changed**.
* Collaborators (retriever, orchestrator, filter model) are injected
  through :class:`QueryNodes`, so every node is independently testable.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from langchain_core.language_models import BaseChatModel

from docrag.agent.relevance_filter import filter_and_rank_chunks
from docrag.agent.state import QueryState
from docrag.responders.base import ResponseOptions
from docrag.responders.orchestrator import OrchestratedAnswer, ResponderOrchestrator
from docrag.retrieval.retriever import SemanticRetriever, build_context, build_sources, elapsed_ms
from docrag.schemas import TokenUsage

logger = logging.getLogger(__name__)

NO_DOCUMENTS_ANSWER = "I don't have any documents to search. Please upload some documents first."

# Extra candidates fetched per requested chunk when the filter will prune them.
COMPRESS_OVERFETCH = 3


def route_after_search(state: QueryState) -> str:
    """Pick the branch after ``search_chunks``."""
    if not state.get("chunks"):
        return "no_results"
    if state.get("compress"):
        return "filter_chunks"
    return "build_context"


class QueryNodes:
    """Node implementations bound to their collaborators.

    Parameters
    ----------
    retriever:
        Embeds the query and searches the store.
    orchestrator:
        Picks the responder backend and generates the answer.
    filter_llm:
        Chat model for the relevance filter; the configured default when
        *None*.
    """

    def __init__(
        self,
        retriever: SemanticRetriever,
        orchestrator: ResponderOrchestrator,
        *,
        filter_llm: Optional[BaseChatModel] = None,
    ) -> None:
        self.retriever = retriever
        self.orchestrator = orchestrator
        self.filter_llm = filter_llm

    # ── 1. SELECT RESPONDER ───────────────────────────────────────────

    async def select_responder(self, state: QueryState) -> dict[str, Any]:
        """Resolve the backend up front so a missing one fails fast."""
        return {"selection": await self.orchestrator.select(state.get("responder"))}

    # ── 2. EMBED QUERY ────────────────────────────────────────────────

    async def embed_query(self, state: QueryState) -> dict[str, Any]:
        start = time.perf_counter()
        vector = await self.retriever.embed_query(state["query"])
        took = elapsed_ms(start)
        logger.debug("Embedding generated in %dms", took)
        return {"query_vector": vector, "timing": {"embedding": took}}

    # ── 3. SEARCH ─────────────────────────────────────────────────────

    async def search_chunks(self, state: QueryState) -> dict[str, Any]:
        top_k = state["top_k"]
        limit = top_k * COMPRESS_OVERFETCH if state.get("compress") else top_k
        start = time.perf_counter()
        chunks = await self.retriever.search_by_embedding(
            state["query_vector"], limit=limit, document_id=state.get("document_id")
        )
        took = elapsed_ms(start)
        logger.debug("Found %d chunks in %dms", len(chunks), took)
        return {"chunks": chunks, "timing": {"search": took}}

    # ── 4a. NO RESULTS ────────────────────────────────────────────────

    async def no_results(self, state: QueryState) -> dict[str, Any]:
        selection = state["selection"]
        answer = OrchestratedAnswer(
            answer=NO_DOCUMENTS_ANSWER,
            sources=[],
            tokens_used=TokenUsage(),
            responder_used=selection.kind,
            responder_fallback=selection.fallback,
            responder_fallback_message=selection.message,
        )
        return {"answer": answer, "context": "", "sources": []}

    # ── 4b. FILTER (compress) ─────────────────────────────────────────

    async def filter_chunks(self, state: QueryState) -> dict[str, Any]:
        """Let the relevance sub-agent pick and condense the candidates."""
        chunks = state["chunks"]
        start = time.perf_counter()
        result = await filter_and_rank_chunks(
            state["query"],
            chunks,
            compress=True,
            max_chunks=state["top_k"],
            llm=self.filter_llm,
        )
        took = elapsed_ms(start)
        logger.debug("Filter kept %d of %d chunks in %dms", len(result.selected_chunks), len(chunks), took)
        return {
            "sub_agent_result": result,
            "context": result.relevant_context,
            "sources": [chunks[i].to_source() for i in result.selected_chunks],
            "timing": {"filtering": took},
        }

    # ── 4c. DIRECT CONTEXT ────────────────────────────────────────────

    async def build_context(self, state: QueryState) -> dict[str, Any]:
        chunks = state["chunks"]
        return {"context": build_context(chunks), "sources": build_sources(chunks)}

    # ── 5. GENERATE ───────────────────────────────────────────────────

    async def generate_answer(self, state: QueryState) -> dict[str, Any]:
        start = time.perf_counter()
        answer = await self.orchestrator.generate_with(
            state["selection"],
            state["query"],
            state["context"],
            state["sources"],
            ResponseOptions(system_prompt=state.get("system_prompt")),
            abort=state.get("abort"),
        )
        return {"answer": answer, "timing": {"response": elapsed_ms(start)}}
