"""Query state definition — shared across all graph nodes.

The state is the *single source of truth* that flows through every node
in the query workflow.  Each field is documented so that new nodes can
be added without guessing what data is available.
"""

from __future__ import annotations

import asyncio
from typing import Annotated, Optional, TypedDict

from docrag.responders.orchestrator import OrchestratedAnswer, ResponderSelection
from docrag.schemas import RetrievedChunk, Source, SubAgentResult


def _merge_timing(existing: dict[str, int], new: dict[str, int]) -> dict[str, int]:
    """Reducer that merges per-stage timings from successive nodes."""
    return {**(existing or {}), **(new or {})}


class QueryState(TypedDict, total=False):
    """Typed state that flows through the query graph.

    Attributes
    ----------
    query:
        The user's natural-language question.
    top_k:
        Number of chunks handed to the responder.
    document_id:
        Restrict retrieval to one document.
    compress:
        Route candidates through the relevance-filter sub-agent.
    system_prompt:
        Optional replacement for the responder's default system prompt.
    responder:
        Per-query backend override (``"primary"`` / ``"secondary"``).
    abort:
        Cancels answer generation when set.
    selection:
        The backend chosen by the ``select_responder`` node.
    query_vector:
        Embedding of ``query``.
    chunks:
        Search hits in similarity order.
    context:
        The context block passed to the responder.
    sources:
        Citations for the chunks that made it into ``context``.
    sub_agent_result:
        Output of the relevance filter (only when ``compress``).
    answer:
        The final answer, populated by ``generate_answer`` or ``no_results``.
    timing:
        Milliseconds per stage: ``embedding``, ``search``, ``filtering``,
        ``response``.
    """

    query: str
    top_k: int
    document_id: Optional[str]
    compress: bool
    system_prompt: Optional[str]
    responder: Optional[str]
    abort: Optional[asyncio.Event]
    selection: ResponderSelection
    query_vector: list[float]
    chunks: list[RetrievedChunk]
    context: str
    sources: list[Source]
    sub_agent_result: Optional[SubAgentResult]
    answer: Optional[OrchestratedAnswer]
    timing: Annotated[dict[str, int], _merge_timing]
