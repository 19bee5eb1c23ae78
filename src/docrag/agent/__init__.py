"""
Agent — the LangGraph query workflow and its relevance-filter sub-agent.

This module contains **zero** infrastructure dependencies.  Retrieval and
answer generation are injected, so the whole workflow can be tested
locally with fakes.

Public API
----------
- :func:`build_query_graph` — compile the query workflow.
- :func:`create_initial_state` — bootstrap the state dict for ``graph.ainvoke()``.
- :class:`QueryNodes` — node implementations bound to their collaborators.
- :class:`QueryState` — the TypedDict flowing through every node.
- :func:`filter_and_rank_chunks` — the relevance-filter sub-agent.
"""

from docrag.agent.graph import build_query_graph, create_initial_state
from docrag.agent.nodes import QueryNodes
from docrag.agent.relevance_filter import batch_filter_chunks, filter_and_rank_chunks
from docrag.agent.state import QueryState

__all__ = [
    "QueryNodes",
    "QueryState",
    "batch_filter_chunks",
    "build_query_graph",
    "create_initial_state",
    "filter_and_rank_chunks",
]
