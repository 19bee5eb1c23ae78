"""LangGraph graph definition — the retrieval-augmented query workflow.

This module wires the nodes defined in :mod:`docrag.agent.nodes` into a
compiled :class:`StateGraph`:

1. **Select** the responder backend (fails fast when none is available).
2. **Embed** the user's question.
3. **Search** the vector store.
4. **Route** — no hits short-circuits with a canned answer; ``compress``
   sends the candidates through the relevance filter; otherwise all hits
   become the context directly.
5. **Generate** the grounded answer.

The graph can be tested without any external infrastructure by injecting
fake collaborators (see tests).
"""

from __future__ import annotations

from typing import Any, Optional

from langgraph.graph import END, StateGraph

from docrag.agent.nodes import QueryNodes, route_after_search
from docrag.agent.state import QueryState


def build_query_graph(nodes: QueryNodes, *, generate: bool = True) -> Any:
    """Construct and return the compiled query workflow.

    Graph topology::

        select_responder → embed_query → search_chunks
                                              │
                 ┌────────────────────────────┼──────────────────┐
                 ▼                            ▼                  ▼
            no_results                 filter_chunks       build_context
                 │                            └───────┬──────────┘
                 ▼                                    ▼
              [ END ]                          generate_answer → [ END ]

    Parameters
    ----------
    nodes:
        Node implementations bound to their collaborators.
    generate:
        When ``False`` the graph stops once the context is built, leaving
        answer generation to the caller (used for streaming).

    Returns
    -------
    CompiledGraph
        A compiled LangGraph workflow ready for ``.ainvoke()``.
    """
    workflow = StateGraph(QueryState)

    # -- Nodes ---------------------------------------------------------------
    workflow.add_node("select_responder", nodes.select_responder)
    workflow.add_node("embed_query", nodes.embed_query)
    workflow.add_node("search_chunks", nodes.search_chunks)
    workflow.add_node("no_results", nodes.no_results)
    workflow.add_node("filter_chunks", nodes.filter_chunks)
    workflow.add_node("build_context", nodes.build_context)

    # -- Edges ---------------------------------------------------------------
    workflow.set_entry_point("select_responder")
    workflow.add_edge("select_responder", "embed_query")
    workflow.add_edge("embed_query", "search_chunks")
    workflow.add_conditional_edges(
        "search_chunks",
        route_after_search,
        {
            "no_results": "no_results",
            "filter_chunks": "filter_chunks",
            "build_context": "build_context",
        },
    )
    workflow.add_edge("no_results", END)

    if generate:
        workflow.add_node("generate_answer", nodes.generate_answer)
        workflow.add_edge("filter_chunks", "generate_answer")
        workflow.add_edge("build_context", "generate_answer")
        workflow.add_edge("generate_answer", END)
    else:
        workflow.add_edge("filter_chunks", END)
        workflow.add_edge("build_context", END)

    return workflow.compile()


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def create_initial_state(
    query: str,
    *,
    top_k: int,
    document_id: Optional[str] = None,
    compress: bool = False,
    system_prompt: Optional[str] = None,
    responder: Optional[str] = None,
    abort: Any = None,
) -> dict[str, Any]:
    """Build the initial state dict for ``graph.ainvoke()``.

    Usage::

        graph = build_query_graph(QueryNodes(retriever, orchestrator))
        state = create_initial_state("What is the upload limit?", top_k=5)
        result = await graph.ainvoke(state)
        print(result["answer"].answer)
    """
    return {
        "query": query,
        "top_k": top_k,
        "document_id": document_id,
        "compress": compress,
        "system_prompt": system_prompt,
        "responder": responder,
        "abort": abort,
        "sub_agent_result": None,
        "answer": None,
        "timing": {},
    }
