"""Prompt templates for the query workflow.

Every model call uses a dedicated prompt from this module.  Keeping
prompts in one place makes them easy to audit, version, and A/B test.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Optional

from langchain_core.messages import HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

    from docrag.schemas import RetrievedChunk

# ── 1. Relevance filter ────────────────────────────────────────────────

FILTER_SYSTEM = """\
You are a retrieval assistant specialized in filtering and ranking document chunks for relevance.
Your job is to analyze chunks retrieved from a vector search and determine which are most useful for answering a query.
Be precise and only select chunks that contain information directly relevant to the query.
Discard chunks that are tangentially related or contain no useful information.
"""

_COMPRESS_INSTRUCTION = "Summarize the key information from relevant chunks into a condensed, coherent context"
_CONCATENATE_INSTRUCTION = "Concatenate the text from relevant chunks"


def format_chunks_for_prompt(chunks: list[RetrievedChunk]) -> str:
    """Numbered candidate listing: ``[i] (name, score: 0.123): text``."""
    return "\n\n".join(
        f"[{i}] ({chunk.document_name}, score: {chunk.score:.3f}): {chunk.text}" for i, chunk in enumerate(chunks)
    )


def build_filter_prompt(
    query: str,
    chunks: list[RetrievedChunk],
    *,
    compress: bool = True,
    min_relevance: Optional[float] = None,
) -> list[BaseMessage]:
    """Build the prompt for the relevance-filter sub-agent.

    Parameters
    ----------
    query:
        The user's question.
    chunks:
        Candidates in similarity order; their list position is the index
        the model must answer with.
    compress:
        Ask for a condensed summary instead of verbatim concatenation.
    min_relevance:
        When given, ask the model to drop chunks it rates below this
        relevance (0-1).
    """
    instructions = [
        "Identify which chunks are MOST relevant to answering the query",
        _COMPRESS_INSTRUCTION if compress else _CONCATENATE_INSTRUCTION,
        "Explain your reasoning briefly",
    ]
    if min_relevance is not None:
        instructions.insert(
            1, f"Discard any chunk whose relevance to the query you would rate below {min_relevance:.2f} on a 0-1 scale"
        )
    numbered = "\n".join(f"{n}. {line}" for n, line in enumerate(instructions, 1))

    user_msg = (
        "Given the following user query and document chunks, identify the most relevant chunks.\n\n"
        f'User Query: "{query}"\n\n'
        f"Retrieved Chunks:\n{format_chunks_for_prompt(chunks)}\n\n"
        f"Instructions:\n{numbered}\n\n"
        "Respond in this exact JSON format (no markdown, just raw JSON):\n"
        "{\n"
        '  "selectedIndices": [0, 2, 4],\n'
        '  "relevantContext": "The condensed or concatenated relevant information...",\n'
        '  "reasoning": "Brief explanation of why these chunks were selected and others were discarded"\n'
        "}"
    )
    return [
        SystemMessage(content=FILTER_SYSTEM),
        HumanMessage(content=user_msg),
    ]


# ── 2. Answer generation ───────────────────────────────────────────────

RESPONDER_SYSTEM = """\
You are a helpful assistant that answers questions based on provided context.
- Answer using ONLY the information in the context
- If the context doesn't contain enough information, say so clearly
- Reference sources when possible (e.g., "According to [document name]...")
- Be concise but thorough
"""

_SANITIZE_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"```"), "′′′"),
    (re.compile(r"</?system>", re.IGNORECASE), "[system]"),
    (re.compile(r"\[INST\]", re.IGNORECASE), "[inst]"),
    (re.compile(r"<<SYS>>", re.IGNORECASE), "[[SYS]]"),
]


def sanitize_context(context: str) -> str:
    """Neutralise fence and role markers in retrieved text.

    Document text is untrusted, so anything that could close the context
    fence or pose as a chat-template role marker is rewritten.
    """
    for pattern, replacement in _SANITIZE_RULES:
        context = pattern.sub(replacement, context)
    return context


def build_user_prompt(query: str, context: str) -> str:
    return (
        "Context (pre-filtered for relevance):\n"
        f"```context\n{sanitize_context(context)}\n```\n\n"
        f"Question: {query}\n\n"
        "Please provide a comprehensive answer based on the context above."
    )


def build_responder_messages(
    query: str,
    context: str,
    system_prompt: Optional[str] = None,
) -> list[BaseMessage]:
    """Chat messages for the hosted responder."""
    return [
        SystemMessage(content=system_prompt or RESPONDER_SYSTEM),
        HumanMessage(content=build_user_prompt(query, context)),
    ]


def build_cli_prompt(query: str, context: str, system_prompt: Optional[str] = None) -> str:
    """Single text prompt for the local CLI responder (fed on stdin)."""
    return f"{system_prompt or RESPONDER_SYSTEM}\n{build_user_prompt(query, context)}"
