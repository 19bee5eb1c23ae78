"""Relevance-filter sub-agent.

A small, cheap chat model reads the vector-search candidates and picks the
ones that actually help answer the query, optionally condensing them into
a shorter context.  Malformed model output never fails a query: the
filter falls back to the top candidates in similarity order.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from langchain_core.language_models import BaseChatModel

from docrag.agent.llm import get_llm, usage_tokens
from docrag.agent.prompts import build_filter_prompt
from docrag.errors import FilterParseError, InvalidInputError, RetrieverError
from docrag.schemas import RetrievedChunk, SubAgentResult

logger = logging.getLogger(__name__)

FILTER_TEMPERATURE = 0.1
FILTER_MAX_TOKENS = 1024


def extract_json_object(text: str) -> str:
    """Return the first balanced ``{...}`` object embedded in *text*.

    Braces inside string literals are ignored and backslash escapes are
    honoured, so prose or code fences around the JSON do not matter.

    Raises
    ------
    FilterParseError
        If no complete object is found.
    """
    start = text.find("{")
    if start == -1:
        raise FilterParseError("Could not find JSON in model response")

    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        char = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : pos + 1]
    raise FilterParseError("Unterminated JSON object in model response")


def parse_filter_response(text: str) -> dict[str, Any]:
    """Parse and validate the sub-agent's JSON answer."""
    try:
        parsed = json.loads(extract_json_object(text))
    except json.JSONDecodeError as exc:
        raise FilterParseError("Failed to parse model response as JSON") from exc

    if not isinstance(parsed, dict):
        raise FilterParseError("Model response is not a JSON object")
    if not isinstance(parsed.get("selectedIndices"), list):
        raise FilterParseError("Response missing selectedIndices array")
    if not isinstance(parsed.get("relevantContext"), str):
        raise FilterParseError("Response missing relevantContext string")
    return parsed


def validate_indices(indices: list[Any], candidate_count: int) -> list[int]:
    """In-range integer indices, first occurrence of each, in reply order."""
    seen: set[int] = set()
    valid: list[int] = []
    for i in indices:
        if isinstance(i, int) and not isinstance(i, bool) and 0 <= i < candidate_count and i not in seen:
            seen.add(i)
            valid.append(i)
    return valid


def _top_candidates(candidates: list[RetrievedChunk], max_chunks: int, tokens: int, reasoning: str) -> SubAgentResult:
    top = candidates[:max_chunks]
    return SubAgentResult(
        relevant_context="\n\n".join(c.text for c in top),
        selected_chunks=list(range(len(top))),
        tokens_used=tokens,
        reasoning=reasoning,
    )


async def filter_and_rank_chunks(
    query: str,
    candidates: list[RetrievedChunk],
    *,
    compress: bool = True,
    max_chunks: int = 5,
    min_relevance: Optional[float] = None,
    llm: Optional[BaseChatModel] = None,
) -> SubAgentResult:
    """Select (and optionally condense) the candidates relevant to *query*.

    Parameters
    ----------
    query:
        The user's question.
    candidates:
        Search hits in similarity order.
    compress:
        Summarise the selected chunks instead of concatenating them.
    max_chunks:
        Upper bound on the number of selected chunks.
    min_relevance:
        Optional 0-1 relevance floor passed to the model.
    llm:
        Chat model to use; defaults to the configured filter model.

    Returns
    -------
    SubAgentResult
        Selected candidate indices, the resulting context and token usage.

    Raises
    ------
    InvalidInputError
        If *query* is empty.
    RetrieverError
        If the model call itself fails.
    """
    if not isinstance(query, str) or not query.strip():
        raise InvalidInputError("Query must be a non-empty string")

    if not candidates:
        return SubAgentResult(relevant_context="", selected_chunks=[], tokens_used=0, reasoning="No chunks provided")

    if not compress and len(candidates) <= max_chunks:
        return SubAgentResult(
            relevant_context="\n\n".join(c.text for c in candidates),
            selected_chunks=list(range(len(candidates))),
            tokens_used=0,
            reasoning="All chunks returned without filtering (count below maxChunks)",
        )

    llm = llm or get_llm(FILTER_TEMPERATURE, max_tokens=FILTER_MAX_TOKENS)
    messages = build_filter_prompt(query, candidates, compress=compress, min_relevance=min_relevance)
    try:
        response = await llm.ainvoke(messages)
    except Exception as exc:
        raise RetrieverError(f"Relevance filter model error: {exc}") from exc

    input_tokens, output_tokens = usage_tokens(response)
    tokens = input_tokens + output_tokens
    fallback_count = min(max_chunks, len(candidates))

    try:
        parsed = parse_filter_response(str(response.content))
    except FilterParseError as exc:
        logger.warning("Relevance filter returned unparseable output: %s", exc)
        return _top_candidates(
            candidates,
            max_chunks,
            tokens,
            f"Could not parse model response ({exc}). Falling back to top {fallback_count} chunks by vector similarity.",
        )

    selected = validate_indices(parsed["selectedIndices"], len(candidates))[:max_chunks]
    if not selected:
        logger.warning("Relevance filter selected no valid chunks: %s", parsed["selectedIndices"])
        return _top_candidates(
            candidates,
            max_chunks,
            tokens,
            f"Model selected no valid chunks (indices: {parsed['selectedIndices']}). "
            f"Falling back to top {fallback_count} chunks by vector similarity.",
        )

    reasoning = parsed.get("reasoning")
    return SubAgentResult(
        relevant_context=parsed["relevantContext"],
        selected_chunks=selected,
        summary=parsed["relevantContext"] if compress else None,
        tokens_used=tokens,
        reasoning=reasoning if isinstance(reasoning, str) else None,
    )


async def batch_filter_chunks(
    items: list[tuple[str, list[RetrievedChunk]]],
    **options: Any,
) -> list[SubAgentResult | dict[str, str]]:
    """Filter several ``(query, candidates)`` pairs concurrently.

    A failing item is reported in its slot as ``{"error": ..., "query": ...}``
    instead of failing the whole batch.
    """
    results = await asyncio.gather(
        *(filter_and_rank_chunks(query, candidates, **options) for query, candidates in items),
        return_exceptions=True,
    )
    out: list[SubAgentResult | dict[str, str]] = []
    for (query, _), result in zip(items, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            out.append({"error": str(result) or "Unknown error", "query": query})
        else:
            out.append(result)
    return out
