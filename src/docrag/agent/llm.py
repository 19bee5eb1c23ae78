"""LLM initialisation — single place to swap providers.

Supports two modes:

1. **OpenAI cloud** (default) — set ``OPENAI_API_KEY``.
2. **OpenAI-compatible gateway** — set ``LLM_BASE_URL`` to any endpoint
   exposing ``/v1/chat/completions`` (OpenRouter, a local vLLM server,
   …).  ``ChatOpenAI`` works unchanged against all of them.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from langchain_core.messages import AIMessage
from langchain_openai import ChatOpenAI

from docrag.config import settings

logger = logging.getLogger(__name__)


def get_llm(
    temperature: float = 0.0,
    *,
    model: Optional[str] = None,
    max_tokens: Optional[int] = None,
    streaming: bool = False,
) -> ChatOpenAI:
    """Return the configured chat model.

    Parameters
    ----------
    temperature:
        Sampling temperature.
    model:
        Model id; defaults to ``settings.filter_model_name``.
    max_tokens:
        Cap on generated tokens.
    streaming:
        Request token usage in the final streamed chunk as well.
    """
    kwargs: dict[str, Any] = {
        "model": model or settings.filter_model_name,
        "temperature": temperature,
    }
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if streaming:
        kwargs["stream_usage"] = True

    if settings.llm_base_url:
        logger.debug("Using OpenAI-compatible endpoint: %s", settings.llm_base_url)
        kwargs["base_url"] = settings.llm_base_url
        # Local gateways often need no key; LangChain requires a non-empty value.
        kwargs["api_key"] = settings.openai_api_key or "EMPTY"
    else:
        kwargs["api_key"] = settings.openai_api_key

    return ChatOpenAI(**kwargs)


def usage_tokens(message: Any) -> tuple[int, int]:
    """``(input, output)`` token counts from a chat model reply, 0 when absent."""
    usage = getattr(message, "usage_metadata", None) if isinstance(message, AIMessage) else None
    if not usage:
        return 0, 0
    return int(usage.get("input_tokens", 0) or 0), int(usage.get("output_tokens", 0) or 0)
