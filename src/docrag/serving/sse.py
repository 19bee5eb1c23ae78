"""Server-sent event framing for streaming endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from fastapi.responses import StreamingResponse

from docrag.config import settings

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: str, data: Any) -> str:
    """``event: <name>\\ndata: <json>\\n\\n``."""
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


async def flush_then_close(
    frames: AsyncIterable[str],
    *,
    flush_delay_s: float = settings.sse_flush_delay_s,
) -> AsyncIterator[str]:
    """Pass *frames* through, pausing briefly after the last one.

    The pause gives proxies a chance to deliver the final event before the
    connection closes.
    """
    async for frame in frames:
        yield frame
    await asyncio.sleep(flush_delay_s)


def sse_response(frames: AsyncIterable[str]) -> StreamingResponse:
    return StreamingResponse(flush_then_close(frames), media_type="text/event-stream", headers=SSE_HEADERS)
