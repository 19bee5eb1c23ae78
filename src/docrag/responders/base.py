"""The responder protocol and the pieces every backend shares.

A responder turns ``(query, context, sources)`` into a grounded answer.
Backends are structural: anything with the methods of :class:`Responder`
can be plugged into the orchestrator.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional, Protocol, TypeVar

from docrag.errors import InvalidInputError, ResponderError, ResponderErrorCode
from docrag.schemas import ResponderAnswer, Source

ResponderKind = Literal["primary", "secondary"]

T = TypeVar("T")


@dataclass
class ResponseOptions:
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


def validate_request(query: Any, context: Any, sources: Any) -> None:
    if not isinstance(query, str) or not query.strip():
        raise InvalidInputError("Query must be a non-empty string")
    if not isinstance(context, str):
        raise InvalidInputError("Context must be a string")
    if not isinstance(sources, list):
        raise InvalidInputError("Sources must be a list")


async def run_with_deadline(
    awaitable: Awaitable[T],
    *,
    timeout_s: float,
    responder: str,
    abort: Optional[asyncio.Event] = None,
) -> T:
    """Await *awaitable* against a deadline, or against *abort* when given.

    Raises
    ------
    ResponderError
        ``TIMEOUT`` when the deadline passes first.
    asyncio.CancelledError
        When *abort* is set before the call finishes.
    """
    if abort is None:
        try:
            return await asyncio.wait_for(awaitable, timeout_s)
        except asyncio.TimeoutError:
            raise ResponderError(
                f"Request timed out after {timeout_s:g}s", ResponderErrorCode.TIMEOUT, responder
            ) from None

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
    if task.done() and not task.cancelled():
        return task.result()
    raise asyncio.CancelledError("Request aborted")


_DONE = object()


async def _next_or_done(iterator: AsyncIterator[str]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _DONE


class ResponseStream:
    """Async iterator over answer fragments.

    ``answer`` holds the final :class:`ResponderAnswer` once the stream is
    exhausted.  The deadline covers the whole stream; an *abort* event
    replaces it.
    """

    def __init__(
        self,
        produce: Callable[[ResponseStream], AsyncIterator[str]],
        *,
        timeout_s: float,
        responder: str,
        abort: Optional[asyncio.Event] = None,
    ) -> None:
        self.answer: Optional[ResponderAnswer] = None
        self.responder = responder
        self._fragments = produce(self)
        self._timeout_s = timeout_s
        self._abort = abort
        self._deadline: Optional[float] = None

    def __aiter__(self) -> ResponseStream:
        return self

    async def __anext__(self) -> str:
        loop = asyncio.get_running_loop()
        if self._deadline is None:
            self._deadline = loop.time() + self._timeout_s
        remaining = max(0.0, self._deadline - loop.time())
        try:
            item = await run_with_deadline(
                _next_or_done(self._fragments),
                timeout_s=remaining,
                responder=self.responder,
                abort=self._abort,
            )
        except ResponderError as exc:
            if exc.code is not ResponderErrorCode.TIMEOUT:
                raise
            raise ResponderError(
                f"Request timed out after {self._timeout_s:g}s", ResponderErrorCode.TIMEOUT, self.responder
            ) from None
        if item is _DONE:
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        aclose = getattr(self._fragments, "aclose", None)
        if aclose is not None:
            await aclose()


class Responder(Protocol):
    """An answer-generation backend."""

    kind: ResponderKind
    label: str

    async def check_available(self) -> bool: ...

    async def generate_response(
        self,
        query: str,
        context: str,
        sources: list[Source],
        options: Optional[ResponseOptions] = None,
        *,
        abort: Optional[asyncio.Event] = None,
    ) -> ResponderAnswer: ...

    def stream_response(
        self,
        query: str,
        context: str,
        sources: list[Source],
        options: Optional[ResponseOptions] = None,
        *,
        abort: Optional[asyncio.Event] = None,
    ) -> ResponseStream: ...
