"""Pick a responder backend per call and fall back when it is unavailable.

Selection order: explicit per-call override, then the configured default
(``RAG_RESPONDER``), then ``primary``.  The chosen backend is used when its
availability check passes; otherwise the other one is used and the answer
is tagged as a fallback.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Callable, Optional

from docrag.config import settings
from docrag.errors import InvalidInputError, ResponderError, ResponderErrorCode
from docrag.responders.availability import AvailabilityCache
from docrag.responders.base import (
    Responder,
    ResponderKind,
    ResponseOptions,
    ResponseStream,
    validate_request,
)
from docrag.schemas import ResponderAnswer, Source

logger = logging.getLogger(__name__)

RESPONDER_KINDS: tuple[ResponderKind, ...] = ("primary", "secondary")


def alternate_of(kind: ResponderKind) -> ResponderKind:
    return "secondary" if kind == "primary" else "primary"


def parse_responder_kind(value: Optional[str]) -> Optional[ResponderKind]:
    """Normalise a user-supplied responder name; empty means "no preference"."""
    if value is None or not value.strip():
        return None
    kind = value.strip().lower()
    if kind not in RESPONDER_KINDS:
        raise InvalidInputError(f"Unknown responder {value!r}; expected 'primary' or 'secondary'")
    return kind  # type: ignore[return-value]


@dataclass(frozen=True)
class ResponderSelection:
    kind: ResponderKind
    fallback: bool = False
    message: Optional[str] = None


def select_responder(
    *,
    override: Optional[ResponderKind],
    default: Optional[ResponderKind],
    primary_available: bool,
    secondary_available: bool,
) -> ResponderSelection:
    """Decide which backend answers a query.

    Pure function of its inputs; availability is checked by the caller.

    Raises
    ------
    ResponderError
        ``NOT_FOUND`` when neither backend is available.
    """
    preferred: ResponderKind = override or default or "primary"
    alternate = alternate_of(preferred)
    available = {"primary": primary_available, "secondary": secondary_available}

    if available[preferred]:
        return ResponderSelection(kind=preferred)
    if available[alternate]:
        return ResponderSelection(
            kind=alternate,
            fallback=True,
            message=f"{preferred.capitalize()} responder not available, falling back to {alternate} responder",
        )
    raise ResponderError(
        f"No responder available: the {preferred} responder is not available and neither is the {alternate} fallback",
        ResponderErrorCode.NOT_FOUND,
        preferred,
    )


class OrchestratedAnswer(ResponderAnswer):
    """A responder answer tagged with the backend that produced it."""

    responder_used: ResponderKind
    responder_fallback: bool = False
    responder_fallback_message: Optional[str] = None

    @classmethod
    def from_answer(cls, answer: ResponderAnswer, selection: ResponderSelection) -> OrchestratedAnswer:
        return cls(
            answer=answer.answer,
            sources=answer.sources,
            tokens_used=answer.tokens_used,
            responder_used=selection.kind,
            responder_fallback=selection.fallback,
            responder_fallback_message=selection.message,
        )


class OrchestratedStream:
    """Answer fragments from the selected backend.

    If the selected backend turns out to be missing before it produced any
    output, the stream transparently restarts on the alternate backend.
    ``selection`` always names the backend actually streaming and
    ``answer`` is set once the stream is exhausted.
    """

    def __init__(
        self,
        orchestrator: ResponderOrchestrator,
        selection: ResponderSelection,
        open_stream: Callable[[ResponderKind], ResponseStream],
    ) -> None:
        self.selection = selection
        self.answer: Optional[OrchestratedAnswer] = None
        self._orchestrator = orchestrator
        self._open_stream = open_stream

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        stream = self._open_stream(self.selection.kind)
        started = False
        try:
            async for fragment in stream:
                started = True
                yield fragment
        except ResponderError as exc:
            if started or not self._orchestrator.should_retry(self.selection, exc):
                raise
            self.selection = await self._orchestrator.fallback_after(self.selection, exc)
            stream = self._open_stream(self.selection.kind)
            async for fragment in stream:
                yield fragment

        if stream.answer is not None:
            self.answer = OrchestratedAnswer.from_answer(stream.answer, self.selection)


class ResponderOrchestrator:
    """Routes answer generation to one of two backends.

    Parameters
    ----------
    primary, secondary:
        The two backends.
    default:
        Configured default backend; empty means ``primary``.
    ttl_s:
        Availability cache lifetime.
    clock:
        Time source for the availability caches.
    """

    def __init__(
        self,
        primary: Responder,
        secondary: Responder,
        *,
        default: Optional[str] = settings.rag_responder,
        ttl_s: float = settings.availability_ttl_s,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._responders: dict[str, Responder] = {"primary": primary, "secondary": secondary}
        self.default = parse_responder_kind(default)
        self._availability = {
            kind: AvailabilityCache(responder.check_available, ttl_s=ttl_s, clock=clock)
            for kind, responder in self._responders.items()
        }

    def responder(self, kind: ResponderKind) -> Responder:
        return self._responders[kind]

    async def availability(self) -> dict[str, bool]:
        primary, secondary = await asyncio.gather(
            self._availability["primary"].get(),
            self._availability["secondary"].get(),
        )
        return {"primary": primary, "secondary": secondary}

    async def select(self, override: Optional[str] = None) -> ResponderSelection:
        available = await self.availability()
        selection = select_responder(
            override=parse_responder_kind(override),
            default=self.default,
            primary_available=available["primary"],
            secondary_available=available["secondary"],
        )
        if selection.fallback:
            logger.warning(selection.message)
        else:
            logger.debug("Using %s responder", selection.kind)
        return selection

    def should_retry(self, selection: ResponderSelection, exc: ResponderError) -> bool:
        return exc.code is ResponderErrorCode.NOT_FOUND and not selection.fallback

    async def fallback_after(self, selection: ResponderSelection, exc: ResponderError) -> ResponderSelection:
        """Switch to the alternate backend after the selected one went missing."""
        self._availability[selection.kind].invalidate()
        alternate = alternate_of(selection.kind)
        if not await self._availability[alternate].get():
            raise exc
        message = f"{selection.kind.capitalize()} responder failed ({exc.message}), falling back to {alternate} responder"
        logger.warning(message)
        return ResponderSelection(kind=alternate, fallback=True, message=message)

    async def generate(
        self,
        query: str,
        context: str,
        sources: list[Source],
        options: Optional[ResponseOptions] = None,
        *,
        responder: Optional[str] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> OrchestratedAnswer:
        """Generate an answer on the selected backend, retrying once on the alternate.

        Parameters
        ----------
        query, context, sources:
            The grounded question.
        options:
            System prompt and sampling overrides.
        responder:
            Per-call backend override (``"primary"`` / ``"secondary"``).
        abort:
            Event that cancels the call when set.
        """
        validate_request(query, context, sources)
        selection = await self.select(responder)
        return await self.generate_with(selection, query, context, sources, options, abort=abort)

    async def generate_with(
        self,
        selection: ResponderSelection,
        query: str,
        context: str,
        sources: list[Source],
        options: Optional[ResponseOptions] = None,
        *,
        abort: Optional[asyncio.Event] = None,
    ) -> OrchestratedAnswer:
        """Like :meth:`generate` but with an already made selection."""
        try:
            answer = await self.responder(selection.kind).generate_response(
                query, context, sources, options, abort=abort
            )
        except ResponderError as exc:
            if not self.should_retry(selection, exc):
                raise
            selection = await self.fallback_after(selection, exc)
            answer = await self.responder(selection.kind).generate_response(
                query, context, sources, options, abort=abort
            )
        return OrchestratedAnswer.from_answer(answer, selection)

    async def stream(
        self,
        query: str,
        context: str,
        sources: list[Source],
        options: Optional[ResponseOptions] = None,
        *,
        responder: Optional[str] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> OrchestratedStream:
        validate_request(query, context, sources)
        selection = await self.select(responder)
        return self.stream_with(selection, query, context, sources, options, abort=abort)

    def stream_with(
        self,
        selection: ResponderSelection,
        query: str,
        context: str,
        sources: list[Source],
        options: Optional[ResponseOptions] = None,
        *,
        abort: Optional[asyncio.Event] = None,
    ) -> OrchestratedStream:
        def open_stream(kind: ResponderKind) -> ResponseStream:
            return self.responder(kind).stream_response(query, context, sources, options, abort=abort)

        return OrchestratedStream(self, selection, open_stream)
