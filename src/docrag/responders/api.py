"""Secondary responder: a hosted OpenAI-compatible chat API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Optional

from langchain_core.language_models import BaseChatModel

from docrag.agent.llm import get_llm, usage_tokens
from docrag.agent.prompts import build_responder_messages
from docrag.config import settings
from docrag.responders.base import (
    ResponseOptions,
    ResponseStream,
    run_with_deadline,
    validate_request,
)
from docrag.responders.errors import classify_api_error
from docrag.schemas import ResponderAnswer, Source, TokenUsage

logger = logging.getLogger(__name__)


class ApiResponder:
    """Answer generation through ``ChatOpenAI``.

    Parameters
    ----------
    api_key:
        Key for the chat API; the responder is unavailable without one.
    model:
        Model id, e.g. ``gpt-4o-mini`` or an OpenRouter model slug.
    timeout_s:
        Deadline for one answer.
    llm:
        Preconfigured chat model, mainly for tests.  When given, per-call
        ``max_tokens`` / ``temperature`` options are not applied.
    """

    kind = "secondary"
    label = "Hosted API"

    def __init__(
        self,
        *,
        api_key: str = settings.openai_api_key,
        model: str = settings.responder_model_name,
        timeout_s: float = settings.responder_timeout_s,
        llm: Optional[BaseChatModel] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_s = timeout_s
        self._llm = llm

    async def check_available(self) -> bool:
        return self._llm is not None or bool(self.api_key)

    def _chat_model(self, options: ResponseOptions, *, streaming: bool = False) -> BaseChatModel:
        if self._llm is not None:
            return self._llm
        return get_llm(
            settings.responder_temperature if options.temperature is None else options.temperature,
            model=self.model,
            max_tokens=options.max_tokens or settings.responder_max_tokens,
            streaming=streaming,
        )

    async def _invoke(self, llm: BaseChatModel, messages: list) -> ResponderAnswer:
        try:
            response = await llm.ainvoke(messages)
        except Exception as exc:
            raise classify_api_error(exc, self.timeout_s) from exc
        answer = response.content if isinstance(response.content, str) else str(response.content)
        input_tokens, output_tokens = usage_tokens(response)
        return ResponderAnswer(answer=answer, tokens_used=TokenUsage(input=input_tokens, output=output_tokens))

    async def generate_response(
        self,
        query: str,
        context: str,
        sources: list[Source],
        options: Optional[ResponseOptions] = None,
        *,
        abort: Optional[asyncio.Event] = None,
    ) -> ResponderAnswer:
        validate_request(query, context, sources)
        options = options or ResponseOptions()
        messages = build_responder_messages(query, context, options.system_prompt)

        result = await run_with_deadline(
            self._invoke(self._chat_model(options), messages),
            timeout_s=self.timeout_s,
            responder=self.kind,
            abort=abort,
        )
        result.sources = sources
        return result

    def stream_response(
        self,
        query: str,
        context: str,
        sources: list[Source],
        options: Optional[ResponseOptions] = None,
        *,
        abort: Optional[asyncio.Event] = None,
    ) -> ResponseStream:
        validate_request(query, context, sources)
        options = options or ResponseOptions()
        messages = build_responder_messages(query, context, options.system_prompt)
        llm = self._chat_model(options, streaming=True)

        async def produce(stream: ResponseStream) -> AsyncIterator[str]:
            parts: list[str] = []
            input_tokens = output_tokens = 0
            try:
                async for chunk in llm.astream(messages):
                    chunk_in, chunk_out = usage_tokens(chunk)
                    input_tokens += chunk_in
                    output_tokens += chunk_out
                    text = chunk.content if isinstance(chunk.content, str) else ""
                    if text:
                        parts.append(text)
                        yield text
            except Exception as exc:
                raise classify_api_error(exc, self.timeout_s) from exc

            stream.answer = ResponderAnswer(
                answer="".join(parts),
                sources=sources,
                tokens_used=TokenUsage(input=input_tokens, output=output_tokens),
            )

        return ResponseStream(produce, timeout_s=self.timeout_s, responder=self.kind, abort=abort)
