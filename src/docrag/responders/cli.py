"""Primary responder: a local assistant CLI run in print mode.

The prompt is written to the process's stdin and the answer read from
stdout.  The CLI reports no token usage, so counts are estimated at four
characters per token.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
from collections.abc import AsyncIterator
from typing import Any, Callable, Optional

from docrag.agent.prompts import build_cli_prompt
from docrag.config import settings
from docrag.errors import ResponderError, ResponderErrorCode
from docrag.responders.base import (
    ResponseOptions,
    ResponseStream,
    run_with_deadline,
    validate_request,
)
from docrag.responders.errors import classify_cli_error
from docrag.schemas import ResponderAnswer, Source, TokenUsage

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 1024


def estimate_tokens(text: str) -> int:
    return len(text) // 4


async def _kill(proc: Any) -> None:
    """Kill *proc* if it is still running and reap it."""
    if proc.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


class CliResponder:
    """Answer generation through a local CLI process.

    Parameters
    ----------
    command:
        Executable name or path.
    args:
        Arguments putting the CLI in non-interactive print mode.
    timeout_s:
        Deadline for one answer.
    check_timeout_s:
        Deadline for the ``--version`` availability check.
    create_process:
        Process factory with the signature of
        :func:`asyncio.create_subprocess_exec`.
    """

    kind = "primary"
    label = "Local CLI"

    def __init__(
        self,
        command: str = settings.responder_cli_command,
        args: Optional[list[str]] = None,
        *,
        timeout_s: float = settings.responder_timeout_s,
        check_timeout_s: float = settings.check_timeout_s,
        create_process: Callable[..., Any] = asyncio.create_subprocess_exec,
    ) -> None:
        self.command = command
        self.args = list(settings.responder_cli_args if args is None else args)
        self.timeout_s = timeout_s
        self.check_timeout_s = check_timeout_s
        self._create_process = create_process

    async def check_available(self) -> bool:
        """Run ``<command> --version``; available when it exits 0 in time."""
        try:
            proc = await self._create_process(
                self.command,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError:
            logger.debug("CLI responder %r is not installed", self.command)
            return False
        try:
            await asyncio.wait_for(proc.communicate(), self.check_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("CLI responder availability check timed out after %gs", self.check_timeout_s)
            await _kill(proc)
            return False
        return proc.returncode == 0

    async def _spawn(self) -> Any:
        try:
            return await self._create_process(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ResponderError(
                f"CLI responder command {self.command!r} not found", ResponderErrorCode.NOT_FOUND, self.kind
            ) from exc

    async def _run(self, prompt: str) -> str:
        proc = await self._spawn()
        try:
            stdout, stderr = await proc.communicate(prompt.encode("utf-8"))
        finally:
            await _kill(proc)
        out = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise classify_cli_error(stderr.decode("utf-8", errors="replace"), out, proc.returncode)
        return out.strip()

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
        prompt = build_cli_prompt(query, context, options.system_prompt)

        answer = await run_with_deadline(self._run(prompt), timeout_s=self.timeout_s, responder=self.kind, abort=abort)
        return ResponderAnswer(
            answer=answer,
            sources=sources,
            tokens_used=TokenUsage(input=estimate_tokens(prompt), output=estimate_tokens(answer)),
        )

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
        prompt = build_cli_prompt(query, context, options.system_prompt)

        async def produce(stream: ResponseStream) -> AsyncIterator[str]:
            proc = await self._spawn()
            stderr_task = asyncio.ensure_future(proc.stderr.read())
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            parts: list[str] = []
            try:
                proc.stdin.write(prompt.encode("utf-8"))
                await proc.stdin.drain()
                proc.stdin.close()

                while True:
                    data = await proc.stdout.read(READ_CHUNK_BYTES)
                    text = decoder.decode(data, final=not data)
                    if text:
                        parts.append(text)
                        yield text
                    if not data:
                        break

                returncode = await proc.wait()
                stderr = (await stderr_task).decode("utf-8", errors="replace")
                if returncode != 0:
                    raise classify_cli_error(stderr, "".join(parts), returncode)
            finally:
                stderr_task.cancel()
                await _kill(proc)

            answer = "".join(parts).strip()
            stream.answer = ResponderAnswer(
                answer=answer,
                sources=sources,
                tokens_used=TokenUsage(input=estimate_tokens(prompt), output=estimate_tokens(answer)),
            )

        return ResponseStream(produce, timeout_s=self.timeout_s, responder=self.kind, abort=abort)
