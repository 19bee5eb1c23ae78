"""Turn raw backend failures into classified :class:`ResponderError` values."""

from __future__ import annotations

import asyncio
from typing import Optional

from docrag.errors import ResponderError, ResponderErrorCode

_AUTH_MARKERS = ("unauthorized", "authentication", "not logged in", "please log in", "invalid api key", "api key")
_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "too many requests", "quota", "usage limit", "overloaded")
_SAFETY_MARKERS = ("safety", "blocked", "content policy", "content_filter")
_TIMEOUT_MARKERS = ("timeout", "timed out", "deadline")
_NETWORK_MARKERS = ("network", "connection", "econnrefused", "enotfound", "unreachable", "dns")
_NOT_FOUND_MARKERS = ("command not found", "no such file", "not installed")


def _matches(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


def classify_cli_error(stderr: str, stdout: str = "", returncode: Optional[int] = None) -> ResponderError:
    """Classify a failed run of the local CLI responder.

    Parameters
    ----------
    stderr, stdout:
        Captured process output.
    returncode:
        Exit status; ``None`` or a negative value means the process was
        killed by a signal rather than exiting on its own.
    """
    responder = "primary"
    if returncode is None or returncode < 0:
        signal_note = f" (signal {-returncode})" if returncode is not None else ""
        return ResponderError(
            f"CLI responder was terminated before finishing{signal_note}",
            ResponderErrorCode.UNKNOWN,
            responder,
        )

    output = f"{stderr}\n{stdout}".lower()
    if _matches(output, _AUTH_MARKERS):
        return ResponderError(
            "CLI responder is not authenticated. Log in with the CLI and try again.",
            ResponderErrorCode.AUTH,
            responder,
        )
    if _matches(output, _RATE_LIMIT_MARKERS):
        return ResponderError(
            "CLI responder hit a rate or usage limit. Try again later.",
            ResponderErrorCode.RATE_LIMIT,
            responder,
        )
    if _matches(output, _NOT_FOUND_MARKERS) or returncode == 127:
        return ResponderError("CLI responder command not found", ResponderErrorCode.NOT_FOUND, responder)

    detail = (stderr or stdout).strip()[:200] or "no output"
    return ResponderError(
        f"CLI responder exited with code {returncode}: {detail}",
        ResponderErrorCode.UNKNOWN,
        responder,
    )


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_api_error(exc: BaseException, timeout_s: Optional[float] = None) -> ResponderError:
    """Classify an exception raised by the hosted chat API client."""
    responder = "secondary"
    if isinstance(exc, ResponderError):
        return exc

    status = _status_code(exc)
    message = str(exc).lower()

    if status in (401, 403) or _matches(message, _AUTH_MARKERS):
        return ResponderError(
            "Hosted responder rejected the API key. Check OPENAI_API_KEY.",
            ResponderErrorCode.AUTH,
            responder,
        )
    if status == 429 or _matches(message, _RATE_LIMIT_MARKERS):
        return ResponderError(
            "Hosted responder quota or rate limit exceeded. Try again later.",
            ResponderErrorCode.RATE_LIMIT,
            responder,
        )
    if status == 404:
        return ResponderError(
            "Hosted responder model or endpoint not found", ResponderErrorCode.NOT_FOUND, responder
        )
    if _matches(message, _SAFETY_MARKERS):
        return ResponderError(
            "Hosted responder blocked the request for safety reasons",
            ResponderErrorCode.SAFETY,
            responder,
        )
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)) or _matches(message, _TIMEOUT_MARKERS):
        after = f" after {timeout_s:g}s" if timeout_s else ""
        return ResponderError(f"Hosted responder timed out{after}", ResponderErrorCode.TIMEOUT, responder)
    if isinstance(exc, ConnectionError) or _matches(message, _NETWORK_MARKERS):
        return ResponderError(
            "Could not reach the hosted responder. Check your network connection.",
            ResponderErrorCode.NETWORK,
            responder,
        )
    return ResponderError(f"Hosted responder error: {exc}", ResponderErrorCode.UNKNOWN, responder)
