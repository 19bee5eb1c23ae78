"""
Responders — grounded answer generation with automatic fallback.

Public surface
--------------
- :class:`ResponderOrchestrator` — selects a backend per call and falls back.
- :func:`select_responder` — the pure selection rule.
- :class:`CliResponder` — ``primary``: a local assistant CLI.
- :class:`ApiResponder` — ``secondary``: a hosted OpenAI-compatible API.
- :class:`Responder` — the protocol both backends satisfy.
"""

from docrag.responders.api import ApiResponder
from docrag.responders.availability import AvailabilityCache
from docrag.responders.base import Responder, ResponseOptions, ResponseStream
from docrag.responders.cli import CliResponder
from docrag.responders.orchestrator import (
    OrchestratedAnswer,
    OrchestratedStream,
    ResponderOrchestrator,
    ResponderSelection,
    select_responder,
)

__all__ = [
    "ApiResponder",
    "AvailabilityCache",
    "CliResponder",
    "OrchestratedAnswer",
    "OrchestratedStream",
    "Responder",
    "ResponderOrchestrator",
    "ResponderSelection",
    "ResponseOptions",
    "ResponseStream",
    "select_responder",
]
