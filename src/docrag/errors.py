"""Exception hierarchy shared by every layer of the package.

Each exception carries a human-readable ``message`` that is safe to show
to end users.  Internal classification (``code``) is kept separate so the
HTTP layer can map it to a status without leaking internals.
"""

from __future__ import annotations

from enum import Enum


class RAGError(Exception):
    """Base class for all domain errors."""

    code = "ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(RAGError, ValueError):
    """Bad query, options or identifiers.  Raised before any I/O."""

    code = "INVALID_INPUT"


class PayloadTooLargeError(InvalidInputError):
    code = "PAYLOAD_TOO_LARGE"


class DocumentNotFoundError(RAGError, LookupError):
    code = "NOT_FOUND"

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class StoreError(RAGError):
    """Vector-store write or delete failure."""

    code = "STORE_ERROR"


class RetrieverError(RAGError):
    """The relevance-filter model call failed."""

    code = "RETRIEVER_ERROR"


class FilterParseError(RetrieverError):
    """The relevance-filter model returned output that is not the expected JSON."""

    code = "PARSE_ERROR"


class ResponderErrorCode(str, Enum):
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    SAFETY = "SAFETY"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    NOT_FOUND = "NOT_FOUND"
    UNKNOWN = "UNKNOWN"


class ResponderError(RAGError):
    """Classified failure of an answer-generation backend.

    Attributes
    ----------
    code:
        One of :class:`ResponderErrorCode`.
    responder:
        The backend that produced the failure (``"primary"`` or
        ``"secondary"``).
    """

    def __init__(self, message: str, code: ResponderErrorCode, responder: str) -> None:
        super().__init__(message)
        self.code = code
        self.responder = responder

    def __repr__(self) -> str:  # noqa: D105
        return f"ResponderError(code={self.code.value}, responder={self.responder!r}, message={self.message!r})"
