"""FastAPI application exposing the RAG service as a REST API."""

from __future__ import annotations

import io
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Depends, FastAPI, File, Form, Header, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docrag.config import settings
from docrag.errors import (
    DocumentNotFoundError,
    InvalidInputError,
    PayloadTooLargeError,
    RAGError,
    ResponderError,
    ResponderErrorCode,
    RetrieverError,
    StoreError,
)
from docrag.responders.orchestrator import parse_responder_kind
from docrag.service import RAGService, validate_query_options
from docrag.serving.schemas import (
    EstimateRequest,
    QueryRequest,
    QueryResponse,
    SearchRequest,
    UploadRequest,
    UploadResponse,
)
from docrag.serving.sse import format_sse, sse_response

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("docrag API starting (default responder: %s)", settings.rag_responder or "primary")
    yield
    logger.info("docrag API stopped")


app = FastAPI(
    title="docrag API",
    version="0.1.0",
    description="Upload documents and ask questions answered from them.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Responder"],
)

_service: Optional[RAGService] = None


def get_service() -> RAGService:
    """Lazily build the process-wide service from settings."""
    global _service
    if _service is None:
        _service = RAGService.from_settings()
    return _service


# ── Error mapping ─────────────────────────────────────────────────────

_RESPONDER_STATUS = {
    ResponderErrorCode.TIMEOUT: 504,
    ResponderErrorCode.NOT_FOUND: 503,
    ResponderErrorCode.RATE_LIMIT: 429,
}


def status_for(exc: RAGError) -> int:
    if isinstance(exc, PayloadTooLargeError):
        return 413
    if isinstance(exc, InvalidInputError):
        return 400
    if isinstance(exc, DocumentNotFoundError):
        return 404
    if isinstance(exc, ResponderError):
        return _RESPONDER_STATUS.get(exc.code, 502)
    if isinstance(exc, RetrieverError):
        return 502
    if isinstance(exc, StoreError):
        return 500
    return 500


def error_code(exc: RAGError) -> str:
    return getattr(exc.code, "value", exc.code)


def error_body(message: str, code: str) -> dict[str, str]:
    return {"error": message, "code": code}


@app.exception_handler(RAGError)
async def rag_error_handler(request: Request, exc: RAGError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=error_body(exc.message, error_code(exc)))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid field {field}: {first.get('msg', 'invalid value')}" if field else "Invalid request"
    return JSONResponse(status_code=400, content=error_body(message, InvalidInputError.code))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error", "INTERNAL_ERROR"))


# ── Health ────────────────────────────────────────────────────────────


@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness check."""
    return {"status": "ok"}


@app.get("/api/health")
async def readiness(service: RAGService = Depends(get_service)) -> dict[str, Any]:
    """Readiness of the embedding model, responders and store."""
    status = await service.is_ready()
    try:
        store: Optional[dict[str, Any]] = (await service.stats()).to_wire()
    except StoreError:
        logger.warning("Store statistics unavailable for readiness report", exc_info=True)
        store = None
    return {
        "status": "healthy" if status["ready"] else "unhealthy",
        **status,
        "responders": await service.responder_status(),
        "store": store,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/api/responders")
async def responders(service: RAGService = Depends(get_service)) -> dict[str, Any]:
    status = await service.responder_status()
    return {
        "available": {
            "primary": {
                "available": status["primary"],
                "description": "Local assistant CLI (requires installation and authentication)",
            },
            "secondary": {
                "available": status["secondary"],
                "description": "Hosted OpenAI-compatible chat API (requires OPENAI_API_KEY)",
            },
        },
        "default": status["default"],
        "usage": {
            "queryParam": "?responder=primary or ?responder=secondary",
            "header": "X-Responder: primary or X-Responder: secondary",
        },
    }


# ── Ingestion ─────────────────────────────────────────────────────────


class _BufferedUpload:
    """Async reader over an upload already pulled from the request."""

    def __init__(self, data: bytes) -> None:
        self._buffer = io.BytesIO(data)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)


@app.post("/api/rag/upload", status_code=201)
async def upload(request: UploadRequest, service: RAGService = Depends(get_service)) -> dict[str, Any]:
    """Chunk, embed and store a plain-text document."""
    result = await service.add_document(request.text, name=request.name, source=request.source, type=request.type)
    return UploadResponse(
        document_id=result.document_id,
        chunks=result.chunks,
        message=f'Document "{request.name}" uploaded and processed into {result.chunks} chunks',
    ).to_wire()


@app.post("/api/rag/upload/stream")
async def upload_stream(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    service: RAGService = Depends(get_service),
):
    """Upload a file and stream ``progress`` / ``warning`` / ``complete`` / ``error`` events."""
    # One byte past the limit is enough for the controller to reject it.
    data = await file.read(service.uploads.max_upload_bytes + 1)
    filename = file.filename or "upload"

    async def frames() -> AsyncIterator[str]:
        events = service.uploads.stream(
            _BufferedUpload(data), filename=filename, mime_type=file.content_type, name=name or None
        )
        async for event in events:
            yield format_sse(event.event, event.data)

    return sse_response(frames())


@app.post("/api/rag/upload/estimate")
async def upload_estimate(request: EstimateRequest, service: RAGService = Depends(get_service)) -> dict[str, Any]:
    return service.estimate(request.text).to_wire()


# ── Queries ───────────────────────────────────────────────────────────


def _responder_preference(body: Optional[str], param: Optional[str], header: Optional[str]) -> Optional[str]:
    """Body field first, then ``?responder=``, then the ``X-Responder`` header."""
    for value in (body, param, header):
        if value and value.strip():
            return value
    return None


@app.post("/api/rag/query")
async def query(
    request: QueryRequest,
    responder: Optional[str] = Query(None),
    x_responder: Optional[str] = Header(None),
    service: RAGService = Depends(get_service),
) -> dict[str, Any]:
    """Run the query workflow and return the answer with sources and timing."""
    result = await service.query(
        request.query,
        top_k=request.top_k,
        document_id=request.document_id,
        compress=request.compress,
        system_prompt=request.system_prompt,
        responder=_responder_preference(request.responder, responder, x_responder),
    )
    return QueryResponse.from_result(result).to_wire()


@app.post("/api/rag/query/stream")
async def query_stream(
    request: QueryRequest,
    responder: Optional[str] = Query(None),
    x_responder: Optional[str] = Header(None),
    service: RAGService = Depends(get_service),
):
    """Stream ``sources``, ``token`` and ``complete`` events (``error`` on failure)."""
    preference = _responder_preference(request.responder, responder, x_responder)
    validate_query_options(request.query, request.top_k, request.document_id)
    parse_responder_kind(preference)

    async def frames() -> AsyncIterator[str]:
        try:
            async for event, payload in service.stream_query(
                request.query,
                top_k=request.top_k,
                document_id=request.document_id,
                compress=request.compress,
                system_prompt=request.system_prompt,
                responder=preference,
            ):
                if event == "sources":
                    yield format_sse("sources", {"sources": [source.to_wire() for source in payload]})
                elif event == "token":
                    yield format_sse("token", {"text": payload})
                else:
                    yield format_sse("complete", QueryResponse.from_result(payload).to_wire())
        except RAGError as exc:
            logger.warning("Streaming query failed: %r", exc)
            yield format_sse("error", error_body(exc.message, error_code(exc)))
        except Exception:
            logger.exception("Streaming query failed")
            yield format_sse("error", error_body("Internal server error", "INTERNAL_ERROR"))

    return sse_response(frames())


@app.post("/api/rag/search")
async def search(request: SearchRequest, service: RAGService = Depends(get_service)) -> dict[str, Any]:
    """Search only: ranked chunks and a formatted context, no model call."""
    outcome = await service.search(request.query, top_k=request.top_k, document_id=request.document_id)
    return outcome.to_wire()


# ── Documents ─────────────────────────────────────────────────────────


@app.get("/api/rag/documents")
async def list_documents(service: RAGService = Depends(get_service)) -> dict[str, Any]:
    documents = await service.list_documents()
    return {"documents": documents, "count": len(documents)}


@app.get("/api/rag/documents/details")
async def list_document_details(service: RAGService = Depends(get_service)) -> dict[str, Any]:
    summaries = await service.document_summaries()
    return {"documents": [summary.to_wire() for summary in summaries]}


@app.get("/api/rag/documents/{document_id}/details")
async def document_details(document_id: str, service: RAGService = Depends(get_service)) -> dict[str, Any]:
    return (await service.document_details(document_id)).to_wire()


@app.delete("/api/rag/documents/{document_id}")
async def delete_document(document_id: str, service: RAGService = Depends(get_service)) -> dict[str, Any]:
    await service.delete_document(document_id)
    return {"success": True, "message": f"Document {document_id} deleted"}
