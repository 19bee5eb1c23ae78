"""Request / response schemas of the HTTP API (camelCase on the wire)."""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from docrag.schemas import CamelModel, Source, SubAgentResult, TokenUsage
from docrag.service import QueryResult, QueryTiming


class UploadRequest(CamelModel):
    text: str = Field(min_length=1)
    name: str = Field(min_length=1)
    source: Optional[str] = None
    type: Optional[str] = None


class UploadResponse(CamelModel):
    success: bool = True
    document_id: str
    chunks: int
    message: str


class EstimateRequest(CamelModel):
    text: str = Field(min_length=1)


class SearchRequest(CamelModel):
    query: str
    top_k: Optional[int] = None
    document_id: Optional[str] = None


class QueryRequest(SearchRequest):
    """Incoming question from the user."""

    compress: bool = False
    system_prompt: Optional[str] = None
    responder: Optional[str] = None


class QueryResponse(CamelModel):
    """Answer returned by the query workflow."""

    answer: str
    sources: list[Source] = Field(default_factory=list)
    tokens_used: TokenUsage
    timing: QueryTiming
    responder: str
    responder_fallback: Optional[bool] = None
    responder_fallback_message: Optional[str] = None
    sub_agent_result: Optional[SubAgentResult] = None

    @classmethod
    def from_result(cls, result: QueryResult) -> QueryResponse:
        return cls(
            answer=result.answer,
            sources=result.sources,
            tokens_used=result.tokens_used,
            timing=result.timing,
            responder=result.responder_used,
            responder_fallback=True if result.responder_fallback else None,
            responder_fallback_message=result.responder_fallback_message if result.responder_fallback else None,
            sub_agent_result=result.sub_agent_result,
        )
