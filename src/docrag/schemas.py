"""Wire-level models shared by the agent, responder, ingestion and serving layers.

All models serialise with camelCase aliases (``documentId``,
``chunkIndex`` …) because that is what HTTP / SSE clients consume, while
Python code keeps using snake_case attribute names.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SNIPPET_LENGTH = 150


class CamelModel(BaseModel):
    """Base model serialising to camelCase, populated by either name."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Source(CamelModel):
    """A chunk cited in an answer."""

    document_id: str
    document_name: str
    chunk_index: int
    snippet: str


class TokenUsage(CamelModel):
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output


class ResponderAnswer(CamelModel):
    answer: str
    sources: list[Source] = Field(default_factory=list)
    tokens_used: TokenUsage = Field(default_factory=TokenUsage)


class RetrievedChunk(CamelModel):
    """A search hit handed to the relevance filter and the responders.

    ``score`` is the raw search distance, so smaller means more similar.
    """

    text: str
    document_id: str
    document_name: str
    chunk_index: int
    score: float = 0.0

    def to_source(self) -> Source:
        return Source(
            document_id=self.document_id,
            document_name=self.document_name,
            chunk_index=self.chunk_index,
            snippet=self.text[:SNIPPET_LENGTH] + "...",
        )


class SubAgentResult(CamelModel):
    """Outcome of the relevance-filter sub-agent."""

    relevant_context: str
    selected_chunks: list[int] = Field(default_factory=list)
    summary: Optional[str] = None
    tokens_used: int = 0
    reasoning: Optional[str] = None


class UploadStage(str, Enum):
    READING = "reading"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"
    COMPLETE = "complete"
    ERROR = "error"


class UploadProgress(CamelModel):
    stage: UploadStage
    percent: int = Field(ge=0, le=100)
    current: Optional[int] = None
    total: Optional[int] = None
    chunk_count: Optional[int] = None


class ChunkEstimate(CamelModel):
    word_count: int
    estimated_chunks: int
    chunk_size: int
    chunk_overlap: int
