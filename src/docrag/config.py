"""Shared configuration loaded from environment / ``.env`` file."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # LLM (relevance filter + hosted responder)
    openai_api_key: str = Field(default="", description="API key for the hosted chat API")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL of an OpenAI-compatible chat API. Leave empty to use "
            "OpenAI cloud, or point it at a gateway such as "
            "'https://openrouter.ai/api/v1'."
        ),
    )
    filter_model_name: str = Field(default="gpt-4o-mini", description="Model used by the relevance filter")
    responder_model_name: str = Field(default="gpt-4o-mini", description="Model used by the hosted responder")
    responder_max_tokens: int = 2048
    responder_temperature: float = 0.7

    # Responders
    rag_responder: Literal["", "primary", "secondary"] = Field(
        default="",
        description="Default responder backend; empty means primary with fallback",
    )
    responder_cli_command: str = "claude"
    responder_cli_args: list[str] = Field(default_factory=lambda: ["-p"])
    responder_timeout_s: float = 60.0
    availability_ttl_s: float = 30.0
    check_timeout_s: float = 5.0

    # Vector store
    chroma_host: str = Field(default="", description="Chroma server host; empty uses a local persistent client")
    chroma_port: int = 8000
    chroma_path: str = "data/vectors"
    chroma_collection: str = "documents"
    store_page_size: int = 1000

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_batch_size: int = 50

    # Chunking / retrieval
    chunk_size: int = 100
    chunk_overlap: int = 20
    top_k: int = 5

    # Upload / transport
    max_upload_bytes: int = 10 * 1024 * 1024
    sse_flush_delay_s: float = 0.01
    cors_origin: str = Field(default="*", description="Allowed CORS origin(s), comma-separated")

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @model_validator(mode="after")
    def _check_chunking(self) -> Settings:
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and less than chunk_size")
        return self

    @property
    def cors_origins(self) -> list[str]:
        """``cors_origin`` split on commas, blanks dropped."""
        return [origin.strip() for origin in self.cors_origin.split(",") if origin.strip()] or ["*"]


# Singleton — import `settings` wherever needed.
settings = Settings()
