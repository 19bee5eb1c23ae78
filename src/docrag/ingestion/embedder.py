"""Embedding collaborator — text in, vectors out.

The rest of the package only depends on the :class:`Embedder` protocol;
the default implementation wraps a sentence-transformer model through
``langchain_huggingface``.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

from langchain_huggingface import HuggingFaceEmbeddings

from docrag.config import settings
from docrag.errors import InvalidInputError

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 8000

ProgressCallback = Callable[[int, int], None]


class Embedder(Protocol):
    """Black-box text → vector function."""

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(
        self,
        texts: list[str],
        *,
        batch_size: int = 50,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[list[float]]: ...

    async def check_ready(self) -> bool: ...


class HuggingFaceEmbedder:
    """Sentence-transformer embeddings (model loaded on first use)."""

    def __init__(self, model_name: str = settings.embedding_model) -> None:
        self.model_name = model_name
        self._model: HuggingFaceEmbeddings | None = None

    @property
    def model(self) -> HuggingFaceEmbeddings:
        if self._model is None:
            logger.info("Loading embedding model %s", self.model_name)
            self._model = HuggingFaceEmbeddings(model_name=self.model_name)
        return self._model

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise InvalidInputError("Text must be a non-empty string")
        return await self.model.aembed_query(text[:MAX_TEXT_LENGTH])

    async def embed_batch(
        self,
        texts: list[str],
        *,
        batch_size: int = settings.embedding_batch_size,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[list[float]]:
        """Embed *texts* in batches, reporting ``(completed, total)`` after each."""
        if batch_size < 1:
            raise InvalidInputError("batch_size must be at least 1")

        vectors: list[list[float]] = []
        total = len(texts)
        for start in range(0, total, batch_size):
            batch = [t[:MAX_TEXT_LENGTH] for t in texts[start : start + batch_size]]
            vectors.extend(await self.model.aembed_documents(batch))
            if on_progress is not None:
                on_progress(min(start + batch_size, total), total)
        return vectors

    async def check_ready(self) -> bool:
        try:
            return len(await self.embed("test")) > 0
        except Exception:
            logger.warning("Embedding model health-check failed", exc_info=True)
            return False
