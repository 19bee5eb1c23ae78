"""Word-window text chunking.

Text is split on whitespace and cut into windows of ``chunk_size`` words;
consecutive windows share ``overlap`` words.  E.g. with ``chunk_size=200``
and ``overlap=50``: chunk 1 is words 0-199, chunk 2 is words 150-349, …

The window loop stops as soon as a window reaches the last word, so a
trailing window that would be fully contained in its predecessor is never
produced.  That makes the chunk count exactly
``max(1, ceil((word_count - overlap) / step))`` and lets
:func:`estimate_chunks` predict it without materialising anything.
"""

from __future__ import annotations

import math

from docrag.errors import InvalidInputError
from docrag.schemas import ChunkEstimate


def _check_window(chunk_size: int, overlap: int) -> int:
    if chunk_size < 1:
        raise InvalidInputError("chunk_size must be at least 1")
    if overlap < 0 or overlap >= chunk_size:
        raise InvalidInputError("chunk_overlap must be >= 0 and less than chunk_size")
    return chunk_size - overlap


def chunk_text(text: str, chunk_size: int = 100, overlap: int = 20) -> list[str]:
    """Split *text* into overlapping word windows.

    Parameters
    ----------
    text:
        Raw document text.
    chunk_size:
        Number of words per chunk.
    overlap:
        Number of words shared by consecutive chunks.

    Returns
    -------
    list[str]
        Chunks in document order; index ``i`` becomes ``chunk_index=i``.
    """
    step = _check_window(chunk_size, overlap)
    words = text.split()
    chunks: list[str] = []

    i = 0
    while i < len(words):
        window = " ".join(words[i : i + chunk_size])
        if window.strip():
            chunks.append(window)
        if i + chunk_size >= len(words):
            break
        i += step
    return chunks


def estimate_chunks(text: str, chunk_size: int = 100, overlap: int = 20) -> ChunkEstimate:
    """Predict how many chunks :func:`chunk_text` will produce for *text*."""
    step = _check_window(chunk_size, overlap)
    word_count = len(text.split())
    if word_count == 0:
        estimated = 0
    else:
        estimated = max(1, math.ceil((word_count - overlap) / step))
    return ChunkEstimate(
        word_count=word_count,
        estimated_chunks=estimated,
        chunk_size=chunk_size,
        chunk_overlap=overlap,
    )
