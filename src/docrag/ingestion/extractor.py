"""Extraction collaborator — uploaded bytes to plain text.

Rich formats (PDF, DOCX, spreadsheets) are handled by external
extractors that satisfy :class:`TextExtractor`; the built-in
:class:`PlainTextExtractor` covers text-like formats only.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from typing import Optional, Protocol

from bs4 import BeautifulSoup

from docrag.errors import InvalidInputError

SUPPORTED_MIME_TYPES = frozenset(
    {
        "text/plain",
        "text/markdown",
        "text/x-markdown",
        "text/csv",
        "text/html",
        "application/json",
    }
)

_EXTRA_EXTENSIONS = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".txt": "text/plain",
    ".csv": "text/csv",
}

_BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]


@dataclass
class ExtractionResult:
    """Text pulled out of a file.

    Attributes
    ----------
    text:
        The extracted plain text.
    is_scanned:
        ``True`` when the extractor believes the file is image-based and the
        text is likely incomplete.
    warnings:
        Non-fatal issues encountered while extracting.
    """

    text: str
    is_scanned: bool = False
    warnings: list[str] = field(default_factory=list)


class TextExtractor(Protocol):
    async def extract(self, data: bytes, mime_type: str, filename: str) -> ExtractionResult: ...


def get_mime_type(filename: str) -> Optional[str]:
    """Guess a MIME type from *filename*'s extension."""
    lowered = filename.lower()
    for ext, mime in _EXTRA_EXTENSIONS.items():
        if lowered.endswith(ext):
            return mime
    guessed, _ = mimetypes.guess_type(filename)
    return guessed


def is_supported(mime_type: Optional[str]) -> bool:
    if not mime_type:
        return False
    return mime_type.split(";")[0].strip().lower() in SUPPORTED_MIME_TYPES


class PlainTextExtractor:
    """Decode text-like uploads; strips markup from HTML."""

    async def extract(self, data: bytes, mime_type: str, filename: str) -> ExtractionResult:
        if not is_supported(mime_type):
            raise InvalidInputError(
                f"Unsupported file type: {mime_type or 'unknown'}. Supported: TXT, MD, CSV, JSON, HTML"
            )

        warnings: list[str] = []
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            text = data.decode("utf-8", errors="replace")
            warnings.append(f"{filename} is not valid UTF-8; undecodable bytes were replaced")

        if mime_type.startswith("text/html"):
            text = _html_to_text(text)

        return ExtractionResult(text=text, warnings=warnings)


def _html_to_text(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    return soup.get_text(separator="\n", strip=True)
