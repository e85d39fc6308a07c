"""Core DocFusion data models."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True, frozen=True)
class Heading:
    """A Markdown heading in document order."""

    level: int
    text: str
    start_line: int


@dataclass(slots=True)
class DocumentMetadata:
    """Minimal metadata describing a document."""

    path: Path
    title: str
    sha256: str
    mtime: float
    size: int
    word_count: int = 0
    id: int | None = None


@dataclass(slots=True, frozen=True)
class Chunk:
    """Contiguous slice of a document's text.

    ``content`` is always ``text[start_offset:end_offset]`` of the source
    document. ``heading`` holds the breadcrumb of the section the chunk was
    cut from, or ``None`` for text before the first heading.
    """

    document_id: int | None
    chunk_index: int
    heading: str | None
    content: str
    start_offset: int
    end_offset: int
    word_count: int
    token_count: int
    id: int | None = None

    @property
    def key(self) -> tuple[int | None, int]:
        return (self.document_id, self.chunk_index)


@dataclass(slots=True)
class RankedResult:
    """A chunk matched by a query, with its owning document."""

    chunk: Chunk
    document: DocumentMetadata
    similarity: float
    context: str | None = None
