"""Heading-aware word chunking for Markdown documents.

Documents are first cut into sections at heading boundaries, then any section
longer than ``max_chunk_size`` words is split with a sliding window that
overlaps consecutive chunks by ``overlap_size`` words. Every chunk keeps the
absolute character offsets of its text in the source document.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Sequence

from docfusion.errors import ConfigurationError
from docfusion.models import Chunk, Heading
from docfusion.utils.text import estimate_tokens, word_spans

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ChunkConfig:
    max_chunk_size: int = 500
    overlap_size: int = 50
    split_on_headings: bool = True
    preserve_heading_context: bool = True
    token_multiplier: float = 1.3
    separator: str = " > "

    def __post_init__(self) -> None:
        if self.max_chunk_size <= 0:
            raise ConfigurationError("max_chunk_size must be greater than 0")
        if self.overlap_size < 0:
            raise ConfigurationError("overlap_size must not be negative")
        if self.token_multiplier <= 0:
            raise ConfigurationError("token_multiplier must be greater than 0")

    @property
    def step(self) -> int:
        # Never zero, even when overlap_size >= max_chunk_size.
        return max(1, self.max_chunk_size - self.overlap_size)


DEFAULT_CHUNK_CONFIG = ChunkConfig()


@dataclass(slots=True)
class _Section:
    heading: str | None
    start: int
    end: int


def _line_starts(text: str) -> List[int]:
    starts = [0]
    starts.extend(match.end() for match in re.finditer("\n", text))
    return starts


def _split_sections(
    text: str, headings: Sequence[Heading], config: ChunkConfig
) -> List[_Section]:
    if not config.split_on_headings or not headings:
        return [_Section(heading=None, start=0, end=len(text))]

    starts = _line_starts(text)

    def line_offset(line_number: int) -> int:
        index = line_number - 1
        if index <= 0:
            return 0
        if index >= len(starts):
            return len(text)
        return starts[index]

    sections = [_Section(heading=None, start=0, end=line_offset(headings[0].start_line))]
    stack: List[tuple[int, str]] = []

    for position, heading in enumerate(headings):
        while stack and stack[-1][0] >= heading.level:
            stack.pop()
        stack.append((heading.level, heading.text))

        if config.preserve_heading_context:
            breadcrumb = config.separator.join(title for _, title in stack)
        else:
            breadcrumb = heading.text

        start = line_offset(heading.start_line)
        if position + 1 < len(headings):
            end = line_offset(headings[position + 1].start_line)
        else:
            end = len(text)
        sections.append(_Section(heading=breadcrumb, start=start, end=max(start, end)))

    return sections


def chunk_document(
    text: str,
    headings: Sequence[Heading] = (),
    config: ChunkConfig | None = None,
    *,
    document_id: int | None = None,
) -> List[Chunk]:
    """Split ``text`` into ordered chunks.

    ``headings`` is the document outline in document order; each heading's
    ``start_line`` is 1-based. Chunk indices run from 0 across the whole
    document. Empty or blank text produces no chunks.
    """
    config = config or DEFAULT_CHUNK_CONFIG
    chunks: List[Chunk] = []

    def emit(heading: str | None, start: int, end: int, words: int) -> None:
        chunks.append(
            Chunk(
                document_id=document_id,
                chunk_index=len(chunks),
                heading=heading,
                content=text[start:end],
                start_offset=start,
                end_offset=end,
                word_count=words,
                token_count=estimate_tokens(words, config.token_multiplier),
            )
        )

    for section in _split_sections(text, headings, config):
        spans = [
            (section.start + start, section.start + end)
            for start, end in word_spans(text[section.start : section.end])
        ]
        if not spans:
            continue

        if len(spans) <= config.max_chunk_size:
            emit(section.heading, spans[0][0], spans[-1][1], len(spans))
            continue

        first = 0
        while True:
            window = spans[first : first + config.max_chunk_size]
            emit(section.heading, window[0][0], window[-1][1], len(window))
            if first + config.max_chunk_size >= len(spans):
                break
            first += config.step

    LOGGER.debug("Produced %d chunks for document %s", len(chunks), document_id)
    return chunks
