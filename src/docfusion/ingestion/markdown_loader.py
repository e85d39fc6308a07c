"""Markdown loading: frontmatter, heading outline and title extraction."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from docfusion.ingestion.chunker import ChunkConfig, chunk_document
from docfusion.models import Chunk, Heading

LOGGER = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


@dataclass(slots=True)
class ParsedMarkdown:
    text: str
    title: str
    headings: List[Heading]
    frontmatter: Dict[str, str] = field(default_factory=dict)


def split_frontmatter(lines: Sequence[str]) -> Tuple[Dict[str, str], int]:
    """Parse a leading ``---`` delimited block of ``key: value`` pairs.

    Returns the parsed pairs and the number of lines the block occupies
    (0 when the document has no frontmatter).
    """
    if not lines or lines[0].strip() != "---":
        return {}, 0

    frontmatter: Dict[str, str] = {}
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            return frontmatter, index + 1
        key, sep, value = line.partition(":")
        if sep and key.strip():
            frontmatter[key.strip()] = value.strip().strip("\"'")

    # Unterminated block: treat the whole thing as regular content.
    return {}, 0


def extract_headings(text: str) -> List[Heading]:
    """Return ATX headings in document order, ignoring frontmatter and code fences."""
    lines = text.split("\n")
    _, skip = split_frontmatter(lines)
    headings: List[Heading] = []
    in_fence = False

    for line_number, line in enumerate(lines, start=1):
        if line_number <= skip:
            continue
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING_RE.match(line)
        if match:
            headings.append(
                Heading(level=len(match.group(1)), text=match.group(2), start_line=line_number)
            )
    return headings


def parse_markdown(text: str, *, fallback_title: str = "") -> ParsedMarkdown:
    frontmatter, _ = split_frontmatter(text.split("\n"))
    headings = extract_headings(text)
    title = frontmatter.get("title")
    if not title:
        title = next((h.text for h in headings if h.level == 1), fallback_title)
    return ParsedMarkdown(text=text, title=title, headings=headings, frontmatter=frontmatter)


def load_markdown(path: Path) -> ParsedMarkdown:
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    return parse_markdown(text, fallback_title=Path(path).stem)


def build_chunks(
    parsed: ParsedMarkdown,
    config: ChunkConfig | None = None,
    *,
    document_id: int | None = None,
) -> List[Chunk]:
    """Chunk a parsed document using its own heading outline."""
    chunks = chunk_document(parsed.text, parsed.headings, config, document_id=document_id)
    LOGGER.debug("%s: %d headings, %d chunks", parsed.title, len(parsed.headings), len(chunks))
    return chunks
