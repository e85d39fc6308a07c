"""Text helpers shared by the loader and the chunker."""

from __future__ import annotations

import math
import re
from typing import Iterable, List, Tuple

_WORD_RE = re.compile(r"\S+")


def word_spans(text: str) -> List[Tuple[int, int]]:
    """Return ``(start, end)`` character offsets of every whitespace-delimited word."""
    return [match.span() for match in _WORD_RE.finditer(text)]


def count_words(text: str) -> int:
    """Count whitespace-delimited words; empty or blank text has zero words."""
    if not text:
        return 0
    return len(text.split())


def estimate_tokens(word_count: int, multiplier: float = 1.3) -> int:
    """Rough token estimate for English prose."""
    return math.ceil(word_count * multiplier)


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
