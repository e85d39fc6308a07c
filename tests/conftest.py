"""Shared fixtures for DocFusion tests."""

from __future__ import annotations

import re
import zlib
from pathlib import Path
from typing import Iterable

import numpy as np
import pytest

from docfusion.index.rankers import KeywordRanker, VectorRanker
from docfusion.index.storage import SQLiteDocumentStore
from docfusion.models import Chunk, DocumentMetadata, RankedResult


class FakeEmbedder:
    """Deterministic bag-of-words embedder standing in for SentenceTransformer."""

    model_name = "fake-model"
    dimension = 32

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.embedded: list[str] = []

    def is_available(self) -> bool:
        return self.available

    def embed(self, texts: Iterable[str]) -> np.ndarray:
        rows = []
        for text in texts:
            self.embedded.append(text)
            vector = np.zeros(self.dimension, dtype="float32")
            for word in re.findall(r"\w+", text.lower()):
                vector[zlib.crc32(word.encode("utf-8")) % self.dimension] += 1.0
            norm = np.linalg.norm(vector)
            rows.append(vector / norm if norm else vector)
        return np.vstack(rows).astype("float32")

    def embed_query(self, text: str) -> np.ndarray:
        return self.embed([text])[0]


class FakeRanker:
    """Ranker double returning canned results."""

    def __init__(self, results=None, *, available: bool = True, size: int = 0, error=None) -> None:
        self.results = list(results or [])
        self.available = available
        self.size = size
        self.error = error
        self.calls: list[tuple[str, dict]] = []
        self.cleared = 0

    def is_available(self) -> bool:
        return self.available

    async def search(self, query: str, **kwargs) -> list[RankedResult]:
        self.calls.append((query, kwargs))
        if self.error is not None:
            raise self.error
        return list(self.results)

    def clear_index(self) -> None:
        self.cleared += 1

    def index_size(self) -> int:
        return self.size


def make_result(doc_id: int, chunk_index: int, similarity: float, *, context=None) -> RankedResult:
    chunk = Chunk(
        document_id=doc_id,
        chunk_index=chunk_index,
        heading=None,
        content=f"chunk {chunk_index} of document {doc_id}",
        start_offset=0,
        end_offset=10,
        word_count=5,
        token_count=7,
        id=doc_id * 1000 + chunk_index,
    )
    document = DocumentMetadata(
        id=doc_id,
        path=Path(f"/notes/doc{doc_id}.md"),
        title=f"Doc {doc_id}",
        sha256="hash",
        mtime=0.0,
        size=100,
    )
    return RankedResult(chunk=chunk, document=document, similarity=similarity, context=context)


@pytest.fixture
def store(tmp_path):
    """Create a temporary database for testing."""
    db = SQLiteDocumentStore(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def keyword_ranker(store) -> KeywordRanker:
    return KeywordRanker(store)


@pytest.fixture
def vector_ranker(store, embedder) -> VectorRanker:
    return VectorRanker(embedder, store)
