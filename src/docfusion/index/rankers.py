"""Keyword and vector rankers over the SQLite document store.

Both rankers expose the same coroutine ``search(query, *, limit)`` returning
:class:`RankedResult` lists with similarities in ``[0, 1]``, so the hybrid
searcher can run them side by side. Query encoding runs in a worker thread;
SQLite access stays on the event loop thread that owns the connection.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Dict, List, Sequence

from docfusion.embedding.encoder import EmbeddingModel
from docfusion.index.storage import SQLiteDocumentStore
from docfusion.models import Chunk, DocumentMetadata, RankedResult

LOGGER = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def to_match_query(query: str) -> str:
    """Quote each query term so FTS5 operators in user input are taken literally."""
    return " ".join(f'"{token}"' for token in _TOKEN_RE.findall(query))


def rank_to_similarity(rank: float) -> float:
    """Map an FTS5 bm25 rank (negative, lower is better) onto ``(0, 1]``."""
    return 1.0 / (abs(rank) + 1.0)


class _ResultResolver:
    """Resolves chunk ids to ranked results, memoizing document lookups."""

    def __init__(self, store: SQLiteDocumentStore) -> None:
        self.store = store
        self._documents: Dict[int, DocumentMetadata | None] = {}

    def resolve(self, chunk_id: int) -> tuple[Chunk, DocumentMetadata] | None:
        chunk = self.store.get_chunk(chunk_id)
        if chunk is None or chunk.document_id is None:
            return None
        if chunk.document_id not in self._documents:
            self._documents[chunk.document_id] = self.store.get_document(chunk.document_id)
        document = self._documents[chunk.document_id]
        if document is None:
            return None
        return chunk, document


class KeywordRanker:
    """Full-text ranking backed by the store's FTS5 table."""

    def __init__(self, store: SQLiteDocumentStore) -> None:
        self.store = store

    def index_chunks(self, chunks: Sequence[Chunk]) -> None:
        self.store.insert_fts(chunks)
        LOGGER.debug("Keyword indexed %d chunks", len(chunks))

    async def search(
        self, query: str, *, limit: int = 10, snippets: bool = False
    ) -> List[RankedResult]:
        match = to_match_query(query)
        if not match:
            return []

        resolver = _ResultResolver(self.store)
        results: List[RankedResult] = []
        for row in self.store.fts_search(match, limit=limit):
            resolved = resolver.resolve(row["chunk_id"])
            if resolved is None:
                LOGGER.debug("Skipping stale keyword hit for chunk %s", row["chunk_id"])
                continue
            chunk, document = resolved
            results.append(
                RankedResult(
                    chunk=chunk,
                    document=document,
                    similarity=rank_to_similarity(row["rank"]),
                    context=row["snippet"] if snippets else None,
                )
            )
        return results

    def clear_index(self) -> None:
        self.store.clear_fts()
        LOGGER.info("Cleared keyword index")

    def index_size(self) -> int:
        return self.store.count_fts()


class VectorRanker:
    """Embedding similarity ranking over stored chunk embeddings."""

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteDocumentStore,
        *,
        context_words: int = 50,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.context_words = context_words

    def is_available(self) -> bool:
        return self.embedder.is_available()

    def index_chunks(self, chunks: Sequence[Chunk]) -> None:
        if not chunks:
            return
        embeddings = self.embedder.embed(chunk.content for chunk in chunks)
        self.store.insert_embeddings(chunks, embeddings, model_name=self.embedder.model_name)
        LOGGER.debug("Vector indexed %d chunks", len(chunks))

    async def search(
        self,
        query: str,
        *,
        limit: int = 10,
        min_similarity: float = 0.5,
        include_context: bool = True,
    ) -> List[RankedResult]:
        embedding = await asyncio.to_thread(self.embedder.embed_query, query)
        resolver = _ResultResolver(self.store)
        results: List[RankedResult] = []

        for chunk_id, score in self.store.vector_search(embedding, top_k=limit):
            if score < min_similarity:
                continue
            resolved = resolver.resolve(chunk_id)
            if resolved is None:
                continue
            chunk, document = resolved
            results.append(
                RankedResult(
                    chunk=chunk,
                    document=document,
                    similarity=min(max(score, 0.0), 1.0),
                    context=self.build_context(chunk) if include_context else None,
                )
            )
        return results

    def build_context(self, chunk: Chunk) -> str:
        """Surround the chunk with the tail of its predecessor and the head of its successor."""
        previous, following = self.store.get_adjacent_chunks(chunk)
        parts: List[str] = []
        if previous is not None:
            parts.append("..." + " ".join(previous.content.split()[-self.context_words :]))
        parts.append(chunk.content)
        if following is not None:
            parts.append(" ".join(following.content.split()[: self.context_words]) + "...")
        return "\n\n".join(parts)

    def clear_index(self) -> None:
        self.store.clear_embeddings()
        LOGGER.info("Cleared vector index")

    def index_size(self) -> int:
        return self.store.count_embeddings()