"""Document indexing pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from docfusion.index.rankers import KeywordRanker, VectorRanker
from docfusion.index.storage import SQLiteDocumentStore
from docfusion.ingestion.chunker import ChunkConfig
from docfusion.ingestion.markdown_loader import build_chunks, load_markdown
from docfusion.models import Chunk, DocumentMetadata
from docfusion.utils.files import compute_sha256, iter_markdown_paths
from docfusion.utils.text import count_words

LOGGER = logging.getLogger(__name__)

EMBEDDING_BATCH_SIZE = 32


def find_markdown(paths: Sequence[Path]) -> list[Path]:
    """Find all Markdown files under the given paths."""
    return list(iter_markdown_paths(paths))


@dataclass(slots=True)
class IndexStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0
    restored: int = 0
    processed_files: list[Path] = field(default_factory=list)

    def increment(self, status: str, path: Path) -> None:
        if status == "inserted":
            self.inserted += 1
        elif status == "updated":
            self.updated += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
        self.processed_files.append(path)


class Indexer:
    """Coordinates chunking, persistence and keyword/vector indexing."""

    def __init__(
        self,
        store: SQLiteDocumentStore,
        keyword: KeywordRanker,
        semantic: VectorRanker | None = None,
        *,
        chunk_config: ChunkConfig | None = None,
    ) -> None:
        self.store = store
        self.keyword = keyword
        self.semantic = semantic
        self.chunk_config = chunk_config or ChunkConfig()

    def index(self, paths: Sequence[Path]) -> IndexStats:
        """Index all Markdown files found under the given paths."""
        md_files = find_markdown(paths)
        if not md_files:
            LOGGER.warning("No Markdown files found")
            return IndexStats()

        with_vectors = self.semantic is not None and self.semantic.is_available()
        if not with_vectors:
            LOGGER.warning("Embeddings unavailable, building the keyword index only")

        stats = IndexStats()
        for path in md_files:
            try:
                LOGGER.info(f"Processing: {path}")
                status, chunk_count, restored = self._index_single(path, with_vectors=with_vectors)
                stats.increment(status, path)
                stats.chunks += chunk_count
                stats.restored += restored
            except Exception as e:
                LOGGER.error(f"Failed to process {path}: {e}")
                stats.failed += 1
                stats.processed_files.append(path)

        return stats

    def _index_single(self, path: Path, *, with_vectors: bool) -> tuple[str, int, int]:
        """Index a single Markdown file.

        Returns its status, the number of chunks written and the number of
        stored chunks whose keyword or vector entries had to be restored.
        """
        parsed = load_markdown(path)
        if not parsed.text.strip():
            LOGGER.warning("No text in %s", path)
            return "skipped", 0, 0

        stat = path.stat()
        document = DocumentMetadata(
            path=path,
            title=parsed.title,
            sha256=compute_sha256(path),
            mtime=stat.st_mtime,
            size=stat.st_size,
            word_count=count_words(parsed.text),
        )

        with self.store.transaction():
            doc_id, status = self.store.init_document(document)
            if status == "skipped":
                return status, 0, self._restore_indexes(doc_id, with_vectors=with_vectors)

            chunks = build_chunks(parsed, self.chunk_config, document_id=doc_id)
            stored = self.store.insert_chunks(doc_id, chunks)
            self.keyword.index_chunks(stored)
            if with_vectors:
                self._embed_chunks(stored)

        return status, len(stored), 0

    def _restore_indexes(self, doc_id: int, *, with_vectors: bool) -> int:
        """Re-index stored chunks missing from the keyword or vector index.

        Unchanged files are skipped, but their index entries may have been
        cleared, or embeddings were unavailable when they were first indexed.
        """
        restored = set()

        missing = self.store.get_chunks_missing_fts(doc_id)
        if missing:
            self.keyword.index_chunks(missing)
            restored.update(chunk.id for chunk in missing)

        if with_vectors:
            missing = self.store.get_chunks_missing_embeddings(
                doc_id, model_name=self.semantic.embedder.model_name
            )
            self._embed_chunks(missing)
            restored.update(chunk.id for chunk in missing)

        if restored:
            LOGGER.info("Restored index entries for %d chunks of document %d", len(restored), doc_id)
        return len(restored)

    def _embed_chunks(self, chunks: Sequence[Chunk]) -> None:
        for start in range(0, len(chunks), EMBEDDING_BATCH_SIZE):
            self.semantic.index_chunks(chunks[start : start + EMBEDDING_BATCH_SIZE])
