"""SQLite persistence for documents, chunks, embeddings and the FTS5 index."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Sequence

import numpy as np

from docfusion.models import Chunk, DocumentMetadata


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        chunk_index=row["chunk_index"],
        heading=row["heading"],
        content=row["content"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
        word_count=row["word_count"],
        token_count=row["token_count"],
    )


def _row_to_document(row: sqlite3.Row) -> DocumentMetadata:
    return DocumentMetadata(
        id=row["id"],
        path=Path(row["path"]),
        title=row["title"],
        sha256=row["sha256"],
        mtime=row["mtime"],
        size=row["size"],
        word_count=row["word_count"],
    )


class SQLiteDocumentStore:
    """Persistence layer for documents, their chunks and chunk embeddings."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    path TEXT NOT NULL UNIQUE,
                    title TEXT,
                    sha256 TEXT NOT NULL,
                    mtime REAL NOT NULL,
                    size INTEGER NOT NULL,
                    word_count INTEGER NOT NULL DEFAULT 0,
                    indexed_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY,
                    document_id INTEGER NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    heading TEXT,
                    content TEXT NOT NULL,
                    start_offset INTEGER NOT NULL,
                    end_offset INTEGER NOT NULL,
                    word_count INTEGER NOT NULL DEFAULT 0,
                    token_count INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE,
                    UNIQUE(document_id, chunk_index)
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_document_id
                    ON chunks(document_id)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunk_embeddings (
                    chunk_id INTEGER PRIMARY KEY,
                    embedding BLOB NOT NULL,
                    model_name TEXT NOT NULL,
                    dimensions INTEGER NOT NULL,
                    FOREIGN KEY(chunk_id) REFERENCES chunks(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """
                CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts
                USING fts5(content, heading, chunk_id UNINDEXED)
                """
            )

    # -- documents -----------------------------------------------------------

    def init_document(self, document: DocumentMetadata) -> tuple[int, str]:
        """Initialize a document for insertion.

        Returns:
            (doc_id, status) where status is 'inserted', 'updated', or 'skipped'.
            A skipped document keeps its existing id.
        """
        # Must run inside transaction()
        conn = self._conn

        existing = conn.execute(
            "SELECT id, sha256 FROM documents WHERE path = ?",
            (str(document.path),),
        ).fetchone()

        if existing and existing["sha256"] == document.sha256:
            return existing["id"], "skipped"

        if existing:
            self._delete_document(existing["id"])

        doc_id = conn.execute(
            """
            INSERT INTO documents(path, title, sha256, mtime, size, word_count)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                str(document.path),
                document.title,
                document.sha256,
                document.mtime,
                document.size,
                document.word_count,
            ),
        ).lastrowid

        return doc_id, "updated" if existing else "inserted"

    def _delete_document(self, doc_id: int) -> None:
        conn = self._conn
        conn.execute(
            """
            DELETE FROM chunks_fts WHERE chunk_id IN (
                SELECT id FROM chunks WHERE document_id = ?
            )
            """,
            (doc_id,),
        )
        conn.execute(
            """
            DELETE FROM chunk_embeddings WHERE chunk_id IN (
                SELECT id FROM chunks WHERE document_id = ?
            )
            """,
            (doc_id,),
        )
        conn.execute("DELETE FROM chunks WHERE document_id = ?", (doc_id,))
        conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))

    def get_document(self, doc_id: int) -> DocumentMetadata | None:
        row = self._conn.execute("SELECT * FROM documents WHERE id = ?", (doc_id,)).fetchone()
        return _row_to_document(row) if row else None

    def count_documents(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def remove_missing_files(self) -> int:
        """Remove documents whose files no longer exist."""
        with self.transaction() as conn:
            rows = conn.execute("SELECT id, path FROM documents").fetchall()
            missing = [row for row in rows if not Path(row["path"]).exists()]
            for row in missing:
                self._delete_document(row["id"])
        return len(missing)

    # -- chunks --------------------------------------------------------------

    def insert_chunks(self, doc_id: int, chunks: Sequence[Chunk]) -> List[Chunk]:
        """Insert chunks for a document and return them with their row ids."""
        conn = self._conn
        stored: List[Chunk] = []
        for chunk in chunks:
            chunk_id = conn.execute(
                """
                INSERT INTO chunks(
                    document_id, chunk_index, heading, content,
                    start_offset, end_offset, word_count, token_count
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    doc_id,
                    chunk.chunk_index,
                    chunk.heading,
                    chunk.content,
                    chunk.start_offset,
                    chunk.end_offset,
                    chunk.word_count,
                    chunk.token_count,
                ),
            ).lastrowid
            stored.append(
                Chunk(
                    id=chunk_id,
                    document_id=doc_id,
                    chunk_index=chunk.chunk_index,
                    heading=chunk.heading,
                    content=chunk.content,
                    start_offset=chunk.start_offset,
                    end_offset=chunk.end_offset,
                    word_count=chunk.word_count,
                    token_count=chunk.token_count,
                )
            )
        return stored

    def get_chunk(self, chunk_id: int) -> Chunk | None:
        row = self._conn.execute("SELECT * FROM chunks WHERE id = ?", (chunk_id,)).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks_missing_fts(self, doc_id: int) -> List[Chunk]:
        """Chunks of a document that have no row in the keyword index."""
        rows = self._conn.execute(
            """
            SELECT * FROM chunks
            WHERE document_id = ?
              AND id NOT IN (SELECT chunk_id FROM chunks_fts)
            ORDER BY chunk_index
            """,
            (doc_id,),
        ).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def get_chunks_missing_embeddings(self, doc_id: int, *, model_name: str) -> List[Chunk]:
        """Chunks of a document without an embedding from ``model_name``."""
        rows = self._conn.execute(
            """
            SELECT * FROM chunks
            WHERE document_id = ?
              AND id NOT IN (
                  SELECT chunk_id FROM chunk_embeddings WHERE model_name = ?
              )
            ORDER BY chunk_index
            """,
            (doc_id, model_name),
        ).fetchall()
        return [_row_to_chunk(row) for row in rows]

    def get_adjacent_chunks(self, chunk: Chunk) -> tuple[Chunk | None, Chunk | None]:
        """Return the chunks immediately before and after ``chunk`` in its document."""
        rows = self._conn.execute(
            "SELECT * FROM chunks WHERE document_id = ? AND chunk_index IN (?, ?)",
            (chunk.document_id, chunk.chunk_index - 1, chunk.chunk_index + 1),
        ).fetchall()
        by_index = {row["chunk_index"]: _row_to_chunk(row) for row in rows}
        return by_index.get(chunk.chunk_index - 1), by_index.get(chunk.chunk_index + 1)

    # -- embeddings ----------------------------------------------------------

    def insert_embeddings(
        self, chunks: Sequence[Chunk], embeddings: np.ndarray, *, model_name: str
    ) -> None:
        if embeddings.shape[0] != len(chunks):
            raise ValueError("Embeddings and chunks length mismatch")

        conn = self._conn
        for chunk, vector in zip(chunks, embeddings):
            if chunk.id is None:
                raise ValueError("Chunks must be stored before their embeddings")
            data = np.asarray(vector, dtype="float32")
            conn.execute(
                """
                INSERT OR REPLACE INTO chunk_embeddings(chunk_id, embedding, model_name, dimensions)
                VALUES (?, ?, ?, ?)
                """,
                (chunk.id, sqlite3.Binary(data.tobytes()), model_name, int(data.shape[0])),
            )

    def vector_search(self, embedding: np.ndarray, *, top_k: int = 10) -> List[tuple[int, float]]:
        """Return ``(chunk_id, score)`` pairs by descending dot-product score."""
        query = np.asarray(embedding, dtype="float32")
        rows = self._conn.execute(
            "SELECT chunk_id, embedding FROM chunk_embeddings WHERE dimensions = ?",
            (int(query.shape[0]),),
        ).fetchall()

        if not rows or top_k <= 0:
            return []

        embeddings = np.vstack([np.frombuffer(row["embedding"], dtype="float32") for row in rows])
        scores = embeddings @ query

        if top_k < len(scores):
            top_indices = np.argpartition(scores, -top_k)[-top_k:]
            top_indices = top_indices[np.argsort(scores[top_indices])[::-1]]
        else:
            top_indices = np.argsort(scores)[::-1]

        return [(rows[idx]["chunk_id"], float(scores[idx])) for idx in top_indices]

    def count_embeddings(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM chunk_embeddings").fetchone()[0]

    def clear_embeddings(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM chunk_embeddings")

    # -- full-text index -----------------------------------------------------

    def insert_fts(self, chunks: Sequence[Chunk]) -> None:
        conn = self._conn
        for chunk in chunks:
            if chunk.id is None:
                raise ValueError("Chunks must be stored before they are keyword indexed")
            conn.execute(
                "INSERT INTO chunks_fts(content, heading, chunk_id) VALUES (?, ?, ?)",
                (chunk.content, chunk.heading, chunk.id),
            )

    def fts_search(self, match: str, *, limit: int = 10) -> List[sqlite3.Row]:
        """Run an FTS5 MATCH query; rows carry ``chunk_id``, ``rank`` and ``snippet``."""
        return self._conn.execute(
            """
            SELECT
                chunk_id,
                rank,
                snippet(chunks_fts, 0, '<mark>', '</mark>', '...', 32) AS snippet
            FROM chunks_fts
            WHERE chunks_fts MATCH ?
            ORDER BY rank
            LIMIT ?
            """,
            (match, limit),
        ).fetchall()

    def count_fts(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM chunks_fts").fetchone()[0]

    def clear_fts(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks_fts")
