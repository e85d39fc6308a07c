"""Tests for SQLiteDocumentStore."""

import sqlite3
from dataclasses import replace
from pathlib import Path

import numpy as np
import pytest

from docfusion.index.storage import SQLiteDocumentStore
from docfusion.ingestion.chunker import chunk_document
from docfusion.models import Chunk, DocumentMetadata


def make_document(path="/tmp/test.md", sha256="abc123", title="Test Document") -> DocumentMetadata:
    return DocumentMetadata(
        path=Path(path), title=title, sha256=sha256, mtime=1234567890.0, size=1000, word_count=4
    )


def add_document(store, document, texts):
    """Insert a document with one chunk per text and return (status, stored chunks)."""
    with store.transaction():
        doc_id, status = store.init_document(document)
        if status == "skipped":
            return status, []
        chunks = [
            Chunk(
                document_id=doc_id,
                chunk_index=index,
                heading=None,
                content=text,
                start_offset=0,
                end_offset=len(text),
                word_count=len(text.split()),
                token_count=0,
            )
            for index, text in enumerate(texts)
        ]
        stored = store.insert_chunks(doc_id, chunks)
        store.insert_fts(stored)
    return status, stored


class TestSQLiteDocumentStore:
    """Test initialization and schema."""

    def test_init_creates_database(self, tmp_path):
        db_path = tmp_path / "new.db"
        assert not db_path.exists()

        store = SQLiteDocumentStore(db_path)

        assert db_path.exists()
        assert store.db_path == db_path
        store.close()

    @pytest.mark.parametrize("table", ["documents", "chunks", "chunk_embeddings", "chunks_fts"])
    def test_schema_creation(self, store, table):
        cursor = store.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        )
        assert cursor.fetchone() is not None

    def test_pragma_settings(self, store):
        assert store.connection.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        assert store.connection.execute("PRAGMA synchronous").fetchone()[0] == 1

    def test_reopen_existing_database(self, tmp_path):
        db_path = tmp_path / "reopen.db"
        SQLiteDocumentStore(db_path).close()

        store = SQLiteDocumentStore(db_path)
        assert store.count_documents() == 0
        store.close()

    def test_close(self, tmp_path):
        store = SQLiteDocumentStore(tmp_path / "close_test.db")
        conn = store.connection

        store.close()

        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")


class TestTransaction:
    """Test transaction context manager."""

    def test_commit_on_success(self, store):
        with store.transaction():
            store.init_document(make_document())

        assert store.count_documents() == 1

    def test_rollback_on_exception(self, store):
        with pytest.raises(ValueError):
            with store.transaction():
                store.init_document(make_document())
                raise ValueError("Test error")

        assert store.count_documents() == 0


class TestDocuments:
    """Test document insertion, update and lookup."""

    def test_insert_new_document(self, store):
        status, stored = add_document(store, make_document(), ["First chunk", "Second chunk"])

        assert status == "inserted"
        assert [chunk.chunk_index for chunk in stored] == [0, 1]
        assert all(chunk.id is not None for chunk in stored)

        document = store.get_document(stored[0].document_id)
        assert document.title == "Test Document"
        assert document.path == Path("/tmp/test.md")
        assert document.word_count == 4

    def test_skip_unchanged_document(self, store):
        add_document(store, make_document(), ["Chunk"])

        status, _ = add_document(store, make_document(), ["Chunk"])

        assert status == "skipped"
        assert store.count_documents() == 1

    def test_skip_keeps_existing_id(self, store):
        _, stored = add_document(store, make_document(), ["Chunk"])

        with store.transaction():
            doc_id, status = store.init_document(make_document())

        assert status == "skipped"
        assert doc_id == stored[0].document_id

    def test_update_replaces_chunks_and_fts_rows(self, store):
        add_document(store, make_document(sha256="old"), ["old words here"])

        status, stored = add_document(
            store, make_document(sha256="new", title="Updated"), ["new one", "new two"]
        )

        assert status == "updated"
        assert store.count_fts() == 2
        assert [chunk.document_id for chunk in stored] == [stored[0].document_id] * 2
        assert store.connection.execute("SELECT COUNT(*) FROM chunks").fetchone()[0] == 2
        assert store.fts_search('"old"') == []

    def test_get_missing_document(self, store):
        assert store.get_document(999) is None
        assert store.get_chunk(999) is None


class TestChunks:
    """Test chunk persistence and retrieval."""

    def test_chunker_output_round_trips(self, store):
        text = "# Notes\nSome words about storage.\n## Details\nMore words."
        with store.transaction():
            doc_id, _ = store.init_document(make_document())
            chunks = chunk_document(text, [], document_id=doc_id)
            stored = store.insert_chunks(doc_id, chunks)

        loaded = store.get_chunk(stored[0].id)
        assert loaded == stored[0]
        assert loaded.content == text

    def test_chunks_ordered_by_index(self, store):
        with store.transaction():
            doc_id, _ = store.init_document(make_document())
            template = chunk_document("x", [], document_id=doc_id)[0]
            shuffled = [(2, "c"), (0, "a"), (1, "b")]
            store.insert_chunks(
                doc_id, [replace(template, chunk_index=i, content=text) for i, text in shuffled]
            )

        chunks = store.get_chunks_missing_fts(doc_id)

        assert [chunk.content for chunk in chunks] == ["a", "b", "c"]

    def test_duplicate_chunk_index_rejected(self, store):
        _, stored = add_document(store, make_document(), ["a"])

        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction():
                store.insert_chunks(stored[0].document_id, [stored[0]])

    def test_adjacent_chunks(self, store):
        _, stored = add_document(store, make_document(), ["first", "middle", "last"])

        previous, following = store.get_adjacent_chunks(stored[1])
        assert previous.content == "first"
        assert following.content == "last"

        previous, following = store.get_adjacent_chunks(stored[0])
        assert previous is None
        assert following.content == "middle"

    def test_chunks_missing_fts(self, store):
        _, stored = add_document(store, make_document("/a.md", "h1"), ["a0", "a1"])
        add_document(store, make_document("/b.md", "h2"), ["b0"])
        doc_id = stored[0].document_id

        assert store.get_chunks_missing_fts(doc_id) == []

        store.clear_fts()

        assert [chunk.content for chunk in store.get_chunks_missing_fts(doc_id)] == ["a0", "a1"]

    def test_chunks_missing_embeddings_per_model(self, store):
        _, stored = add_document(store, make_document(), ["a0", "a1"])
        doc_id = stored[0].document_id
        with store.transaction():
            store.insert_embeddings(stored[:1], np.ones((1, 4), dtype="float32"), model_name="m")

        missing = store.get_chunks_missing_embeddings(doc_id, model_name="m")
        other = store.get_chunks_missing_embeddings(doc_id, model_name="other")

        assert [chunk.content for chunk in missing] == ["a1"]
        assert [chunk.content for chunk in other] == ["a0", "a1"]


class TestEmbeddings:
    """Test embedding storage and vector search."""

    def test_length_mismatch(self, store):
        _, stored = add_document(store, make_document(), ["Chunk"])

        with pytest.raises(ValueError, match="Embeddings and chunks length mismatch"):
            store.insert_embeddings(stored, np.random.rand(2, 8).astype("float32"), model_name="m")

    def test_unstored_chunk_rejected(self, store):
        chunk = chunk_document("loose text", [])[0]

        with pytest.raises(ValueError):
            store.insert_embeddings([chunk], np.ones((1, 8), dtype="float32"), model_name="m")

    def test_vector_search_empty(self, store):
        assert store.vector_search(np.ones(8, dtype="float32"), top_k=5) == []

    def test_vector_search_top_k_descending(self, store):
        _, stored = add_document(store, make_document(), [f"text {i}" for i in range(10)])
        embeddings = np.random.rand(10, 8).astype("float32")
        with store.transaction():
            store.insert_embeddings(stored, embeddings, model_name="m")

        results = store.vector_search(np.random.rand(8).astype("float32"), top_k=5)

        assert len(results) == 5
        scores = [score for _, score in results]
        assert scores == sorted(scores, reverse=True)
        assert store.count_embeddings() == 10

    def test_vector_search_best_match_first(self, store):
        _, stored = add_document(store, make_document(), ["x", "y"])
        embeddings = np.array([[1, 0, 0, 0], [0, 1, 0, 0]], dtype="float32")
        with store.transaction():
            store.insert_embeddings(stored, embeddings, model_name="m")

        results = store.vector_search(np.array([0, 1, 0, 0], dtype="float32"), top_k=10)

        assert results[0] == (stored[1].id, pytest.approx(1.0))
        assert len(results) == 2

    def test_vector_search_ignores_other_dimensions(self, store):
        _, stored = add_document(store, make_document(), ["x"])
        with store.transaction():
            store.insert_embeddings(stored, np.ones((1, 4), dtype="float32"), model_name="m")

        assert store.vector_search(np.ones(8, dtype="float32")) == []

    def test_clear_embeddings(self, store):
        _, stored = add_document(store, make_document(), ["x"])
        with store.transaction():
            store.insert_embeddings(stored, np.ones((1, 4), dtype="float32"), model_name="m")

        store.clear_embeddings()
        store.clear_embeddings()

        assert store.count_embeddings() == 0
        assert store.count_documents() == 1


class TestFullText:
    """Test the FTS5 table."""

    def test_fts_search_matches_terms(self, store):
        _, stored = add_document(store, make_document(), ["the quick brown fox", "lazy dogs sleep"])

        rows = store.fts_search('"fox"')

        assert [row["chunk_id"] for row in rows] == [stored[0].id]
        assert rows[0]["rank"] < 0
        assert "<mark>fox</mark>" in rows[0]["snippet"]

    def test_clear_fts(self, store):
        add_document(store, make_document(), ["alpha"])

        store.clear_fts()

        assert store.count_fts() == 0
        assert store.fts_search('"alpha"') == []


class TestRemoveMissingFiles:
    """Test removing documents with missing files."""

    def test_remove_missing_files_empty_db(self, store):
        assert store.remove_missing_files() == 0

    def test_remove_missing_files(self, store, tmp_path):
        real_file = tmp_path / "real.md"
        real_file.write_text("test")
        add_document(store, make_document(real_file, "real"), ["Text"])
        add_document(store, make_document("/nonexistent/fake.md", "fake"), ["Gone text"])

        removed = store.remove_missing_files()

        assert removed == 1
        assert store.count_documents() == 1
        row = store.connection.execute("SELECT path FROM documents").fetchone()
        assert row["path"] == str(real_file)
        assert store.connection.execute("SELECT COUNT(*) FROM chunks").fetchone()[0] == 1
        assert store.count_fts() == 1
