"""Command line interface for DocFusion."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from docfusion.cache.query_cache import BoundedCache
from docfusion.config import AppConfig
from docfusion.embedding.encoder import EmbeddingConfig, EmbeddingModel
from docfusion.errors import ConfigurationError
from docfusion.index.indexer import Indexer
from docfusion.index.rankers import KeywordRanker, VectorRanker
from docfusion.index.search import HybridSearcher
from docfusion.index.storage import SQLiteDocumentStore
from docfusion.models import RankedResult
from docfusion.utils.files import iter_markdown_paths
from docfusion.utils.text import normalize_whitespace


console = Console()
app = typer.Typer(help="DocFusion - hybrid keyword and semantic search for Markdown documents")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _existing_db(db: Path | None) -> Path:
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")
    return resolved_db


def _build_rankers(store: SQLiteDocumentStore, model_name: str) -> tuple[KeywordRanker, VectorRanker]:
    embedder = EmbeddingModel(EmbeddingConfig(model_name=model_name))
    return KeywordRanker(store), VectorRanker(embedder, store)


@contextmanager
def _open_store(db_path: Path) -> Iterator[SQLiteDocumentStore]:
    store = SQLiteDocumentStore(db_path)
    try:
        yield store
    finally:
        store.close()


def _highlight(snippet: str) -> str:
    """Render FTS5 ``<mark>`` tags as rich markup, escaping everything else."""
    return escape(snippet).replace("<mark>", "[bold yellow]").replace("</mark>", "[/bold yellow]")


def _print_results(results: List[RankedResult], *, snippets: bool = False) -> None:
    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Section")
    table.add_column("Snippet")

    for result in results:
        if snippets and result.context:
            snippet = _highlight(result.context.replace("\n", " "))
        else:
            text = normalize_whitespace(result.chunk.content.splitlines()).replace("\n", " ")
            snippet = escape(text[:180])
        table.add_row(
            f"{result.similarity:.4f}",
            escape(str(result.document.path)),
            escape(result.chunk.heading or ""),
            snippet,
        )

    console.print(table)


@app.command()
def index(
    inputs: List[Path] = typer.Argument(
        ..., help="Markdown files or directories to index.", resolve_path=True
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    max_chunk_size: int = typer.Option(AppConfig().max_chunk_size, help="Chunk size in words"),
    overlap: int = typer.Option(AppConfig().overlap_size, help="Chunk overlap in words"),
    keyword_only: bool = typer.Option(False, "--keyword-only", help="Skip embeddings"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Index one or more paths containing Markdown files."""
    _setup_logging(verbose)
    config = AppConfig(
        db_path=db if db is not None else AppConfig().db_path,
        model_name=model,
        max_chunk_size=max_chunk_size,
        overlap_size=overlap,
    )
    try:
        chunk_config = config.chunk_config()
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    md_paths = list(iter_markdown_paths(inputs))
    if not md_paths:
        console.print("[yellow]No Markdown files found.[/yellow]")
        return

    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)

    with _open_store(resolved_db) as store:
        keyword, semantic = _build_rankers(store, config.model_name)
        indexer = Indexer(
            store,
            keyword,
            None if keyword_only else semantic,
            chunk_config=chunk_config,
        )

        console.print(f"Indexing into [bold]{resolved_db}[/bold]...")
        stats = indexer.index(md_paths)

    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, "
        f"skipped: {stats.skipped}, failed: {stats.failed}, chunks: {stats.chunks}, "
        f"restored: {stats.restored}"
    )


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    limit: int = typer.Option(AppConfig().limit, help="Number of results to display"),
    semantic_weight: float = typer.Option(AppConfig().semantic_weight, help="Vector score weight"),
    keyword_weight: float = typer.Option(AppConfig().keyword_weight, help="Keyword score weight"),
    keyword_only: bool = typer.Option(
        False, "--keyword-only", help="Skip vector search and show highlighted snippets"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Execute a hybrid search."""
    _setup_logging(verbose)
    config = AppConfig(
        model_name=model,
        limit=limit,
        semantic_weight=semantic_weight,
        keyword_weight=keyword_weight,
    )
    try:
        fusion_config = config.fusion_config()
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    with _open_store(_existing_db(db)) as store:
        keyword, semantic = _build_rankers(store, config.model_name)

        if keyword_only:
            results = asyncio.run(
                keyword.search(query, limit=fusion_config.limit, snippets=True)
            )
        else:
            searcher = HybridSearcher(semantic, keyword, fusion_config)
            results = searcher.search_sync(query)

    _print_results(results, snippets=keyword_only)


@app.command()
def shell(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
    limit: int = typer.Option(AppConfig().limit, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run queries interactively; repeated queries are answered from the cache."""
    _setup_logging(verbose)
    config = AppConfig(model_name=model, limit=limit)
    try:
        fusion_config = config.fusion_config()
        cache = BoundedCache(config.cache_config())
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    with _open_store(_existing_db(db)) as store:
        keyword, semantic = _build_rankers(store, config.model_name)
        searcher = HybridSearcher(semantic, keyword, fusion_config, cache=cache)

        console.print("Enter a query, or an empty line to quit.")
        while True:
            query = typer.prompt("query", default="", show_default=False).strip()
            if not query:
                break
            _print_results(searcher.search_sync(query))

    cache_stats = cache.get_stats()
    console.print(
        f"Cache hits: {cache_stats.hits}, misses: {cache_stats.misses}, "
        f"hit rate: {cache_stats.hit_rate:.0%}"
    )


@app.command()
def stats(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    model: str = typer.Option(AppConfig().model_name, help="Sentence-transformer model name"),
) -> None:
    """Show index sizes and whether vector search is available."""
    with _open_store(_existing_db(db)) as store:
        keyword, semantic = _build_rankers(store, model)
        search_stats = HybridSearcher(semantic, keyword).get_stats()
        documents = store.count_documents()

    table = Table(show_header=False)
    table.add_row("Documents", str(documents))
    table.add_row("Keyword index", str(search_stats.keyword_index_size))
    table.add_row("Vector index", str(search_stats.semantic_index_size))
    table.add_row("Vector search", "available" if search_stats.semantic_available else "unavailable")
    console.print(table)


@app.command()
def clear(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Empty the keyword and vector indexes. Documents and chunks are kept.

    Running ``index`` again rebuilds both indexes from the stored chunks.
    """
    resolved_db = _existing_db(db)
    if not yes:
        typer.confirm(f"Clear the search indexes in {resolved_db}?", abort=True)

    with _open_store(resolved_db) as store:
        keyword, semantic = _build_rankers(store, AppConfig().model_name)
        HybridSearcher(semantic, keyword).clear_index()
    console.print("Cleared keyword and vector indexes.")


@app.command()
def prune(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Remove documents that no longer exist on disk."""
    config = AppConfig(db_path=db if db is not None else AppConfig().db_path)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        console.print("[yellow]Database not found, nothing to prune.[/yellow]")
        return

    with _open_store(resolved_db) as store:
        removed = store.remove_missing_files()
    console.print(f"Removed {removed} orphaned documents.")
