"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from docfusion.cache.query_cache import CacheConfig
from docfusion.embedding.encoder import DEFAULT_MODEL
from docfusion.index.search import FusionConfig
from docfusion.ingestion.chunker import ChunkConfig


def _get_default_db_path() -> Path:
    """Prefer a local data/ database when running from a checkout."""
    local_db = Path("data/docfusion.db")
    if local_db.exists():
        return local_db
    return Path.home() / ".docfusion" / "docfusion.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    model_name: str = DEFAULT_MODEL
    max_chunk_size: int = 500
    overlap_size: int = 50
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    limit: int = 10
    min_semantic_similarity: float = 0.5
    cache_size: int = 100
    cache_ttl_ms: float = 300_000

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def chunk_config(self) -> ChunkConfig:
        return ChunkConfig(max_chunk_size=self.max_chunk_size, overlap_size=self.overlap_size)

    def fusion_config(self) -> FusionConfig:
        return FusionConfig(
            semantic_weight=self.semantic_weight,
            keyword_weight=self.keyword_weight,
            limit=self.limit,
            min_semantic_similarity=self.min_semantic_similarity,
        )

    def cache_config(self) -> CacheConfig:
        return CacheConfig(max_size=self.cache_size, ttl_ms=self.cache_ttl_ms)
