"""Hybrid search: weighted fusion of keyword and vector rankings."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Dict, Hashable, List, Sequence

from docfusion.cache.query_cache import BoundedCache
from docfusion.errors import ConfigurationError
from docfusion.index.rankers import KeywordRanker, VectorRanker
from docfusion.models import RankedResult

LOGGER = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-3


def validate_weights(semantic_weight: float, keyword_weight: float) -> None:
    """Reject weight pairs that do not sum to 1.0. Weights are never rescaled."""
    if abs(semantic_weight + keyword_weight - 1.0) > WEIGHT_TOLERANCE:
        raise ConfigurationError(
            "Semantic and keyword weights must sum to 1.0 "
            f"(got {semantic_weight} + {keyword_weight})"
        )


@dataclass(slots=True, frozen=True)
class FusionConfig:
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    limit: int = 10
    min_semantic_similarity: float = 0.5
    include_context: bool = True

    def __post_init__(self) -> None:
        validate_weights(self.semantic_weight, self.keyword_weight)
        if self.limit <= 0:
            raise ConfigurationError("limit must be greater than 0")


DEFAULT_FUSION_CONFIG = FusionConfig()


@dataclass(slots=True)
class SearchStats:
    semantic_available: bool
    semantic_index_size: int
    keyword_index_size: int


@dataclass(slots=True)
class _ScoredResult:
    result: RankedResult
    semantic_score: float | None
    keyword_score: float | None
    combined_score: float


def fuse_results(
    semantic_results: Sequence[RankedResult],
    keyword_results: Sequence[RankedResult],
    config: FusionConfig = DEFAULT_FUSION_CONFIG,
) -> List[RankedResult]:
    """Merge two rankings into one list ordered by combined score.

    A chunk found by both rankers scores
    ``semantic * semantic_weight + keyword * keyword_weight``; a chunk found by
    only one keeps that ranker's raw similarity. Each chunk appears once.
    Ties keep input order: semantic hits first, then keyword-only hits.
    """
    merged: Dict[Hashable, _ScoredResult] = {}

    for result in semantic_results:
        key = result.chunk.key
        if key not in merged:
            merged[key] = _ScoredResult(result, result.similarity, None, result.similarity)

    for result in keyword_results:
        key = result.chunk.key
        existing = merged.get(key)
        if existing is None:
            merged[key] = _ScoredResult(result, None, result.similarity, result.similarity)
        elif existing.semantic_score is not None and existing.keyword_score is None:
            existing.keyword_score = result.similarity
            existing.combined_score = (
                existing.semantic_score * config.semantic_weight
                + result.similarity * config.keyword_weight
            )

    ranked = sorted(merged.values(), key=lambda scored: scored.combined_score, reverse=True)
    return [
        RankedResult(
            chunk=scored.result.chunk,
            document=scored.result.document,
            similarity=scored.combined_score,
            context=scored.result.context,
        )
        for scored in ranked[: config.limit]
    ]


class HybridSearcher:
    """Runs the keyword and vector rankers together and fuses their results.

    When the vector ranker is unavailable the searcher runs keyword-only.
    Ranker exceptions propagate and abandon the merge. The keyword query runs
    on the event loop while the vector ranker encodes the query in a worker
    thread. Pass a :class:`BoundedCache` to memoize results per query and
    configuration.
    """

    def __init__(
        self,
        semantic: VectorRanker,
        keyword: KeywordRanker,
        config: FusionConfig | None = None,
        *,
        cache: BoundedCache[List[RankedResult]] | None = None,
    ) -> None:
        self.semantic = semantic
        self.keyword = keyword
        self._config = config or DEFAULT_FUSION_CONFIG
        self.cache = cache
        self._warned_keyword_only = False

    @property
    def config(self) -> FusionConfig:
        return self._config

    def is_available(self) -> bool:
        return self.semantic.is_available()

    async def search(self, query: str, **overrides) -> List[RankedResult]:
        config = replace(self._config, **overrides) if overrides else self._config
        validate_weights(config.semantic_weight, config.keyword_weight)

        cache_key = (query, config)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                LOGGER.debug("Cache hit for query %r", query)
                return list(cached)

        candidates = config.limit * 2
        keyword_search = self.keyword.search(query, limit=candidates)

        if self.is_available():
            semantic_results, keyword_results = await asyncio.gather(
                self.semantic.search(
                    query,
                    limit=candidates,
                    min_similarity=config.min_semantic_similarity,
                    include_context=config.include_context,
                ),
                keyword_search,
            )
        else:
            if not self._warned_keyword_only:
                LOGGER.info("Vector search unavailable, using keyword search only")
                self._warned_keyword_only = True
            semantic_results = []
            keyword_results = await keyword_search

        results = fuse_results(semantic_results, keyword_results, config)
        LOGGER.debug(
            "Fused %d semantic and %d keyword results into %d",
            len(semantic_results),
            len(keyword_results),
            len(results),
        )

        if self.cache is not None:
            self.cache.set(cache_key, list(results))
        return results

    def search_sync(self, query: str, **overrides) -> List[RankedResult]:
        """Blocking variant of :meth:`search` for callers without an event loop."""
        return asyncio.run(self.search(query, **overrides))

    def get_stats(self) -> SearchStats:
        return SearchStats(
            semantic_available=self.semantic.is_available(),
            semantic_index_size=self.semantic.index_size(),
            keyword_index_size=self.keyword.index_size(),
        )

    def clear_index(self) -> None:
        self.semantic.clear_index()
        self.keyword.clear_index()
        if self.cache is not None:
            self.cache.clear()

    def update_config(self, **changes) -> FusionConfig:
        """Replace configuration fields; invalid changes leave the old config in place."""
        config = replace(self._config, **changes)
        validate_weights(config.semantic_weight, config.keyword_weight)
        self._config = config
        if self.cache is not None:
            self.cache.clear()
        return config
