"""Embedding model management."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

logger = logging.getLogger(__name__)


class EmbeddingUnavailableError(RuntimeError):
    """Raised when embeddings are requested but the model could not be loaded."""


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_MODEL
    batch_size: int = 16
    normalize: bool = True
    device: str | None = None


class EmbeddingModel:
    """Lazy wrapper around `SentenceTransformer` that reports its availability.

    The model is loaded on first use. If loading fails (model not downloaded,
    no network, broken install) the failure is logged once and the model
    reports itself unavailable, so callers can fall back to keyword search.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model: SentenceTransformer | None = None
        self._load_failed = False

    def _load_model(self) -> SentenceTransformer | None:
        if self._model is None and not self._load_failed:
            try:
                self._model = SentenceTransformer(self.config.model_name, device=self.config.device)
                logger.info(f"Loaded embedding model {self.config.model_name}")
            except Exception as e:
                logger.warning(f"Embedding model {self.config.model_name} unavailable: {e}")
                self._load_failed = True
        return self._model

    def is_available(self) -> bool:
        return self._load_model() is not None

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def _require_model(self) -> SentenceTransformer:
        model = self._load_model()
        if model is None:
            raise EmbeddingUnavailableError(
                f"Embedding model {self.config.model_name} could not be loaded"
            )
        return model

    def embed(self, texts: Sequence[str] | Iterable[str]) -> np.ndarray:
        """Return float32 embeddings for input texts."""
        sentences = list(texts)
        embeddings = self._require_model().encode(
            sentences,
            batch_size=self.config.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=self.config.normalize,
        )
        return embeddings.astype("float32", copy=False)

    def embed_query(self, text: str) -> np.ndarray:
        """Convenience wrapper for single-query embedding."""
        return self.embed([text])[0]
