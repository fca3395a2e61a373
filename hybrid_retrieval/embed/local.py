from __future__ import annotations

import logging
import threading
from typing import List, Optional

from ..errors import EmbeddingProviderError
from .base import DEFAULT_BATCH_SIZE, EmbeddingProvider

logger = logging.getLogger(__name__)


class FastEmbedProvider(EmbeddingProvider):
    """In-process ONNX embeddings via fastembed. Model loads on first use."""

    name = "fastembed"

    def __init__(self, model: Optional[str] = None, batch_size: int = DEFAULT_BATCH_SIZE):
        self.model_name = model or "BAAI/bge-small-en-v1.5"
        self.batch_size = int(batch_size)
        self._model = None
        self._lock = threading.Lock()

    def _ensure_model(self):
        with self._lock:
            if self._model is None:
                from fastembed import TextEmbedding

                logger.info("Loading fastembed model %s", self.model_name)
                self._model = TextEmbedding(model_name=self.model_name)
        return self._model

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            model = self._ensure_model()
            return [vec.tolist() for vec in model.embed(texts)]
        except Exception as e:
            raise EmbeddingProviderError(f"fastembed failed: {e}") from e


class SentenceTransformerProvider(EmbeddingProvider):
    """In-process embeddings via sentence-transformers. Model loads on first use."""

    name = "sentence-transformers"

    def __init__(self, model: Optional[str] = None, batch_size: int = DEFAULT_BATCH_SIZE):
        self.model_name = model or "sentence-transformers/all-MiniLM-L6-v2"
        self.batch_size = int(batch_size)
        self._model = None
        self._lock = threading.Lock()

    @property
    def dimension(self) -> Optional[int]:
        if self._model is None:
            return None
        return self._model.get_sentence_embedding_dimension()

    def _ensure_model(self):
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info("Loading sentence-transformers model %s", self.model_name)
                self._model = SentenceTransformer(self.model_name)
        return self._model

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        try:
            model = self._ensure_model()
            embs = model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
            return [list(map(float, v)) for v in embs]
        except Exception as e:
            raise EmbeddingProviderError(f"sentence-transformers failed: {e}") from e
