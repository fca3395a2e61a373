from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..errors import EmbeddingProviderError

DEFAULT_BATCH_SIZE = 100


class EmbeddingProvider(ABC):
    """
    Text -> vector capability. Implementations raise EmbeddingProviderError
    on any backend failure (network, timeout, malformed payload).
    """

    name: str = "base"
    batch_size: int = DEFAULT_BATCH_SIZE

    @property
    def dimension(self) -> Optional[int]:
        return None

    @abstractmethod
    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed at most ``batch_size`` texts in one backend call."""
        ...

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        out: List[List[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            vecs = self._embed_batch(batch)
            if len(vecs) != len(batch):
                raise EmbeddingProviderError(
                    f"{self.name}: batch {i // self.batch_size + 1} returned "
                    f"{len(vecs)} vectors for {len(batch)} texts"
                )
            out.extend(vecs)
        return out

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]
