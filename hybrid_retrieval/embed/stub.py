from __future__ import annotations

import hashlib
import math
from typing import List, Optional

from ..index.lexical import tokenize
from .base import DEFAULT_BATCH_SIZE, EmbeddingProvider


class HashEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic hashed bag-of-tokens vectors. No model, no network: texts
    sharing tokens get positive cosine similarity, which is enough for
    offline runs and tests.
    """

    name = "hash"

    def __init__(self, dimension: int = 256, batch_size: int = DEFAULT_BATCH_SIZE):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._dim = int(dimension)
        self.batch_size = int(batch_size)
        self.calls = 0

    @property
    def dimension(self) -> Optional[int]:
        return self._dim

    def _vector(self, text: str) -> List[float]:
        v = [0.0] * self._dim
        for tok in tokenize(text):
            h = hashlib.blake2b(tok.encode("utf-8"), digest_size=8).digest()
            v[int.from_bytes(h, "big") % self._dim] += 1.0
        n = math.sqrt(sum(x * x for x in v))
        return [x / n for x in v] if n else v

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        return [self._vector(t) for t in texts]
