from __future__ import annotations

import logging
import re
import threading
from collections import OrderedDict
from typing import List, Tuple

from .base import EmbeddingProvider

logger = logging.getLogger(__name__)


def normalize_query(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower())


class CachedEmbedder:
    """
    Read-through cache of query embeddings keyed by (project id, normalized
    query). Replace-on-miss, oldest entry evicted when full. A single lock
    guards the map; the provider call itself runs outside the lock, so two
    concurrent misses on one key may both call the provider and the later
    write wins. Failures propagate and are never cached.
    """

    def __init__(self, provider: EmbeddingProvider, max_entries: int = 256):
        self.provider = provider
        self.max_entries = int(max_entries)
        self._entries: "OrderedDict[Tuple[str, str], List[float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def embed_query(self, project_id: str, text: str) -> List[float]:
        key = (project_id, normalize_query(text))
        if self.max_entries > 0:
            with self._lock:
                vec = self._entries.get(key)
                if vec is not None:
                    self.hits += 1
                    return vec
                self.misses += 1

        vec = self.provider.embed(text.strip())

        if self.max_entries > 0:
            with self._lock:
                self._entries[key] = vec
                while len(self._entries) > self.max_entries:
                    self._entries.popitem(last=False)
        return vec

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
