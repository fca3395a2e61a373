import sys
import threading
import time
from pathlib import Path

import pytest

# Repo root = one level above tests/
REPO_ROOT = Path(__file__).resolve().parents[1]

# Ensure repo root is on sys.path so `import hybrid_retrieval` and `import cli` work.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from hybrid_retrieval.embed.base import EmbeddingProvider  # noqa: E402
from hybrid_retrieval.errors import EmbeddingProviderError  # noqa: E402
from hybrid_retrieval.index.schema import Chunk  # noqa: E402
from hybrid_retrieval.store.memory import InMemoryChunkStore  # noqa: E402


class FixedEmbedder(EmbeddingProvider):
    """Returns the same vector for every text; optional delay per batch."""

    name = "fixed"

    def __init__(self, vector, delay: float = 0.0):
        self.vector = list(vector)
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def _embed_batch(self, texts):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        return [list(self.vector) for _ in texts]


class FailingEmbedder(EmbeddingProvider):
    name = "failing"

    def __init__(self, exc: Exception | None = None):
        self.exc = exc or EmbeddingProviderError("embedding service down")
        self.calls = 0

    def _embed_batch(self, texts):
        self.calls += 1
        raise self.exc


class SpyStore(InMemoryChunkStore):
    """In-memory store that records every read."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.reads = 0
        self.scope_checks = 0

    def find_eligible_chunks(self, project_id, owner_id=None):
        self.reads += 1
        return super().find_eligible_chunks(project_id, owner_id)

    def project_exists(self, project_id, owner_id=None):
        self.scope_checks += 1
        return super().project_exists(project_id, owner_id)


def mk(chunk_id, text, embedding=None, project_id="p1", owner_id=None, heading_path=None):
    return Chunk(
        chunk_id=chunk_id,
        project_id=project_id,
        owner_id=owner_id,
        text=text,
        heading_path=heading_path or [],
        embedding=embedding,
    )


@pytest.fixture
def abc_chunks():
    """A: dense + lexical hit, B: lexical only (no embedding), C: unrelated."""
    return [
        mk("A", "50% discount code today", [1.0, 0.0, 0.0], heading_path=["Offers", "Summer"]),
        mk("B", "discount code expires", None, heading_path=["Offers"]),
        mk("C", "our founders met in college", [0.0, 1.0, 0.0]),
    ]


@pytest.fixture
def abc_store(abc_chunks):
    return SpyStore(abc_chunks)
