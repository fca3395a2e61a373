import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
import requests

from conftest import FailingEmbedder, FixedEmbedder
from hybrid_retrieval.config import EmbeddingSettings
from hybrid_retrieval.embed import ollama as ollama_mod
from hybrid_retrieval.embed.cache import CachedEmbedder, normalize_query
from hybrid_retrieval.embed.factory import make_embedder
from hybrid_retrieval.embed.local import FastEmbedProvider, SentenceTransformerProvider
from hybrid_retrieval.embed.ollama import OllamaEmbeddingProvider
from hybrid_retrieval.embed.stub import HashEmbeddingProvider
from hybrid_retrieval.errors import ConfigError, EmbeddingProviderError
from hybrid_retrieval.index.dense import cosine_similarity


class _Resp:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self._payload


def test_hash_provider_is_deterministic_and_unit_length():
    p = HashEmbeddingProvider(dimension=64)
    a = p.embed("Discount code for the summer launch")
    b = HashEmbeddingProvider(dimension=64).embed("Discount code for the summer launch")
    assert a == b
    assert len(a) == 64
    assert sum(x * x for x in a) == pytest.approx(1.0)


def test_hash_provider_similarity_tracks_shared_tokens():
    p = HashEmbeddingProvider(dimension=256)
    q = p.embed("discount code")
    near = p.embed("discount code expires today")
    far = p.embed("founders met in college")
    assert cosine_similarity(q, near) > cosine_similarity(q, far)


def test_embed_many_batches():
    p = HashEmbeddingProvider(dimension=8, batch_size=100)
    out = p.embed_many([f"text {i}" for i in range(250)])
    assert len(out) == 250
    assert p.calls == 3
    assert p.embed_many([]) == []


def test_ollama_posts_batches(monkeypatch):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append((url, json, timeout))
        return _Resp({"embeddings": [[0.1, 0.2] for _ in json["input"]]})

    monkeypatch.setattr(ollama_mod.requests, "post", fake_post)
    p = OllamaEmbeddingProvider(
        model="nomic-embed-text", endpoint="localhost:11435/", batch_size=100,
        connect_timeout=2, read_timeout=7,
    )
    out = p.embed_many([f"t{i}" for i in range(105)])
    assert len(out) == 105
    assert [len(c[1]["input"]) for c in calls] == [100, 5]
    assert calls[0][0] == "http://localhost:11435/api/embed"
    assert calls[0][1]["model"] == "nomic-embed-text"
    assert calls[0][2] == (2.0, 7.0)


def test_ollama_accepts_single_embedding_shape(monkeypatch):
    monkeypatch.setattr(
        ollama_mod.requests, "post", lambda url, json=None, timeout=None: _Resp({"embedding": [1, 2, 3]})
    )
    assert OllamaEmbeddingProvider().embed("hi") == [1.0, 2.0, 3.0]


def test_ollama_endpoint_from_env(monkeypatch):
    monkeypatch.setenv("OLLAMA_HOST", "ollama:11434")
    assert OllamaEmbeddingProvider().base == "http://ollama:11434"


@pytest.mark.parametrize(
    "behaviour",
    ["connection", "http_error", "empty_payload", "count_mismatch"],
)
def test_ollama_failures_raise_provider_error(monkeypatch, behaviour):
    def fake_post(url, json=None, timeout=None):
        if behaviour == "connection":
            raise requests.exceptions.ConnectionError("refused")
        if behaviour == "http_error":
            return _Resp({}, status=500)
        if behaviour == "empty_payload":
            return _Resp({})
        return _Resp({"embeddings": [[1.0]]})

    monkeypatch.setattr(ollama_mod.requests, "post", fake_post)
    with pytest.raises(EmbeddingProviderError):
        OllamaEmbeddingProvider().embed_many(["a", "b"])


def test_factory_selects_backends():
    assert isinstance(make_embedder(EmbeddingSettings(backend="hash", dimension=16)), HashEmbeddingProvider)
    assert isinstance(make_embedder(EmbeddingSettings(backend="ollama")), OllamaEmbeddingProvider)
    assert isinstance(make_embedder(EmbeddingSettings(backend="fastembed")), FastEmbedProvider)
    assert isinstance(
        make_embedder(EmbeddingSettings(backend="sentence-transformers")), SentenceTransformerProvider
    )


def test_factory_rejects_unknown_backend():
    with pytest.raises(ConfigError):
        make_embedder(EmbeddingSettings(backend="word2vec"))


def test_normalize_query():
    assert normalize_query("  Discount\n  CODE  ") == "discount code"


def test_cache_hits_and_project_separation():
    emb = FixedEmbedder([0.5, 0.5])
    cache = CachedEmbedder(emb, max_entries=8)
    cache.embed_query("p1", "Summer Sale")
    cache.embed_query("p1", "summer   sale")
    cache.embed_query("p2", "summer sale")
    assert emb.calls == 2
    assert cache.hits == 1
    assert cache.misses == 2
    assert len(cache) == 2


def test_cache_evicts_oldest():
    cache = CachedEmbedder(FixedEmbedder([1.0]), max_entries=2)
    for q in ("one", "two", "three"):
        cache.embed_query("p1", q)
    assert len(cache) == 2
    assert ("p1", "one") not in cache._entries


def test_cache_does_not_store_failures():
    emb = FailingEmbedder()
    cache = CachedEmbedder(emb, max_entries=4)
    for _ in range(2):
        with pytest.raises(EmbeddingProviderError):
            cache.embed_query("p1", "launch")
    assert len(cache) == 0
    assert emb.calls == 2


def test_cache_is_safe_under_concurrency():
    emb = FixedEmbedder([0.1, 0.9])
    cache = CachedEmbedder(emb, max_entries=4)
    barrier = threading.Barrier(8)

    def worker(i):
        barrier.wait()
        return cache.embed_query("p1", f"query {i % 3}")

    with ThreadPoolExecutor(max_workers=8) as pool:
        out = list(pool.map(worker, range(8)))
    assert all(v == [0.1, 0.9] for v in out)
    assert len(cache) == 3
