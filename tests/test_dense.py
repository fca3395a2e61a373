import math

import numpy as np
import pytest

from conftest import mk
from hybrid_retrieval.errors import ValidationError
from hybrid_retrieval.index.dense import DenseRetriever, ExactScanIndex, cosine_similarity


def test_cosine_identical_and_opposite():
    assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)
    assert cosine_similarity([1, 2, 3], [-1, -2, -3]) == pytest.approx(-1.0)


def test_cosine_orthogonal_is_zero():
    assert cosine_similarity([1, 0, 0], [0, 1, 0]) == 0.0


@pytest.mark.parametrize("a,b", [([0, 0, 0], [1, 2, 3]), ([1, 2, 3], [0, 0, 0]), ([0, 0], [0, 0])])
def test_cosine_zero_norm_is_zero(a, b):
    assert cosine_similarity(a, b) == 0.0


def test_cosine_length_mismatch_raises():
    with pytest.raises(ValueError):
        cosine_similarity([1, 2], [1, 2, 3])


def test_cosine_symmetric_and_bounded():
    rng = np.random.default_rng(7)
    for _ in range(50):
        a = rng.normal(size=16).tolist()
        b = rng.normal(size=16).tolist()
        s_ab = cosine_similarity(a, b)
        assert s_ab == cosine_similarity(b, a)
        assert -1.0 <= s_ab <= 1.0


def _index_score(query, vec):
    hits = ExactScanIndex().score(np.asarray(query, dtype="float64"), [mk("c", "x", vec)])
    return hits[0].score if hits else 0.0


def test_index_scores_are_symmetric_bounded_and_match_cosine():
    rng = np.random.default_rng(11)
    for _ in range(50):
        a = rng.normal(size=16).tolist()
        b = rng.normal(size=16).tolist()
        s_ab = _index_score(a, b)
        assert s_ab == pytest.approx(_index_score(b, a), abs=1e-12)
        assert -1.0 <= s_ab <= 1.0
        assert s_ab == pytest.approx(cosine_similarity(a, b), abs=1e-12)


def test_index_scores_parallel_vectors_within_bounds():
    v = [1e-3, 3e7, -2.5, 1e-9]
    assert _index_score(v, v) <= 1.0
    assert _index_score(v, [-x for x in v]) >= -1.0


def test_index_skips_zero_norm_chunk_rather_than_scoring_it():
    assert ExactScanIndex().score(np.array([1.0, 0.0]), [mk("z", "x", [0.0, 0.0])]) == []


def test_dense_scores_every_eligible_chunk():
    chunks = [
        mk("chunk-1", "First chunk text", [1, 0, 0]),
        mk("chunk-2", "Second chunk text", [0, 1, 0]),
        mk("chunk-3", "Third chunk text", [0.7, 0.7, 0]),
    ]
    hits = {h.chunk_id: h.score for h in DenseRetriever().search([1, 0, 0], chunks, "p1")}
    assert set(hits) == {"chunk-1", "chunk-2", "chunk-3"}
    assert hits["chunk-1"] == pytest.approx(1.0)
    assert hits["chunk-2"] == pytest.approx(0.0)
    assert hits["chunk-3"] == pytest.approx(1 / math.sqrt(2))


def test_dense_skips_bad_vectors_without_failing():
    chunks = [
        mk("ok", "fine", [1, 0, 0]),
        mk("short", "wrong dim", [1, 0]),
        mk("zero", "zero norm", [0, 0, 0]),
        mk("nan", "corrupt", [float("nan"), 1, 0]),
        mk("none", "no embedding", None),
        mk("empty", "empty embedding", []),
    ]
    hits = DenseRetriever().search([1, 0, 0], chunks, "p1")
    assert [h.chunk_id for h in hits] == ["ok"]
    assert all(h.source == "dense" for h in hits)


def test_dense_respects_project_and_owner_scope():
    chunks = [
        mk("mine", "x", [1, 0], owner_id="alice"),
        mk("theirs", "x", [1, 0], owner_id="bob"),
        mk("legacy", "x", [1, 0], owner_id=None),
        mk("other-project", "x", [1, 0], project_id="p2"),
    ]
    hits = DenseRetriever().search([1, 0], chunks, "p1", owner_id="alice")
    assert sorted(h.chunk_id for h in hits) == ["legacy", "mine"]

    no_owner = DenseRetriever().search([1, 0], chunks, "p1")
    assert sorted(h.chunk_id for h in no_owner) == ["legacy", "mine", "theirs"]


def test_dense_empty_query_vector_rejected():
    with pytest.raises(ValidationError):
        DenseRetriever().search([], [mk("a", "x", [1.0])], "p1")


def test_zero_norm_query_scores_nothing():
    assert DenseRetriever().search([0, 0], [mk("a", "x", [1.0, 0.0])], "p1") == []


def test_custom_index_is_used():
    class Recorder(ExactScanIndex):
        def __init__(self):
            self.seen = []

        def score(self, query_vec, chunks):
            self.seen.extend(c.chunk_id for c in chunks)
            return super().score(query_vec, chunks)

    idx = Recorder()
    DenseRetriever(index=idx).search([1, 0], [mk("a", "x", [1, 0]), mk("b", "x", None)], "p1")
    assert idx.seen == ["a"]
