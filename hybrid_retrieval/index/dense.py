from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np

from ..errors import ValidationError
from .schema import Chunk, ScoredCandidate

logger = logging.getLogger(__name__)


def unit_vector(v: np.ndarray) -> Optional[np.ndarray]:
    """``v / |v|``, or None when the norm is zero or not finite."""
    n = float(np.linalg.norm(v))
    if n == 0.0 or not np.isfinite(n):
        return None
    return v / n


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    dot(a, b) / (|a| * |b|), clipped to [-1, 1]. Same arithmetic as
    ``ExactScanIndex`` for a single pair.

    Returns 0.0 if either vector has zero norm. Raises ValueError when the
    lengths differ so callers can decide whether to skip or fail.
    """
    va = np.asarray(a, dtype="float64")
    vb = np.asarray(b, dtype="float64")
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have the same length ({va.shape} vs {vb.shape})")
    ua = unit_vector(va)
    ub = unit_vector(vb)
    if ua is None or ub is None:
        return 0.0
    return float(np.clip(ua @ ub, -1.0, 1.0))


class VectorIndex(ABC):
    """Scores a query vector against a set of already-filtered chunks."""

    @abstractmethod
    def score(self, query_vec: np.ndarray, chunks: Sequence[Chunk]) -> List[ScoredCandidate]:
        ...


class ExactScanIndex(VectorIndex):
    """
    Exhaustive O(chunks x dim) scan. Every usable embedding is unit-normalized
    into one matrix and scored with a single matrix-vector product.

    Chunks whose vector has the wrong length, a zero norm, or non-finite
    components are skipped; one bad chunk never fails the request.
    """

    def score(self, query_vec: np.ndarray, chunks: Sequence[Chunk]) -> List[ScoredCandidate]:
        q = unit_vector(query_vec)
        if q is None:
            logger.warning("Query embedding has zero or non-finite norm; dense scoring skipped")
            return []

        ids: list[str] = []
        rows: list[np.ndarray] = []
        for c in chunks:
            try:
                v = np.asarray(c.embedding, dtype="float64")
            except (TypeError, ValueError) as e:
                logger.warning("Skipping chunk %s: corrupt embedding (%s)", c.chunk_id, e)
                continue
            if v.shape != q.shape:
                logger.debug(
                    "Skipping chunk %s: embedding dim %s != query dim %s",
                    c.chunk_id, v.shape, q.shape,
                )
                continue
            if not np.all(np.isfinite(v)):
                logger.warning("Skipping chunk %s: non-finite embedding values", c.chunk_id)
                continue
            u = unit_vector(v)
            if u is None:
                logger.debug("Skipping chunk %s: zero-norm embedding", c.chunk_id)
                continue
            ids.append(c.chunk_id)
            rows.append(u)

        if not rows:
            return []
        M = np.vstack(rows)  # [N, D]
        sims = np.clip(M @ q, -1.0, 1.0)
        return [
            ScoredCandidate(chunk_id=cid, score=float(s), source="dense")
            for cid, s in zip(ids, sims.tolist())
        ]


class DenseRetriever:
    def __init__(self, index: Optional[VectorIndex] = None):
        self.index = index or ExactScanIndex()

    @staticmethod
    def eligible(chunks: Sequence[Chunk], project_id: str, owner_id: Optional[str] = None) -> List[Chunk]:
        return [
            c for c in chunks
            if c.visible_to(project_id, owner_id) and c.embedding
        ]

    def search(
        self,
        query_vec: Sequence[float],
        chunks: Sequence[Chunk],
        project_id: str,
        owner_id: Optional[str] = None,
    ) -> List[ScoredCandidate]:
        """Cosine similarity for every eligible chunk. Unsorted."""
        if query_vec is None or len(query_vec) == 0:
            raise ValidationError("Query vector is required and must not be empty")
        q = np.asarray(query_vec, dtype="float64")
        pool = self.eligible(chunks, project_id, owner_id)
        hits = self.index.score(q, pool)
        logger.debug(
            "dense: %d/%d chunks eligible, %d scored", len(pool), len(chunks), len(hits)
        )
        return hits
