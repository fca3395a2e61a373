from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence

from ..errors import ConfigError
from ..index.schema import FusedHit, RetrievalResult, ScoredCandidate

DEFAULT_DENSE_WEIGHT = 0.65
DEFAULT_LEXICAL_WEIGHT = 0.35


def _best_per_chunk(candidates: Iterable[ScoredCandidate]) -> Dict[str, float]:
    best: Dict[str, float] = {}
    for h in candidates:
        prev = best.get(h.chunk_id)
        if prev is None or h.score > prev:
            best[h.chunk_id] = h.score
    return best


def min_max_normalize(raw: Dict[str, float]) -> Dict[str, float]:
    """
    Map one retriever's raw scores onto [0, 1].

    Zero or one candidate, or a list where every score is equal, has no
    spread to divide by: every present candidate gets 1.0.
    """
    if not raw:
        return {}
    lo = min(raw.values())
    hi = max(raw.values())
    span = hi - lo
    if len(raw) == 1 or span == 0.0:
        return {cid: 1.0 for cid in raw}
    return {cid: (s - lo) / span for cid, s in raw.items()}


class FusionRanker:
    def __init__(
        self,
        dense_weight: float = DEFAULT_DENSE_WEIGHT,
        lexical_weight: float = DEFAULT_LEXICAL_WEIGHT,
    ):
        if dense_weight < 0 or lexical_weight < 0:
            raise ConfigError("fusion weights must be non-negative")
        if dense_weight == 0 and lexical_weight == 0:
            raise ConfigError("at least one fusion weight must be positive")
        self.dense_weight = float(dense_weight)
        self.lexical_weight = float(lexical_weight)

    def fuse(
        self,
        dense_hits: Sequence[ScoredCandidate],
        lexical_hits: Sequence[ScoredCandidate],
        k: int,
    ) -> List[FusedHit]:
        dense_raw = _best_per_chunk(dense_hits)
        lex_raw = _best_per_chunk(lexical_hits)
        dense_n = min_max_normalize(dense_raw)
        lex_n = min_max_normalize(lex_raw)

        merged: List[FusedHit] = []
        for cid in dense_raw.keys() | lex_raw.keys():
            sources = []
            if cid in dense_raw:
                sources.append("dense")
            if cid in lex_raw:
                sources.append("lexical")
            score = (
                self.dense_weight * dense_n.get(cid, 0.0)
                + self.lexical_weight * lex_n.get(cid, 0.0)
            )
            merged.append(
                FusedHit(
                    chunk_id=cid,
                    score=score,
                    sources=sources,
                    dense_score=dense_raw.get(cid),
                    lexical_score=lex_raw.get(cid),
                )
            )

        # fused desc, raw dense desc (absent dense last), chunk id asc
        merged.sort(
            key=lambda h: (
                -h.score,
                0 if h.dense_score is not None else 1,
                -(h.dense_score if h.dense_score is not None else 0.0),
                h.chunk_id,
            )
        )
        return merged[:k]


def build_context_pack(
    results: Sequence[RetrievalResult],
    full_text: Optional[Dict[str, str]] = None,
) -> str:
    """
    Markdown context block handed to draft generation, one section per chunk.
    Uses the full chunk text when ``full_text`` has it, else the snippet.
    """
    full_text = full_text or {}
    blocks = []
    for r in results:
        path = f" ({' > '.join(r.heading_path)})" if r.heading_path else ""
        body = full_text.get(r.chunk_id, r.snippet).strip()
        blocks.append(f"## [{r.chunk_id}]{path}\n\n{body}\n")
    return "\n".join(blocks)
