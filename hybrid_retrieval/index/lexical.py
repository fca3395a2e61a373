from __future__ import annotations

import logging
import math
import re
from collections import Counter
from typing import List, Optional, Sequence

from .schema import Chunk, ScoredCandidate

logger = logging.getLogger(__name__)

MIN_TOKEN_LEN = 2

# runs of Unicode letters/digits; underscore is a boundary
_TOKEN_RE = re.compile(r"[^\W_]+")


def tokenize(s: str) -> list[str]:
    return [t for t in _TOKEN_RE.findall(s.lower()) if len(t) >= MIN_TOKEN_LEN]


class LexicalRetriever:
    """
    Term-frequency weighted overlap. Each distinct query token found in a
    chunk adds ``1 + ln(occurrences)``; chunks with no overlap are left out
    of the result rather than scored 0.

    Raw scores grow with chunk length and are only comparable after the
    fusion step normalizes them.
    """

    def search(
        self,
        query: str,
        chunks: Sequence[Chunk],
        project_id: str,
        owner_id: Optional[str] = None,
    ) -> List[ScoredCandidate]:
        terms = set(tokenize(query))
        if not terms:
            logger.debug("lexical: query %r has no usable tokens", query)
            return []

        hits: List[ScoredCandidate] = []
        scanned = 0
        for c in chunks:
            if not c.visible_to(project_id, owner_id):
                continue
            scanned += 1
            tf = Counter(tokenize(c.text))
            score = 0.0
            for t in terms:
                n = tf.get(t, 0)
                if n:
                    score += 1.0 + math.log(n)
            if score > 0.0:
                hits.append(ScoredCandidate(chunk_id=c.chunk_id, score=score, source="lexical"))
        logger.debug("lexical: %d chunks scanned, %d matched", scanned, len(hits))
        return hits
