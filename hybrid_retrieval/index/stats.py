from __future__ import annotations

from collections import Counter
from typing import Optional, Sequence

from .schema import Chunk, ProjectStats


def project_stats(project_id: str, chunks: Sequence[Chunk]) -> ProjectStats:
    """Embedding coverage and text-length summary for one project's chunks."""
    scoped = [c for c in chunks if c.project_id == project_id]
    dims = Counter(len(c.embedding) for c in scoped if c.embedding)
    dim: Optional[int] = dims.most_common(1)[0][0] if dims else None
    avg_len = round(sum(len(c.text) for c in scoped) / len(scoped)) if scoped else 0
    return ProjectStats(
        project_id=project_id,
        total_chunks=len(scoped),
        chunks_with_embeddings=sum(dims.values()),
        embedding_dimensions=dim,
        mixed_dimensions=len(dims) > 1,
        average_text_length=avg_len,
    )
