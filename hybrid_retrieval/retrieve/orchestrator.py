"""
Request-level driver for hybrid retrieval.

validate -> scope check -> (query embedding || store snapshot -> lexical)
-> dense -> fuse -> top-k with snippets.

The embedding round-trip is the only I/O wait and the only work submitted to
the worker pool. The store snapshot and lexical scoring run on the calling
thread meanwhile, so a provider that hangs and pins every pool thread can
delay nothing but its own embedding. If the embedding fails, times out, or
the caller cancels, the request finishes lexical-only with ``degraded=True``.
A store failure is fatal and propagates.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..config import RetrievalConfig
from ..embed.base import EmbeddingProvider
from ..embed.cache import CachedEmbedder
from ..errors import RetrievalError, ScopeError, StoreUnavailableError, ValidationError
from ..index.dense import DenseRetriever
from ..index.lexical import LexicalRetriever
from ..index.schema import (
    Chunk,
    RetrievalRequest,
    RetrievalResponse,
    RetrievalResult,
    ScoredCandidate,
)
from ..store.base import ChunkStore
from ..utils.log import TraceLog
from .fuse import FusionRanker, build_context_pack

logger = logging.getLogger(__name__)

# how often a pending embedding wait re-checks the cancel token
CANCEL_POLL_SECONDS = 0.05


def _ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


class RetrievalOrchestrator:
    def __init__(
        self,
        store: ChunkStore,
        embedder: EmbeddingProvider,
        config: Optional[RetrievalConfig] = None,
        cache: Optional[CachedEmbedder] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        trace_log: Optional[TraceLog] = None,
    ):
        self.config = config or RetrievalConfig()
        self.store = store
        self.embedder = embedder
        if cache is None and self.config.embedding.cache_size > 0:
            cache = CachedEmbedder(embedder, max_entries=self.config.embedding.cache_size)
        self.cache = cache
        self.dense = DenseRetriever()
        self.lexical = LexicalRetriever()
        self.ranker = FusionRanker(
            dense_weight=self.config.fusion.dense_weight,
            lexical_weight=self.config.fusion.lexical_weight,
        )
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.retrieval.max_workers,
            thread_name_prefix="retrieval",
        )
        if trace_log is None and self.config.logging.trace_path:
            trace_log = TraceLog(self.config.logging.trace_path)
        self.trace_log = trace_log

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "RetrievalOrchestrator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # steps
    # ------------------------------------------------------------------
    def _validate(self, project_id: str, query: str, k: Optional[int], owner_id: Optional[str]) -> RetrievalRequest:
        rcfg = self.config.retrieval
        try:
            req = RetrievalRequest(
                project_id=project_id,
                query=query,
                k=rcfg.default_k if k is None else k,
                owner_id=owner_id,
                max_query_chars=rcfg.max_query_chars,
                max_k=rcfg.max_k,
            )
            req.check_bounds()
        except PydanticValidationError as e:
            msgs = ", ".join(err["msg"] for err in e.errors())
            raise ValidationError(f"Validation error: {msgs}") from e
        except ValueError as e:
            raise ValidationError(f"Validation error: {e}") from e
        return req

    def _check_scope(self, req: RetrievalRequest) -> None:
        try:
            exists = self.store.project_exists(req.project_id, req.owner_id)
        except RetrievalError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Chunk store unavailable: {e}") from e
        if not exists:
            raise ScopeError(f"Project {req.project_id!r} not found or access denied")

    def _read_snapshot(self, req: RetrievalRequest) -> List[Chunk]:
        try:
            return list(self.store.find_eligible_chunks(req.project_id, req.owner_id))
        except RetrievalError:
            raise
        except Exception as e:
            raise StoreUnavailableError(f"Chunk store unavailable: {e}") from e

    def _embed_query(self, project_id: str, query: str) -> List[float]:
        if self.cache is not None:
            return self.cache.embed_query(project_id, query)
        return self.embedder.embed(query)

    def _await_embedding(
        self,
        future: "Future[List[float]]",
        deadline: float,
        timeout: float,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[Optional[List[float]], Optional[str]]:
        """
        Returns (vector, None) or (None, reason the request is degraded).

        ``deadline`` is on the ``time.monotonic()`` clock and counts from
        submission. A result that is already done is taken even when the
        deadline has passed.
        """
        while True:
            if cancel_event is not None and cancel_event.is_set():
                future.cancel()
                return None, "cancelled"
            remaining = deadline - time.monotonic()
            if remaining <= 0 and not future.done():
                # a running call can't be interrupted; its pool thread comes
                # back whenever the provider returns
                future.cancel()
                return None, f"timeout after {timeout:.2f}s"
            wait = max(remaining, 0.0)
            if cancel_event is not None:
                wait = min(wait, CANCEL_POLL_SECONDS)
            try:
                return future.result(timeout=wait), None
            except FuturesTimeout:
                if not future.done():
                    continue
                # provider raised a TimeoutError of its own
                e = future.exception()
                return None, f"{e.__class__.__name__}: {e}"
            except Exception as e:
                return None, f"{e.__class__.__name__}: {e}"

    def _dense_scores(
        self, query_vec: List[float], chunks: List[Chunk], req: RetrievalRequest
    ) -> Tuple[List[ScoredCandidate], Optional[str]]:
        try:
            return self.dense.search(query_vec, chunks, req.project_id, req.owner_id), None
        except Exception as e:
            logger.warning("Dense scoring failed for project %s: %s", req.project_id, e, exc_info=True)
            return [], f"dense scoring failed: {e}"

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def retrieve(
        self,
        project_id: str,
        query: str,
        k: Optional[int] = None,
        owner_id: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RetrievalResponse:
        """
        Top-k chunks for ``query`` within ``project_id`` (and ``owner_id`` if
        given), fusing dense and lexical scores.

        Raises:
            ValidationError: bad input; nothing else ran.
            ScopeError: project unknown for this owner.
            StoreUnavailableError: chunk store could not be read.
        """
        t0 = time.perf_counter()
        timers: Dict[str, int] = {}
        req = self._validate(project_id, query, k, owner_id)
        self._check_scope(req)
        timeout = self.config.embedding.timeout_seconds if timeout is None else float(timeout)

        # ---- fan out: embedding round-trip on the pool, everything else here
        f_embed = self._executor.submit(self._embed_query, req.project_id, req.query)
        deadline = time.monotonic() + timeout

        t1 = time.perf_counter()
        try:
            chunks = self._read_snapshot(req)
        except RetrievalError:
            f_embed.cancel()
            raise
        timers["store_ms"] = _ms(t1)

        t2 = time.perf_counter()
        lexical_hits = self.lexical.search(req.query, chunks, req.project_id, req.owner_id)
        timers["lexical_ms"] = _ms(t2)

        t3 = time.perf_counter()
        query_vec, degraded_reason = self._await_embedding(f_embed, deadline, timeout, cancel_event)
        timers["embed_wait_ms"] = _ms(t3)
        if degraded_reason is not None:
            logger.warning(
                "Embedding unavailable for project %s (%s); falling back to lexical-only",
                req.project_id, degraded_reason,
            )

        dense_hits: List[ScoredCandidate] = []
        if query_vec is not None:
            t4 = time.perf_counter()
            dense_hits, degraded_reason = self._dense_scores(query_vec, chunks, req)
            timers["dense_ms"] = _ms(t4)

        # ---- fuse
        t5 = time.perf_counter()
        fused = self.ranker.fuse(dense_hits, lexical_hits, req.k)
        by_id = {c.chunk_id: c for c in chunks}
        snip = self.config.retrieval.snippet_chars
        results = [
            RetrievalResult(
                chunk_id=h.chunk_id,
                score=h.score,
                sources=h.sources,
                snippet=by_id[h.chunk_id].text[:snip],
                heading_path=list(by_id[h.chunk_id].heading_path),
                dense_score=h.dense_score,
                lexical_score=h.lexical_score,
            )
            for h in fused
        ]
        context_pack = build_context_pack(results, {r.chunk_id: by_id[r.chunk_id].text for r in results})
        timers["fuse_ms"] = _ms(t5)
        timers["total_ms"] = _ms(t0)

        degraded = degraded_reason is not None
        trace = {
            "chunks_in_scope": len(chunks),
            "dense_ids": [h.chunk_id for h in dense_hits],
            "lexical_ids": [h.chunk_id for h in lexical_hits],
            "fused_ids": [r.chunk_id for r in results],
            "degraded_reason": degraded_reason,
            "timers_ms": timers,
        }
        logger.info(
            "retrieve project=%s k=%d results=%d degraded=%s total_ms=%d",
            req.project_id, req.k, len(results), degraded, timers["total_ms"],
            extra={"project_id": req.project_id, "degraded": degraded, "timers_ms": timers},
        )
        if self.trace_log is not None:
            self.trace_log.write(
                {
                    "project_id": req.project_id,
                    "owner_id": req.owner_id,
                    "query": req.query,
                    "k": req.k,
                    "degraded": degraded,
                    "trace": trace,
                }
            )
        return RetrievalResponse(
            results=results, degraded=degraded, context_pack=context_pack, trace=trace
        )
