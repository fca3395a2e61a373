from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config import RetrievalConfig, load_settings
from .embed.factory import make_embedder
from .index.schema import ProjectStats
from .index.stats import project_stats
from .retrieve.orchestrator import RetrievalOrchestrator
from .store.memory import JsonlChunkStore

logger = logging.getLogger(__name__)


def build_orchestrator(
    cfg: RetrievalConfig,
    store_path: Optional[str | Path] = None,
) -> RetrievalOrchestrator:
    """Wire store, embedding backend and orchestrator from one config object."""
    store = JsonlChunkStore(store_path or cfg.store.path)
    embedder = make_embedder(cfg.embedding)
    logger.debug(
        "engine: backend=%s weights=(%.2f, %.2f) store=%s",
        embedder.name, cfg.fusion.dense_weight, cfg.fusion.lexical_weight, store.path,
    )
    return RetrievalOrchestrator(store=store, embedder=embedder, config=cfg)


def load_engine(
    config_path: Optional[str | Path] = None,
    store_path: Optional[str | Path] = None,
) -> RetrievalOrchestrator:
    return build_orchestrator(load_settings(config_path), store_path)


def stats_for(project_id: str, cfg: RetrievalConfig, store_path: Optional[str | Path] = None) -> ProjectStats:
    store = JsonlChunkStore(store_path or cfg.store.path)
    return project_stats(project_id, store.all_chunks(project_id))
