from __future__ import annotations

from ..config import EmbeddingSettings
from ..errors import ConfigError
from .base import EmbeddingProvider
from .local import FastEmbedProvider, SentenceTransformerProvider
from .ollama import OllamaEmbeddingProvider
from .stub import HashEmbeddingProvider


def make_embedder(settings: EmbeddingSettings) -> EmbeddingProvider:
    backend = (settings.backend or "hash").lower()

    if backend == "ollama":
        return OllamaEmbeddingProvider(
            model=settings.model,
            endpoint=settings.endpoint,
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.timeout_seconds,
            batch_size=settings.batch_size,
            keep_alive=settings.keep_alive,
        )
    if backend == "fastembed":
        return FastEmbedProvider(model=settings.model, batch_size=settings.batch_size)
    if backend in ("sentence-transformers", "sentence_transformers"):
        return SentenceTransformerProvider(model=settings.model, batch_size=settings.batch_size)
    if backend == "hash":
        return HashEmbeddingProvider(dimension=settings.dimension, batch_size=settings.batch_size)

    raise ConfigError(f"Unsupported embedding backend: {backend}")
