"""
Error taxonomy for the retrieval engine.

Callers map these onto their own transport: ``ValidationError`` is a
client-input fault, ``ScopeError`` an access fault, ``StoreUnavailableError``
a server-side failure. ``EmbeddingProviderError`` normally never reaches the
caller because the orchestrator downgrades to lexical-only results.
"""
from __future__ import annotations


class RetrievalError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(RetrievalError):
    """Request rejected before any retriever ran."""


class ScopeError(RetrievalError):
    """Project not found for the given owner."""


class EmbeddingProviderError(RetrievalError):
    """Embedding backend failed, timed out, or returned an unusable payload."""


class StoreUnavailableError(RetrievalError):
    """Chunk store could not be read."""


class ConfigError(RetrievalError):
    pass
