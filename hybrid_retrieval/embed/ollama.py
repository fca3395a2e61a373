from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, List, Optional

import requests

from ..errors import EmbeddingProviderError
from .base import DEFAULT_BATCH_SIZE, EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA = "http://localhost:11434"
DEFAULT_EMBED_MODEL = "nomic-embed-text"


def _normalize_endpoint(ep: Optional[str]) -> str:
    """config endpoint > OLLAMA_HOST > default; ensure scheme; strip trailing slash."""
    cand = (ep or os.getenv("OLLAMA_HOST") or DEFAULT_OLLAMA).strip()
    if not re.match(r"^https?://", cand):
        cand = "http://" + cand
    return cand.rstrip("/")


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Production embedding client for an Ollama server.

    One POST to ``/api/embed`` per batch:
        {"model": "...", "input": ["text", ...]} -> {"embeddings": [[...], ...]}
    Older servers answer ``{"embedding": [...]}`` for single inputs; that
    shape is accepted for one-text batches.
    """

    name = "ollama"

    def __init__(
        self,
        model: Optional[str] = None,
        endpoint: Optional[str] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        keep_alive: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.model = model or DEFAULT_EMBED_MODEL
        self.base = _normalize_endpoint(endpoint)
        self.timeouts = (float(connect_timeout), float(read_timeout))
        self.batch_size = int(batch_size)
        self.keep_alive = keep_alive
        self._http = session or requests

    def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        url = f"{self.base}/api/embed"
        payload: Dict[str, Any] = {"model": self.model, "input": texts}
        if self.keep_alive:
            payload["keep_alive"] = self.keep_alive
        try:
            r = self._http.post(url, json=payload, timeout=self.timeouts)
            r.raise_for_status()
            data = r.json() or {}
        except requests.exceptions.RequestException as e:
            raise EmbeddingProviderError(
                f"ollama embed failed at {url} ({e.__class__.__name__}): {e}"
            ) from e
        except ValueError as e:
            raise EmbeddingProviderError(f"ollama returned non-JSON body from {url}") from e

        # Common shapes:
        #  - {"embeddings": [[...], ...]}
        #  - {"embedding": [...]} (older/alt shape, single input)
        embs = data.get("embeddings")
        if isinstance(embs, list) and embs:
            return [list(map(float, v)) for v in embs]
        single = data.get("embedding")
        if isinstance(single, list) and single and len(texts) == 1:
            return [list(map(float, single))]
        raise EmbeddingProviderError(f"ollama response from {url} carried no embeddings")
