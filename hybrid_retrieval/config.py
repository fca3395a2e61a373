from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from .errors import ConfigError

DEFAULTS: Dict[str, Any] = {
    "retrieval": {
        "default_k": 5,
        "max_k": 100,
        "max_query_chars": 2000,
        "snippet_chars": 500,
        "max_workers": 4,
    },
    "fusion": {
        "dense_weight": 0.65,
        "lexical_weight": 0.35,
    },
    "embedding": {
        "backend": "hash",          # ollama | fastembed | sentence-transformers | hash
        "model": None,
        "endpoint": None,
        "batch_size": 100,
        "timeout_seconds": 10.0,
        "connect_timeout": 5.0,
        "dimension": 256,
        "cache_size": 256,
        "keep_alive": None,
    },
    "store": {
        "path": "data/chunks.jsonl",
    },
    "logging": {
        "trace_path": None,
        "level": None,
        "json_logs": False,
    },
}


class RetrievalSettings(BaseModel):
    default_k: int = Field(5, gt=0)
    max_k: int = Field(100, gt=0)
    max_query_chars: int = Field(2000, gt=0)
    snippet_chars: int = Field(500, gt=0)
    max_workers: int = Field(4, ge=1)


class FusionSettings(BaseModel):
    dense_weight: float = Field(0.65, ge=0.0)
    lexical_weight: float = Field(0.35, ge=0.0)

    @model_validator(mode="after")
    def _one_positive(self) -> "FusionSettings":
        if self.dense_weight == 0 and self.lexical_weight == 0:
            raise ValueError("at least one fusion weight must be positive")
        return self


class EmbeddingSettings(BaseModel):
    backend: str = "hash"
    model: Optional[str] = None
    endpoint: Optional[str] = None
    batch_size: int = Field(100, gt=0)
    timeout_seconds: float = Field(10.0, gt=0)
    connect_timeout: float = Field(5.0, gt=0)
    dimension: int = Field(256, gt=0)
    cache_size: int = Field(256, ge=0)
    keep_alive: Optional[str] = None


class StoreSettings(BaseModel):
    path: str = "data/chunks.jsonl"


class LoggingSettings(BaseModel):
    trace_path: Optional[str] = None
    level: Optional[str] = None         # below -v/-q and LOG_LEVEL
    json_logs: bool = False

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        upper = v.strip().upper()
        if upper not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"unknown log level {v!r}")
        return upper


class RetrievalConfig(BaseModel):
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    fusion: FusionSettings = Field(default_factory=FusionSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "RetrievalConfig":
        try:
            return cls.model_validate(cfg)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def _merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = deepcopy(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def _apply_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    emb = cfg.setdefault("embedding", {})
    if os.getenv("EMBED_BACKEND"):
        emb["backend"] = os.environ["EMBED_BACKEND"]
    if os.getenv("EMBED_MODEL"):
        emb["model"] = os.environ["EMBED_MODEL"]
    return cfg


def load_config(path: str | Path | None = None) -> dict:
    """
    Built-in defaults, overlaid with the YAML file at ``path`` (if it
    exists), then EMBED_BACKEND / EMBED_MODEL from the environment.
    """
    user: Dict[str, Any] = {}
    if path is not None and Path(path).exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                user = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse config {path}: {e}") from e
        if not isinstance(user, dict):
            raise ConfigError(f"Config {path} must be a mapping, got {type(user).__name__}")
    return _apply_env(_merge(DEFAULTS, user))


def load_settings(path: str | Path | None = None) -> RetrievalConfig:
    return RetrievalConfig.from_dict(load_config(path))
