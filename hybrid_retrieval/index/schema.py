from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Source = Literal["dense", "lexical"]


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_id: str
    project_id: str
    owner_id: Optional[str] = None      # None = legacy chunk, visible to any owner
    text: str
    heading_path: List[str] = Field(default_factory=list)
    embedding: Optional[List[float]] = None

    def visible_to(self, project_id: str, owner_id: Optional[str] = None) -> bool:
        if self.project_id != project_id:
            return False
        if owner_id is None:
            return True
        return self.owner_id is None or self.owner_id == owner_id


class ScoredCandidate(BaseModel):
    chunk_id: str
    score: float
    source: Source


class FusedHit(BaseModel):
    chunk_id: str
    score: float
    sources: List[Source]
    dense_score: Optional[float] = None
    lexical_score: Optional[float] = None


class RetrievalRequest(BaseModel):
    project_id: str
    query: str
    k: int = 5
    owner_id: Optional[str] = None
    max_query_chars: int = 2000
    max_k: int = 100

    @field_validator("project_id")
    @classmethod
    def _project_id_present(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("project_id is required")
        return v

    @field_validator("query")
    @classmethod
    def _query_present(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("query is required and must not be empty")
        return v

    @field_validator("k")
    @classmethod
    def _k_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("k must be a positive integer")
        return v

    def check_bounds(self) -> None:
        if len(self.query) > self.max_query_chars:
            raise ValueError(
                f"query is {len(self.query)} chars; limit is {self.max_query_chars}"
            )
        if self.k > self.max_k:
            raise ValueError(f"k={self.k} exceeds limit {self.max_k}")


class RetrievalResult(BaseModel):
    chunk_id: str
    score: float
    sources: List[Source]
    snippet: str
    heading_path: List[str] = Field(default_factory=list)
    dense_score: Optional[float] = None
    lexical_score: Optional[float] = None


class RetrievalResponse(BaseModel):
    results: List[RetrievalResult] = Field(default_factory=list)
    degraded: bool = False
    context_pack: str = ""
    trace: Dict[str, Any] = Field(default_factory=dict)


class ProjectStats(BaseModel):
    project_id: str
    total_chunks: int
    chunks_with_embeddings: int
    embedding_dimensions: Optional[int]
    mixed_dimensions: bool = False
    average_text_length: int
