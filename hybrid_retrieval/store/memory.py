from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..errors import StoreUnavailableError
from ..index.schema import Chunk
from .base import ChunkStore

logger = logging.getLogger(__name__)


class InMemoryChunkStore(ChunkStore):
    """
    List-backed store. ``projects`` maps project id -> owner id (None means
    unowned). Without a project map there is no registry to check against
    and every project id is accepted; chunk-level owner filtering still
    applies.
    """

    def __init__(self, chunks: Iterable[Chunk] = (), projects: Optional[Dict[str, Optional[str]]] = None):
        self._chunks: List[Chunk] = list(chunks)
        self._projects = dict(projects) if projects is not None else None

    def find_eligible_chunks(self, project_id: str, owner_id: Optional[str] = None) -> List[Chunk]:
        # new list per call: each request works on its own snapshot
        return [c for c in self._chunks if c.visible_to(project_id, owner_id)]

    def project_exists(self, project_id: str, owner_id: Optional[str] = None) -> bool:
        if self._projects is None:
            return True
        if project_id not in self._projects:
            return False
        owner = self._projects[project_id]
        return owner_id is None or owner is None or owner == owner_id

    def all_chunks(self, project_id: str) -> List[Chunk]:
        return [c for c in self._chunks if c.project_id == project_id]


def _parse_line(s: str, lineno: int, path: Path) -> dict:
    try:
        return json.loads(s)
    except json.JSONDecodeError as e:
        # Recovery for "trailing characters" or accidental noise:
        end = s.rfind("}")
        if end == -1:
            raise StoreUnavailableError(f"Failed to parse JSONL line {lineno} in {path}: {e}") from e
        try:
            return json.loads(s[: end + 1])
        except json.JSONDecodeError as e2:
            raise StoreUnavailableError(
                f"Failed to parse JSONL line {lineno} in {path}: {e2}"
            ) from e


def _to_chunk(data: Any, lineno: int, path: Path) -> Chunk:
    """
    A bad ``embedding`` alone only costs the chunk its vector; anything else
    wrong with the record makes the snapshot unusable.
    """
    if not isinstance(data, dict):
        raise StoreUnavailableError(
            f"Invalid chunk on line {lineno} in {path}: expected an object, got {type(data).__name__}"
        )
    try:
        return Chunk.model_validate(data)
    except PydanticValidationError as e:
        errs = e.errors()
        if not all(err["loc"][:1] == ("embedding",) for err in errs):
            raise StoreUnavailableError(f"Invalid chunk on line {lineno} in {path}: {e}") from e
        logger.warning(
            "Chunk %s on line %d in %s: corrupt embedding dropped (%s)",
            data.get("chunk_id"), lineno, path, errs[0]["msg"],
        )
    try:
        return Chunk.model_validate({**data, "embedding": None})
    except PydanticValidationError as e:
        raise StoreUnavailableError(f"Invalid chunk on line {lineno} in {path}: {e}") from e


def load_chunks_jsonl(path: Path) -> List[Chunk]:
    chunks: List[Chunk] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for i, ln in enumerate(f, start=1):
                s = ln.strip()
                if not s:
                    continue
                chunks.append(_to_chunk(_parse_line(s, i, path), i, path))
    except OSError as e:
        raise StoreUnavailableError(f"Cannot read chunk store {path}: {e}") from e
    return chunks


class JsonlChunkStore(InMemoryChunkStore):
    """
    Snapshot of a ``chunks.jsonl`` export (one Chunk per line). An optional
    ``projects.json`` beside it maps project id -> owner id.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        chunks = load_chunks_jsonl(self.path)
        projects = None
        proj_path = self.path.with_name("projects.json")
        if proj_path.exists():
            try:
                projects = json.loads(proj_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise StoreUnavailableError(f"Cannot read {proj_path}: {e}") from e
        super().__init__(chunks, projects)
        logger.info("Loaded %d chunks from %s", len(chunks), self.path)
