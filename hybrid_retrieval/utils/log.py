from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path


class TraceLog:
    """Append-only JSONL record of retrieval requests, one object per line."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def write(self, obj: dict):
        rec = {"ts": datetime.now(timezone.utc).isoformat(timespec="seconds"), **obj}
        line = json.dumps(rec, ensure_ascii=False, default=str)
        with self._lock, open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")
