from __future__ import annotations

import datetime
import html
import json
import re
from pathlib import Path
from typing import List, Optional

from ..index.schema import RetrievalResponse


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def _slug(s: str, max_len: int = 60) -> str:
    s = s.strip().lower()
    s = re.sub(r"[^a-z0-9\-\s_]+", "", s)
    s = re.sub(r"[\s_]+", "-", s)
    return s[:max_len].strip("-") or "query"


def infer_format(out_path: Optional[str], fmt: Optional[str]) -> str:
    if fmt:
        return fmt.lower()
    if out_path:
        ext = Path(out_path).suffix.lower().lstrip(".")
        if ext in {"json", "md", "txt", "html", "htm"}:
            return "html" if ext in {"html", "htm"} else ext
    return "json"


def ensure_outpath(out_path: Optional[str], fmt: str, save_dir: Optional[str], query: str) -> Path:
    if out_path:
        p = Path(out_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base_dir = Path(save_dir or "outputs")
    base_dir.mkdir(parents=True, exist_ok=True)
    return base_dir / f"{_timestamp()}_{_slug(query)}.{fmt}"


def _path(hp: List[str], sep: str = " > ") -> str:
    return sep.join(h for h in hp if h)


def as_markdown(query: str, resp: RetrievalResponse) -> str:
    lines: List[str] = [f"# {query}\n"]
    if resp.degraded:
        lines.append("> Degraded: lexical-only results (embedding service unavailable).\n")
    if not resp.results:
        lines.append("_No relevant content found._\n")
    for i, r in enumerate(resp.results, start=1):
        hp = _path(r.heading_path)
        lines.append(f"## {i}. `{r.chunk_id}` ({r.score:.3f}, {'+'.join(r.sources)})")
        if hp:
            lines.append(f"*{hp}*")
        lines.append("")
        lines.append(r.snippet.strip())
        lines.append("")
    timers = resp.trace.get("timers_ms")
    if timers:
        lines.append("## Timers (ms)")
        lines.append("```json")
        lines.append(json.dumps(timers, indent=2))
        lines.append("```")
    return "\n".join(lines).strip() + "\n"


def as_text(query: str, resp: RetrievalResponse) -> str:
    lines: List[str] = [f"QUERY: {query}", f"DEGRADED: {str(resp.degraded).lower()}", ""]
    for i, r in enumerate(resp.results, start=1):
        lines.append(f"[{i}] {r.chunk_id} | {r.score:.3f} | {'+'.join(r.sources)} | {_path(r.heading_path)}")
        lines.append(r.snippet.strip())
        lines.append("---")
    timers = resp.trace.get("timers_ms")
    if timers:
        lines.append("TIMERS_MS: " + json.dumps(timers))
    return "\n".join(lines).strip() + "\n"


def as_html(query: str, resp: RetrievalResponse) -> str:
    esc = html.escape
    lines: List[str] = [
        "<!doctype html><html><head><meta charset='utf-8'>",
        "<style>body{font-family:system-ui,Segoe UI,Arial,sans-serif;max-width:900px;margin:40px auto;padding:0 16px} h1{font-size:1.6rem} .path{color:#555} .degraded{background:#fff4e5;padding:8px}</style>",
        "</head><body>",
        f"<h1>{esc(query)}</h1>",
    ]
    if resp.degraded:
        lines.append("<p class='degraded'>Degraded: lexical-only results.</p>")
    lines.append("<ol>")
    for r in resp.results:
        lines.append(
            f"<li><code>{esc(r.chunk_id)}</code> ({r.score:.3f}, {esc('+'.join(r.sources))})"
            f"<div class='path'>{esc(_path(r.heading_path))}</div>"
            f"<p>{esc(r.snippet.strip()).replace(chr(10), '<br>')}</p></li>"
        )
    lines.append("</ol></body></html>")
    return "\n".join(lines)


def write_output(
    query: str,
    resp: RetrievalResponse,
    out_path: Optional[str] = None,
    fmt: Optional[str] = None,
    save_dir: Optional[str] = None,
) -> Path:
    fmt2 = infer_format(out_path, fmt)
    target = ensure_outpath(out_path, fmt2, save_dir, query)
    if fmt2 == "json":
        obj = {"query": query, **resp.model_dump()}
        target.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")
    elif fmt2 == "md":
        target.write_text(as_markdown(query, resp), encoding="utf-8")
    elif fmt2 == "txt":
        target.write_text(as_text(query, resp), encoding="utf-8")
    elif fmt2 == "html":
        target.write_text(as_html(query, resp), encoding="utf-8")
    else:
        raise ValueError(f"Unsupported format: {fmt2}")
    return target
