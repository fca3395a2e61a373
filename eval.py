import argparse
import json
import statistics
import time
from pathlib import Path
from typing import Any, Dict, List

from hybrid_retrieval.app import build_orchestrator
from hybrid_retrieval.config import load_settings
from hybrid_retrieval.logging_utils import setup_logging
from hybrid_retrieval.retrieve.orchestrator import RetrievalOrchestrator


def _load_gold(path: Path) -> List[Dict[str, Any]]:
    cases = []
    with open(path, "r", encoding="utf-8") as f:
        for ln in f:
            ln = ln.strip()
            if not ln:
                continue
            cases.append(json.loads(ln))
    return cases


def _rank_of_first_expected(result_ids: List[str], expected: List[str]) -> int | None:
    wanted = set(expected)
    for i, cid in enumerate(result_ids, start=1):
        if cid in wanted:
            return i
    return None


def evaluate(
    engine: RetrievalOrchestrator,
    gold: List[Dict[str, Any]],
    project: str,
    qk: int = 10,
) -> Dict[str, Any]:
    """
    Each gold case: {"qid", "question", "expected_chunk_ids": [...],
    optional "project", "owner"}.
    """
    results = []
    latencies = []
    hit_flags = []
    mrr_vals = []
    degraded_count = 0

    for g in gold:
        t0 = time.perf_counter()
        resp = engine.retrieve(
            g.get("project", project), g["question"], k=qk, owner_id=g.get("owner")
        )
        dt = int((time.perf_counter() - t0) * 1000)
        latencies.append(dt)

        ids = [r.chunk_id for r in resp.results]
        rank = _rank_of_first_expected(ids, g.get("expected_chunk_ids", []))
        hit_flags.append(1 if rank is not None else 0)
        mrr_vals.append(0.0 if rank is None else 1.0 / rank)
        degraded_count += int(resp.degraded)

        results.append(
            {
                "qid": g.get("qid"),
                "question": g["question"],
                "retrieval_hit": rank is not None,
                "rank": rank,
                "degraded": resp.degraded,
                "result_ids": ids,
                "latency_ms": dt,
            }
        )

    n = len(gold)
    lat_sorted = sorted(latencies)
    summary = {
        "n": n,
        "hit_rate": (sum(hit_flags) / n) if n else 0.0,
        "mrr": statistics.mean(mrr_vals) if mrr_vals else 0.0,
        "p50_ms": statistics.median(latencies) if latencies else 0,
        "p95_ms": lat_sorted[int(0.95 * (n - 1))] if latencies else 0,
        "degraded": degraded_count,
    }
    return {"summary": summary, "results": results}


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--gold", required=True, help="Path to gold.jsonl")
    ap.add_argument("--project", required=True, help="Default project id for gold cases")
    ap.add_argument("--config", default="config.yaml")
    ap.add_argument("--store", default=None, help="chunks.jsonl snapshot (overrides config)")
    ap.add_argument("--qk", type=int, default=10, help="Top-K for retrieval metrics")
    ap.add_argument("--out", type=str, default=None, help="Write per-question results as JSON")
    args = ap.parse_args()

    setup_logging(level="WARNING")
    cfg = load_settings(args.config)

    gold = _load_gold(Path(args.gold))

    with build_orchestrator(cfg, args.store) as engine:
        report = evaluate(engine, gold, args.project, qk=args.qk)

    print(json.dumps(report["summary"], indent=2))
    if args.out:
        Path(args.out).write_text(json.dumps(report, indent=2), encoding="utf-8")
        print(f"[saved] {args.out}")


if __name__ == "__main__":
    main()
