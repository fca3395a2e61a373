#!/usr/bin/env python3
import argparse
import json
import logging
import sys

from hybrid_retrieval.app import build_orchestrator, stats_for
from hybrid_retrieval.config import load_settings
from hybrid_retrieval.errors import RetrievalError, ScopeError, ValidationError
from hybrid_retrieval.logging_utils import setup_logging
from hybrid_retrieval.utils.output import write_output

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hybrid-retrieval",
        description="Project-scoped hybrid (dense + lexical) retrieval over ingested content chunks.",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    # Global logging flags
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable DEBUG logs (to stderr)."
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Reduce logs to WARN and above.")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines (stderr).")
    parser.add_argument("--config", type=str, default="config.yaml")
    parser.add_argument(
        "--store", type=str, default=None, help="chunks.jsonl snapshot (overrides store.path)"
    )

    # -----------------------
    # query
    # -----------------------
    p_q = sub.add_parser("query", help="Retrieve the top-k chunks for a query")
    p_q.add_argument("project", type=str, help="Project id")
    p_q.add_argument("question", type=str, help="Your query string")
    p_q.add_argument("--k", type=int, default=None, help="Number of results (default from config)")
    p_q.add_argument("--owner", type=str, default=None, help="Restrict to this owner (plus unowned chunks)")
    p_q.add_argument(
        "--timeout", type=float, default=None, help="Embedding timeout in seconds before lexical-only fallback"
    )
    p_q.add_argument(
        "--out", type=str, default=None, help="Write result to a file (infers format from extension)"
    )
    p_q.add_argument(
        "--format",
        type=str,
        default=None,
        choices=["json", "md", "txt", "html"],
        help="Output format (overrides --out extension)",
    )
    p_q.add_argument(
        "--show-contexts", action="store_true", help="Print the context pack after the ranking"
    )

    # -----------------------
    # stats
    # -----------------------
    p_s = sub.add_parser("stats", help="Embedding coverage and text stats for a project")
    p_s.add_argument("project", type=str, help="Project id")
    return parser


def main(argv=None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    # ----- logging setup -----
    if args.verbose and args.quiet:
        print("Cannot use --verbose and --quiet together.", file=sys.stderr)
        return 2
    flag_level = "DEBUG" if args.verbose else "WARNING" if args.quiet else None
    setup_logging(level=flag_level, json_logs=args.log_json)

    logger.debug("CLI args parsed: %s", vars(args))

    try:
        cfg = load_settings(args.config)
        # config file's logging section, under the flags and LOG_LEVEL
        setup_logging(
            level=flag_level,
            json_logs=args.log_json or cfg.logging.json_logs,
            default_level=cfg.logging.level,
        )

        if args.cmd == "stats":
            st = stats_for(args.project, cfg, args.store)
            print(json.dumps(st.model_dump(), indent=2))
            return 0

        with build_orchestrator(cfg, args.store) as engine:
            resp = engine.retrieve(
                args.project, args.question, k=args.k, owner_id=args.owner, timeout=args.timeout
            )
    except (ValidationError, ScopeError) as e:
        logger.error("%s", e)
        return 2
    except RetrievalError as e:
        logger.error("Retrieval failed: %s", e)
        return 1

    if args.out:
        target = write_output(args.question, resp, out_path=args.out, fmt=args.format)
        print(f"[saved] {target}")

    print("\n=== RESULTS ===")
    if resp.degraded:
        print("(degraded: lexical-only, embedding service unavailable)")
    if not resp.results:
        print("No relevant content found.")
    for i, r in enumerate(resp.results, start=1):
        hp = " > ".join(r.heading_path)
        print(f"[{i}] {r.chunk_id} | {r.score:.3f} | {'+'.join(r.sources)} | {hp}")
        print(f"    {r.snippet[:160].strip()}")

    print("\n=== TRACE ===")
    print(f"timers_ms: {resp.trace.get('timers_ms')}")

    if args.show_contexts:
        print("\n=== CONTEXTS ===")
        print(resp.context_pack)
    return 0


if __name__ == "__main__":
    sys.exit(main())
