import argparse
import sys
from typing import Any, Callable, Dict, List, Optional

from .config import IngestConfig, get_db_path
from .dedup import find_duplicate_candidates
from .enrichment.assessor import run_assessor_enrichment
from .enrichment.sos import run_sos_enrichment
from .ingest import IngestError, ingest, run_full_ingestion
from .linker import auto_link_projects, create_developers_from_unlinked
from .log import configure_logging
from .merge import MergeError, merge_developers
from .permits.sources import list_sources
from .scheduler.runner import dumps, run_scheduled_pass
from .scoring import recompute_all_scores
from .store import PipelineStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="permit_leads",
        description="Construction permit lead pipeline",
    )
    parser.add_argument("--db", default=None, help="SQLite DB path (default: $PL_DB_PATH)")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, etc.)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON lines on stderr",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_ingest = sub.add_parser("ingest", help="Ingest one permit source")
    p_ingest.add_argument("--source", required=True, choices=list_sources())
    p_ingest.add_argument("--from-date", default=None, help="Only permits on/after this date (YYYY-MM-DD)")

    p_full = sub.add_parser("full", help="All sources, linking, optional enrichment, scoring")
    p_full.add_argument("--from-date", default=None)
    p_full.add_argument("--enrich", action="store_true", help="Also run assessor and SOS enrichment")

    sub.add_parser("link", help="Auto-link projects and create developers from owner names")
    sub.add_parser("dedup", help="List duplicate developer candidates")

    p_merge = sub.add_parser("merge", help="Merge SECONDARY developer into PRIMARY")
    p_merge.add_argument("primary", type=int)
    p_merge.add_argument("secondary", type=int)

    sub.add_parser("score", help="Recompute lead scores")

    p_enrich = sub.add_parser("enrich", help="Run one enrichment batch")
    p_enrich.add_argument("target", choices=["assessor", "sos"])

    p_sched = sub.add_parser("schedule", help="Lock-guarded full pass (for cron)")
    p_sched.add_argument("--from-date", default=None)
    p_sched.add_argument("--enrich", action="store_true")
    p_sched.add_argument("--lock-name", default="pipeline:full")
    p_sched.add_argument("--lock-ttl-seconds", type=int, default=7200)
    return parser


def _with_store(db_path: str, fn: Callable[[PipelineStore], Dict[str, Any]]) -> Dict[str, Any]:
    store = PipelineStore(db_path)
    try:
        return fn(store)
    finally:
        store.close()


def _link(store: PipelineStore) -> Dict[str, Any]:
    return {
        "auto_link": auto_link_projects(store),
        "developers": create_developers_from_unlinked(store),
    }


def _dedup(store: PipelineStore) -> Dict[str, Any]:
    candidates = find_duplicate_candidates(store)
    return {"count": len(candidates), "candidates": [c.to_dict() for c in candidates]}


def run_command(args: argparse.Namespace) -> Dict[str, Any]:
    db_path = args.db or get_db_path()
    config = IngestConfig.from_env()

    if args.cmd == "ingest":
        return _with_store(
            db_path,
            lambda s: ingest(s, args.source, from_date=args.from_date, config=config),
        )
    if args.cmd == "full":
        return _with_store(
            db_path,
            lambda s: run_full_ingestion(s, from_date=args.from_date, config=config, enrich=args.enrich),
        )
    if args.cmd == "link":
        return _with_store(db_path, _link)
    if args.cmd == "dedup":
        return _with_store(db_path, _dedup)
    if args.cmd == "merge":
        return _with_store(
            db_path,
            lambda s: merge_developers(s, args.primary, args.secondary).to_dict(),
        )
    if args.cmd == "score":
        return _with_store(db_path, recompute_all_scores)
    if args.cmd == "enrich":
        runner = run_assessor_enrichment if args.target == "assessor" else run_sos_enrichment
        return _with_store(db_path, runner)
    if args.cmd == "schedule":
        return run_scheduled_pass(
            db_path=db_path,
            from_date=args.from_date,
            config=config,
            enrich=args.enrich,
            lock_name=args.lock_name,
            lock_ttl_seconds=args.lock_ttl_seconds,
        )
    raise ValueError(f"Unknown command: {args.cmd}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, json_lines=args.log_json)

    try:
        res = run_command(args)
    except (IngestError, MergeError, ValueError) as e:
        print(dumps({"ok": False, "error": str(e)}), end="")
        return 2

    print(dumps(res), end="")
    if res.get("ok") is False:
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
