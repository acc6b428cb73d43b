from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

from permit_leads.config import IngestConfig
from permit_leads.ingest import run_full_ingestion
from permit_leads.permits.socrata import SocrataClient
from permit_leads.store import PipelineStore, utc_now_iso


logger = logging.getLogger("pl.scheduler")

DEFAULT_LOCK_NAME = "pipeline:full"


class LockLostError(RuntimeError):
    """Another pass took the lock over while this one was still writing."""


def run_scheduled_pass(
    *,
    db_path: str,
    from_date: Optional[str] = None,
    config: Optional[IngestConfig] = None,
    client: Optional[SocrataClient] = None,
    enrich: bool = False,
    now_iso: Optional[str] = None,
    lock_name: str = DEFAULT_LOCK_NAME,
    lock_ttl_seconds: int = 7200,
) -> Dict[str, Any]:
    """Run one full ingestion pass if the named lock can be taken.

    The lock heartbeat is refreshed after every source. If the refresh finds
    the lock gone the pass stops before writing anything else.
    """

    lock_name = (lock_name or "").strip() or DEFAULT_LOCK_NAME
    now = (now_iso or "").strip() or utc_now_iso()
    pid = os.getpid()

    store = PipelineStore(db_path)
    try:
        lock = store.acquire_pass_lock(lock_name, ttl_seconds=lock_ttl_seconds, pid=pid, now_iso=now)
        if not lock.acquired:
            logger.warning(
                "pass lock held",
                extra={"lock_name": lock_name, "held_by_pid": lock.holder_pid},
            )
            return {
                "ok": False,
                "error": "lock_not_acquired",
                "held_by_pid": lock.holder_pid,
                "heartbeat_at": lock.heartbeat_at,
            }

        def heartbeat(source: str) -> None:
            if not store.heartbeat_pass_lock(lock_name, pid=pid):
                raise LockLostError(f"{lock_name} taken over after {source}")

        try:
            res = run_full_ingestion(
                store,
                from_date=from_date,
                config=config,
                client=client,
                enrich=enrich,
                after_source=heartbeat,
            )
        except LockLostError as e:
            logger.error("pass lock lost", extra={"lock_name": lock_name, "error": str(e)})
            return {"ok": False, "error": "lock_lost", "detail": str(e), "lock": lock.to_dict()}
        finally:
            store.release_pass_lock(lock_name, pid=pid)

        failed = [r["source"] for r in res["sources"] if not r.get("ok")]
        logger.info("scheduled pass finished", extra={"lock_name": lock_name, "failed_sources": failed})
        return {"ok": True, "now": now, "db": db_path, "lock": lock.to_dict(), **res}
    finally:
        store.close()


def dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, default=str) + "\n"
