import sqlite3

import httpx

from permit_leads.config import IngestConfig
from permit_leads.permits.socrata import SocrataClient
from permit_leads.scheduler.runner import run_scheduled_pass
from permit_leads.store import PipelineStore


CONFIG = IngestConfig(page_size=50, request_delay_s=0.0, retries=0)


def _client(rows):
    def handler(request):
        if request.url.path.endswith("pi9x-tg5x.json") and request.url.params.get("$offset") == "0":
            return httpx.Response(200, json=rows)
        return httpx.Response(200, json=[])

    http = httpx.Client(transport=httpx.MockTransport(handler))
    return SocrataClient(http, delay_s=0.0, retries=0, sleep=lambda s: None)


def test_scheduled_pass_skips_when_lock_held(db_path):
    store = PipelineStore(db_path)
    try:
        store.acquire_pass_lock(
            "pipeline:full",
            ttl_seconds=7200,
            pid=999999,
            now_iso="2024-06-01T00:00:00+00:00",
        )
    finally:
        store.close()

    res = run_scheduled_pass(
        db_path=db_path,
        config=CONFIG,
        client=_client([]),
        now_iso="2024-06-01T00:30:00+00:00",
    )
    assert res["ok"] is False
    assert res["error"] == "lock_not_acquired"
    assert res["held_by_pid"] == 999999


def test_scheduled_pass_runs_and_releases_lock(db_path):
    rows = [
        {
            "permit_nbr": "I-1",
            "permit_type": "Bldg-New",
            "status_desc": "Issued",
            "valuation": "2000000",
            "primary_address": "1 Main St",
        }
    ]
    res = run_scheduled_pass(
        db_path=db_path,
        config=CONFIG,
        client=_client(rows),
        now_iso="2024-06-01T00:00:00+00:00",
    )
    assert res["ok"] is True
    assert res["lock"]["acquired"] is True
    assert [r["ok"] for r in res["sources"]] == [True, True, True]
    assert res["sources"][0]["created"] == 1

    # The lock was released, so a second pass can take it straight away.
    again = run_scheduled_pass(
        db_path=db_path,
        config=CONFIG,
        client=_client(rows),
        now_iso="2024-06-01T00:05:00+00:00",
    )
    assert again["ok"] is True
    assert again["lock"]["stolen"] is False
    assert again["sources"][0]["unchanged"] == 1


def test_stale_lock_is_taken_over(db_path):
    store = PipelineStore(db_path)
    try:
        store.acquire_pass_lock(
            "pipeline:full",
            ttl_seconds=60,
            pid=999999,
            now_iso="2024-06-01T00:00:00+00:00",
        )
    finally:
        store.close()

    res = run_scheduled_pass(
        db_path=db_path,
        config=CONFIG,
        client=_client([]),
        now_iso="2024-06-01T05:00:00+00:00",
        lock_ttl_seconds=60,
    )
    assert res["ok"] is True
    assert res["lock"]["stolen"] is True
    assert res["lock"]["previous_pid"] == 999999


def test_pass_stops_when_lock_is_taken_over(db_path):
    def handler(request):
        # Another worker steals the lock while the first source is fetching.
        conn = sqlite3.connect(db_path, isolation_level=None)
        try:
            conn.execute("UPDATE pass_locks SET pid=424242")
        finally:
            conn.close()
        return httpx.Response(200, json=[])

    http = httpx.Client(transport=httpx.MockTransport(handler))
    client = SocrataClient(http, delay_s=0.0, retries=0, sleep=lambda s: None)
    res = run_scheduled_pass(db_path=db_path, config=CONFIG, client=client)

    assert res["ok"] is False
    assert res["error"] == "lock_lost"

    store = PipelineStore(db_path)
    try:
        assert [r["source"] for r in store.list_runs()] == ["ladbs_issued"]
        # The new holder keeps its lock.
        assert store.acquire_pass_lock("pipeline:full", pid=1).holder_pid == 424242
    finally:
        store.close()
