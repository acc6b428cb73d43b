import threading

import httpx
import pytest

from permit_leads.config import IngestConfig
from permit_leads.ingest import IngestError, ingest, run_full_ingestion
from permit_leads.permits.socrata import SocrataClient


CONFIG = IngestConfig(page_size=2, max_records=100, request_delay_s=0.0, retries=0)


def _issued(n, **kw):
    row = {
        "permit_nbr": f"I-{n}",
        "permit_type": "Bldg-New",
        "status_desc": "Issued",
        "primary_address": f"{n} Main St",
        "valuation": "1000000",
    }
    row.update(kw)
    return row


def _client_for(datasets, *, fail_at=None):
    """MockTransport keyed by dataset id; ``fail_at`` = (dataset, offset) returns 400."""

    def handler(request):
        dataset = request.url.path.rsplit("/", 1)[-1].replace(".json", "")
        offset = int(request.url.params.get("$offset", "0"))
        limit = int(request.url.params.get("$limit", "1000"))
        if fail_at == (dataset, offset):
            return httpx.Response(400, text="bad")
        rows = datasets.get(dataset, [])
        return httpx.Response(200, json=rows[offset:offset + limit])

    http = httpx.Client(transport=httpx.MockTransport(handler))
    return SocrataClient(http, delay_s=0.0, retries=0, sleep=lambda s: None)


def test_ingest_counts_and_run_record(store):
    rows = [
        _issued(1),
        _issued(2),
        {"permit_nbr": "", "status_desc": "Issued"},
        _issued(3, valuation="100"),
        _issued(4, permit_type="Elevator"),
    ]
    client = _client_for({"pi9x-tg5x": rows})
    res = ingest(store, "ladbs_issued", config=CONFIG, client=client)

    assert res["found"] == 5
    assert res["created"] == 2
    assert res["dropped"] == 1
    assert res["filtered"] == 2
    assert res["cancelled"] is False
    run = store.get_run(res["run_id"])
    assert run["status"] == "completed"
    assert run["records_found"] == 5
    assert run["records_new"] == 2


def test_ingest_twice_is_idempotent(store):
    client = _client_for({"pi9x-tg5x": [_issued(1), _issued(2), _issued(3)]})
    first = ingest(store, "ladbs_issued", config=CONFIG, client=client)
    second = ingest(store, "ladbs_issued", config=CONFIG, client=client)
    assert first["created"] == 3
    assert second["created"] == 0
    assert second["updated"] == 0
    assert second["unchanged"] == 3
    assert store.count_projects() == 3


def test_fetch_failure_keeps_earlier_pages_and_marks_run_failed(store):
    client = _client_for({"pi9x-tg5x": [_issued(i) for i in range(1, 6)]}, fail_at=("pi9x-tg5x", 2))
    with pytest.raises(IngestError):
        ingest(store, "ladbs_issued", config=CONFIG, client=client)

    assert store.count_projects() == 2
    run = store.list_runs(source="ladbs_issued")[0]
    assert run["status"] == "failed"
    assert "HTTP 400" in run["error_message"]
    assert run["records_new"] == 2


def test_cancel_marks_run_cancelled(store):
    cancel = threading.Event()
    cancel.set()
    client = _client_for({"pi9x-tg5x": [_issued(1)]})
    res = ingest(store, "ladbs_issued", config=CONFIG, client=client, cancel=cancel)
    assert res["cancelled"] is True
    assert res["created"] == 0
    assert store.get_run(res["run_id"])["status"] == "cancelled"


def test_unknown_source_and_bad_date_are_value_errors(store):
    with pytest.raises(ValueError):
        ingest(store, "nope", config=CONFIG, client=_client_for({}))
    with pytest.raises(ValueError):
        ingest(store, "ladbs_issued", from_date="yesterday", config=CONFIG, client=_client_for({}))


def test_submitted_source_uses_pre_issuance_classification(store):
    rows = [
        {"permit_nbr": "S-1", "permit_type": "Bldg-New", "status_desc": "Approved", "valuation": "900000"},
        {"permit_nbr": "S-2", "permit_type": "Bldg-New", "valuation": "900000"},
    ]
    ingest(store, "ladbs_submitted", config=CONFIG, client=_client_for({"gwh9-jnip": rows}))
    assert store.get_project_by_permit("S-1")["pipeline_substage"] == "ready_to_issue"
    assert store.get_project_by_permit("S-2")["pipeline_substage"] == "submitted"


def test_full_ingestion_continues_after_source_failure(store):
    legacy = [
        {
            "pcis_permit": "L-1",
            "permit_type": "Bldg-New",
            "valuation": "2000000",
            "issue_date": "2016-01-01T00:00:00",
            "applicant_business_name": "Sunset Partners LLC",
        },
        {
            "pcis_permit": "L-2",
            "permit_type": "Bldg-Alter/Repair",
            "valuation": "3000000",
            "issue_date": "2016-02-01T00:00:00",
            "applicant_business_name": "SUNSET PARTNERS, L.L.C.",
        },
    ]
    client = _client_for(
        {"pi9x-tg5x": [_issued(1)], "hbkd-qubn": legacy},
        fail_at=("gwh9-jnip", 0),
    )
    res = run_full_ingestion(store, config=CONFIG, client=client)

    by_source = {r["source"]: r for r in res["sources"]}
    assert [r["source"] for r in res["sources"]] == ["ladbs_issued", "ladbs_submitted", "ladbs_legacy"]
    assert by_source["ladbs_issued"]["ok"] is True
    assert by_source["ladbs_submitted"]["ok"] is False
    assert "HTTP 400" in by_source["ladbs_submitted"]["error"]
    assert by_source["ladbs_legacy"]["created"] == 2

    assert res["linking"]["developers"]["created"] == 1
    assert res["linking"]["developers"]["linked"] == 2
    assert res["scoring"]["updated"] == 1
    assert res["enrichment"] is None

    dev = store.find_developer_by_normalized_name("sunset")
    assert dev["entity_type"] == "LLC"
    assert dev["lead_score"] is not None


def test_storage_failure_marks_run_failed(store, monkeypatch):
    import sqlite3

    from permit_leads import ingest as ingest_mod

    def locked(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(ingest_mod, "reconcile_permits", locked)
    client = _client_for({"pi9x-tg5x": [_issued(1)]})
    with pytest.raises(sqlite3.OperationalError):
        ingest(store, "ladbs_issued", config=CONFIG, client=client)

    run = store.list_runs(source="ladbs_issued")[0]
    assert run["status"] == "failed"
    assert "database is locked" in run["error_message"]
    assert run["completed_at"]


def test_legacy_source_also_takes_additions(store):
    wheres = []
    legacy = [
        {
            "pcis_permit": "L-9",
            "permit_type": "Bldg-Addition",
            "valuation": "1500000",
            "issue_date": "2016-03-01T00:00:00",
            "applicant_business_name": "Canyon Adds LLC",
        }
    ]

    def handler(request):
        wheres.append(request.url.params.get("$where", ""))
        offset = int(request.url.params.get("$offset", "0"))
        return httpx.Response(200, json=legacy if offset == 0 else [])

    client = SocrataClient(
        httpx.Client(transport=httpx.MockTransport(handler)), delay_s=0.0, retries=0, sleep=lambda s: None
    )
    res = ingest(store, "ladbs_legacy", config=CONFIG, client=client)
    assert res["created"] == 1
    assert "permit_type='Bldg-Addition'" in wheres[0]

    issued = _client_for({"pi9x-tg5x": [_issued(7, permit_type="Bldg-Addition")]})
    assert ingest(store, "ladbs_issued", config=CONFIG, client=issued)["filtered"] == 1
