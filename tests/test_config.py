from permit_leads.config import DEFAULT_DB_PATH, IngestConfig, get_db_path, resolve_config
from permit_leads.permits.models import PermitRecord


def test_db_path_from_env(monkeypatch):
    monkeypatch.delenv("PL_DB_PATH", raising=False)
    assert get_db_path() == DEFAULT_DB_PATH
    monkeypatch.setenv("PL_DB_PATH", "  /tmp/leads.sqlite ")
    assert get_db_path() == "/tmp/leads.sqlite"


def test_from_env_reads_and_clamps(monkeypatch):
    monkeypatch.setenv("PL_MIN_VALUATION", "250000")
    monkeypatch.setenv("PL_PERMIT_TYPES", "Bldg-New, ,Bldg-Addition")
    monkeypatch.setenv("PL_PAGE_SIZE", "999999")
    monkeypatch.setenv("PL_RETRIES", "-4")
    monkeypatch.setenv("PL_REQUEST_DELAY_S", "not-a-number")

    cfg = IngestConfig.from_env()
    assert cfg.min_valuation == 250000.0
    assert cfg.permit_types == ("Bldg-New", "Bldg-Addition")
    assert cfg.page_size == 50_000
    assert cfg.retries == 0
    assert cfg.request_delay_s == 0.5


def test_resolve_config_prefers_explicit(monkeypatch):
    monkeypatch.setenv("PL_MIN_VALUATION", "1")
    explicit = IngestConfig(min_valuation=7.0)
    assert resolve_config(explicit) is explicit
    assert resolve_config(None).min_valuation == 1.0


def test_accepts_threshold_and_types():
    cfg = IngestConfig()
    assert cfg.accepts(PermitRecord(source="ladbs_issued", permit_number="A", permit_type="Bldg-New", valuation=500_000.0))
    assert not cfg.accepts(PermitRecord(source="ladbs_issued", permit_number="B", permit_type="Bldg-New", valuation=499_999.0))
    assert not cfg.accepts(PermitRecord(source="ladbs_issued", permit_number="C", permit_type="Elevator", valuation=9e6))
    assert cfg.accepts(PermitRecord(source="ladbs_issued", permit_number="D", permit_type="Bldg-New", valuation=None))
    assert cfg.with_overrides(permit_types=()).accepts(
        PermitRecord(source="ladbs_issued", permit_number="E", permit_type="Elevator", valuation=9e6)
    )
