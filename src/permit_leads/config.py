from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from permit_leads.permits.models import PermitRecord


DEFAULT_DB_PATH = "./permit_leads.sqlite"

DEFAULT_PERMIT_TYPES: Tuple[str, ...] = ("Bldg-New", "Bldg-Alter/Repair")


def get_db_path() -> str:
    path = (os.getenv("PL_DB_PATH") or "").strip()
    if path:
        return path
    return DEFAULT_DB_PATH


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(str(raw).strip())
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(float(str(raw).strip()))
    except ValueError:
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    items = tuple(p.strip() for p in str(raw).split(",") if p.strip())
    return items or default


@dataclass(frozen=True)
class IngestConfig:
    """Knobs for one ingestion run.

    Passed explicitly into ``ingest``/``run_full_ingestion`` so tests can vary
    them without touching process-wide state.
    """

    min_valuation: float = 500_000.0
    permit_types: Tuple[str, ...] = field(default=DEFAULT_PERMIT_TYPES)
    page_size: int = 1000
    max_records: int = 10_000
    request_delay_s: float = 0.5
    request_timeout_s: float = 30.0
    retries: int = 3

    @classmethod
    def from_env(cls) -> "IngestConfig":
        base = cls()
        return cls(
            min_valuation=max(0.0, _env_float("PL_MIN_VALUATION", base.min_valuation)),
            permit_types=_env_list("PL_PERMIT_TYPES", base.permit_types),
            page_size=max(1, min(_env_int("PL_PAGE_SIZE", base.page_size), 50_000)),
            max_records=max(1, _env_int("PL_MAX_RECORDS", base.max_records)),
            request_delay_s=max(0.0, _env_float("PL_REQUEST_DELAY_S", base.request_delay_s)),
            request_timeout_s=max(1.0, _env_float("PL_REQUEST_TIMEOUT_S", base.request_timeout_s)),
            retries=max(0, _env_int("PL_RETRIES", base.retries)),
        )

    def with_overrides(self, **changes) -> "IngestConfig":
        return replace(self, **changes)

    def accepts(self, record: PermitRecord) -> bool:
        """Local guard mirroring the upstream SoQL filter.

        A null valuation is accepted: the record cannot be judged and the
        reconciliation merge keeps whatever value is already stored.
        """

        if record.valuation is not None and record.valuation < self.min_valuation:
            return False
        if self.permit_types and record.permit_type not in self.permit_types:
            return False
        return True


def resolve_config(config: Optional[IngestConfig]) -> IngestConfig:
    return config if config is not None else IngestConfig.from_env()
