from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Mapping

from permit_leads.permits.models import UNKNOWN_ADDRESS, UNKNOWN_PERMIT_TYPE, ClassifiedPermit
from permit_leads.store import PipelineStore


logger = logging.getLogger("pl.reconcile")

STATUS_FIELDS = ("status", "pipeline_stage", "pipeline_substage", "financing_type")

# Placeholders a source writes when it has nothing; they never replace real data.
_PLACEHOLDERS = {
    "address": UNKNOWN_ADDRESS,
    "permit_type": UNKNOWN_PERMIT_TYPE,
}


@dataclass
class ReconcileResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0

    def add(self, other: "ReconcileResult") -> None:
        self.created += other.created
        self.updated += other.updated
        self.unchanged += other.unchanged

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _is_empty(column: str, value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return _PLACEHOLDERS.get(column) == value


def merge_project_fields(
    existing: Mapping[str, Any],
    incoming: Mapping[str, Any],
    *,
    status_authoritative: bool = True,
) -> Dict[str, Any]:
    """Columns of ``existing`` that ``incoming`` should change.

    Status columns follow the latest classification from an authoritative
    source. Everything else is a non-destructive merge: an empty incoming
    value never erases a recorded one.
    """

    changes: Dict[str, Any] = {}
    for column, value in incoming.items():
        if column == "permit_number":
            continue
        current = existing.get(column)
        if column == "raw_data":
            if value and value != current:
                changes[column] = value
            continue
        if column in STATUS_FIELDS:
            if status_authoritative:
                if value != current:
                    changes[column] = value
            elif _is_empty(column, current) and not _is_empty(column, value):
                changes[column] = value
            continue
        if _is_empty(column, value):
            continue
        if value != current:
            changes[column] = value
    return changes


def reconcile_permit(
    store: PipelineStore,
    permit: ClassifiedPermit,
    *,
    source: str,
    status_authoritative: bool = True,
) -> str:
    """Upsert one permit; returns "created", "updated" or "unchanged"."""

    incoming = permit.to_project_fields()
    with store.transaction():
        existing = store.get_project_by_permit(permit.permit_number)
        if existing is None:
            store.insert_project({**incoming, "source": source})
            return "created"
        changes = merge_project_fields(existing, incoming, status_authoritative=status_authoritative)
        if not changes:
            return "unchanged"
        store.update_project(int(existing["id"]), changes)
        return "updated"


def reconcile_permits(
    store: PipelineStore,
    permits: Iterable[ClassifiedPermit],
    *,
    source: str,
    status_authoritative: bool = True,
) -> ReconcileResult:
    result = ReconcileResult()
    for permit in permits:
        outcome = reconcile_permit(
            store,
            permit,
            source=source,
            status_authoritative=status_authoritative,
        )
        setattr(result, outcome, getattr(result, outcome) + 1)
    logger.info(
        "reconciled batch",
        extra={
            "source": source,
            "records_new": result.created,
            "records_updated": result.updated,
            "records_unchanged": result.unchanged,
        },
    )
    return result
