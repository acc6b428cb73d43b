"""Pipeline position from free-text permit status.

Rules are checked most-advanced state first. Upstream status strings reuse
the same words across stages ("Final Inspection", "Issued - Under
Inspection", "CofO Issued", "PC Approved - Ready to Issue"), so a project must
be matched on its furthest-along keyword before a weaker one can claim it.
Every status string seen in production data gets a regression case in
tests/test_stage_classifier.py.
"""
from __future__ import annotations

from typing import Optional, Sequence, Tuple

from permit_leads.permits.models import ClassifiedPermit, PermitRecord, PipelinePosition


ENTITLEMENT = "entitlement"
PERMITTED = "permitted"
CONSTRUCTION = "construction"
COMPLETED = "completed"

STAGES = (ENTITLEMENT, PERMITTED, CONSTRUCTION, COMPLETED)

SUBSTAGES = (
    "submitted",
    "plan_check",
    "pc_approved",
    "ready_to_issue",
    "issued",
    "under_inspection",
    "cofo_issued",
    "finaled",
    "expired",
)

FINANCING_BY_STAGE = {
    ENTITLEMENT: "predevelopment",
    PERMITTED: "construction",
    CONSTRUCTION: "bridge",
    COMPLETED: "permanent",
}


def _position(stage: str, substage: Optional[str]) -> PipelinePosition:
    return PipelinePosition(
        stage=stage,
        substage=substage,
        financing_type=FINANCING_BY_STAGE[stage],
    )


DEFAULT_POSITION = _position(ENTITLEMENT, None)
SUBMITTED_POSITION = _position(ENTITLEMENT, "submitted")
READY_TO_ISSUE_POSITION = _position(ENTITLEMENT, "ready_to_issue")
PLAN_CHECK_POSITION = _position(ENTITLEMENT, "plan_check")

# (keywords, position); first rule with any keyword present wins.
STAGE_RULES: Sequence[Tuple[Tuple[str, ...], PipelinePosition]] = (
    (("finaled", "permit final"), _position(COMPLETED, "finaled")),
    (("expired", "closed", "cancelled", "canceled", "withdrawn", "revoked"), _position(COMPLETED, "expired")),
    (
        ("cofo", "c of o", "c/o issued", "certificate of occupancy", "temporary certificate"),
        _position(COMPLETED, "cofo_issued"),
    ),
    (("inspection",), _position(CONSTRUCTION, "under_inspection")),
    # Plan check corrections handed back to the applicant, not a permit.
    (("corrections issued",), PLAN_CHECK_POSITION),
    (("issued",), _position(PERMITTED, "issued")),
    (("ready to issue", "ready for issue", "ready for issuance"), READY_TO_ISSUE_POSITION),
    (
        ("pc approved", "plan check approved", "plan check complete", "plans approved"),
        _position(ENTITLEMENT, "pc_approved"),
    ),
    (("plan check", "corrections", "in review", "under review"), PLAN_CHECK_POSITION),
    (("submitted", "application", "intake", "received"), SUBMITTED_POSITION),
)


def classify_status(status: Optional[str], *, pre_issuance: bool = False) -> PipelinePosition:
    """Map status text to (stage, substage, financing type).

    ``pre_issuance`` is for sources that only list permits not yet issued: a
    bare "approved" there means ready to issue, and text nothing matches
    still means the application is on file.
    """

    text = " ".join((status or "").lower().split())
    if text:
        for keywords, position in STAGE_RULES:
            if any(k in text for k in keywords):
                return position
        if pre_issuance and "approved" in text:
            return READY_TO_ISSUE_POSITION
    if pre_issuance:
        return SUBMITTED_POSITION
    return DEFAULT_POSITION


def classify_permit(record: PermitRecord, *, pre_issuance: bool = False) -> ClassifiedPermit:
    return ClassifiedPermit(
        record=record,
        position=classify_status(record.status, pre_issuance=pre_issuance),
    )
