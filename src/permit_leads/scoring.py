from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from permit_leads.store import PipelineStore, utc_now_iso


logger = logging.getLogger("pl.scoring")

# Subscore ranges: opportunity 0-40, timing 0-30, quality 0-20, reachability 0-10.
OPPORTUNITY_MAX = 40
TIMING_MAX = 30
QUALITY_MAX = 20
REACHABILITY_MAX = 10
TOTAL_MAX = 100

# Log-scale reference band for summed valuation.
VALUATION_FLOOR = 500_000.0
VALUATION_CEILING = 50_000_000.0

SUBSTAGE_TIMING = {
    "issued": 30,
    "ready_to_issue": 22,
    "pc_approved": 18,
    "under_inspection": 15,
    "plan_check": 12,
    "cofo_issued": 10,
    "submitted": 8,
    "finaled": 5,
    "expired": 0,
}

# Only used for projects without a substage.
STAGE_TIMING = {
    "permitted": 30,
    "construction": 15,
    "entitlement": 8,
    "completed": 5,
}

STAGE_LABELS = {
    "issued": "just issued",
    "ready_to_issue": "ready to issue",
    "pc_approved": "plan check approved",
    "plan_check": "in plan check",
    "submitted": "submitted",
    "under_inspection": "under inspection",
    "cofo_issued": "certificate of occupancy issued",
    "finaled": "finaled",
    "expired": "expired",
    "permitted": "permitted",
    "entitlement": "in entitlement",
    "construction": "in construction",
    "completed": "completed",
}

HOT_THRESHOLD = 70
PIPELINE_THRESHOLD = 40

RECENT_DAYS = 90
STALE_CONTACT_DAYS = 90

_NEW_WORD_RE = re.compile(r"\bnew\b", re.IGNORECASE)


@dataclass(frozen=True)
class LeadScoreBreakdown:
    opportunity: int
    timing: int
    quality: int
    reachability: int
    total: int
    reasoning: str
    best_stage: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _is_new_construction(project: Mapping[str, Any]) -> bool:
    return bool(_NEW_WORD_RE.search(str(project.get("permit_type") or "")))


def _is_active(project: Mapping[str, Any]) -> bool:
    return project.get("pipeline_stage") != "completed"


def total_valuation(projects: Iterable[Mapping[str, Any]]) -> float:
    return float(sum(float(p.get("valuation") or 0) for p in projects))


def score_opportunity(valuation: float) -> int:
    if valuation <= 0:
        return 0
    span = math.log10(VALUATION_CEILING) - math.log10(VALUATION_FLOOR)
    normalized = (math.log10(valuation) - math.log10(VALUATION_FLOOR)) / span
    return int(round(min(OPPORTUNITY_MAX, max(0.0, normalized * OPPORTUNITY_MAX))))


def score_timing(projects: Sequence[Mapping[str, Any]]) -> tuple[int, Optional[str]]:
    """Best single project wins; returns (score, stage key of that project)."""

    best_score = 0
    best_stage: Optional[str] = None
    for p in projects:
        substage = p.get("pipeline_substage")
        stage = p.get("pipeline_stage")
        if substage:
            score = SUBSTAGE_TIMING.get(substage, 0)
        else:
            score = STAGE_TIMING.get(stage, 0)
        if best_stage is None or score > best_score:
            best_score = score
            best_stage = substage or stage
    return best_score, best_stage


def score_quality(projects: Sequence[Mapping[str, Any]], *, now: datetime) -> int:
    score = 0
    if any(_is_new_construction(p) for p in projects):
        score += 8

    active = sum(1 for p in projects if _is_active(p))
    if active >= 5:
        score += 10
    elif active >= 3:
        score += 8
    elif active >= 2:
        score += 6

    cutoff = now - timedelta(days=RECENT_DAYS)
    for p in projects:
        updated = _parse_ts(p.get("updated_at"))
        if updated is not None and updated > cutoff:
            score += 2
            break

    return min(QUALITY_MAX, score)


def _days_since_last_contact(outreach: Sequence[Mapping[str, Any]], *, now: datetime) -> Optional[int]:
    stamps = [_parse_ts(o.get("created_at")) for o in outreach]
    stamps = [s for s in stamps if s is not None]
    if not stamps:
        return None
    return (now - max(stamps)).days


def score_reachability(
    developer: Mapping[str, Any],
    outreach: Sequence[Mapping[str, Any]],
    *,
    now: datetime,
) -> int:
    score = 0
    if developer.get("email"):
        score += 4
    if developer.get("phone"):
        score += 3
    if developer.get("linkedin_url"):
        score += 1

    days = _days_since_last_contact(outreach, now=now)
    if days is None or days > STALE_CONTACT_DAYS:
        score += 2

    return min(REACHABILITY_MAX, score)


def format_valuation(value: float) -> str:
    if value >= 1_000_000:
        return f"${value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"${value / 1_000:.0f}K"
    return f"${value:,.0f}"


def lead_label(total: int) -> str:
    if total >= HOT_THRESHOLD:
        return "Hot lead"
    if total >= PIPELINE_THRESHOLD:
        return "Pipeline lead"
    return "Early-stage lead"


def build_reasoning(
    *,
    total: int,
    valuation: float,
    new_construction: bool,
    best_stage: Optional[str],
    active_projects: int,
    days_since_contact: Optional[int],
) -> str:
    construction = "new construction" if new_construction else "renovation/alteration"
    stage_label = STAGE_LABELS.get(best_stage or "", best_stage or "unknown")
    text = f"{lead_label(total)}: {format_valuation(valuation)} {construction}, {stage_label}."
    if active_projects > 1:
        text += f" {active_projects} active projects."
    if days_since_contact is None:
        text += " Never contacted."
    elif days_since_contact > STALE_CONTACT_DAYS:
        text += f" Last contacted {days_since_contact}d ago."
    else:
        text += f" Contacted {days_since_contact}d ago."
    return text


def compute_lead_score(developer: Mapping[str, Any], *, now: Optional[datetime] = None) -> LeadScoreBreakdown:
    """Score one developer.

    ``developer`` carries contact fields plus ``projects`` (list of project
    rows) and ``outreach`` (most recent outreach rows). Pure: the same input
    and ``now`` always give the same breakdown and reasoning.
    """

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    projects: List[Mapping[str, Any]] = list(developer.get("projects") or [])
    outreach: List[Mapping[str, Any]] = list(developer.get("outreach") or [])

    valuation = total_valuation(projects)
    opportunity = score_opportunity(valuation)
    timing, best_stage = score_timing(projects)
    quality = score_quality(projects, now=now)
    reachability = score_reachability(developer, outreach, now=now)
    total = min(TOTAL_MAX, opportunity + timing + quality + reachability)

    reasoning = build_reasoning(
        total=total,
        valuation=valuation,
        new_construction=any(_is_new_construction(p) for p in projects),
        best_stage=best_stage,
        active_projects=sum(1 for p in projects if _is_active(p)),
        days_since_contact=_days_since_last_contact(outreach, now=now),
    )
    return LeadScoreBreakdown(
        opportunity=opportunity,
        timing=timing,
        quality=quality,
        reachability=reachability,
        total=total,
        reasoning=reasoning,
        best_stage=best_stage,
    )


def recompute_all_scores(store: PipelineStore, *, now: Optional[datetime] = None) -> Dict[str, int]:
    """Rescore every developer that has at least one project.

    Developers without projects are left unscored (NULL); any stale score they
    carry from before is cleared. A failure on one developer is logged and
    counted and the pass moves on.
    """

    now = now or datetime.now(timezone.utc)
    stamp = utc_now_iso()
    updated = 0
    failed = 0

    for developer_id in store.list_developer_ids_with_projects():
        developer = store.get_developer(developer_id)
        if developer is None:
            continue
        developer["projects"] = store.list_projects_for_developer(developer_id)
        developer["outreach"] = store.list_recent_outreach(developer_id, limit=5)
        try:
            breakdown = compute_lead_score(developer, now=now)
        except (ValueError, TypeError):
            logger.exception("lead score failed", extra={"developer_id": developer_id})
            failed += 1
            continue
        with store.transaction():
            store.update_developer(
                developer_id,
                {
                    "lead_score": breakdown.total,
                    "lead_score_data": json.dumps(breakdown.to_dict(), sort_keys=True),
                    "lead_score_at": stamp,
                },
            )
        updated += 1

    with store.transaction():
        cleared = store.clear_scores_without_projects()

    logger.info(
        "lead scores computed",
        extra={"records_updated": updated, "cleared": cleared, "failed": failed},
    )
    return {"updated": updated, "cleared": cleared, "failed": failed}
