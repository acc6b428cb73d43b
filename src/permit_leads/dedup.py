from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

from permit_leads.store import PipelineStore


logger = logging.getLogger("pl.dedup")

MAX_DISTANCE = 3

CONTACT_FIELDS = ("email", "phone", "website", "linkedin_url", "address")


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit insert/delete/substitute costs."""

    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (0 if ca == cb else 1),
                )
            )
        previous = current
    return previous[-1]


def confidence_for_distance(distance: int) -> str:
    return "high" if distance <= 1 else "medium"


@dataclass(frozen=True)
class DeveloperSummary:
    id: int
    name: str
    normalized_name: str
    lead_score: Optional[int] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    linkedin_url: Optional[str] = None
    address: Optional[str] = None
    entity_type: Optional[str] = None
    project_count: int = 0
    outreach_count: int = 0

    @property
    def contact_completeness(self) -> int:
        return sum(1 for f in CONTACT_FIELDS if getattr(self, f))

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeveloperSummary":
        return cls(
            id=int(row["id"]),
            name=str(row["name"]),
            normalized_name=str(row.get("normalized_name") or ""),
            lead_score=row.get("lead_score"),
            email=row.get("email"),
            phone=row.get("phone"),
            website=row.get("website"),
            linkedin_url=row.get("linkedin_url"),
            address=row.get("address"),
            entity_type=row.get("entity_type"),
            project_count=int(row.get("project_count") or 0),
            outreach_count=int(row.get("outreach_count") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "normalized_name": self.normalized_name,
            "lead_score": self.lead_score,
            "email": self.email,
            "phone": self.phone,
            "website": self.website,
            "linkedin_url": self.linkedin_url,
            "address": self.address,
            "entity_type": self.entity_type,
            "contact_completeness": self.contact_completeness,
            "project_count": self.project_count,
            "outreach_count": self.outreach_count,
        }


@dataclass(frozen=True)
class DuplicateCandidate:
    developer_a: DeveloperSummary
    developer_b: DeveloperSummary
    distance: int
    confidence: str = field(default="")

    @property
    def key(self) -> FrozenSet[int]:
        return frozenset((self.developer_a.id, self.developer_b.id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "developer_a": self.developer_a.to_dict(),
            "developer_b": self.developer_b.to_dict(),
            "distance": self.distance,
            "confidence": self.confidence or confidence_for_distance(self.distance),
        }


def find_duplicate_candidates(store: PipelineStore, *, max_distance: int = MAX_DISTANCE) -> List[DuplicateCandidate]:
    """All developer pairs whose normalized names are within ``max_distance`` edits.

    Full pairwise scan over a snapshot; operator-triggered only. Pairs whose
    lengths already differ by more than ``max_distance`` cannot qualify and
    are skipped before computing the distance.
    """

    developers = [
        DeveloperSummary.from_row(row)
        for row in store.list_developers_with_counts()
        if (row.get("normalized_name") or "").strip()
    ]

    candidates: List[DuplicateCandidate] = []
    for i, a in enumerate(developers):
        for b in developers[i + 1:]:
            if abs(len(a.normalized_name) - len(b.normalized_name)) > max_distance:
                continue
            distance = levenshtein(a.normalized_name, b.normalized_name)
            if distance <= max_distance:
                candidates.append(
                    DuplicateCandidate(
                        developer_a=a,
                        developer_b=b,
                        distance=distance,
                        confidence=confidence_for_distance(distance),
                    )
                )

    candidates.sort(key=lambda c: c.distance)
    logger.info(
        "duplicate scan",
        extra={"developers": len(developers), "candidates": len(candidates)},
    )
    return candidates
