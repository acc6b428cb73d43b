from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class IngestRunResult:
    source: str
    run_id: Optional[int] = None
    found: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    dropped: int = 0
    filtered: int = 0
    cancelled: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if self.errors:
            return "failed"
        if self.cancelled:
            return "cancelled"
        return "completed"

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "run_id": self.run_id,
            "found": self.found,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "dropped": self.dropped,
            "filtered": self.filtered,
            "cancelled": self.cancelled,
        }
