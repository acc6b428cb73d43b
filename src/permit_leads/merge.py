from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

from permit_leads.store import PipelineStore


logger = logging.getLogger("pl.merge")

FILL_FIELDS = ("company", "email", "phone", "website", "linkedin_url", "address")


class MergeError(ValueError):
    pass


class DeveloperNotFoundError(MergeError):
    pass


@dataclass
class MergeResult:
    primary_id: int
    secondary_id: int
    projects_moved: int = 0
    outreach_moved: int = 0
    tags_added: List[str] = field(default_factory=list)
    fields_filled: List[str] = field(default_factory=list)
    notes_merged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def merged_notes(primary_notes: Any, secondary_name: str, secondary_notes: Any) -> str:
    parts = [str(primary_notes)] if primary_notes else []
    parts.append(f"[Merged from {secondary_name}] {secondary_notes}")
    return "\n\n".join(parts)


def merge_developers(store: PipelineStore, primary_id: int, secondary_id: int) -> MergeResult:
    """Fold ``secondary`` into ``primary`` and delete ``secondary``.

    The caller picks which record survives. Everything happens in a single
    transaction: on any failure nothing is re-pointed and nothing deleted.
    """

    primary_id = int(primary_id)
    secondary_id = int(secondary_id)
    if primary_id == secondary_id:
        raise MergeError("Cannot merge a developer into itself")

    result = MergeResult(primary_id=primary_id, secondary_id=secondary_id)
    with store.transaction():
        primary = store.get_developer(primary_id)
        secondary = store.get_developer(secondary_id)
        missing = [str(i) for i, d in ((primary_id, primary), (secondary_id, secondary)) if d is None]
        if missing:
            raise DeveloperNotFoundError(f"Developer(s) not found: {', '.join(missing)}")

        result.projects_moved = store.reassign_projects(secondary_id, primary_id)
        result.outreach_moved = store.reassign_outreach(secondary_id, primary_id)

        held = set(store.list_tags(primary_id))
        for tag in store.list_tags(secondary_id):
            if tag not in held and store.add_tag(primary_id, tag):
                result.tags_added.append(tag)

        updates: Dict[str, Any] = {}
        for column in FILL_FIELDS:
            if not primary.get(column) and secondary.get(column):
                updates[column] = secondary[column]
        result.fields_filled = list(updates)
        if secondary.get("notes"):
            updates["notes"] = merged_notes(primary.get("notes"), secondary["name"], secondary["notes"])
            result.notes_merged = True
        if updates:
            store.update_developer(primary_id, updates)

        store.delete_tags(secondary_id)
        store.delete_developer(secondary_id)

    logger.info(
        "developers merged",
        extra={
            "primary_id": primary_id,
            "secondary_id": secondary_id,
            "projects_moved": result.projects_moved,
            "outreach_moved": result.outreach_moved,
        },
    )
    return result
