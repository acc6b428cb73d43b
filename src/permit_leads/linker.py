"""Project to developer identity linking.

Matching is exact on the normalized owner name; fuzzy candidates are left to
the operator-driven duplicate finder.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Dict, List

from permit_leads.normalize import classify_entity_type, normalize_name
from permit_leads.store import PipelineStore


logger = logging.getLogger("pl.linker")

MIN_NAME_LENGTH = 3


class LinkError(ValueError):
    pass


def auto_link_projects(store: PipelineStore) -> Dict[str, int]:
    """Attach unlinked projects to an existing developer with the same key.

    Never creates developers.
    """

    scanned = 0
    linked = 0
    unmatched = 0
    for project in store.list_unlinked_projects():
        scanned += 1
        key = normalize_name(project.get("owner_name"))
        developer = store.find_developer_by_normalized_name(key)
        if developer is None:
            unmatched += 1
            continue
        with store.transaction():
            store.link_project(int(project["id"]), int(developer["id"]))
        linked += 1

    logger.info(
        "auto-link pass",
        extra={"scanned": scanned, "linked": linked, "unmatched": unmatched},
    )
    return {"scanned": scanned, "linked": linked, "unmatched": unmatched}


def create_developer(store: PipelineStore, name: str, **fields: Any) -> int:
    display = " ".join((name or "").split())
    if not display:
        raise LinkError("Developer name is required")
    data = {k: v for k, v in fields.items() if v is not None}
    data["name"] = display
    data["normalized_name"] = normalize_name(display)
    data.setdefault("entity_type", classify_entity_type(display))
    with store.transaction():
        developer_id = store.insert_developer(data)
    logger.info("developer created", extra={"developer_id": developer_id})
    return developer_id


def create_developers_from_unlinked(
    store: PipelineStore, *, min_name_length: int = MIN_NAME_LENGTH
) -> Dict[str, int]:
    """Create one developer per distinct unlinked owner name, then link.

    Groups whose key already belongs to a developer are linked to it, so a
    re-run never creates a second developer for the same name.
    """

    groups: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    skipped = 0
    for project in store.list_unlinked_projects():
        key = normalize_name(project.get("owner_name"))
        if len(key) < min_name_length:
            skipped += 1
            continue
        groups.setdefault(key, []).append(project)

    created = 0
    linked = 0
    for key, projects in groups.items():
        first = projects[0]
        display = " ".join(str(first["owner_name"]).split())
        with store.transaction():
            developer = store.find_developer_by_normalized_name(key)
            if developer is None:
                address = next((p["owner_address"] for p in projects if p.get("owner_address")), None)
                developer_id = store.insert_developer(
                    {
                        "name": display,
                        "normalized_name": key,
                        "entity_type": classify_entity_type(display),
                        "address": address,
                    }
                )
                created += 1
            else:
                developer_id = int(developer["id"])
            for project in projects:
                store.link_project(int(project["id"]), developer_id)
                linked += 1

    logger.info(
        "developers from unlinked projects",
        extra={"groups": len(groups), "records_new": created, "linked": linked, "skipped": skipped},
    )
    return {"groups": len(groups), "created": created, "linked": linked, "skipped": skipped}


def create_developer_from_project(store: PipelineStore, project_id: int) -> Dict[str, Any]:
    """Create (or reuse) a developer from one project's owner and link it."""

    project = store.get_project(project_id)
    if project is None:
        raise LinkError(f"Project {project_id} not found")
    owner = " ".join(str(project.get("owner_name") or "").split())
    if not owner:
        raise LinkError(f"Project {project_id} has no owner name")
    key = normalize_name(owner)
    with store.transaction():
        existing = store.find_developer_by_normalized_name(key)
        if existing is not None:
            developer_id = int(existing["id"])
            reused = True
        else:
            developer_id = store.insert_developer(
                {
                    "name": owner,
                    "normalized_name": key,
                    "entity_type": classify_entity_type(owner),
                    "address": project.get("owner_address"),
                }
            )
            reused = False
        store.link_project(int(project_id), developer_id)
    return {"developer_id": developer_id, "reused": reused}


def link_project(store: PipelineStore, project_id: int, developer_id: int) -> None:
    if store.get_project(project_id) is None:
        raise LinkError(f"Project {project_id} not found")
    if store.get_developer(developer_id) is None:
        raise LinkError(f"Developer {developer_id} not found")
    with store.transaction():
        store.link_project(int(project_id), int(developer_id))


def unlink_project(store: PipelineStore, project_id: int) -> bool:
    with store.transaction():
        return store.link_project(int(project_id), None)
