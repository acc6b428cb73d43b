import sqlite3

import pytest

from permit_leads.linker import create_developer
from permit_leads.merge import DeveloperNotFoundError, MergeError, merge_developers


def _setup(store):
    primary = create_developer(store, "Acme Developers", email="info@acme.test", notes="Met at ULI.")
    secondary = create_developer(
        store,
        "Acme Developer LLC",
        email="other@acme.test",
        phone="310-555-0100",
        website="https://acme.test",
        notes="Prefers phone.",
    )
    p1 = store.insert_project({"permit_number": "P-1", "developer_id": secondary})
    p2 = store.insert_project({"permit_number": "P-2", "developer_id": secondary})
    o1 = store.insert_outreach(developer_id=secondary, type="call", project_id=p1)
    store.add_tag(primary, "multifamily")
    store.add_tag(secondary, "multifamily")
    store.add_tag(secondary, "westside")
    return primary, secondary, [p1, p2], o1


def test_merge_moves_everything_and_deletes_secondary(store):
    primary, secondary, projects, outreach_id = _setup(store)

    result = merge_developers(store, primary, secondary)

    assert store.get_developer(secondary) is None
    for pid in projects:
        assert store.get_project(pid)["developer_id"] == primary
    assert [o["id"] for o in store.list_outreach_for_developer(primary)] == [outreach_id]
    assert store.list_tags(primary) == ["multifamily", "westside"]
    assert store.list_tags(secondary) == []

    merged = store.get_developer(primary)
    assert merged["email"] == "info@acme.test"
    assert merged["phone"] == "310-555-0100"
    assert merged["website"] == "https://acme.test"
    assert merged["notes"] == "Met at ULI.\n\n[Merged from Acme Developer LLC] Prefers phone."

    assert result.projects_moved == 2
    assert result.outreach_moved == 1
    assert result.tags_added == ["westside"]
    assert result.fields_filled == ["phone", "website"]
    assert result.notes_merged is True


def test_notes_marker_without_existing_notes(store):
    primary = create_developer(store, "First")
    secondary = create_developer(store, "Second", notes="hello")
    merge_developers(store, primary, secondary)
    assert store.get_developer(primary)["notes"] == "[Merged from Second] hello"


def test_missing_developer_rejected_before_mutation(store):
    primary, secondary, projects, _ = _setup(store)
    with pytest.raises(DeveloperNotFoundError):
        merge_developers(store, primary, 9999)
    with pytest.raises(DeveloperNotFoundError):
        merge_developers(store, 9999, secondary)
    assert store.get_developer(secondary) is not None
    assert store.get_project(projects[0])["developer_id"] == secondary


def test_self_merge_rejected(store):
    primary, _, _, _ = _setup(store)
    with pytest.raises(MergeError):
        merge_developers(store, primary, primary)


def test_failure_mid_merge_rolls_back_everything(store, monkeypatch):
    primary, secondary, projects, outreach_id = _setup(store)

    def boom(developer_id):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "delete_developer", boom)
    with pytest.raises(sqlite3.OperationalError):
        merge_developers(store, primary, secondary)

    assert store.get_developer(secondary) is not None
    for pid in projects:
        assert store.get_project(pid)["developer_id"] == secondary
    assert store.list_outreach_for_developer(secondary)[0]["id"] == outreach_id
    assert store.list_tags(primary) == ["multifamily"]
    assert store.list_tags(secondary) == ["multifamily", "westside"]
    assert store.get_developer(primary)["phone"] is None
    assert store.get_developer(primary)["notes"] == "Met at ULI."
