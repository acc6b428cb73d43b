import pytest

from permit_leads.linker import (
    LinkError,
    auto_link_projects,
    create_developer,
    create_developer_from_project,
    create_developers_from_unlinked,
    link_project,
    unlink_project,
)


def _project(store, number, owner=None, owner_address=None):
    return store.insert_project(
        {
            "permit_number": number,
            "permit_type": "Bldg-New",
            "owner_name": owner,
            "owner_address": owner_address,
        }
    )


def test_auto_link_exact_normalized_match_only(store):
    dev_id = create_developer(store, "Acme Developers, LLC")
    p1 = _project(store, "P-1", "ACME DEVELOPERS LLC")
    p2 = _project(store, "P-2", "Acme Develop LLC")
    _project(store, "P-3", None)

    res = auto_link_projects(store)
    assert res == {"scanned": 2, "linked": 1, "unmatched": 1}
    assert store.get_project(p1)["developer_id"] == dev_id
    assert store.get_project(p2)["developer_id"] is None
    assert store.count_developers() == 1


def test_create_developers_groups_by_normalized_name(store):
    _project(store, "P-1", "Blue Sky Investments, Inc.", "9 Ocean Ave, Santa Monica")
    _project(store, "P-2", "BLUE SKY INVESTMENTS INC", "other address")
    _project(store, "P-3", "Jane Smith")
    _project(store, "P-4", "Co")

    res = create_developers_from_unlinked(store)
    assert res == {"groups": 2, "created": 2, "linked": 3, "skipped": 1}

    blue = store.find_developer_by_normalized_name("blue sky")
    assert blue["name"] == "Blue Sky Investments, Inc."
    assert blue["entity_type"] == "Corporation"
    assert blue["address"] == "9 Ocean Ave, Santa Monica"
    assert len(store.list_projects_for_developer(blue["id"])) == 2

    jane = store.find_developer_by_normalized_name("jane smith")
    assert jane["entity_type"] == "Individual"


def test_create_developers_is_idempotent(store):
    _project(store, "P-1", "Blue Sky Investments, Inc.")
    create_developers_from_unlinked(store)
    _project(store, "P-2", "Blue Sky Investments")

    res = create_developers_from_unlinked(store)
    assert res["created"] == 0
    assert res["linked"] == 1
    assert store.count_developers() == 1
    dev = store.find_developer_by_normalized_name("blue sky")
    assert len(store.list_projects_for_developer(dev["id"])) == 2

    assert create_developers_from_unlinked(store) == {"groups": 0, "created": 0, "linked": 0, "skipped": 0}


def test_create_developer_requires_name(store):
    with pytest.raises(LinkError):
        create_developer(store, "   ")


def test_create_developer_from_project_reuses_existing(store):
    existing = create_developer(store, "Harbor View Properties")
    pid = _project(store, "P-1", "Harbor View Properties Group")
    res = create_developer_from_project(store, pid)
    assert res == {"developer_id": existing, "reused": True}
    assert store.get_project(pid)["developer_id"] == existing


def test_create_developer_from_project_needs_owner(store):
    pid = _project(store, "P-1", None)
    with pytest.raises(LinkError):
        create_developer_from_project(store, pid)
    with pytest.raises(LinkError):
        create_developer_from_project(store, 999)


def test_manual_link_and_unlink(store):
    dev = create_developer(store, "Someone Else")
    pid = _project(store, "P-1", "Unrelated Owner")
    link_project(store, pid, dev)
    assert store.get_project(pid)["developer_id"] == dev
    assert unlink_project(store, pid) is True
    assert store.get_project(pid)["developer_id"] is None
    with pytest.raises(LinkError):
        link_project(store, pid, 12345)
