import pytest

from permit_leads.dedup import confidence_for_distance, find_duplicate_candidates, levenshtein
from permit_leads.linker import create_developer


@pytest.mark.parametrize(
    "a,b,expected",
    [
        ("smith", "smith", 0),
        ("smith", "smithe", 1),
        ("smith", "smyth", 1),
        ("kitten", "sitting", 3),
        ("", "abc", 3),
        ("abc", "", 3),
    ],
)
def test_levenshtein(a, b, expected):
    assert levenshtein(a, b) == expected
    assert levenshtein(b, a) == expected


def test_confidence_tiers():
    assert confidence_for_distance(0) == "high"
    assert confidence_for_distance(1) == "high"
    assert confidence_for_distance(2) == "medium"
    assert confidence_for_distance(3) == "medium"


def test_candidates_sorted_and_enriched(store):
    a = create_developer(store, "Smith Holdings", email="a@smith.test", phone="555")
    b = create_developer(store, "Smithe Holdings LLC")
    c = create_developer(store, "Smyth Holdings")
    create_developer(store, "Completely Different Name")

    pid = store.insert_project({"permit_number": "P-1", "developer_id": b})
    store.insert_outreach(developer_id=b, type="email", project_id=pid)

    candidates = find_duplicate_candidates(store)
    assert [(cand.key, cand.distance) for cand in candidates] == [
        (frozenset({a, b}), 1),
        (frozenset({a, c}), 1),
        (frozenset({b, c}), 2),
    ]
    assert [cand.confidence for cand in candidates] == ["high", "high", "medium"]

    first = candidates[0].to_dict()
    assert first["confidence"] == "high"
    sides = {first["developer_a"]["id"]: first["developer_a"], first["developer_b"]["id"]: first["developer_b"]}
    assert sides[a]["contact_completeness"] == 2
    assert sides[b]["project_count"] == 1
    assert sides[b]["outreach_count"] == 1


def test_pair_reported_once_and_symmetric(store):
    a = create_developer(store, "Alpha Build")
    b = create_developer(store, "Alpha Builds")
    candidates = find_duplicate_candidates(store)
    assert len(candidates) == 1
    assert candidates[0].key == frozenset({a, b}) == frozenset({b, a})


def test_length_gap_and_empty_names_skipped(store):
    create_developer(store, "Ab")
    create_developer(store, "Abcdefgh")
    create_developer(store, "LLC")
    create_developer(store, "Inc")
    assert find_duplicate_candidates(store) == []
