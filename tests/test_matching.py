"""Tests for multi-owner watchlist matching and ranking."""

from __future__ import annotations

import pytest

from app.matching import combinations_of, key_of, match_groups, rank
from app.models import CatalogEntry, GroupMatch, Owner


def _owner(owner_id: str, *titles: str) -> Owner:
    return Owner(
        owner_id=owner_id,
        catalog_entries=[CatalogEntry(title=title, year=2000) for title in titles],
    )


def test_key_of_prefers_external_id() -> None:
    """Entries with a TMDB id should match regardless of title spelling."""

    first = CatalogEntry(title="Se7en", year=1995, external_id=807)
    second = CatalogEntry(title="Seven", year=1995, external_id=807)

    assert key_of(first) == key_of(second) == "ext:807"


def test_key_of_falls_back_to_title_and_year() -> None:
    """Without an id the trimmed, lower-cased title and year decide identity."""

    assert key_of(CatalogEntry(title="  Heat ", year=1995)) == "heat:1995"
    assert key_of(CatalogEntry(title="HEAT", year=1995)) == "heat:1995"
    assert key_of(CatalogEntry(title="Heat")) == "heat:"
    assert key_of(CatalogEntry(title="Heat", year=1995)) != key_of(
        CatalogEntry(title="Heat", year=1986)
    )


def test_key_of_does_not_mix_id_and_title_keys() -> None:
    """An entry with an id never matches one identified only by title."""

    with_id = CatalogEntry(title="Heat", year=1995, external_id=949)
    without_id = CatalogEntry(title="Heat", year=1995)

    assert key_of(with_id) != key_of(without_id)


@pytest.mark.parametrize("count, expected", [(2, 1), (3, 4), (4, 11), (10, 1013)])
def test_combinations_cover_every_subset(count: int, expected: int) -> None:
    """There are 2^n - n - 1 combinations of two or more owners."""

    owner_ids = [f"owner{index}" for index in range(count)]

    subsets = combinations_of(owner_ids)

    assert len(subsets) == expected
    assert len({frozenset(subset) for subset in subsets}) == expected


def test_combinations_keep_input_order() -> None:
    """Subsets are listed by size and preserve the relative owner order."""

    assert combinations_of(["c", "a", "b"]) == [
        ("c", "a"),
        ("c", "b"),
        ("a", "b"),
        ("c", "a", "b"),
    ]


def test_combinations_respect_minimum_size() -> None:
    """Only subsets at least ``min_size`` large should be produced."""

    assert combinations_of(["a", "b", "c"], min_size=3) == [("a", "b", "c")]
    assert combinations_of(["a"]) == []
    with pytest.raises(ValueError):
        combinations_of(["a", "b"], min_size=1)


def test_match_groups_three_owner_scenario() -> None:
    """Every combination of three owners should share Beta."""

    owners = [
        _owner("owner1", "Alpha", "Beta"),
        _owner("owner2", "Beta", "Gamma"),
        _owner("owner3", "Beta"),
    ]

    result = match_groups(owners)

    assert [group.members for group in result.groups] == [
        ["owner1", "owner2"],
        ["owner1", "owner3"],
        ["owner2", "owner3"],
        ["owner1", "owner2", "owner3"],
    ]
    for group in result.groups:
        assert [entry.title for entry in group.common_entries] == ["Beta"]
        assert group.common_count == 1
    assert result.per_owner_count == {"owner1": 2, "owner2": 2, "owner3": 1}


def test_match_groups_keeps_zero_count_groups() -> None:
    """Owners with nothing in common still produce an empty group."""

    result = match_groups([_owner("ana", "Alpha"), _owner("ben", "Beta")])

    assert len(result.groups) == 1
    group = result.groups[0]
    assert group.members == ["ana", "ben"]
    assert group.common_entries == []
    assert group.common_count == 0


def test_match_groups_uses_first_member_catalog_order() -> None:
    """Shared entries follow the first member's watchlist order."""

    ana = _owner("ana", "Gamma", "Alpha", "Beta")
    ben = _owner("ben", "Beta", "Alpha", "Gamma")

    result = match_groups([ana, ben])

    group = result.groups[0]
    assert [entry.title for entry in group.common_entries] == ["Gamma", "Alpha", "Beta"]
    assert group.common_entries[0] is ana.catalog_entries[0]


def test_match_groups_counts_duplicates_once() -> None:
    """Duplicate titles in one watchlist only count once in the intersection."""

    ana = Owner(
        owner_id="ana",
        catalog_entries=[
            CatalogEntry(title="Heat", year=1995),
            CatalogEntry(title="heat ", year=1995),
        ],
    )
    ben = Owner(owner_id="ben", catalog_entries=[CatalogEntry(title="Heat", year=1995)])

    result = match_groups([ana, ben])

    assert result.groups[0].common_count == 1
    assert result.per_owner_count["ana"] == 2


def test_match_groups_matches_on_external_id() -> None:
    """Differently titled entries with the same id should be shared."""

    ana = Owner(
        owner_id="ana",
        catalog_entries=[CatalogEntry(title="Se7en", year=1995, external_id=807)],
    )
    ben = Owner(
        owner_id="ben",
        catalog_entries=[CatalogEntry(title="Seven", year=1995, external_id=807)],
    )

    result = match_groups([ana, ben])

    assert [entry.title for entry in result.groups[0].common_entries] == ["Se7en"]


def test_match_groups_with_empty_catalog() -> None:
    """An owner with an empty watchlist zeroes every group including them."""

    owners = [_owner("ana", "Alpha"), _owner("ben", "Alpha"), _owner("cy")]

    result = match_groups(owners)

    counts = {tuple(group.members): group.common_count for group in result.groups}
    assert counts == {
        ("ana", "ben"): 1,
        ("ana", "cy"): 0,
        ("ben", "cy"): 0,
        ("ana", "ben", "cy"): 0,
    }
    assert result.per_owner_count["cy"] == 0


def test_group_shares_are_subsets_of_smaller_groups() -> None:
    """Adding a member can never grow the shared set."""

    owners = [
        _owner("a", "One", "Two", "Three", "Four"),
        _owner("b", "Two", "Three", "Four", "Five"),
        _owner("c", "Three", "Four", "Six"),
        _owner("d", "Four", "Seven"),
    ]

    result = match_groups(owners)

    shared = {
        frozenset(group.members): {key_of(entry) for entry in group.common_entries}
        for group in result.groups
    }
    for members, keys in shared.items():
        for smaller, smaller_keys in shared.items():
            if smaller < members:
                assert keys <= smaller_keys
    assert shared[frozenset("abcd")] == {"four:2000"}


def test_rank_orders_by_size_then_count() -> None:
    """Larger groups come first, then groups sharing more titles."""

    groups = [
        GroupMatch(members=["a", "b"], common_count=1),
        GroupMatch(members=["a", "c"], common_count=3),
        GroupMatch(members=["b", "c"], common_count=1),
        GroupMatch(members=["a", "b", "c"], common_count=0),
    ]

    partitions = rank(groups)

    assert [partition.member_count for partition in partitions] == [3, 2]
    assert [group.members for group in partitions[1].groups] == [
        ["a", "c"],
        ["a", "b"],
        ["b", "c"],
    ]
    assert partitions[0].groups[0].common_count == 0


def test_rank_of_no_groups_is_empty() -> None:
    """Ranking nothing yields no partitions."""

    assert rank([]) == []
