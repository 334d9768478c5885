"""Multi-owner watchlist matching: identity, combinations, grouping and ranking."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from itertools import combinations

from .models import CatalogEntry, GroupMatch, GroupPartition, MatchResult, Owner

logger = logging.getLogger(__name__)


def key_of(entry: CatalogEntry) -> str:
    """Return the canonical key deciding whether two entries are the same title.

    A TMDB identifier wins when present. Otherwise the lower-cased, trimmed
    title is combined with the year, so entries lacking an identifier on one
    side only match by title and year.
    """

    if entry.external_id is not None:
        return f"ext:{entry.external_id}"
    year = entry.year if entry.year is not None else ""
    return f"{entry.title.strip().lower()}:{year}"


def combinations_of(
    owner_ids: Sequence[str], min_size: int = 2
) -> list[tuple[str, ...]]:
    """Return every subset of ``owner_ids`` with at least ``min_size`` members.

    Each subset keeps the relative input order. Subsets are listed by size,
    then in lexicographic order of input position.
    """

    if min_size < 2:
        raise ValueError("Combinations must contain at least two owners")

    subsets: list[tuple[str, ...]] = []
    for size in range(min_size, len(owner_ids) + 1):
        subsets.extend(combinations(owner_ids, size))
    return subsets


def _index_catalog(entries: Sequence[CatalogEntry]) -> dict[str, CatalogEntry]:
    """Map each key to the first entry holding it, in catalog order."""

    indexed: dict[str, CatalogEntry] = {}
    for entry in entries:
        indexed.setdefault(key_of(entry), entry)
    return indexed


def match_groups(owners: Sequence[Owner]) -> MatchResult:
    """Compute the shared titles for every combination of two or more owners.

    Combinations whose members share nothing are kept with a zero count. An
    owner with an empty catalog still takes part and drives every combination
    including it to zero.
    """

    owner_ids = [owner.owner_id for owner in owners]
    catalogs = {owner.owner_id: _index_catalog(owner.catalog_entries) for owner in owners}
    key_sets = {owner_id: frozenset(catalog) for owner_id, catalog in catalogs.items()}

    # Combinations arrive prefix-first, so each intersection extends a cached one.
    intersections: dict[tuple[str, ...], frozenset[str]] = {}

    groups: list[GroupMatch] = []
    for members in combinations_of(owner_ids, 2):
        prefix = members[:-1]
        base = intersections.get(prefix)
        if base is None:
            base = key_sets[members[0]]
            for member in members[1:-1]:
                base &= key_sets[member]
        shared = base & key_sets[members[-1]]
        intersections[members] = shared

        common_entries: list[CatalogEntry] = []
        if shared:
            # Every shared key is held by the first member, whose catalog order wins.
            common_entries = [
                entry for key, entry in catalogs[members[0]].items() if key in shared
            ]
        groups.append(
            GroupMatch(
                members=list(members),
                common_entries=common_entries,
                common_count=len(common_entries),
            )
        )

    per_owner_count = {owner.owner_id: len(owner.catalog_entries) for owner in owners}

    logger.info(
        "Matched %d owners across %d combinations (%d with shared titles)",
        len(owners),
        len(groups),
        sum(1 for group in groups if group.common_count),
    )
    return MatchResult(groups=groups, per_owner_count=per_owner_count)


def rank(groups: Sequence[GroupMatch]) -> list[GroupPartition]:
    """Partition groups by member count, largest first, then by shared titles.

    Sorting is stable, so ties keep their input order.
    """

    partitions: dict[int, list[GroupMatch]] = {}
    for group in groups:
        partitions.setdefault(len(group.members), []).append(group)

    return [
        GroupPartition(
            member_count=member_count,
            groups=sorted(
                partitions[member_count],
                key=lambda group: group.common_count,
                reverse=True,
            ),
        )
        for member_count in sorted(partitions, reverse=True)
    ]
