"""Tests for the in-memory session cache."""

from __future__ import annotations

from typing import Any

from app.cache import CacheStore, SessionCache, merge_enrichment, title_year_key
from app.config import Settings
from app.models import CatalogEntry, OwnerProfile


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    return Settings(_env_file=None, **overrides)  # type: ignore[arg-type]


def test_store_expires_entries_lazily() -> None:
    """Stale entries should vanish on read, not before."""

    clock = FakeClock()
    store: CacheStore[str] = CacheStore("test", ttl_millis=1_000, clock=clock)
    store.set("a", "value")

    clock.advance(1.0)
    assert store.get("a") == "value"

    clock.advance(0.01)
    assert "a" in store
    assert store.get("a") is None
    assert "a" not in store


def test_store_evicts_oldest_entry_when_full() -> None:
    """Inserting a new key into a full store drops the earliest entry."""

    clock = FakeClock()
    store: CacheStore[int] = CacheStore("test", ttl_millis=60_000, max_entries=2, clock=clock)
    store.set("first", 1)
    clock.advance(1)
    store.set("second", 2)
    clock.advance(1)
    store.set("third", 3)

    assert len(store) == 2
    assert store.get("first") is None
    assert store.get("second") == 2
    assert store.get("third") == 3


def test_store_overwrite_does_not_evict() -> None:
    """Refreshing an existing key keeps the other entries."""

    clock = FakeClock()
    store: CacheStore[int] = CacheStore("test", ttl_millis=60_000, max_entries=2, clock=clock)
    store.set("first", 1)
    store.set("second", 2)
    clock.advance(1)
    store.set("first", 10)

    assert store.get("first") == 10
    assert store.get("second") == 2
    assert store.oldest_key() == "second"


def test_store_oldest_key_prefers_first_inserted_on_ties() -> None:
    """Entries stored in the same millisecond evict in insertion order."""

    store: CacheStore[int] = CacheStore("test", ttl_millis=60_000, clock=FakeClock())
    store.set("b", 1)
    store.set("a", 2)

    assert store.oldest_key() == "b"

    store.set("c", 3)
    assert store.oldest_key() == "b"


def test_session_cache_normalises_owner_ids() -> None:
    """Watchlist and profile lookups ignore handle case."""

    cache = SessionCache(build_settings(), clock=FakeClock())
    entries = [CatalogEntry(title="Heat", year=1995)]
    cache.set_watchlist("DaveVerse", entries)
    cache.set_profile("DaveVerse", OwnerProfile(owner_id="DaveVerse", display_name="Dave"))

    assert cache.get_watchlist(" daveverse ") == entries
    profile = cache.get_profile("DAVEVERSE")
    assert profile is not None
    assert profile.display_name == "Dave"


def test_session_cache_watchlists_are_capped() -> None:
    """The watchlist store keeps at most the configured number of owners."""

    clock = FakeClock()
    cache = SessionCache(build_settings(WATCHLIST_CACHE_SIZE=2), clock=clock)
    for index in range(3):
        cache.set_watchlist(f"owner{index}", [])
        clock.advance(1)

    assert cache.get_watchlist("owner0") is None
    assert cache.get_watchlist("owner2") == []
    assert cache.stats()["watchlistCount"] == 2


def test_session_cache_profiles_unbounded_by_default() -> None:
    """Profiles are only capped when a size is configured."""

    clock = FakeClock()
    unbounded = SessionCache(build_settings(), clock=clock)
    bounded = SessionCache(build_settings(PROFILE_CACHE_SIZE=3), clock=clock)
    for index in range(100):
        profile = OwnerProfile(owner_id=f"owner{index}")
        unbounded.set_profile(profile.owner_id, profile)
        bounded.set_profile(profile.owner_id, profile)
        clock.advance(0.01)

    assert unbounded.stats()["profileCount"] == 100
    assert bounded.stats()["profileCount"] == 3


def test_session_cache_entries_expire_after_ttl() -> None:
    """Every store honours the configured TTL."""

    clock = FakeClock()
    cache = SessionCache(build_settings(CACHE_TTL=60), clock=clock)
    cache.set_watchlist("ana", [])
    cache.set_enriched("batch", [CatalogEntry(title="Heat")])

    clock.advance(61)

    assert cache.get_watchlist("ana") is None
    assert cache.get_enriched("batch") is None


def test_session_cache_generic_access_and_clearing() -> None:
    """Stores can be addressed by name and cleared together or separately."""

    cache = SessionCache(build_settings(), clock=FakeClock())
    cache.set("watchlists", "ana", [])
    cache.set_enriched_entry(CatalogEntry(title="Heat", year=1995, synopsis="Crime."))

    assert cache.get("watchlists", "ana") == []
    assert cache.stats() == {"watchlistCount": 1, "profileCount": 0, "enrichedCount": 1}

    cache.clear_enriched()
    assert cache.stats() == {"watchlistCount": 1, "profileCount": 0, "enrichedCount": 0}

    cache.clear()
    assert cache.stats() == {"watchlistCount": 0, "profileCount": 0, "enrichedCount": 0}


def test_enriched_entry_lookup_uses_title_and_year() -> None:
    """Cached enrichment should be found for the same title and year only."""

    cache = SessionCache(build_settings(), clock=FakeClock())
    cache.set_enriched_entry(CatalogEntry(title="Heat", year=1995, synopsis="Crime."))

    hit = cache.get_enriched_entry(CatalogEntry(title=" heat", year=1995, external_id=949))
    assert hit is not None
    assert hit.synopsis == "Crime."
    assert cache.get_enriched_entry(CatalogEntry(title="Heat", year=1986)) is None


def test_title_year_key_ignores_identifiers() -> None:
    """The enrichment key only looks at the title and year."""

    assert title_year_key(CatalogEntry(title=" Heat ", year=1995, external_id=949)) == "heat-1995"
    assert title_year_key(CatalogEntry(title="Heat")) == "heat-unknown"


def test_merge_enrichment_adds_fields_without_mutating_inputs() -> None:
    """Merging produces new entries and leaves both inputs untouched."""

    base = [
        CatalogEntry(title="Heat", year=1995, external_id=949),
        CatalogEntry(title="Alien", year=1979),
    ]
    enriched = [
        CatalogEntry(
            title="heat",
            year=1995,
            synopsis="A group of professional bank robbers...",
            directors=["Michael Mann"],
        )
    ]

    merged = merge_enrichment(base, enriched)

    assert merged[0] is not base[0]
    assert merged[0].synopsis == "A group of professional bank robbers..."
    assert merged[0].directors == ["Michael Mann"]
    assert merged[0].title == "Heat"
    assert merged[0].external_id == 949
    assert merged[1] is base[1]
    assert base[0].synopsis is None
    assert base[0].directors == []
    assert enriched[0].title == "heat"


def test_merge_enrichment_never_regresses_populated_fields() -> None:
    """Missing enriched values keep the base value, present ones overwrite."""

    base = [
        CatalogEntry(
            title="Heat",
            year=1995,
            poster_url="https://img.example/base.jpg",
            rating_text="8.3",
        )
    ]
    enriched = [CatalogEntry(title="Heat", year=1995, rating_text="8.4")]

    merged = merge_enrichment(base, enriched)

    assert merged[0].poster_url == "https://img.example/base.jpg"
    assert merged[0].rating_text == "8.4"


def test_merge_enrichment_adds_missing_poster() -> None:
    """A poster from enrichment fills a base entry that had none."""

    base = [CatalogEntry(title="Alpha", year=2000)]
    enriched = [CatalogEntry(title="alpha ", year=2000, poster_url="p")]

    merged = merge_enrichment(base, enriched)

    assert merged[0].poster_url == "p"
    assert merged[0].title == "Alpha"
    assert base[0].poster_url is None


def test_merge_enrichment_later_entries_win() -> None:
    """When two enrichments share a key the later one is used."""

    base = [CatalogEntry(title="Heat", year=1995)]
    enriched = [
        CatalogEntry(title="Heat", year=1995, synopsis="first"),
        CatalogEntry(title="Heat", year=1995, synopsis="second"),
    ]

    assert merge_enrichment(base, enriched)[0].synopsis == "second"
    assert merge_enrichment(base, []) == base


def test_session_cache_exposes_merge() -> None:
    """The cache instance offers the same merge as the module function."""

    cache = SessionCache(build_settings(), clock=FakeClock())
    base = [CatalogEntry(title="Heat", year=1995)]
    enriched = [CatalogEntry(title="Heat", year=1995, trailer_url="https://youtu.be/x")]

    merged = cache.merge_enrichment(base, enriched)

    assert merged[0].trailer_url == "https://youtu.be/x"
    assert base[0].trailer_url is None
