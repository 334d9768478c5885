"""In-memory session cache for watchlists, profiles and enrichment data."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .config import Settings
from .models import ENRICHMENT_FIELDS, CatalogEntry, OwnerProfile
from .utils import normalize_owner_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

WATCHLISTS = "watchlists"
PROFILES = "profiles"
ENRICHED = "enriched"


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    """A cached value and the epoch millisecond at which it was stored."""

    value: T
    stored_at: int


class CacheStore(Generic[T]):
    """One keyed store with a fixed TTL and an optional size cap.

    Expiry is lazy: a stale entry is only removed when it is read. When the
    store is full, inserting a new key evicts the entry stored earliest.
    """

    def __init__(
        self,
        name: str,
        *,
        ttl_millis: int,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.ttl_millis = ttl_millis
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _now(self) -> int:
        return int(self._clock() * 1_000)

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._now() - entry.stored_at > self.ttl_millis:
            del self._entries[key]
            logger.debug("Expired %s cache entry %s", self.name, key)
            return None
        return entry.value

    def set(self, key: str, value: T) -> None:
        if (
            self.max_entries is not None
            and key not in self._entries
            and len(self._entries) >= self.max_entries
        ):
            oldest = self.oldest_key()
            if oldest is not None:
                del self._entries[oldest]
                logger.debug("Evicted %s cache entry %s", self.name, oldest)
        self._entries[key] = CacheEntry(value=value, stored_at=self._now())

    def clear(self) -> None:
        self._entries.clear()

    def oldest_key(self) -> str | None:
        """Return the key with the smallest ``stored_at`` (first inserted on ties)."""

        oldest_key: str | None = None
        oldest_time: int | None = None
        for key, entry in self._entries.items():
            if oldest_time is None or entry.stored_at < oldest_time:
                oldest_key = key
                oldest_time = entry.stored_at
        return oldest_key


def title_year_key(entry: CatalogEntry) -> str:
    """Key used to line up enrichment with base entries; ignores identifiers."""

    year = entry.year if entry.year is not None else "unknown"
    return f"{entry.title.strip().lower()}-{year}"


def _has_value(value: Any) -> bool:
    return value is not None and value != "" and value != []


def merge_enrichment(
    base_entries: Sequence[CatalogEntry], enriched_entries: Sequence[CatalogEntry]
) -> list[CatalogEntry]:
    """Overlay enrichment fields onto matching base entries.

    Entries are matched by :func:`title_year_key`; later enriched entries win
    over earlier ones sharing a key. A field is only replaced when the
    enriched value is present, so populated fields never regress. Returns new
    entries and leaves both inputs untouched.
    """

    enriched_by_key = {title_year_key(entry): entry for entry in enriched_entries}
    if not enriched_by_key:
        return list(base_entries)

    merged: list[CatalogEntry] = []
    for entry in base_entries:
        enriched = enriched_by_key.get(title_year_key(entry))
        if enriched is None:
            merged.append(entry)
            continue
        update = {
            name: getattr(enriched, name)
            for name in ENRICHMENT_FIELDS
            if _has_value(getattr(enriched, name))
        }
        merged.append(entry.model_copy(update=update, deep=True) if update else entry)
    return merged


class SessionCache:
    """Watchlist, profile and enrichment caches for the running process."""

    def __init__(self, settings: Settings, *, clock: Callable[[], float] = time.time):
        ttl = settings.cache_ttl_millis
        self._stores: dict[str, CacheStore[Any]] = {
            WATCHLISTS: CacheStore(
                WATCHLISTS,
                ttl_millis=ttl,
                max_entries=settings.watchlist_cache_size,
                clock=clock,
            ),
            PROFILES: CacheStore(
                PROFILES,
                ttl_millis=ttl,
                max_entries=settings.profile_cache_size,
                clock=clock,
            ),
            ENRICHED: CacheStore(
                ENRICHED,
                ttl_millis=ttl,
                max_entries=settings.enriched_cache_size,
                clock=clock,
            ),
        }

    def store(self, name: str) -> CacheStore[Any]:
        try:
            return self._stores[name]
        except KeyError as exc:
            raise KeyError(f"Unknown cache store: {name}") from exc

    def get(self, store: str, key: str) -> Any | None:
        return self.store(store).get(key)

    def set(self, store: str, key: str, value: Any) -> None:
        self.store(store).set(key, value)

    def merge_enrichment(
        self,
        base_entries: Sequence[CatalogEntry],
        enriched_entries: Sequence[CatalogEntry],
    ) -> list[CatalogEntry]:
        return merge_enrichment(base_entries, enriched_entries)

    def get_watchlist(self, owner_id: str) -> list[CatalogEntry] | None:
        return self.get(WATCHLISTS, normalize_owner_id(owner_id))

    def set_watchlist(self, owner_id: str, entries: list[CatalogEntry]) -> None:
        self.set(WATCHLISTS, normalize_owner_id(owner_id), entries)

    def get_profile(self, owner_id: str) -> OwnerProfile | None:
        return self.get(PROFILES, normalize_owner_id(owner_id))

    def set_profile(self, owner_id: str, profile: OwnerProfile) -> None:
        self.set(PROFILES, normalize_owner_id(owner_id), profile)

    def get_enriched(self, key: str) -> list[CatalogEntry] | None:
        return self.get(ENRICHED, key)

    def set_enriched(self, key: str, entries: list[CatalogEntry]) -> None:
        self.set(ENRICHED, key, entries)

    def get_enriched_entry(self, entry: CatalogEntry) -> CatalogEntry | None:
        """Return a cached enrichment for a single title, if still fresh."""

        key = title_year_key(entry)
        cached = self.get_enriched(f"film:{key}")
        if not cached:
            return None
        for candidate in cached:
            if title_year_key(candidate) == key:
                return candidate
        return None

    def set_enriched_entry(self, entry: CatalogEntry) -> None:
        self.set_enriched(f"film:{title_year_key(entry)}", [entry])

    def clear(self) -> None:
        for store in self._stores.values():
            store.clear()

    def clear_enriched(self) -> None:
        self._stores[ENRICHED].clear()

    def stats(self) -> dict[str, int]:
        return {
            "watchlistCount": len(self._stores[WATCHLISTS]),
            "profileCount": len(self._stores[PROFILES]),
            "enrichedCount": len(self._stores[ENRICHED]),
        }
