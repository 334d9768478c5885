"""High level orchestration for watchlist comparisons."""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..cache import CacheStore, SessionCache, merge_enrichment, title_year_key
from ..config import Settings
from ..matching import match_groups, rank
from ..models import (
    CatalogEntry,
    GroupPartition,
    MatchResult,
    Owner,
    OwnerProfile,
    SocialConnection,
)
from ..utils import normalize_owner_id
from .enrichment import EnrichmentClient
from .errors import UpstreamError
from .letterboxd import LetterboxdClient
from .watchlist import WatchlistClient

logger = logging.getLogger(__name__)

EnrichmentListener = Callable[[str, CatalogEntry], None]


class InvalidOwnersError(ValueError):
    """The requested handles cannot form a comparison."""


class InsufficientOwnersError(ValueError):
    """Too few owners produced a usable watchlist."""


class CompareRequest(BaseModel):
    """Body of a comparison request."""

    model_config = ConfigDict(populate_by_name=True)

    usernames: list[str] = Field(
        validation_alias=AliasChoices("usernames", "owners", "ownerIds"),
    )
    session_id: str | None = Field(
        default=None,
        max_length=120,
        validation_alias=AliasChoices("sessionId", "session"),
    )
    enrich: bool = True


@dataclass
class EnrichmentProgress:
    """Runtime state of a comparison's background enrichment."""

    status: str = "pending"
    total: int = 0
    completed: int = 0
    enriched: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "total": self.total,
            "completed": self.completed,
            "enriched": self.enriched,
        }


@dataclass
class Comparison:
    """One user-initiated comparison and its (progressively enriched) result."""

    id: str
    owners: list[Owner]
    result: MatchResult
    failed_owners: list[str] = field(default_factory=list)
    session_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    enrichment: EnrichmentProgress = field(default_factory=EnrichmentProgress)

    def ranked(self) -> list[GroupPartition]:
        return rank(self.result.groups)

    def unique_entries(self) -> list[CatalogEntry]:
        """Distinct shared titles, most widely shared first."""

        seen: set[str] = set()
        entries: list[CatalogEntry] = []
        for partition in self.ranked():
            for group in partition.groups:
                for entry in group.common_entries:
                    key = title_year_key(entry)
                    if key in seen:
                        continue
                    seen.add(key)
                    entries.append(entry)
        return entries

    def apply_enrichment(self, enriched: CatalogEntry) -> int:
        """Swap in enriched copies of every matching entry; return how many changed."""

        replaced = 0
        for group in self.result.groups:
            merged = merge_enrichment(group.common_entries, [enriched])
            changed = sum(
                1 for before, after in zip(group.common_entries, merged) if before is not after
            )
            if changed:
                group.common_entries = merged
                replaced += changed
        return replaced

    def to_payload(self) -> dict[str, Any]:
        failed = set(self.failed_owners)
        owners = []
        for owner in self.owners:
            profile = owner.profile
            owners.append(
                {
                    "ownerId": owner.owner_id,
                    "displayName": profile.display_name if profile else None,
                    "avatarUrl": profile.avatar_url if profile else None,
                    "filmCount": self.result.per_owner_count.get(owner.owner_id, 0),
                    "failed": owner.owner_id in failed,
                }
            )
        return {
            "id": self.id,
            "createdAt": self.created_at.isoformat(),
            "owners": owners,
            "failedOwners": list(self.failed_owners),
            "perOwnerCount": dict(self.result.per_owner_count),
            "partitions": [partition.to_payload() for partition in self.ranked()],
            "enrichment": self.enrichment.to_payload(),
        }


class ComparisonService:
    """Fetches owners, matches their watchlists and enriches shared titles."""

    def __init__(
        self,
        settings: Settings,
        watchlist_client: WatchlistClient,
        letterboxd_client: LetterboxdClient,
        enrichment_client: EnrichmentClient,
        cache: SessionCache,
    ):
        self._settings = settings
        self._watchlists = watchlist_client
        self._letterboxd = letterboxd_client
        self._enrichment = enrichment_client
        self._cache = cache
        self._comparisons: CacheStore[Comparison] = CacheStore(
            "comparisons",
            ttl_millis=settings.cache_ttl_millis,
            max_entries=settings.comparison_history_limit,
        )
        self._enrichment_jobs: dict[str, asyncio.Task[None]] = {}
        self._sessions: dict[str, str] = {}
        self._listeners: list[EnrichmentListener] = []

    @property
    def cache(self) -> SessionCache:
        return self._cache

    async def stop(self) -> None:
        """Cancel all in-flight enrichment jobs."""

        jobs = list(self._enrichment_jobs.values())
        for job in jobs:
            job.cancel()
        for job in jobs:
            with suppress(asyncio.CancelledError):
                await job
        self._enrichment_jobs.clear()

    def validate_owner_ids(self, usernames: Sequence[str]) -> list[str]:
        """Trim handles and enforce the owner count and uniqueness rules."""

        cleaned = [name.strip() for name in usernames]
        if any(not name for name in cleaned):
            raise InvalidOwnersError("Usernames must not be blank")
        if len(cleaned) < self._settings.min_owners:
            raise InvalidOwnersError(
                f"At least {self._settings.min_owners} usernames are required"
            )
        if len(cleaned) > self._settings.max_owners:
            raise InvalidOwnersError(
                f"At most {self._settings.max_owners} usernames can be compared"
            )
        seen: set[str] = set()
        for name in cleaned:
            key = normalize_owner_id(name)
            if key in seen:
                raise InvalidOwnersError(f'Username "{name}" was entered more than once')
            seen.add(key)
        return cleaned

    async def get_catalog(self, owner_id: str) -> list[CatalogEntry]:
        cached = self._cache.get_watchlist(owner_id)
        if cached is not None:
            logger.info("Using cached watchlist for %s", owner_id)
            return cached
        entries = await self._watchlists.fetch_catalog(owner_id)
        self._cache.set_watchlist(owner_id, entries)
        return entries

    async def get_profile(self, owner_id: str) -> OwnerProfile | None:
        """Return the owner's profile, or ``None`` when it cannot be fetched."""

        cached = self._cache.get_profile(owner_id)
        if cached is not None:
            return cached
        try:
            profile = await self._letterboxd.fetch_profile(owner_id)
        except UpstreamError as exc:
            logger.warning("Profile for %s unavailable: %s", owner_id, exc)
            return None
        self._cache.set_profile(owner_id, profile)
        return profile

    async def lookup_profile(self, owner_id: str) -> OwnerProfile:
        """Return the owner's profile, raising :class:`NotFoundError` if missing."""

        cached = self._cache.get_profile(owner_id)
        if cached is not None:
            return cached
        profile = await self._letterboxd.fetch_profile(owner_id)
        self._cache.set_profile(owner_id, profile)
        return profile

    async def get_social_connections(self, owner_id: str) -> list[SocialConnection]:
        return await self._letterboxd.fetch_social_connections(owner_id)

    async def load_owners(self, owner_ids: Sequence[str]) -> tuple[list[Owner], list[str]]:
        """Fetch each owner in turn; failures become empty watchlists."""

        owners: list[Owner] = []
        failed: list[str] = []
        fetched_before = False

        for owner_id in owner_ids:
            cached_catalog = self._cache.get_watchlist(owner_id)
            cached_profile = self._cache.get_profile(owner_id)
            if cached_catalog is not None and cached_profile is not None:
                logger.info("Using cached watchlist and profile for %s", owner_id)
                owners.append(
                    Owner(
                        owner_id=owner_id,
                        catalog_entries=cached_catalog,
                        profile=cached_profile,
                    )
                )
                continue

            if fetched_before and self._settings.owner_fetch_delay:
                await asyncio.sleep(self._settings.owner_fetch_delay)
            fetched_before = True

            catalog_result, profile = await asyncio.gather(
                self.get_catalog(owner_id),
                self.get_profile(owner_id),
                return_exceptions=True,
            )
            if isinstance(profile, BaseException):
                raise profile
            if isinstance(catalog_result, UpstreamError):
                logger.warning("Failed to fetch data for %s: %s", owner_id, catalog_result)
                failed.append(owner_id)
                owners.append(Owner(owner_id=owner_id, catalog_entries=[], profile=None))
                continue
            if isinstance(catalog_result, BaseException):
                raise catalog_result
            owners.append(
                Owner(owner_id=owner_id, catalog_entries=catalog_result, profile=profile)
            )

        return owners, failed

    async def compare(self, request: CompareRequest) -> Comparison:
        """Run a comparison and schedule enrichment of its shared titles."""

        owner_ids = self.validate_owner_ids(request.usernames)
        logger.info(
            "Starting comparison for %d users: %s", len(owner_ids), ", ".join(owner_ids)
        )

        if request.session_id:
            previous = self._sessions.get(request.session_id)
            if previous is not None:
                self.cancel_enrichment(previous)

        owners, failed = await self.load_owners(owner_ids)

        valid = [owner for owner in owners if owner.catalog_entries]
        if len(valid) < self._settings.min_owners:
            message = (
                f"Need at least {self._settings.min_owners} users with valid watchlists. "
                f"Only {len(valid)} user(s) had valid data."
            )
            if failed:
                message += f" Failed to fetch: {', '.join(failed)}."
            raise InsufficientOwnersError(message)
        if failed:
            logger.warning(
                "Some users failed but continuing with %d valid users. Failed: %s",
                len(valid),
                ", ".join(failed),
            )

        comparison = Comparison(
            id=secrets.token_urlsafe(12),
            owners=owners,
            result=match_groups(owners),
            failed_owners=failed,
            session_id=request.session_id,
        )
        self._comparisons.set(comparison.id, comparison)
        if request.session_id:
            self._sessions[request.session_id] = comparison.id

        if request.enrich and self._enrichment.enabled:
            self.start_enrichment(comparison)
        else:
            comparison.enrichment.status = "skipped"
        return comparison

    def get_comparison(self, comparison_id: str) -> Comparison | None:
        return self._comparisons.get(comparison_id)

    def subscribe(self, listener: EnrichmentListener) -> Callable[[], None]:
        """Register a callback for enriched entries; returns an unsubscribe hook."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    def is_enriching(self, comparison_id: str) -> bool:
        job = self._enrichment_jobs.get(comparison_id)
        return job is not None and not job.done()

    def start_enrichment(self, comparison: Comparison) -> None:
        existing = self._enrichment_jobs.get(comparison.id)
        if existing and not existing.done():
            return

        async def _runner() -> None:
            try:
                await self.enrich_comparison(comparison)
            except asyncio.CancelledError:
                comparison.enrichment.status = "cancelled"
                raise
            except Exception as exc:  # pragma: no cover - background safety net
                comparison.enrichment.status = "failed"
                logger.exception(
                    "Background enrichment for comparison %s failed: %s", comparison.id, exc
                )
            finally:
                self._enrichment_jobs.pop(comparison.id, None)

        self._enrichment_jobs[comparison.id] = asyncio.create_task(_runner())

    def cancel_enrichment(self, comparison_id: str) -> bool:
        job = self._enrichment_jobs.get(comparison_id)
        if job is None or job.done():
            return False
        logger.info("Cancelling enrichment for comparison %s", comparison_id)
        job.cancel()
        # A task cancelled before its first step never reaches the runner's finally.
        self._enrichment_jobs.pop(comparison_id, None)
        comparison = self._comparisons.get(comparison_id)
        if comparison is not None:
            comparison.enrichment.status = "cancelled"
        return True

    async def enrich_comparison(self, comparison: Comparison) -> None:
        """Enrich shared titles one at a time, splicing results into ``comparison``."""

        entries = comparison.unique_entries()
        limit = self._settings.enrichment_batch_limit
        if len(entries) > limit:
            logger.warning(
                "Limiting enrichment to %d films (out of %d) to avoid API rate limits",
                limit,
                len(entries),
            )
            entries = entries[:limit]

        progress = comparison.enrichment
        progress.status = "running"
        progress.total = len(entries)
        requests_made = 0

        for entry in entries:
            enriched = self._cache.get_enriched_entry(entry)
            if enriched is None:
                if requests_made:
                    if requests_made % self._settings.enrichment_pause_every == 0:
                        await asyncio.sleep(self._settings.enrichment_pause)
                    else:
                        await asyncio.sleep(self._settings.enrichment_delay)
                requests_made += 1
                try:
                    enriched = await self._enrichment.fetch_enrichment(entry)
                except Exception:
                    logger.exception(
                        "Enrichment of %s (%s) failed for comparison %s",
                        entry.title,
                        entry.year,
                        comparison.id,
                    )
                    enriched = None
                if enriched is not None:
                    self._cache.set_enriched_entry(enriched)

            progress.completed += 1
            if enriched is None:
                continue
            if comparison.apply_enrichment(enriched):
                progress.enriched += 1
                self._notify(comparison.id, enriched)

        progress.status = "complete"
        logger.info(
            "Enriched %d of %d films for comparison %s",
            progress.enriched,
            progress.total,
            comparison.id,
        )

    def _notify(self, comparison_id: str, entry: CatalogEntry) -> None:
        for listener in list(self._listeners):
            try:
                listener(comparison_id, entry)
            except Exception:  # pragma: no cover - listener safety net
                logger.exception("Enrichment listener failed for %s", comparison_id)
