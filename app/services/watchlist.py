"""Client for the letterboxd-list-radarr watchlist proxy."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import quote

import httpx

from ..config import Settings
from ..models import CatalogEntry
from .errors import (
    NotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

# The proxy rejects browser-like header sets as bot traffic.
PROXY_USER_AGENT = "curl/7.68.0"
RETRYABLE_STATUSES = frozenset({403, 429})


class WatchlistClient:
    """Fetch an owner's watchlist as normalised catalog entries."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        backoff_base: float = 1.0,
        backoff_cap: float = 5.0,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.watchlist_retry_limit
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap

    def _backoff(self, attempt: int) -> float:
        return min(self._backoff_base * 2 ** (attempt - 1), self._backoff_cap)

    async def fetch_catalog(self, owner_id: str) -> list[CatalogEntry]:
        """Return the owner's watchlist.

        Raises :class:`NotFoundError` when the owner has no public watchlist,
        :class:`RateLimitedError` when the proxy keeps refusing us and
        :class:`ServiceUnavailableError` for other transient failures.
        """

        handle = owner_id.strip()
        url = f"/{quote(handle, safe='')}/watchlist/"
        logger.info("Fetching watchlist for %s", handle)

        attempt = 0
        while True:
            try:
                response = await self._client.get(
                    url, headers={"User-Agent": PROXY_USER_AGENT}
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._backoff(attempt)
                    logger.info(
                        "Transient error fetching watchlist for %s (%s). Retrying in %.1fs",
                        handle,
                        exc.__class__.__name__,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("Failed to fetch watchlist for %s: %s", handle, exc)
                raise ServiceUnavailableError(
                    "Failed to reach the watchlist service after retries.",
                    suggestion="Please try again in a moment.",
                ) from exc

            if response.status_code in RETRYABLE_STATUSES:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._backoff(attempt)
                    logger.info(
                        "Watchlist proxy returned %s for %s. Retrying in %.1fs",
                        response.status_code,
                        handle,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            break

        if response.status_code >= 400:
            self._raise_for_status(handle, response)

        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("Unexpected non-JSON watchlist response for %s", handle)
            raise ServiceUnavailableError(
                "The watchlist service returned an unreadable response."
            ) from exc

        entries = CatalogEntry.parse_list(payload)
        logger.info("Retrieved %d films for %s", len(entries), handle)
        return entries

    @staticmethod
    def _raise_for_status(handle: str, response: httpx.Response) -> None:
        status = response.status_code
        logger.warning(
            "Watchlist proxy error for %s: %s %s", handle, status, response.text[:200]
        )
        if status == 404:
            raise NotFoundError(f'User "{handle}" not found or watchlist is empty')
        if status == 403:
            raise RateLimitedError(
                "Access forbidden by the watchlist service. This may be due to rate "
                "limiting or anti-scraping measures.",
                suggestion="Please try again later. The service may be temporarily "
                "blocking requests.",
                status_code=403,
            )
        if status == 429:
            raise RateLimitedError(
                "Rate limit exceeded. Too many requests to the watchlist service.",
                suggestion="Please wait a few moments and try again.",
            )
        if status >= 500:
            raise ServiceUnavailableError(
                "Service temporarily unavailable. The watchlist service may be "
                "overloaded.",
                suggestion="Please try again in a moment.",
            )
        raise UpstreamError(
            f"Failed to fetch watchlist: {status} {response.reason_phrase}",
            status_code=status,
        )
