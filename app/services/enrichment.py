"""Resolve posters, credits and trailers from OMDb and The Movie Database."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..config import Settings
from ..models import CatalogEntry
from ..utils import clean_text, parse_int, split_list

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v="


@dataclass(slots=True)
class TMDBDetails:
    """The subset of a TMDB movie lookup used for enrichment."""

    tmdb_id: int
    poster_path: str | None = None
    overview: str | None = None
    trailer_key: str | None = None


class EnrichmentClient:
    """Look up supplementary metadata for a catalog entry."""

    def __init__(
        self,
        settings: Settings,
        omdb_client: httpx.AsyncClient,
        tmdb_client: httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._omdb = omdb_client
        self._tmdb = tmdb_client

    @property
    def enabled(self) -> bool:
        return bool(self._settings.omdb_api_key or self._settings.tmdb_api_key)

    async def fetch_enrichment(self, entry: CatalogEntry) -> CatalogEntry | None:
        """Return a partial entry carrying whatever metadata could be found."""

        if not self.enabled:
            return None

        update: dict[str, Any] = {}
        if entry.source_id and self._settings.omdb_api_key:
            update.update(await self._fetch_omdb(entry.source_id))

        if self._settings.tmdb_api_key:
            details = await self._fetch_tmdb(entry)
            if details is not None:
                if details.trailer_key:
                    update["trailer_url"] = f"{YOUTUBE_WATCH_URL}{details.trailer_key}"
                if not update.get("poster_url") and details.poster_path:
                    update["poster_url"] = self._build_image_url(details.poster_path)
                if not update.get("synopsis") and details.overview:
                    update["synopsis"] = details.overview

        if not update:
            logger.debug("No enrichment found for %s (%s)", entry.title, entry.year)
            return None
        return CatalogEntry(title=entry.title, year=entry.year, **update)

    async def _fetch_omdb(self, imdb_id: str) -> dict[str, Any]:
        params = {"i": imdb_id, "apikey": self._settings.omdb_api_key, "plot": "full"}
        try:
            response = await self._omdb.get("/", params=params)
        except httpx.HTTPError as exc:
            logger.warning("OMDb lookup failed for %s: %s", imdb_id, exc)
            return {}
        if response.status_code >= 400:
            logger.warning("OMDb API error for %s: %s", imdb_id, response.status_code)
            return {}
        try:
            data = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON OMDb response for %s", imdb_id)
            return {}
        if not isinstance(data, dict):
            logger.warning("Unexpected OMDb response structure for %s", imdb_id)
            return {}
        if data.get("Response") == "False" or data.get("Error"):
            logger.warning("OMDb API error for %s: %s", imdb_id, data.get("Error"))
            return {}
        return self.parse_omdb(data)

    @staticmethod
    def parse_omdb(data: dict[str, Any]) -> dict[str, Any]:
        """Map an OMDb title payload onto enrichment fields."""

        fields = {
            "poster_url": clean_text(data.get("Poster")),
            "synopsis": clean_text(data.get("Plot")),
            "directors": split_list(data.get("Director")),
            "cast": split_list(data.get("Actors")),
            "genres": split_list(data.get("Genre")),
            "rating_text": clean_text(data.get("imdbRating")),
            "runtime_text": clean_text(data.get("Runtime")),
        }
        return {key: value for key, value in fields.items() if value}

    async def _fetch_tmdb(self, entry: CatalogEntry) -> TMDBDetails | None:
        tmdb_id = entry.external_id
        if tmdb_id is None and entry.year:
            tmdb_id = await self._search(entry.title, entry.year)
        if tmdb_id is None:
            return None

        params = {
            "api_key": self._settings.tmdb_api_key,
            "append_to_response": "videos",
        }
        try:
            response = await self._tmdb.get(f"/movie/{tmdb_id}", params=params)
        except httpx.HTTPError as exc:
            logger.warning("TMDB lookup failed for %s: %s", entry.title, exc)
            return None
        if response.status_code >= 400:
            logger.warning(
                "TMDB details for %s (%s) failed: %s", entry.title, tmdb_id, response.status_code
            )
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON TMDB response for %s", entry.title)
            return None
        if not isinstance(payload, dict):
            logger.warning("Unexpected TMDB response structure for %s", entry.title)
            return None
        videos = payload.get("videos")
        return TMDBDetails(
            tmdb_id=tmdb_id,
            poster_path=clean_text(payload.get("poster_path")),
            overview=clean_text(payload.get("overview")),
            trailer_key=self._select_trailer(videos if isinstance(videos, dict) else {}),
        )

    async def _search(self, title: str, year: int) -> int | None:
        """Return the TMDB id of the best title/year search match."""

        params = {
            "api_key": self._settings.tmdb_api_key,
            "query": title,
            "year": year,
            "include_adult": "false",
        }
        try:
            response = await self._tmdb.get("/search/movie", params=params)
        except httpx.HTTPError as exc:
            logger.warning("TMDB search failed for %s: %s", title, exc)
            return None
        if response.status_code >= 400:
            logger.warning("TMDB search for %s failed: %s", title, response.text)
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON TMDB search response for %s", title)
            return None
        results = payload.get("results") if isinstance(payload, dict) else None
        candidates = [
            (parse_int(candidate.get("id")), candidate)
            for candidate in results or []
            if isinstance(candidate, dict)
        ]
        candidates = [(tmdb_id, candidate) for tmdb_id, candidate in candidates if tmdb_id]
        if not candidates:
            logger.warning("No usable TMDB search results for %s (%s)", title, year)
            return None

        normalized_title = title.casefold()
        for tmdb_id, candidate in candidates:
            candidate_title = candidate.get("title") or candidate.get("original_title") or ""
            if str(candidate_title).casefold() == normalized_title:
                return tmdb_id
        return candidates[0][0]

    @staticmethod
    def _select_trailer(videos: dict[str, Any]) -> str | None:
        for video in videos.get("results") or []:
            if not isinstance(video, dict):
                continue
            if video.get("site") == "YouTube" and video.get("type") == "Trailer" and video.get("key"):
                return str(video["key"])
        return None

    @staticmethod
    def _build_image_url(path: str) -> str:
        if path.startswith("http"):
            return path
        return f"{POSTER_BASE_URL}{path}"
