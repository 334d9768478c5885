"""Pydantic models describing watchlists, owners and match results."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import clean_text, parse_int, parse_year

ENRICHMENT_FIELDS: tuple[str, ...] = (
    "poster_url",
    "synopsis",
    "directors",
    "cast",
    "genres",
    "rating_text",
    "runtime_text",
    "trailer_url",
)


class CatalogEntry(BaseModel):
    """A single title on an owner's watchlist."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    year: int | None = None
    external_id: int | None = Field(default=None, alias="tmdbId")
    source_id: str | None = Field(default=None, alias="imdbId")
    poster_url: str | None = Field(default=None, alias="posterUrl")
    synopsis: str | None = None
    directors: list[str] = Field(default_factory=list)
    cast: list[str] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    rating_text: str | None = Field(default=None, alias="ratingText")
    runtime_text: str | None = Field(default=None, alias="runtimeText")
    trailer_url: str | None = Field(default=None, alias="trailerUrl")

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("title must not be blank")
        return value

    @classmethod
    def from_upstream(cls, data: Mapping[str, Any]) -> "CatalogEntry | None":
        """Normalise one watchlist item from the proxy, or ``None`` if unusable."""

        title = data.get("title") or data.get("name") or data.get("movieTitle") or ""
        title = str(title).strip()
        if not title:
            return None

        year = parse_year(
            data.get("release_year") or data.get("year") or data.get("releaseYear")
        )
        external_id = parse_int(
            data.get("tmdbId") or data.get("tmdb_id") or data.get("theMovieDbId")
        )
        source_id = clean_text(data.get("imdb_id") or data.get("imdbId"))

        poster: Any = None
        images = data.get("images")
        if isinstance(images, list) and images and isinstance(images[0], Mapping):
            poster = images[0].get("url")
        poster = poster or data.get("posterUrl") or data.get("poster") or data.get("remotePoster")

        return cls(
            title=title,
            year=year,
            external_id=external_id,
            source_id=source_id,
            poster_url=clean_text(poster),
        )

    @classmethod
    def parse_list(cls, payload: Any) -> list["CatalogEntry"]:
        """Parse a proxy response that may be a bare list or a wrapped one."""

        raw_items: Any = []
        if isinstance(payload, list):
            raw_items = payload
        elif isinstance(payload, Mapping):
            if isinstance(payload.get("movies"), list):
                raw_items = payload["movies"]
            elif isinstance(payload.get("items"), list):
                raw_items = payload["items"]

        entries: list[CatalogEntry] = []
        for item in raw_items:
            if not isinstance(item, Mapping):
                continue
            entry = cls.from_upstream(item)
            if entry is not None:
                entries.append(entry)
        return entries

    def to_payload(self) -> dict[str, Any]:
        """Return the camelCase API representation without empty fields."""

        payload = self.model_dump(by_alias=True, exclude_none=True)
        return {key: value for key, value in payload.items() if value != []}


class OwnerProfile(BaseModel):
    """Public profile details for a watchlist owner."""

    model_config = ConfigDict(populate_by_name=True)

    owner_id: str = Field(alias="ownerId")
    display_name: str | None = Field(default=None, alias="displayName")
    avatar_url: str | None = Field(default=None, alias="avatarUrl")


class SocialConnection(OwnerProfile):
    """An account followed by an owner."""


class Owner(BaseModel):
    """One participant of a comparison together with their watchlist."""

    model_config = ConfigDict(populate_by_name=True)

    owner_id: str = Field(alias="ownerId")
    catalog_entries: list[CatalogEntry] = Field(
        default_factory=list, alias="catalogEntries"
    )
    profile: OwnerProfile | None = None


class GroupMatch(BaseModel):
    """Titles shared by every member of one combination of owners."""

    model_config = ConfigDict(populate_by_name=True)

    members: list[str]
    common_entries: list[CatalogEntry] = Field(
        default_factory=list, alias="commonEntries"
    )
    common_count: int = Field(default=0, alias="commonCount")

    def to_payload(self) -> dict[str, Any]:
        return {
            "members": list(self.members),
            "commonEntries": [entry.to_payload() for entry in self.common_entries],
            "commonCount": self.common_count,
        }


class MatchResult(BaseModel):
    """Every combination's matches plus the raw watchlist sizes."""

    model_config = ConfigDict(populate_by_name=True)

    groups: list[GroupMatch] = Field(default_factory=list)
    per_owner_count: dict[str, int] = Field(
        default_factory=dict, alias="perOwnerCount"
    )


class GroupPartition(BaseModel):
    """Ranked groups sharing the same member count."""

    model_config = ConfigDict(populate_by_name=True)

    member_count: int = Field(alias="memberCount")
    groups: list[GroupMatch] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "memberCount": self.member_count,
            "groups": [group.to_payload() for group in self.groups],
        }
