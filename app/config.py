"""Application configuration models."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Letterbuds", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    watchlist_api_url: HttpUrl = Field(
        default="https://letterboxd-list-radarr.onrender.com",
        alias="WATCHLIST_API_URL",
    )
    watchlist_retry_limit: int = Field(
        default=2, alias="WATCHLIST_RETRY_LIMIT", ge=0, le=10
    )
    letterboxd_url: HttpUrl = Field(
        default="https://letterboxd.com", alias="LETTERBOXD_URL"
    )
    following_page_limit: int = Field(
        default=1, alias="FOLLOWING_PAGE_LIMIT", ge=1, le=50
    )

    omdb_api_url: HttpUrl = Field(
        default="https://www.omdbapi.com", alias="OMDB_API_URL"
    )
    omdb_api_key: str | None = Field(
        default=None,
        alias="OMDB_API_KEY",
        validation_alias=AliasChoices("OMDB_API_KEY", "VITE_OMDB_API_KEY"),
    )
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_api_key: str | None = Field(
        default=None,
        alias="TMDB_API_KEY",
        validation_alias=AliasChoices("TMDB_API_KEY", "VITE_TMDB_API_KEY"),
    )

    cache_ttl_seconds: int = Field(default=3_600, alias="CACHE_TTL", ge=1)
    watchlist_cache_size: int = Field(
        default=50, alias="WATCHLIST_CACHE_SIZE", ge=1
    )
    profile_cache_size: int | None = Field(
        default=None, alias="PROFILE_CACHE_SIZE", ge=1
    )
    enriched_cache_size: int = Field(default=20, alias="ENRICHED_CACHE_SIZE", ge=1)
    comparison_history_limit: int = Field(
        default=20, alias="COMPARISON_HISTORY_LIMIT", ge=1
    )

    min_owners: int = Field(default=2, alias="MIN_OWNERS", ge=2)
    max_owners: int = Field(default=10, alias="MAX_OWNERS", ge=2, le=16)
    owner_fetch_delay: float = Field(default=0.5, alias="OWNER_FETCH_DELAY", ge=0)

    enrichment_delay: float = Field(default=0.5, alias="ENRICHMENT_DELAY", ge=0)
    enrichment_pause: float = Field(default=2.0, alias="ENRICHMENT_PAUSE", ge=0)
    enrichment_pause_every: int = Field(
        default=5, alias="ENRICHMENT_PAUSE_EVERY", ge=1
    )
    enrichment_batch_limit: int = Field(
        default=50, alias="ENRICHMENT_BATCH_LIMIT", ge=0, le=500
    )

    cors_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("*",), alias="CORS_ORIGINS"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("profile_cache_size", mode="before")
    @classmethod
    def _parse_profile_cache_size(cls, value: object) -> object:
        """Treat blank or zero sizes as an unbounded profile cache."""

        if value is None:
            return None
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        if str(value) == "0":
            return None
        return value

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: object) -> tuple[str, ...]:
        """Accept JSON arrays, comma-separated strings or iterables."""

        if value is None:
            return ("*",)
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return ("*",)
            if text.startswith("["):
                try:
                    decoded = json.loads(text)
                except json.JSONDecodeError as exc:
                    raise ValueError("CORS_ORIGINS is not a valid JSON array") from exc
                raw_values = [str(part) for part in decoded]
            else:
                raw_values = text.split(",")
        elif isinstance(value, (list, tuple, set)):
            raw_values = [str(part) for part in value]
        else:
            raise TypeError("CORS_ORIGINS must be a string or iterable of strings")
        cleaned = tuple(part.strip() for part in raw_values if part.strip())
        return cleaned or ("*",)

    @model_validator(mode="after")
    def _check_owner_bounds(self) -> "Settings":
        """Ensure the owner limits describe a non-empty range."""

        if self.min_owners > self.max_owners:
            raise ValueError("MIN_OWNERS must not exceed MAX_OWNERS")
        return self

    @property
    def cache_ttl_millis(self) -> int:
        return self.cache_ttl_seconds * 1_000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
