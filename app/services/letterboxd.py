"""Scrape Letterboxd profile and following pages."""

from __future__ import annotations

import logging
import random
import re
from urllib.parse import quote

import httpx
from selectolax.lexbor import LexborHTMLParser, LexborNode

from ..config import Settings
from ..models import OwnerProfile, SocialConnection
from ..utils import clean_text
from .errors import (
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:127.0) Gecko/20100101 Firefox/127.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Safari/605.1.15",
)

ROW_RE = re.compile(
    r"<tr[^>]*>[\s\S]*?<td[^>]*class=\"[^\"]*col-member[^\"]*\"[^>]*>[\s\S]*?"
    r"<div[^>]*class=\"[^\"]*person-summary[^\"]*\"[\s\S]*?</tr>"
)
AVATAR_RE = re.compile(
    r"<a[^>]*class=\"[^\"]*avatar[^\"]*\"[^>]*href=\"/([^/\"]+)/\"[^>]*>[\s\S]*?"
    r"<img[^>]*src=\"([^\"]*)\"[^>]*alt=\"([^\"]*)\"[^>]*>"
)
NAME_RE = re.compile(
    r"<a[^>]*href=\"/([^/\"]+)/\"[^>]*class=\"[^\"]*name[^\"]*\"[^>]*>\s*([^<]+?)\s*</a>"
)
PROFILE_SUFFIX_RE = re.compile(r"[’']s profile.*$", re.IGNORECASE)


def _href_handle(node: LexborNode | None) -> str | None:
    if node is None:
        return None
    href = (node.attributes.get("href") or "").strip("/")
    if not href or "/" in href:
        return None
    return href


def _connection(
    owner_id: str | None, display_name: str | None, avatar_url: str | None
) -> SocialConnection | None:
    owner_id = clean_text(owner_id)
    if not owner_id:
        return None
    display_name = clean_text(display_name)
    if display_name == owner_id:
        display_name = None
    return SocialConnection(
        owner_id=owner_id,
        display_name=display_name,
        avatar_url=clean_text(avatar_url),
    )


def parse_following_html(html: str) -> list[SocialConnection]:
    """Extract followed members from a ``/following/`` page."""

    tree = LexborHTMLParser(html)
    connections: list[SocialConnection] = []
    for cell in tree.css("td.col-member"):
        summary = cell.css_first(".person-summary")
        if summary is None:
            continue
        avatar_link = summary.css_first("a.avatar")
        name_link = summary.css_first("a.name")
        image = avatar_link.css_first("img") if avatar_link is not None else None

        handle = _href_handle(name_link) or _href_handle(avatar_link)
        display_name = None
        if name_link is not None:
            display_name = name_link.text(strip=True)
        if not display_name and image is not None:
            display_name = image.attributes.get("alt")
        avatar_url = image.attributes.get("src") if image is not None else None

        connection = _connection(handle, display_name, avatar_url)
        if connection is not None:
            connections.append(connection)

    if connections:
        return connections
    return _parse_following_regex(html)


def _parse_following_regex(html: str) -> list[SocialConnection]:
    """Fallback row parsing for markup the DOM selectors no longer match."""

    connections: list[SocialConnection] = []
    for row in ROW_RE.findall(html):
        avatar_match = AVATAR_RE.search(row)
        name_match = NAME_RE.search(row)
        if not (avatar_match or name_match):
            continue
        handle = (name_match and name_match.group(1)) or (
            avatar_match and avatar_match.group(1)
        )
        display_name = (name_match and name_match.group(2)) or (
            avatar_match and avatar_match.group(3)
        )
        avatar_url = avatar_match.group(2) if avatar_match else None
        connection = _connection(handle, display_name, avatar_url)
        if connection is not None:
            connections.append(connection)
    return connections


def has_next_page(html: str) -> bool:
    return LexborHTMLParser(html).css_first("a.next") is not None


def parse_profile_html(html: str, owner_id: str) -> OwnerProfile:
    """Extract the display name and avatar from a member's profile page."""

    tree = LexborHTMLParser(html)

    display_name = None
    for selector in (".profile-name .displayname", "span.displayname", ".profile-name h1"):
        node = tree.css_first(selector)
        if node is not None:
            display_name = clean_text(node.text(strip=True))
            if display_name:
                break
    if not display_name:
        og_title = tree.css_first("meta[property='og:title']")
        if og_title is not None:
            content = og_title.attributes.get("content") or ""
            display_name = clean_text(PROFILE_SUFFIX_RE.sub("", content))

    avatar_url = None
    avatar = tree.css_first(".profile-avatar img")
    if avatar is None:
        avatar = tree.css_first(".avatar img")
    if avatar is not None:
        avatar_url = clean_text(avatar.attributes.get("src"))
    if not avatar_url:
        og_image = tree.css_first("meta[property='og:image']")
        if og_image is not None:
            avatar_url = clean_text(og_image.attributes.get("content"))

    return OwnerProfile(
        owner_id=owner_id,
        display_name=display_name,
        avatar_url=avatar_url,
    )


class LetterboxdClient:
    """Best-effort HTML client for public Letterboxd member pages."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": random.choice(USER_AGENTS),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    async def _get_html(self, path: str, *, what: str) -> str:
        try:
            response = await self._client.get(path, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch %s: %s", what, exc)
            raise ServiceUnavailableError(f"Could not reach Letterboxd for {what}") from exc

        status = response.status_code
        if status < 400:
            return response.text
        logger.warning("Letterboxd returned %s for %s", status, what)
        if status == 404:
            raise NotFoundError(f"No Letterboxd page found for {what}")
        if status == 403:
            raise ForbiddenError(
                "Access forbidden. Letterboxd may be blocking automated requests.",
                suggestion="You can still manually add usernames to compare watchlists.",
            )
        if status == 429:
            raise RateLimitedError(
                "Rate limit exceeded while contacting Letterboxd.",
                suggestion="Please wait a few moments and try again.",
            )
        if status >= 500:
            raise ServiceUnavailableError("Letterboxd is temporarily unavailable.")
        raise UpstreamError(
            f"Failed to fetch {what}: {status} {response.reason_phrase}",
            status_code=status,
        )

    async def fetch_profile(self, owner_id: str) -> OwnerProfile:
        """Return the owner's public profile, raising on upstream failures."""

        handle = owner_id.strip()
        html = await self._get_html(
            f"/{quote(handle, safe='')}/", what=f'profile "{handle}"'
        )
        profile = parse_profile_html(html, handle)
        logger.info(
            "Retrieved profile for %s, avatar: %s", handle, profile.avatar_url or "none"
        )
        return profile

    async def fetch_social_connections(self, owner_id: str) -> list[SocialConnection]:
        """Return the accounts the owner follows, across configured pages."""

        handle = owner_id.strip()
        base_path = f"/{quote(handle, safe='')}/following/"
        connections: list[SocialConnection] = []
        seen: set[str] = set()

        for page in range(1, self._settings.following_page_limit + 1):
            path = base_path if page == 1 else f"{base_path}page/{page}/"
            html = await self._get_html(path, what=f'following list of "{handle}"')
            for connection in parse_following_html(html):
                key = connection.owner_id.lower()
                if key in seen:
                    continue
                seen.add(key)
                connections.append(connection)
            if not has_next_page(html):
                break

        logger.info("Retrieved %d following users for %s", len(connections), handle)
        return connections
