"""Utility helpers for the Letterbuds service."""

from __future__ import annotations

import re
from typing import Any


YEAR_RE = re.compile(r"(18|19|20|21)\d{2}")
WHITESPACE_RE = re.compile(r"\s+")
MISSING_MARKERS = frozenset({"", "n/a", "none", "null"})


def normalize_owner_id(value: str) -> str:
    """Return the case-insensitive comparison form of a handle."""

    return (value or "").strip().lower()


def clean_text(value: Any) -> str | None:
    """Collapse whitespace and drop placeholder values such as ``N/A``."""

    if value is None:
        return None
    text = WHITESPACE_RE.sub(" ", str(value)).strip()
    if text.lower() in MISSING_MARKERS:
        return None
    return text


def split_list(value: Any) -> list[str]:
    """Split a comma separated credit string into a clean list."""

    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        parts = [clean_text(part) for part in value]
    else:
        text = clean_text(value)
        if text is None:
            return []
        parts = [clean_text(part) for part in text.split(",")]
    return [part for part in parts if part]


def parse_year(value: Any) -> int | None:
    """Extract a plausible release year from numbers or date-like strings."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1800 <= value <= 2199 else None
    if not value:
        return None
    match = YEAR_RE.search(str(value))
    if not match:
        return None
    return int(match.group(0))


def parse_int(value: Any) -> int | None:
    """Parse identifiers that arrive as ints or numeric strings."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text)) if "." in text else int(text)
    except ValueError:
        return None
