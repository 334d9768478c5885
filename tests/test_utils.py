"""Tests for the text and number parsing helpers."""

from __future__ import annotations

from app.utils import clean_text, normalize_owner_id, parse_int, parse_year, split_list


def test_normalize_owner_id_is_case_insensitive() -> None:
    """Handles should compare equal regardless of case and padding."""

    assert normalize_owner_id("  DaveVerse ") == "daveverse"
    assert normalize_owner_id("") == ""


def test_clean_text_drops_placeholders() -> None:
    """Placeholder values from metadata APIs should be treated as missing."""

    assert clean_text("N/A") is None
    assert clean_text("  ") is None
    assert clean_text(None) is None
    assert clean_text("  Two   words\n") == "Two words"


def test_split_list_handles_strings_and_sequences() -> None:
    """Comma separated credits and lists should both become clean lists."""

    assert split_list("Greta Gerwig, Noah Baumbach ,") == ["Greta Gerwig", "Noah Baumbach"]
    assert split_list(["Drama", " ", "N/A", "Comedy"]) == ["Drama", "Comedy"]
    assert split_list("N/A") == []
    assert split_list(None) == []


def test_parse_year_accepts_numbers_and_dates() -> None:
    """Years should be extracted from integers, strings and ISO dates."""

    assert parse_year(1999) == 1999
    assert parse_year("2019-05-30") == 2019
    assert parse_year("Released in 1972") == 1972
    assert parse_year(12) is None
    assert parse_year("unknown") is None
    assert parse_year(True) is None


def test_parse_int_handles_numeric_strings() -> None:
    """Identifiers may arrive as strings or floats."""

    assert parse_int("603") == 603
    assert parse_int("603.0") == 603
    assert parse_int(27205) == 27205
    assert parse_int("tt0133093") is None
    assert parse_int("") is None
    assert parse_int(None) is None
