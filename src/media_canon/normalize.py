from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable

TAG_PREFIX = "tag."

# Tags that carry no genre information: bare numbers, years, decades
_NUMERIC_TAG = re.compile(r"^\d+$")
_YEAR_OR_DECADE_TAG = re.compile(r"^(?:\d{4}|\d{4}s|\d{2}s)$")


def collapse_whitespace(s: str) -> str:
    """Normalize to NFC and collapse whitespace."""
    s = unicodedata.normalize("NFC", s)
    s = s.replace("\u00a0", " ")
    s = re.sub(r"[\u200b-\u200d\ufeff]", "", s)
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def strip_diacritics(s: str) -> str:
    """Remove diacritics for matching."""
    nfd = unicodedata.normalize("NFD", s)
    return "".join(c for c in nfd if unicodedata.category(c) != "Mn")


def normalize_track_title(title: str | None) -> str:
    """Comparison key for track titles: trimmed, lower-cased, single-spaced."""
    if not title:
        return ""
    return collapse_whitespace(title).lower()


def normalize_comparable_name(value: str | None) -> str:
    """Loose comparison key for names: no diacritics, no punctuation."""
    s = strip_diacritics(str(value or "")).lower()
    s = re.sub(r"[^a-z0-9\s]", " ", s)
    return re.sub(r"\s+", " ", s).strip()


def slugify(value: str | None) -> str:
    """ASCII slug with ``-`` separators (``"Hip Hop/Rap"`` -> ``"hip-hop-rap"``)."""
    s = strip_diacritics(str(value or "")).lower()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")


def names_match(a: str | None, b: str | None) -> bool:
    """True when either normalized name equals or contains the other."""
    na = normalize_comparable_name(a)
    nb = normalize_comparable_name(b)
    if not na or not nb:
        return False
    return na == nb or na in nb or nb in na


def is_noise_tag(raw: str) -> bool:
    s = raw.strip().lower()
    return bool(_NUMERIC_TAG.match(s) or _YEAR_OR_DECADE_TAG.match(s))


def filter_tags(raw_tags: Iterable[str | None]) -> list[str]:
    """
    Turn raw provider tags into namespaced ``tag.<slug>`` values.

    Numeric, year and decade tags are dropped; the rest are slugified and
    deduplicated case-insensitively, keeping first-seen order.
    """
    seen: set[str] = set()
    result: list[str] = []
    for raw in raw_tags:
        if not raw or not str(raw).strip():
            continue
        if is_noise_tag(str(raw)):
            continue
        slug = slugify(raw)
        if not slug or is_noise_tag(slug) or slug in seen:
            continue
        seen.add(slug)
        result.append(f"{TAG_PREFIX}{slug}")
    return result


def dedupe_casefold(values: Iterable[str | None], limit: int | None = None) -> list[str]:
    """Drop blanks and case-insensitive duplicates, optionally capping the length."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        s = str(value or "").strip()
        if not s:
            continue
        key = s.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(s)
    return result[:limit] if limit is not None else result


def pick_first(*values):
    """First value that is neither ``None`` nor a blank string."""
    for v in values:
        if v is None:
            continue
        if isinstance(v, str) and not v.strip():
            continue
        return v
    return None


def normalize_country_code(value: str | None) -> str | None:
    """Upper-cased two-letter region code, or ``None``."""
    if not value:
        return None
    code = str(value).strip().upper()
    return code if len(code) == 2 and code.isalpha() else None


## Tests


def test_collapse_whitespace():
    assert collapse_whitespace("  Come Together \t ") == "Come Together"


def test_normalize_track_title():
    assert normalize_track_title("  Here Comes   The Sun ") == "here comes the sun"
    assert normalize_track_title(None) == ""


def test_slugify():
    assert slugify("Hip Hop/Rap") == "hip-hop-rap"
    assert slugify("Música Popular Brasileira") == "musica-popular-brasileira"


def test_filter_tags_drops_years_and_decades():
    tags = filter_tags(["Rock", "1977", "80s", "1990s", "42", "rock", "Post Punk", ""])
    assert tags == ["tag.rock", "tag.post-punk"]


def test_names_match():
    assert names_match("CD Projekt Red", "CD PROJEKT RED S.A.")
    assert not names_match("Nintendo", "Sega")


def test_pick_first():
    assert pick_first(None, "  ", "a", "b") == "a"
    assert pick_first(None, "") is None


def test_normalize_country_code():
    assert normalize_country_code(" br ") == "BR"
    assert normalize_country_code("USA") is None
