"""
Last.fm client for album summaries, artwork and tags.

Queried by MusicBrainz id or by artist + album; results feed the album
record's synopsis, poster and tag set.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from media_canon.normalize import collapse_whitespace, normalize_comparable_name
from media_canon.providers.base import ProviderClient

log = logging.getLogger(__name__)

LASTFM_API_URL = "https://ws.audioscrobbler.com/2.0/"

# Largest first
IMAGE_SIZES = ["mega", "extralarge", "large", "medium", "small"]

_READ_MORE = re.compile(r"<a [^>]*>\s*Read more on Last\.fm\s*</a>\.?", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]+>")


def clean_summary(text: str | None) -> str | None:
    """Wiki summary without the trailing "Read more" link or other markup."""
    if not text:
        return None
    cleaned = collapse_whitespace(_HTML_TAG.sub("", _READ_MORE.sub("", text)))
    return cleaned or None


def largest_image(images: list[dict[str, Any]] | None) -> str | None:
    by_size = {img.get("size"): img.get("#text") for img in images or [] if img.get("#text")}
    for size in IMAGE_SIZES:
        if url := by_size.get(size):
            return url
    return None


def _as_list(value: Any) -> list[Any]:
    # Last.fm collapses one-element lists into a bare object
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def score_album_hit(candidate_title: str, candidate_artist: str, title: str, artist: str) -> int:
    """Title and artist agreement: 60 for equal, partial credit for containment."""
    ct, ca = normalize_comparable_name(candidate_title), normalize_comparable_name(candidate_artist)
    t, a = normalize_comparable_name(title), normalize_comparable_name(artist)

    score = 0
    if ct and t:
        if ct == t:
            score += 60
        elif ct in t or t in ct:
            score += 35
    if ca and a:
        if ca == a:
            score += 60
        elif ca in a or a in ca:
            score += 25
    return score


@dataclass
class LastFmAlbum:
    """album.getinfo result."""

    name: str
    artist: str | None = None
    mbid: str | None = None
    url: str | None = None
    summary: str | None = None
    image_url: str | None = None
    tags: list[str] = field(default_factory=list)
    tracks: list[str] = field(default_factory=list)


@dataclass
class LastFmAlbumHit:
    """album.search result."""

    name: str
    artist: str | None = None
    mbid: str | None = None
    image_url: str | None = None


class LastFmClient(ProviderClient):
    """Last.fm web service client (album.getinfo, album.search)."""

    name = "lastfm"

    async def _call(self, method: str, params: dict[str, str]) -> dict[str, Any] | None:
        data = await self._get_json(
            LASTFM_API_URL,
            {"method": method, "api_key": self.api_key or "", "format": "json", **params},
            label=method,
        )
        if data is None:
            return None
        if "error" in data:
            # Errors such as "Album not found" come back with HTTP 200
            log.debug(f"Last.fm {method} error {data.get('error')}: {data.get('message')}")
            return None
        return data

    async def get_album_info(
        self,
        mbid: str | None = None,
        artist: str | None = None,
        album: str | None = None,
        lang: str = "pt",
    ) -> LastFmAlbum | None:
        """
        Album details by MusicBrainz id, or by artist + album name.

        Returns:
            LastFmAlbum, or None if unknown or the provider is unavailable
        """
        if mbid:
            params = {"mbid": mbid}
        elif artist and album:
            params = {"artist": artist, "album": album, "autocorrect": "1"}
        else:
            return None

        try:
            data = await self._call("album.getinfo", {**params, "lang": lang})
        except httpx.HTTPStatusError as e:
            # Last.fm answers unknown mbids with 400
            if e.response.status_code == 400:
                return None
            raise
        album_data = (data or {}).get("album")
        if not album_data:
            return None

        return LastFmAlbum(
            name=album_data.get("name", ""),
            artist=album_data.get("artist"),
            mbid=album_data.get("mbid") or mbid,
            url=album_data.get("url"),
            summary=clean_summary((album_data.get("wiki") or {}).get("summary")),
            image_url=largest_image(album_data.get("image")),
            tags=[t["name"] for t in _as_list((album_data.get("tags") or {}).get("tag")) if t.get("name")],
            tracks=[
                t["name"] for t in _as_list((album_data.get("tracks") or {}).get("track")) if t.get("name")
            ],
        )

    async def search_albums(self, query: str, limit: int = 10) -> list[LastFmAlbumHit]:
        if not query or not query.strip():
            return []
        data = await self._call("album.search", {"album": query, "limit": str(limit)})
        matches = ((data or {}).get("results") or {}).get("albummatches") or {}
        return [
            LastFmAlbumHit(
                name=hit.get("name", ""),
                artist=hit.get("artist"),
                mbid=hit.get("mbid") or None,
                image_url=largest_image(hit.get("image")),
            )
            for hit in _as_list(matches.get("album"))
        ]

    async def find_album_mbid(self, title: str, artist: str | None = None) -> str | None:
        """
        Best-matching album mbid from a search, or None below the threshold.

        Requires 80 points when the artist is known, 60 otherwise.
        """
        best: tuple[int, str] | None = None
        for hit in await self.search_albums(title):
            if not hit.mbid:
                continue
            score = score_album_hit(hit.name, hit.artist or "", title, artist or "")
            if best is None or score > best[0]:
                best = (score, hit.mbid)

        if best is None:
            return None
        threshold = 80 if artist else 60
        return best[1] if best[0] >= threshold else None


## Tests


def test_clean_summary_strips_read_more():
    raw = 'Abbey Road is the 11th album. <a href="https://www.last.fm/music/x">Read more on Last.fm</a>'
    assert clean_summary(raw) == "Abbey Road is the 11th album."
    assert clean_summary("  ") is None


def test_largest_image():
    images = [
        {"size": "small", "#text": "s.png"},
        {"size": "extralarge", "#text": "xl.png"},
        {"size": "mega", "#text": ""},
    ]
    assert largest_image(images) == "xl.png"
    assert largest_image(None) is None


def test_score_album_hit():
    assert score_album_hit("Abbey Road", "The Beatles", "Abbey Road", "The Beatles") == 120
    assert score_album_hit("Abbey Road (Remastered)", "Beatles", "Abbey Road", "The Beatles") == 60
    assert score_album_hit("Help!", "Oasis", "Abbey Road", "The Beatles") == 0
