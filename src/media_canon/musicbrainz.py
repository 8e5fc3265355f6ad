"""
MusicBrainz API client for album identity and release data.

Every request goes through one ``RateLimitedClient`` lane (1.1s between calls
by default, per the MusicBrainz etiquette) and the shared retry helper.
Results are memoized in four TTL caches owned by the client:

- canonical ids: release id or artist/album pair -> release-group id
- release groups: release-group id -> basic facts
- release lists: release-group id -> releases with media formats
- tracklists: release id -> release with its flattened tracks
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from media_canon.config import HttpConfig, MusicBrainzConfig
from media_canon.http_retry import request_with_retry
from media_canon.models import ReleaseCandidate, ReleaseTrack
from media_canon.normalize import names_match, normalize_country_code, normalize_track_title
from media_canon.rate_limiter import RateLimitedClient
from media_canon.ttl_cache import MISS, TTLCache

log = logging.getLogger(__name__)

COVER_ART_URL = "https://coverartarchive.org/release-group/{mbid}/front-500"

# Browse pages are capped at 100 by the API
BROWSE_PAGE_SIZE = 100
MAX_BROWSE_PAGES = 5


def _lucene_phrase(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _first_artist(data: dict[str, Any]) -> tuple[str | None, str | None]:
    credits = data.get("artist-credit") or []
    if credits and isinstance(credits[0], dict) and "artist" in credits[0]:
        artist = credits[0]["artist"]
        return artist.get("id"), artist.get("name")
    return None, None


def _ranked_names(items: list[dict[str, Any]] | None) -> list[str]:
    """Genre/tag names ordered by vote count, highest first."""
    ranked = sorted(items or [], key=lambda item: item.get("count") or 0, reverse=True)
    return [item["name"] for item in ranked if item.get("name")]


@dataclass
class MusicBrainzReleaseGroup:
    """Basic facts of a release group."""

    mbid: str
    title: str
    artist_mbid: str | None = None
    artist_name: str | None = None
    primary_type: str | None = None
    first_release_date: str | None = None
    genres: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    @property
    def year(self) -> int | None:
        date = self.first_release_date or ""
        return int(date[:4]) if len(date) >= 4 and date[:4].isdigit() else None


@dataclass
class MusicBrainzArtist:
    """MusicBrainz artist entity."""

    mbid: str
    name: str
    country: str | None = None
    area_name: str | None = None


def parse_release(data: dict[str, Any], with_tracks: bool = False) -> ReleaseCandidate:
    """
    Map a release payload onto a ``ReleaseCandidate``.

    Tracks of all media are flattened and numbered 1..n in disc order.
    """
    media = data.get("media") or []
    formats = {m["format"] for m in media if isinstance(m, dict) and m.get("format")}
    track_count = sum(int(m.get("track-count") or 0) for m in media if isinstance(m, dict))

    tracks: list[ReleaseTrack] = []
    if with_tracks:
        for medium in media:
            for track in medium.get("tracks") or []:
                recording = track.get("recording") or {}
                title = track.get("title") or recording.get("title")
                if not title:
                    continue
                tracks.append(
                    ReleaseTrack(
                        position=len(tracks) + 1,
                        title=title,
                        length_ms=track.get("length") or recording.get("length"),
                    )
                )

    return ReleaseCandidate(
        release_id=data["id"],
        title=data.get("title", ""),
        date=data.get("date") or None,
        country=data.get("country") or None,
        status=data.get("status") or None,
        formats=formats,
        tracks=tracks,
        track_count=len(tracks) if tracks else (track_count or None),
    )


class MusicBrainzClient:
    """
    MusicBrainz API client.

    Provides release-group facts, release browsing, tracklists, release to
    release-group upgrades and artist/album search, all rate limited and cached.
    """

    def __init__(
        self,
        config: MusicBrainzConfig | None = None,
        http_config: HttpConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize MusicBrainz client.

        Args:
            config: Adapter settings (base URL, pacing interval, cache TTL)
            http_config: Timeout and User-Agent
            client: Pre-built httpx client (tests pass one with a mock transport)
        """
        self.config = config or MusicBrainzConfig()
        http_config = http_config or HttpConfig()
        self._http = RateLimitedClient(
            client
            or httpx.AsyncClient(
                timeout=http_config.timeout_s,
                headers={"User-Agent": http_config.user_agent},
            ),
            min_interval_s=self.config.min_interval_s,
        )

        ttl = self.config.cache_ttl_s
        self.canonical_ids: TTLCache[str] = TTLCache("musicbrainz-canonical-ids", ttl)
        self.release_groups: TTLCache[MusicBrainzReleaseGroup] = TTLCache(
            "musicbrainz-release-groups", ttl
        )
        self.release_lists: TTLCache[list[ReleaseCandidate]] = TTLCache(
            "musicbrainz-release-lists", ttl
        )
        self.tracklists: TTLCache[ReleaseCandidate] = TTLCache("musicbrainz-tracklists", ttl)

    @property
    def requests_dispatched(self) -> int:
        return self._http.dispatched

    async def _request(self, endpoint: str, params: dict[str, str]) -> dict[str, Any] | None:
        """Rate-limited GET; ``None`` when MusicBrainz does not know the id."""
        params = {**params, "fmt": "json"}
        url = f"{self.config.base_url}/{endpoint}"

        try:
            response = await request_with_retry(
                lambda: self._http.send(self._http.build_request("GET", url, params=params)),
                retries=self.config.retries,
                backoff_base_s=self.config.backoff_base_s,
                label=f"musicbrainz {endpoint}",
            )
        except httpx.HTTPStatusError as e:
            # 400 is what MusicBrainz answers for ids it cannot parse
            if e.response.status_code in (400, 404):
                return None
            raise
        return response.json()

    async def get_release_group(self, mbid: str) -> MusicBrainzReleaseGroup | None:
        """
        Get release group by MBID.

        Returns:
            MusicBrainzReleaseGroup, or None if MusicBrainz does not know it
        """
        cached = self.release_groups.get(mbid)
        if cached is not MISS:
            return cached

        data = await self._request(f"release-group/{mbid}", {"inc": "artist-credits+genres+tags"})
        group = None
        if data is not None:
            artist_mbid, artist_name = _first_artist(data)
            group = MusicBrainzReleaseGroup(
                mbid=data["id"],
                title=data.get("title", ""),
                artist_mbid=artist_mbid,
                artist_name=artist_name,
                primary_type=data.get("primary-type"),
                first_release_date=data.get("first-release-date") or None,
                genres=_ranked_names(data.get("genres")),
                tags=_ranked_names(data.get("tags")),
            )

        self.release_groups.set(mbid, group)
        return group

    async def browse_releases(self, release_group_mbid: str) -> list[ReleaseCandidate]:
        """
        Every release of a release group, with formats and track counts.

        Handles pagination up to a safety limit of pages.
        """
        cached = self.release_lists.get(release_group_mbid)
        if cached is not MISS:
            return cached or []

        releases: list[ReleaseCandidate] = []
        offset = 0
        for _ in range(MAX_BROWSE_PAGES):
            data = await self._request(
                "release",
                {
                    "release-group": release_group_mbid,
                    "inc": "media",
                    "limit": str(BROWSE_PAGE_SIZE),
                    "offset": str(offset),
                },
            )
            if data is None:
                break
            batch = [parse_release(r) for r in data.get("releases", []) if r.get("id")]
            releases.extend(batch)
            total = int(data.get("release-count") or 0)
            offset += BROWSE_PAGE_SIZE
            if not batch or offset >= total:
                break

        log.debug(f"Release group {release_group_mbid}: {len(releases)} releases")
        self.release_lists.set(release_group_mbid, releases)
        return releases

    async def _lookup_release(
        self, release_mbid: str
    ) -> tuple[ReleaseCandidate | None, str | None]:
        """One release lookup feeding both the tracklist and canonical-id caches."""
        data = await self._request(
            f"release/{release_mbid}", {"inc": "recordings+release-groups+media"}
        )
        if data is None:
            self.tracklists.set(release_mbid, None)
            return None, None

        release = parse_release(data, with_tracks=True)
        self.tracklists.set(release_mbid, release)
        group_id = (data.get("release-group") or {}).get("id")
        return release, group_id

    async def get_release_tracklist(self, release_mbid: str) -> ReleaseCandidate | None:
        """Release with its full, flattened track listing."""
        cached = self.tracklists.get(release_mbid)
        if cached is not MISS:
            return cached

        release, _ = await self._lookup_release(release_mbid)
        return release

    async def upgrade_release(self, mbid: str) -> str | None:
        """
        Release-group id owning the release ``mbid``.

        When the release lookup yields no release-group reference, the id is
        tried as a release group itself.
        """
        key = f"mbid:{mbid}"
        cached = self.canonical_ids.get(key)
        if cached is not MISS:
            return cached

        _, group_id = await self._lookup_release(mbid)
        if not group_id:
            group = await self.get_release_group(mbid)
            group_id = group.mbid if group else None
            if group_id:
                log.debug(f"Id {mbid} is itself a release group")

        self.canonical_ids.set(key, group_id)
        return group_id

    async def find_release_group(self, artist: str, album: str) -> str | None:
        """
        Release-group id for an exact artist + album title match.

        Release groups are searched first; failing that a matching release is
        searched and upgraded to its release group.
        """
        key = f"artist-album:{normalize_track_title(artist)}|{normalize_track_title(album)}"
        cached = self.canonical_ids.get(key)
        if cached is not MISS:
            return cached

        wanted = normalize_track_title(album)
        group_id: str | None = None

        data = await self._request(
            "release-group",
            {
                "query": f"artist:{_lucene_phrase(artist)} AND releasegroup:{_lucene_phrase(album)}",
                "limit": "10",
            },
        )
        for hit in (data or {}).get("release-groups", []):
            _, hit_artist = _first_artist(hit)
            if normalize_track_title(hit.get("title")) == wanted and names_match(hit_artist, artist):
                group_id = hit["id"]
                break

        if group_id is None:
            data = await self._request(
                "release",
                {
                    "query": f"artist:{_lucene_phrase(artist)} AND release:{_lucene_phrase(album)}",
                    "limit": "10",
                },
            )
            for hit in (data or {}).get("releases", []):
                _, hit_artist = _first_artist(hit)
                if normalize_track_title(hit.get("title")) == wanted and names_match(
                    hit_artist, artist
                ):
                    group_id = await self.upgrade_release(hit["id"])
                    break

        self.canonical_ids.set(key, group_id)
        return group_id

    async def get_artist(self, mbid: str) -> MusicBrainzArtist | None:
        """
        Get artist by MBID.

        The country is the artist's own country code, falling back to the
        ISO code of its area.
        """
        data = await self._request(f"artist/{mbid}", {})
        if data is None:
            return None

        area = data.get("area") or {}
        country = normalize_country_code(data.get("country"))
        if country is None and (codes := area.get("iso-3166-1-codes")):
            country = normalize_country_code(codes[0])

        return MusicBrainzArtist(
            mbid=data["id"],
            name=data.get("name", ""),
            country=country,
            area_name=area.get("name"),
        )

    @staticmethod
    def cover_art_url(release_group_mbid: str) -> str:
        return COVER_ART_URL.format(mbid=release_group_mbid)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http.aclose()

    async def __aenter__(self) -> MusicBrainzClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


## Tests


def test_parse_release_flattens_media():
    release = parse_release(
        {
            "id": "r1",
            "title": "Abbey Road",
            "date": "1969-09-26",
            "status": "Official",
            "media": [
                {
                    "format": "CD",
                    "track-count": 2,
                    "tracks": [
                        {"title": "Come Together", "length": 259000},
                        {"recording": {"title": "Something", "length": 182000}},
                    ],
                },
                {"format": "Enhanced CD", "track-count": 1, "tracks": [{"title": "Her Majesty"}]},
            ],
        },
        with_tracks=True,
    )
    assert [t.position for t in release.tracks] == [1, 2, 3]
    assert release.tracks[1].title == "Something"
    assert release.track_count == 3
    assert release.formats == {"CD", "Enhanced CD"}
    assert release.is_official
    assert release.year == 1969


def test_parse_release_without_tracks_uses_track_count():
    release = parse_release({"id": "r2", "media": [{"format": "12\" Vinyl", "track-count": 9}]})
    assert release.tracks == []
    assert release.known_track_count == 9
    assert not release.has_cd_format


def test_lucene_phrase_escapes_quotes():
    assert _lucene_phrase('Say "Hi"') == '"Say \\"Hi\\""'
