"""
Canonical media record and its parts.

Provider payloads are mapped into these types at the adapter boundary; nothing
downstream of an adapter sees raw provider JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

# Language slots. PT is the local language, EN and ES the secondary ones.
LOCAL = "PT"
SECONDARY_A = "EN"
SECONDARY_B = "ES"
DEFAULT = "DEFAULT"
LANGUAGE_SLOTS = (LOCAL, SECONDARY_A, SECONDARY_B)


class MediaKind(StrEnum):
    """The four media kinds the resolver reconciles."""

    FILM = "film"
    GAME = "game"
    BOOK = "book"
    ALBUM = "album"

    @property
    def has_global_title(self) -> bool:
        """Games and albums keep one provider-global title in every language."""
        return self in (MediaKind.GAME, MediaKind.ALBUM)


def format_length(length_ms: int | None) -> str | None:
    """Render a track length as ``m:ss`` (or ``h:mm:ss``)."""
    if length_ms is None or length_ms <= 0:
        return None
    total_s = round(length_ms / 1000)
    hours, rest = divmod(total_s, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


@dataclass
class Track:
    """One entry of an assembled track listing."""

    position: int
    title: str
    length_display: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"position": self.position, "title": self.title, "lengthDisplay": self.length_display}


@dataclass
class BonusSection:
    """Extra tracks of a bonus edition, numbered after the base listing."""

    title: str
    tracks: list[Track] = field(default_factory=list)
    release_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "releaseId": self.release_id,
            "tracks": [t.to_dict() for t in self.tracks],
        }


@dataclass
class TrackListing:
    """Base edition tracks plus zero or more bonus sections."""

    tracks: list[Track] = field(default_factory=list)
    bonus_sections: list[BonusSection] = field(default_factory=list)
    base_release_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseReleaseId": self.base_release_id,
            "tracks": [t.to_dict() for t in self.tracks],
            "bonusSections": [s.to_dict() for s in self.bonus_sections],
        }


@dataclass
class ReleaseTrack:
    """Track as reported by the music encyclopedia, before assembly."""

    position: int
    title: str
    length_ms: int | None = None


@dataclass
class ReleaseCandidate:
    """One release of a release group, considered during album reconciliation."""

    release_id: str
    title: str
    date: str | None = None
    country: str | None = None
    status: str | None = None
    formats: set[str] = field(default_factory=set)
    tracks: list[ReleaseTrack] = field(default_factory=list)
    track_count: int | None = None

    @property
    def year(self) -> int | None:
        if self.date and len(self.date) >= 4 and self.date[:4].isdigit():
            return int(self.date[:4])
        return None

    @property
    def is_official(self) -> bool:
        return (self.status or "").lower() == "official"

    @property
    def has_cd_format(self) -> bool:
        """CD, Enhanced CD, SHM-CD, HDCD, CD-R and friends all count."""
        return any("CD" in fmt.upper() for fmt in self.formats)

    @property
    def known_track_count(self) -> int:
        return len(self.tracks) if self.tracks else (self.track_count or 0)


@dataclass
class CanonicalMediaRecord:
    """
    The resolver's single output type.

    ``titles`` and ``synopses`` always carry every language slot plus
    ``DEFAULT``; ``genres`` is a flat list for global-title kinds and a
    per-language mapping otherwise.
    """

    id: str
    kind: MediaKind
    titles: dict[str, str | None]
    synopses: dict[str, str | None] = field(default_factory=dict)
    genres: list[str] | dict[str, list[str]] = field(default_factory=list)
    country: str | None = None
    year: int | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    primary_creator: str | None = None
    track_listing: TrackListing | None = None
    tags: set[str] = field(default_factory=set)
    external_ids: dict[str, str] = field(default_factory=dict)
    country_source: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Plain JSON-ready mapping using the persisted field names."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "titles": dict(self.titles),
            "synopses": dict(self.synopses),
            "genres": self.genres if isinstance(self.genres, list) else dict(self.genres),
            "country": self.country,
            "countrySource": self.country_source,
            "year": self.year,
            "posterUrl": self.poster_url,
            "backdropUrl": self.backdrop_url,
            "primaryCreator": self.primary_creator,
            "trackListing": self.track_listing.to_dict() if self.track_listing else None,
            "tags": sorted(self.tags),
            "externalIds": dict(self.external_ids),
            "details": dict(self.details),
        }
