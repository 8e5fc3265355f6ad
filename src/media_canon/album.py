"""
Album reconciliation: canonical identity, base edition and bonus disc.

Pipeline per album::

    ParsingId -> ResolvingIdentity -> FetchingFacts -> FetchingReleaseList
      -> SelectingBaseRelease -> SearchingBonusDisc -> Assembled

Only the first two stages can fail the request. Every later stage degrades:
an empty release list or no qualifying base gives an album without a track
listing, and a failed bonus search gives a listing without bonus sections.
"""

from __future__ import annotations

import logging
import re
import string
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum

import httpx

from media_canon.album_ids import AlbumIdentifier, AlbumIdScheme, parse_album_identifier
from media_canon.config import BonusScoringConfig, MusicBrainzConfig
from media_canon.errors import NotFound, UpstreamUnavailable
from media_canon.models import (
    BonusSection,
    ReleaseCandidate,
    ReleaseTrack,
    Track,
    TrackListing,
    format_length,
)
from media_canon.musicbrainz import MusicBrainzClient, MusicBrainzReleaseGroup
from media_canon.normalize import normalize_track_title

log = logging.getLogger(__name__)

EDITION_KEYWORD = re.compile(
    r"\b(remaster(?:ed)?|deluxe|expanded|anniversary|reissue|special edition|bonus"
    r"|collector'?s edition|extended)\b",
    re.IGNORECASE,
)

FetchTracklist = Callable[[str], Awaitable[ReleaseCandidate | None]]


class AlbumState(StrEnum):
    PARSING_ID = "parsing-id"
    RESOLVING_IDENTITY = "resolving-identity"
    FETCHING_FACTS = "fetching-facts"
    FETCHING_RELEASE_LIST = "fetching-release-list"
    SELECTING_BASE_RELEASE = "selecting-base-release"
    SEARCHING_BONUS_DISC = "searching-bonus-disc"
    ASSEMBLED = "assembled"
    NO_TRACKLIST = "no-tracklist"


def edition_keyword(title: str | None) -> str | None:
    """Edition keyword in a release title, capitalized (``"Deluxe"``), if any."""
    match = EDITION_KEYWORD.search(title or "")
    return string.capwords(match.group(1).lower()) if match else None


def base_candidate_order(
    releases: list[ReleaseCandidate], group_title: str | None
) -> list[ReleaseCandidate]:
    """Exact release-group title matches first, then by date with undated last."""
    wanted = normalize_track_title(group_title)

    def key(release: ReleaseCandidate) -> tuple[int, int, str]:
        exact = 0 if wanted and normalize_track_title(release.title) == wanted else 1
        return (exact, release.date is None, release.date or "")

    return sorted(releases, key=key)


def bonus_candidate_order(releases: list[ReleaseCandidate]) -> list[ReleaseCandidate]:
    """Most recent first, undated last."""
    dated = sorted((r for r in releases if r.date), key=lambda r: r.date or "", reverse=True)
    return dated + [r for r in releases if not r.date]


def _track_count_fits(count: int, config: MusicBrainzConfig) -> bool:
    return config.min_tracks <= count <= config.max_tracks


async def select_base_release(
    releases: list[ReleaseCandidate],
    group_title: str | None,
    fetch_tracklist: FetchTracklist,
    config: MusicBrainzConfig,
) -> ReleaseCandidate | None:
    """
    Pick the release whose tracks represent the standard edition.

    The first ``base_scan_limit`` candidates are scanned for a CD release with
    an acceptable track count; failing that the scan repeats without the
    format constraint. Browse-level formats and counts skip candidates that
    cannot qualify before their tracklist is fetched.
    """
    ordered = base_candidate_order(releases, group_title)[: config.base_scan_limit]

    for require_cd in (True, False):
        for candidate in ordered:
            if require_cd and candidate.formats and not candidate.has_cd_format:
                continue
            if candidate.track_count and not _track_count_fits(candidate.track_count, config):
                continue

            release = await fetch_tracklist(candidate.release_id)
            if release is None:
                continue
            if require_cd and not release.has_cd_format:
                continue
            if _track_count_fits(len(release.tracks), config):
                log.debug(
                    f"Base release {release.release_id} ({len(release.tracks)} tracks, "
                    f"cd={release.has_cd_format})"
                )
                return release

    return None


@dataclass
class BonusMatch:
    """A qualifying bonus edition and how it scored."""

    release: ReleaseCandidate
    coverage: float
    extras: list[ReleaseTrack] = field(default_factory=list)
    score: float = 0.0


def score_bonus_candidate(
    base: ReleaseCandidate,
    candidate: ReleaseCandidate,
    scoring: BonusScoringConfig,
) -> BonusMatch | None:
    """
    Score ``candidate`` as a bonus edition of ``base``; ``None`` if it does not qualify.

    The candidate must have more tracks than the base (within the surplus
    limit), a CD format, cover enough of the base's titles and add between one
    and ``max_extra_tracks`` new titles.
    """
    base_count = len(base.tracks)
    candidate_count = len(candidate.tracks)
    if candidate_count <= base_count or candidate_count - base_count > scoring.max_track_surplus:
        return None
    if not candidate.has_cd_format:
        return None

    base_titles = {normalize_track_title(t.title) for t in base.tracks} - {""}
    if not base_titles:
        return None
    candidate_titles = {normalize_track_title(t.title) for t in candidate.tracks}

    coverage = len(base_titles & candidate_titles) / len(base_titles)
    if coverage < scoring.min_coverage:
        return None

    extras: list[ReleaseTrack] = []
    seen: set[str] = set()
    for track in candidate.tracks:
        key = normalize_track_title(track.title)
        if key and key not in base_titles and key not in seen:
            seen.add(key)
            extras.append(track)
    if not extras or len(extras) > scoring.max_extra_tracks:
        return None

    score = coverage * 1000
    if candidate.is_official:
        score += scoring.official_bonus
    if len(extras) == 1:
        score += scoring.single_extra_bonus
    score -= scoring.extra_track_penalty * len(extras)
    if edition_keyword(candidate.title):
        score += scoring.edition_keyword_bonus
    if candidate.year:
        recency = max(0, candidate.year - scoring.recency_base_year) / scoring.recency_years_per_point
        score += min(scoring.recency_cap, recency)

    return BonusMatch(release=candidate, coverage=coverage, extras=extras, score=score)


async def search_bonus_release(
    base: ReleaseCandidate,
    releases: list[ReleaseCandidate],
    fetch_tracklist: FetchTracklist,
    config: MusicBrainzConfig,
    scoring: BonusScoringConfig,
) -> BonusMatch | None:
    """Best-scoring bonus edition among the most recent other releases (ties keep the newer)."""
    base_count = len(base.tracks)
    others = [r for r in releases if r.release_id != base.release_id]

    best: BonusMatch | None = None
    for candidate in bonus_candidate_order(others)[: config.bonus_scan_limit]:
        if candidate.formats and not candidate.has_cd_format:
            continue
        if candidate.track_count and not (
            base_count < candidate.track_count <= base_count + scoring.max_track_surplus
        ):
            continue

        release = await fetch_tracklist(candidate.release_id)
        if release is None:
            continue
        match = score_bonus_candidate(base, release, scoring)
        if match is None:
            continue
        log.debug(
            f"Bonus candidate {release.release_id}: coverage={match.coverage:.2f} "
            f"extras={len(match.extras)} score={match.score:.1f}"
        )
        if best is None or match.score > best.score:
            best = match

    return best


def bonus_section_title(release: ReleaseCandidate) -> str:
    """``"2009 · Remaster · GB"`` from whichever of year, keyword and country are known."""
    parts = [
        str(release.year) if release.year else None,
        edition_keyword(release.title),
        release.country,
    ]
    present = [p for p in parts if p]
    return " · ".join(present) if present else "Bonus tracks"


def build_track_listing(base: ReleaseCandidate, bonus: BonusMatch | None) -> TrackListing:
    """Base tracks numbered 1..n, bonus extras continuing at n+1."""
    tracks = [
        Track(position=i, title=t.title, length_display=format_length(t.length_ms))
        for i, t in enumerate(base.tracks, start=1)
    ]

    sections: list[BonusSection] = []
    if bonus is not None:
        start = len(base.tracks) + 1
        sections.append(
            BonusSection(
                title=bonus_section_title(bonus.release),
                release_id=bonus.release.release_id,
                tracks=[
                    Track(position=i, title=t.title, length_display=format_length(t.length_ms))
                    for i, t in enumerate(bonus.extras, start=start)
                ],
            )
        )

    return TrackListing(tracks=tracks, bonus_sections=sections, base_release_id=base.release_id)


@dataclass
class AlbumReconciliation:
    """Outcome of one album pipeline run."""

    release_group_id: str
    state: AlbumState
    release_group: MusicBrainzReleaseGroup | None = None
    track_listing: TrackListing | None = None
    identifier: AlbumIdentifier | None = None


class AlbumReconciler:
    """
    Runs the album pipeline against a ``MusicBrainzClient``.

    Identity failures raise; everything after identity degrades and is logged.
    """

    def __init__(
        self,
        musicbrainz: MusicBrainzClient,
        scoring: BonusScoringConfig | None = None,
    ):
        self.musicbrainz = musicbrainz
        self.config = musicbrainz.config
        self.scoring = scoring or BonusScoringConfig()

    async def resolve_identity(self, identifier: AlbumIdentifier) -> str:
        """
        Canonical release-group id for a parsed identifier.

        Raises:
            NotFound: The release or artist/album pair maps to no release group
            UpstreamUnavailable: MusicBrainz stayed unreachable
        """
        if identifier.scheme is AlbumIdScheme.RELEASE_GROUP:
            return identifier.value  # type: ignore[return-value]

        if identifier.scheme is AlbumIdScheme.RELEASE:
            group_id = await self.musicbrainz.upgrade_release(identifier.value)  # type: ignore[arg-type]
            if not group_id:
                raise NotFound(f"No release group owns release {identifier.value}")
            return group_id

        group_id = await self.musicbrainz.find_release_group(
            identifier.artist,  # type: ignore[arg-type]
            identifier.album,  # type: ignore[arg-type]
        )
        if not group_id:
            raise NotFound(f"No release group for {identifier.artist!r} / {identifier.album!r}")
        return group_id

    async def reconcile(self, identifier: str | AlbumIdentifier) -> AlbumReconciliation:
        """
        Parse, resolve and reconcile one album identifier.

        Raises:
            InvalidAlbumIdentifier: Malformed identifier (no network call made)
            NotFound: Identity could not be established
            UpstreamUnavailable: MusicBrainz unreachable while resolving identity
        """
        log.debug(f"Album {identifier}: {AlbumState.PARSING_ID}")
        parsed = (
            identifier
            if isinstance(identifier, AlbumIdentifier)
            else parse_album_identifier(identifier)
        )

        log.debug(f"Album {identifier}: {AlbumState.RESOLVING_IDENTITY}")
        group_id = await self.resolve_identity(parsed)

        result = await self.reconcile_release_group(group_id)
        result.identifier = parsed
        return result

    async def reconcile_release_group(self, group_id: str) -> AlbumReconciliation:
        """Facts, base edition and bonus disc for a known release group; never raises upstream errors."""
        mb = self.musicbrainz
        result = AlbumReconciliation(release_group_id=group_id, state=AlbumState.FETCHING_FACTS)

        try:
            result.release_group = await mb.get_release_group(group_id)
        except (UpstreamUnavailable, httpx.HTTPError) as e:
            log.warning(f"MusicBrainz facts for {group_id} unavailable: {e}")

        result.state = AlbumState.FETCHING_RELEASE_LIST
        try:
            releases = await mb.browse_releases(group_id)
        except (UpstreamUnavailable, httpx.HTTPError) as e:
            log.warning(f"MusicBrainz release list for {group_id} unavailable: {e}")
            releases = []
        if not releases:
            result.state = AlbumState.NO_TRACKLIST
            return result

        result.state = AlbumState.SELECTING_BASE_RELEASE
        group_title = result.release_group.title if result.release_group else None
        try:
            base = await select_base_release(
                releases, group_title, mb.get_release_tracklist, self.config
            )
        except (UpstreamUnavailable, httpx.HTTPError) as e:
            log.warning(f"Base release selection for {group_id} failed: {e}")
            base = None
        if base is None:
            log.debug(f"No qualifying base release among {len(releases)} releases of {group_id}")
            result.state = AlbumState.NO_TRACKLIST
            return result

        result.state = AlbumState.SEARCHING_BONUS_DISC
        bonus: BonusMatch | None = None
        try:
            bonus = await search_bonus_release(
                base, releases, mb.get_release_tracklist, self.config, self.scoring
            )
        except (UpstreamUnavailable, httpx.HTTPError) as e:
            log.warning(f"Bonus disc search for {group_id} failed: {e}")

        result.track_listing = build_track_listing(base, bonus)
        result.state = AlbumState.ASSEMBLED
        return result


## Tests


def test_edition_keyword():
    assert edition_keyword("Abbey Road (2019 Remaster)") == "Remaster"
    assert edition_keyword("OK Computer - Collector's Edition") == "Collector's Edition"
    assert edition_keyword("Abbey Road") is None


def test_base_candidate_order_prefers_exact_title_then_date():
    releases = [
        ReleaseCandidate("late", "Abbey Road", date="2009-09-09"),
        ReleaseCandidate("undated", "Abbey Road"),
        ReleaseCandidate("deluxe", "Abbey Road (Deluxe)", date="1969-01-01"),
        ReleaseCandidate("early", "abbey  road", date="1969-09-26"),
    ]
    ordered = [r.release_id for r in base_candidate_order(releases, "Abbey Road")]
    assert ordered == ["early", "late", "undated", "deluxe"]


def test_bonus_section_title():
    release = ReleaseCandidate("r", "Album (Deluxe Edition)", date="2011-05-02", country="GB")
    assert bonus_section_title(release) == "2011 · Deluxe · GB"
    assert bonus_section_title(ReleaseCandidate("r", "Album")) == "Bonus tracks"
