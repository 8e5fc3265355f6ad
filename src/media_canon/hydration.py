"""
Media hydration: identifier in, one canonical record out.

The hydrator routes an identifier by kind, establishes the work's identity
(Wikidata entity or MusicBrainz release group), then merges whatever the
secondary providers return. Identity failures propagate; every optional
provider call degrades to an absent field with a WARNING log line.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

from media_canon.album import AlbumReconciler, AlbumReconciliation
from media_canon.album_ids import AlbumIdentifier, parse_album_identifier
from media_canon.config import Config
from media_canon.errors import Blocked, InvalidIdentifier, NotFound, UpstreamUnavailable
from media_canon.models import (
    DEFAULT,
    LANGUAGE_SLOTS,
    LOCAL,
    SECONDARY_A,
    SECONDARY_B,
    CanonicalMediaRecord,
    MediaKind,
    Track,
    TrackListing,
)
from media_canon.musicbrainz import MusicBrainzClient, MusicBrainzReleaseGroup
from media_canon.normalize import dedupe_casefold, filter_tags, is_noise_tag, pick_first
from media_canon.providers import (
    GoogleBooksClient,
    LastFmAlbum,
    LastFmClient,
    RawgClient,
    TmdbClient,
)
from media_canon.wikidata import GenreFacts, TechnicalDetails, WikidataClient, is_qid

log = logging.getLogger(__name__)

T = TypeVar("T")

GENRES_PER_LANGUAGE = 2


class CountrySource:
    """Where a record's country code came from."""

    WIKIDATA = "wikidata"
    TMDB = "tmdb"
    WIKIDATA_ARTIST = "wikidata-artist"
    MUSICBRAINZ_ARTIST = "musicbrainz-artist"
    WIKIDATA_STUDIO = "wikidata-studio"


def apply_title_rules(kind: MediaKind, values: dict[str, str | None]) -> dict[str, str | None]:
    """
    Fill every language slot plus ``DEFAULT``.

    Games and albums carry one provider-global value in all slots, chosen
    EN, PT, ES, DEFAULT. Films and books keep each slot's own value and fall
    back to a default chosen PT, EN, ES, then any remaining value.
    """
    pt, en, es = (values.get(slot) for slot in LANGUAGE_SLOTS)
    default = values.get(DEFAULT)

    if kind.has_global_title:
        base = pick_first(en, pt, es, default)
        return {LOCAL: base, SECONDARY_A: base, SECONDARY_B: base, DEFAULT: base}

    base = pick_first(pt, en, es, default, *values.values())
    return {
        LOCAL: pick_first(pt, base),
        SECONDARY_A: pick_first(en, base),
        SECONDARY_B: pick_first(es, base),
        DEFAULT: base,
    }


def build_genres(
    kind: MediaKind,
    genres: Iterable[GenreFacts],
    fallback: Iterable[str] = (),
    limit: int = GENRES_PER_LANGUAGE,
) -> list[str] | dict[str, list[str]]:
    """
    Genre labels for the record.

    Global-title kinds get one flat list (falling back to provider genre
    names); translated kinds get per-language lists where EN falls back to PT,
    ES to EN, and DEFAULT is EN or PT.
    """
    genres = list(genres)
    if kind.has_global_title:
        names = [
            pick_first(g.titles.get(SECONDARY_A), g.titles.get(LOCAL), g.titles.get(SECONDARY_B))
            for g in genres
        ]
        return dedupe_casefold(names, limit) or dedupe_casefold(fallback, limit)

    pt = dedupe_casefold((g.titles.get(LOCAL) for g in genres), limit)
    en = dedupe_casefold((g.titles.get(SECONDARY_A) for g in genres), limit) or pt
    es = dedupe_casefold((g.titles.get(SECONDARY_B) for g in genres), limit) or en
    return {LOCAL: pt, SECONDARY_A: en, SECONDARY_B: es, DEFAULT: en or pt}


def merge_slots(*sources: dict[str, str | None] | None) -> dict[str, str | None]:
    """Per language slot, the first non-blank value across ``sources``."""
    present = [s for s in sources if s]
    return {
        slot: pick_first(*(s.get(slot) for s in present))
        for slot in (*LANGUAGE_SLOTS, DEFAULT)
    }


def same_in_every_slot(value: str | None) -> dict[str, str | None]:
    return {slot: value for slot in (*LANGUAGE_SLOTS, DEFAULT)}


def earliest_year(*years: int | None) -> int | None:
    known = [y for y in years if y]
    return min(known) if known else None


class RecordSink(ABC):
    """Persistence collaborator that accepts resolved records."""

    @abstractmethod
    async def save(self, record: CanonicalMediaRecord) -> None:
        """Store ``record``, replacing any previous record with the same id."""


class MemoryRecordSink(RecordSink):
    """In-process sink keyed by record id."""

    def __init__(self) -> None:
        self.records: dict[str, CanonicalMediaRecord] = {}

    async def save(self, record: CanonicalMediaRecord) -> None:
        self.records[record.id] = record

    def get(self, record_id: str) -> CanonicalMediaRecord | None:
        return self.records.get(record_id)


@dataclass
class _Country:
    code: str | None = None
    source: str | None = None


@dataclass
class _AlbumSources:
    details: TechnicalDetails | None = None
    reconciliation: AlbumReconciliation | None = None
    lastfm: LastFmAlbum | None = None

    @property
    def group(self) -> MusicBrainzReleaseGroup | None:
        return self.reconciliation.release_group if self.reconciliation else None

    @property
    def release_group_id(self) -> str | None:
        return self.reconciliation.release_group_id if self.reconciliation else None


class MediaHydrator:
    """
    Resolves ``(kind, identifier)`` into a ``CanonicalMediaRecord``.

    Adapters are built from ``config`` unless passed in; tests inject clients
    that talk to mock transports.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        wikidata: WikidataClient | None = None,
        musicbrainz: MusicBrainzClient | None = None,
        tmdb: TmdbClient | None = None,
        rawg: RawgClient | None = None,
        books: GoogleBooksClient | None = None,
        lastfm: LastFmClient | None = None,
        sink: RecordSink | None = None,
    ):
        self.config = config or Config()
        cfg = self.config
        self.wikidata = wikidata or WikidataClient(cfg.wikidata, cfg.http)
        self.musicbrainz = musicbrainz or MusicBrainzClient(cfg.musicbrainz, cfg.http)
        self.tmdb = tmdb or TmdbClient(cfg.providers.tmdb_api_key, cfg.http)
        self.rawg = rawg or RawgClient(cfg.providers.rawg_api_key, cfg.http)
        self.books = books or GoogleBooksClient(cfg.providers.google_books_api_key, cfg.http)
        self.lastfm = lastfm or LastFmClient(cfg.providers.lastfm_api_key, cfg.http)
        self.albums = AlbumReconciler(self.musicbrainz, cfg.bonus_scoring)
        self.sink = sink

    async def _optional(self, awaitable: Awaitable[T], what: str, ref: str) -> T | None:
        """Await an optional fact; upstream failures become ``None``."""
        try:
            return await awaitable
        except (UpstreamUnavailable, httpx.HTTPError) as e:
            log.warning(f"{what} unavailable for {ref}: {e}")
            return None

    async def resolve(self, kind: MediaKind | str, identifier: str) -> CanonicalMediaRecord:
        """
        Resolve one identifier.

        Film, game and book take a Wikidata id. Albums take a Wikidata id or
        any album identifier scheme.

        Raises:
            InvalidIdentifier: Unknown kind or malformed id (no network call made)
            NotFound: No provider recognizes the id
            Blocked: The entity is a series, franchise or similar non-work
            UpstreamUnavailable: Identity could not be established
        """
        try:
            kind = MediaKind(kind)
        except ValueError as e:
            raise InvalidIdentifier(f"Unknown media kind: {kind!r}") from e

        ident = str(identifier or "").strip()
        if kind is MediaKind.ALBUM:
            if is_qid(ident):
                return await self._resolve_album_by_qid(ident)
            return await self._resolve_album(parse_album_identifier(ident))

        if not is_qid(ident):
            raise InvalidIdentifier(f"{kind.value} ids must be Wikidata ids (Q...), got {ident!r}")
        return await self._resolve_work(kind, ident)

    async def resolve_and_store(
        self, kind: MediaKind | str, identifier: str
    ) -> CanonicalMediaRecord:
        """Resolve, then hand the record to the configured sink."""
        record = await self.resolve(kind, identifier)
        if self.sink is not None:
            await self.sink.save(record)
            log.info(f"Stored {record.id}")
        return record

    async def _technical_details(self, qid: str, kind: MediaKind) -> TechnicalDetails:
        details = await self.wikidata.build_technical_details(qid, kind)
        if not details.found:
            raise NotFound(f"Wikidata has no entity {qid}")
        if details.blocked:
            raise Blocked(
                f"{qid} is not a concrete {kind.value} "
                f"(instance of {', '.join(details.instance_of)})",
                instance_of=details.instance_of,
            )
        return details

    @staticmethod
    def _technical_summary(details: TechnicalDetails, country: _Country) -> dict[str, Any]:
        return {
            "qid": details.qid,
            "releaseYear": details.year,
            "creatorQid": details.creator_qid,
            "countryQid": details.country_qid,
            "countryIso2": country.code,
            "genres": [g.qid for g in details.genres],
        }

    async def _resolve_work(self, kind: MediaKind, qid: str) -> CanonicalMediaRecord:
        details = await self._technical_details(qid, kind)
        external_ids = {"wikidata": qid, **details.external_ids}
        country = _Country()
        if details.country_iso2:
            country = _Country(details.country_iso2, CountrySource.WIKIDATA)

        record = CanonicalMediaRecord(
            id=f"wikidata_{qid}",
            kind=kind,
            titles={},
            primary_creator=details.creator_name,
            year=details.year,
        )
        provider_titles: dict[str, str | None] | None = None
        fallback_genres: list[str] = []

        if kind is MediaKind.FILM and (tmdb_id := external_ids.get("tmdb")):
            movie = await self._optional(self.tmdb.get_movie(tmdb_id), "TMDB", qid)
            if movie:
                provider_titles = movie.titles
                record.synopses = movie.synopses
                record.poster_url = movie.poster_url
                record.backdrop_url = movie.backdrop_url
                record.tags.update(filter_tags(movie.genres))
                record.year = earliest_year(record.year, movie.release_year)
                if movie.imdb_id:
                    external_ids["imdb"] = movie.imdb_id
                if not country.code and movie.production_countries:
                    country = _Country(movie.production_countries[0], CountrySource.TMDB)

        elif kind is MediaKind.GAME:
            game = None
            if rawg_id := external_ids.get("rawg"):
                game = await self._optional(self.rawg.get_game(rawg_id), "RAWG", qid)
            studio = details.creator_name
            if game:
                provider_titles = {SECONDARY_A: game.name}
                record.synopses = same_in_every_slot(game.description)
                record.poster_url = game.poster_url
                record.backdrop_url = game.backdrop_url
                record.tags.update(filter_tags(game.genres))
                record.year = earliest_year(record.year, game.release_year)
                record.primary_creator = record.primary_creator or game.developer
                fallback_genres = game.genres
                studio = game.developer or studio
                record.details.update(
                    {
                        "platforms": game.platforms,
                        "metacritic": game.metacritic,
                        "playtime": game.playtime,
                        "website": game.website,
                    }
                )
            if not country.code and studio:
                code = await self._optional(
                    self.wikidata.find_organization_country(studio), "Studio country", qid
                )
                if code:
                    country = _Country(code, CountrySource.WIKIDATA_STUDIO)

        elif kind is MediaKind.BOOK:
            enrichment = await self._optional(
                self.books.get_enrichment(details.titles, details.creator_name), "Google Books", qid
            )
            if enrichment:
                record.synopses = enrichment.synopses
                record.poster_url = enrichment.poster_url
                if enrichment.volume_ids:
                    external_ids.update(
                        {f"googleBooks{slot}": vid for slot, vid in enrichment.volume_ids.items()}
                    )

        titles = apply_title_rules(kind, merge_slots(details.titles, provider_titles))
        if titles[DEFAULT] is None:
            raise NotFound(f"No provider returned a title for {qid}")

        record.titles = titles
        record.synopses = apply_title_rules(kind, record.synopses)
        record.genres = build_genres(kind, details.genres, fallback_genres)
        record.country, record.country_source = country.code, country.source
        record.external_ids = external_ids
        record.details["technical"] = self._technical_summary(details, country)
        return record

    async def _lastfm_album(self, title: str | None, artist: str | None) -> LastFmAlbum | None:
        """Last.fm album by exact artist + title, else by the best search match."""
        if not title:
            return None
        album = None
        if artist:
            album = await self.lastfm.get_album_info(artist=artist, album=title)
        if album is None and (mbid := await self.lastfm.find_album_mbid(title, artist)):
            album = await self.lastfm.get_album_info(mbid=mbid)
        return album

    async def _resolve_album_by_qid(self, qid: str) -> CanonicalMediaRecord:
        details = await self._technical_details(qid, MediaKind.ALBUM)
        sources = _AlbumSources(details=details)

        group_id = details.external_ids.get("releaseGroupMbid")
        if not group_id:
            title = pick_first(details.titles.get(SECONDARY_A), details.titles.get(LOCAL))
            if title and details.creator_name:
                group_id = await self._optional(
                    self.musicbrainz.find_release_group(details.creator_name, title),
                    "MusicBrainz search",
                    qid,
                )
        if group_id:
            sources.reconciliation = await self.albums.reconcile_release_group(group_id)

        return await self._assemble_album(sources, ref=qid)

    async def _resolve_album(self, identifier: AlbumIdentifier) -> CanonicalMediaRecord:
        reconciliation = await self.albums.reconcile(identifier)
        sources = _AlbumSources(reconciliation=reconciliation)
        return await self._assemble_album(sources, ref=reconciliation.release_group_id)

    async def _album_country(self, sources: _AlbumSources, ref: str) -> _Country:
        details, group = sources.details, sources.group
        if details and details.country_iso2:
            return _Country(details.country_iso2, CountrySource.WIKIDATA)

        if details and details.creator_qid:
            code = await self._optional(
                self.wikidata.resolve_entity_country_iso2(details.creator_qid),
                "Artist country",
                ref,
            )
            if code:
                return _Country(code, CountrySource.WIKIDATA_ARTIST)

        if group and group.artist_mbid:
            artist = await self._optional(
                self.musicbrainz.get_artist(group.artist_mbid), "MusicBrainz artist", ref
            )
            if artist and artist.country:
                return _Country(artist.country, CountrySource.MUSICBRAINZ_ARTIST)

        return _Country()

    async def _assemble_album(self, sources: _AlbumSources, ref: str) -> CanonicalMediaRecord:
        details, group = sources.details, sources.group
        group_id = sources.release_group_id

        wd_titles = details.titles if details else {}
        title = pick_first(
            wd_titles.get(SECONDARY_A), group.title if group else None, wd_titles.get(LOCAL)
        )
        artist = pick_first(
            details.creator_name if details else None, group.artist_name if group else None
        )

        sources.lastfm = await self._optional(self._lastfm_album(title, artist), "Last.fm", ref)
        lastfm = sources.lastfm

        titles = apply_title_rules(
            MediaKind.ALBUM,
            merge_slots(
                wd_titles,
                {SECONDARY_A: group.title} if group else None,
                {SECONDARY_A: lastfm.name} if lastfm else None,
            ),
        )
        if titles[DEFAULT] is None:
            raise NotFound(f"No provider returned a title for album {ref}")

        external_ids: dict[str, str] = {}
        if details:
            external_ids.update({"wikidata": details.qid, **details.external_ids})
        if group_id:
            external_ids["releaseGroupMbid"] = group_id
        if lastfm and lastfm.url:
            external_ids["lastfm"] = lastfm.url
        if lastfm and lastfm.mbid:
            external_ids["lastfmMbid"] = lastfm.mbid

        if group_id:
            record_id = f"musicbrainz_{group_id}"
        else:
            record_id = f"wikidata_{details.qid}"  # type: ignore[union-attr]
        country = await self._album_country(sources, ref)

        raw_tags = lastfm.tags if lastfm else (group.tags if group else [])
        provider_genres = [
            *(group.genres if group else []),
            *(t for t in raw_tags if not is_noise_tag(t)),
        ]

        track_listing = sources.reconciliation.track_listing if sources.reconciliation else None
        if track_listing is None and lastfm and lastfm.tracks:
            track_listing = TrackListing(
                tracks=[
                    Track(position=i, title=name)
                    for i, name in enumerate(lastfm.tracks, start=1)
                ]
            )

        record = CanonicalMediaRecord(
            id=record_id,
            kind=MediaKind.ALBUM,
            titles=titles,
            synopses=same_in_every_slot(lastfm.summary if lastfm else None),
            genres=build_genres(
                MediaKind.ALBUM, details.genres if details else [], provider_genres
            ),
            country=country.code,
            country_source=country.source,
            year=earliest_year(details.year if details else None, group.year if group else None),
            poster_url=pick_first(
                lastfm.image_url if lastfm else None,
                self.musicbrainz.cover_art_url(group_id) if group_id else None,
            ),
            primary_creator=pick_first(artist, lastfm.artist if lastfm else None),
            track_listing=track_listing,
            tags=set(filter_tags(raw_tags)),
            external_ids=external_ids,
        )

        if sources.reconciliation:
            record.details["albumState"] = sources.reconciliation.state.value
        if track_listing and track_listing.base_release_id:
            record.details["baseReleaseId"] = track_listing.base_release_id
        if details:
            record.details["technical"] = self._technical_summary(details, country)
        return record

    async def close(self) -> None:
        clients = (self.wikidata, self.musicbrainz, self.tmdb, self.rawg, self.books, self.lastfm)
        for client in clients:
            await client.close()

    async def __aenter__(self) -> MediaHydrator:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


## Tests


def test_apply_title_rules_global_kind():
    titles = apply_title_rules(
        MediaKind.GAME, {LOCAL: "O Jogo", SECONDARY_A: "The Game", SECONDARY_B: None}
    )
    assert titles == same_in_every_slot("The Game")


def test_apply_title_rules_translated_kind():
    titles = apply_title_rules(
        MediaKind.FILM,
        {LOCAL: None, SECONDARY_A: "Spirited Away", SECONDARY_B: "El viaje de Chihiro"},
    )
    assert titles == {
        LOCAL: "Spirited Away",
        SECONDARY_A: "Spirited Away",
        SECONDARY_B: "El viaje de Chihiro",
        DEFAULT: "Spirited Away",
    }


def test_build_genres_per_language_fallbacks():
    genres = [
        GenreFacts("Q1", {LOCAL: "Drama", SECONDARY_A: None, SECONDARY_B: None}),
        GenreFacts("Q2", {LOCAL: "drama", SECONDARY_A: None, SECONDARY_B: None}),
        GenreFacts("Q3", {LOCAL: "Comédia", SECONDARY_A: None, SECONDARY_B: None}),
    ]
    result = build_genres(MediaKind.FILM, genres)
    expected = ["Drama", "Comédia"]
    assert result == {slot: expected for slot in (LOCAL, SECONDARY_A, SECONDARY_B, DEFAULT)}


def test_build_genres_global_kind_uses_fallback():
    assert build_genres(MediaKind.GAME, [], ["Action", "RPG", "Indie"]) == ["Action", "RPG"]
