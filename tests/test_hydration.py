"""End-to-end hydration tests against mocked Wikidata, MusicBrainz and providers."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from media_canon.errors import Blocked, InvalidAlbumIdentifier, InvalidIdentifier, NotFound
from media_canon.hydration import CountrySource, MediaHydrator, MemoryRecordSink
from media_canon.models import DEFAULT, LOCAL, SECONDARY_A, SECONDARY_B, MediaKind
from media_canon.musicbrainz import MusicBrainzClient
from media_canon.providers import GoogleBooksClient, LastFmClient, RawgClient, TmdbClient
from media_canon.wikidata import WikidataClient

BASE_TITLES = ["A", "B", "C", "D", "E"]


def make_hydrator(config, wd_api, mb_api, **providers) -> MediaHydrator:
    return MediaHydrator(
        config,
        wikidata=WikidataClient(config.wikidata, config.http, client=wd_api.client()),
        musicbrainz=MusicBrainzClient(config.musicbrainz, config.http, client=mb_api.client()),
        **providers,
    )


def resolve(hydrator_factory, kind, identifier):
    async def main():
        async with hydrator_factory() as hydrator:
            return await hydrator.resolve(kind, identifier)

    return asyncio.run(main())


@pytest.fixture
def film_entities(entity):
    return {
        "Q100": entity(
            "Q100",
            labels={
                "pt-br": "A Viagem de Chihiro",
                "en": "Spirited Away",
                "es": "El viaje de Chihiro",
            },
            claims={
                "P31": ["Q11424"],
                "P57": ["Q200"],
                "P495": ["Q17"],
                "P136": ["Q300"],
                "P577": ["+2001-07-20T00:00:00Z"],
                "P4947": ["129"],
            },
        ),
        "Q200": entity("Q200", labels={"en": "Hayao Miyazaki"}),
        "Q17": entity("Q17", labels={"en": "Japan"}, claims={"P297": ["JP"]}),
        "Q300": entity("Q300", labels={"en": "anime film"}, claims={"P279": ["Q900"]}),
        "Q900": entity(
            "Q900", labels={"pt-br": "Animação", "en": "Animation", "es": "Animación"}
        ),
    }


@pytest.fixture
def album_routes(release, browse):
    base = release("r-base", BASE_TITLES, date="1969-09-26")
    deluxe = release(
        "r-deluxe", [*BASE_TITLES, "F"], title="Album (Deluxe)", date="2019-09-27", country="GB"
    )
    return {
        "release-group/rg1": {
            "id": "rg1",
            "title": "Album",
            "first-release-date": "1969-09-26",
            "artist-credit": [{"artist": {"id": "a1", "name": "The Band"}}],
            "genres": [{"name": "rock", "count": 3}],
            "tags": [{"name": "classic rock", "count": 2}, {"name": "1969", "count": 1}],
        },
        "browse:rg1": {"releases": [browse(base), browse(deluxe)], "release-count": 2},
        "release/r-base": base,
        "release/r-deluxe": deluxe,
        "search:release-group": {
            "release-groups": [
                {
                    "id": "rg1",
                    "title": "Album",
                    "artist-credit": [{"artist": {"id": "a1", "name": "The Band"}}],
                }
            ]
        },
        "artist/a1": {"id": "a1", "name": "The Band", "country": "GB"},
    }


class TestAlbums:
    def test_three_encodings_resolve_to_one_record(
        self, fast_config, wikidata_api, musicbrainz_api, album_routes
    ):
        wd_api = wikidata_api({})
        mb_api = musicbrainz_api(album_routes)

        async def main():
            async with make_hydrator(fast_config, wd_api, mb_api) as hydrator:
                return [
                    await hydrator.resolve("album", identifier)
                    for identifier in (
                        "release-group:rg1",
                        "mbid:r-base",
                        'artist-album:"The%20Band","Album"',
                    )
                ]

        records = asyncio.run(main())

        assert {r.id for r in records} == {"musicbrainz_rg1"}
        assert {r.external_ids["releaseGroupMbid"] for r in records} == {"rg1"}
        assert wd_api.requests == []

        record = records[0]
        assert record.titles == {slot: "Album" for slot in (LOCAL, SECONDARY_A, SECONDARY_B, DEFAULT)}
        assert record.year == 1969
        assert record.primary_creator == "The Band"
        assert record.country == "GB"
        assert record.country_source == CountrySource.MUSICBRAINZ_ARTIST
        assert record.poster_url == "https://coverartarchive.org/release-group/rg1/front-500"
        assert record.genres == ["rock", "classic rock"]
        assert record.tags == {"tag.classic-rock"}
        assert [t.title for t in record.track_listing.tracks] == BASE_TITLES
        bonus = record.track_listing.bonus_sections[0]
        assert bonus.title == "2019 · Deluxe · GB"
        assert bonus.tracks[0].position == 6
        assert record.details["albumState"] == "assembled"

    def test_album_by_wikidata_id_uses_linked_release_group(
        self, fast_config, wikidata_api, musicbrainz_api, album_routes, entity
    ):
        wd_api = wikidata_api(
            {
                "Q800": entity(
                    "Q800",
                    labels={"en": "Album", "pt-br": "Álbum"},
                    claims={"P31": ["Q482994"], "P436": ["rg1"], "P175": ["Q801"]},
                ),
                "Q801": entity("Q801", labels={"en": "The Band"}, claims={"P27": ["Q145"]}),
                "Q145": entity("Q145", claims={"P297": ["GB"]}),
            }
        )
        mb_api = musicbrainz_api(album_routes)

        record = resolve(lambda: make_hydrator(fast_config, wd_api, mb_api), "album", "Q800")

        assert record.id == "musicbrainz_rg1"
        assert record.external_ids["wikidata"] == "Q800"
        assert record.titles[LOCAL] == "Album"
        assert record.country_source == CountrySource.WIKIDATA_ARTIST
        assert record.country == "GB"
        assert "/ws/2/artist/a1" not in mb_api.paths()

    def test_lastfm_enriches_album(self, fast_config, wikidata_api, musicbrainz_api, album_routes, recording):
        def lastfm_handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["method"] == "album.getinfo"
            return httpx.Response(
                200,
                json={
                    "album": {
                        "name": "Album",
                        "artist": "The Band",
                        "url": "https://www.last.fm/music/The+Band/Album",
                        "image": [{"size": "mega", "#text": "https://img/mega.png"}],
                        "tags": {"tag": [{"name": "psychedelic"}, {"name": "60s"}]},
                        "wiki": {"summary": 'A record. <a href="x">Read more on Last.fm</a>'},
                    }
                },
                request=request,
            )

        lastfm_api = recording(lastfm_handler)
        wd_api = wikidata_api({})
        mb_api = musicbrainz_api(album_routes)

        record = resolve(
            lambda: make_hydrator(
                fast_config,
                wd_api,
                mb_api,
                lastfm=LastFmClient("lf-key", client=lastfm_api.client()),
            ),
            "album",
            "release-group:rg1",
        )

        assert record.synopses == {slot: "A record." for slot in (LOCAL, SECONDARY_A, SECONDARY_B, DEFAULT)}
        assert record.poster_url == "https://img/mega.png"
        assert record.tags == {"tag.psychedelic"}
        assert record.external_ids["lastfm"] == "https://www.last.fm/music/The+Band/Album"

    def test_unknown_release_group_title_is_not_found(
        self, fast_config, wikidata_api, musicbrainz_api
    ):
        mb_api = musicbrainz_api({})

        with pytest.raises(NotFound):
            resolve(
                lambda: make_hydrator(fast_config, wikidata_api({}), mb_api),
                "album",
                "release-group:nothing",
            )


class TestWorks:
    def test_film_titles_are_translated(self, fast_config, wikidata_api, musicbrainz_api, film_entities):
        wd_api = wikidata_api(film_entities)

        record = resolve(
            lambda: make_hydrator(fast_config, wd_api, musicbrainz_api({})), "film", "Q100"
        )

        assert record.id == "wikidata_Q100"
        assert record.titles == {
            LOCAL: "A Viagem de Chihiro",
            SECONDARY_A: "Spirited Away",
            SECONDARY_B: "El viaje de Chihiro",
            DEFAULT: "A Viagem de Chihiro",
        }
        assert record.genres == {
            LOCAL: ["Animação"],
            SECONDARY_A: ["Animation"],
            SECONDARY_B: ["Animación"],
            DEFAULT: ["Animation"],
        }
        assert record.country == "JP"
        assert record.country_source == CountrySource.WIKIDATA
        assert record.year == 2001
        assert record.primary_creator == "Hayao Miyazaki"
        assert record.external_ids["tmdb"] == "129"
        assert record.details["technical"]["genres"] == ["Q900"]

    def test_game_title_is_global(self, fast_config, wikidata_api, musicbrainz_api, entity):
        wd_api = wikidata_api(
            {
                "Q500": entity(
                    "Q500",
                    labels={"pt-br": "O Jogo", "en": "The Game", "es": "El Juego"},
                    claims={"P31": ["Q7889"], "P178": ["Q600"]},
                ),
                "Q600": entity("Q600", labels={"en": "Studio X"}, claims={"P17": ["Q17"]}),
                "Q17": entity("Q17", claims={"P297": ["JP"]}),
            },
            search={"Studio X": [{"id": "Q600", "label": "Studio X"}]},
        )

        record = resolve(
            lambda: make_hydrator(fast_config, wd_api, musicbrainz_api({})), "game", "Q500"
        )

        assert set(record.titles.values()) == {"The Game"}
        assert record.primary_creator == "Studio X"
        assert record.country == "JP"
        assert record.country_source == CountrySource.WIKIDATA_STUDIO

    def test_tmdb_enriches_film(self, fast_config, wikidata_api, musicbrainz_api, film_entities, recording):
        overviews = {"pt-BR": "Sinopse", "en-US": "Synopsis", "es-ES": "Sinopsis"}

        def tmdb_handler(request: httpx.Request) -> httpx.Response:
            language = request.url.params["language"]
            return httpx.Response(
                200,
                json={
                    "id": 129,
                    "title": "Spirited Away",
                    "overview": overviews[language],
                    "poster_path": "/poster.jpg",
                    "backdrop_path": "/backdrop.jpg",
                    "release_date": "2001-07-20",
                    "imdb_id": "tt0245429",
                    "production_countries": [{"iso_3166_1": "JP"}],
                    "genres": [{"name": "Animation"}, {"name": "Family"}],
                },
                request=request,
            )

        tmdb_api = recording(tmdb_handler)
        wd_api = wikidata_api(film_entities)

        record = resolve(
            lambda: make_hydrator(
                fast_config,
                wd_api,
                musicbrainz_api({}),
                tmdb=TmdbClient("tmdb-key", client=tmdb_api.client()),
            ),
            "film",
            "Q100",
        )

        assert len(tmdb_api.requests) == 3
        assert record.synopses[LOCAL] == "Sinopse"
        assert record.synopses[SECONDARY_B] == "Sinopsis"
        assert record.synopses[DEFAULT] == "Sinopse"
        assert record.poster_url == "https://image.tmdb.org/t/p/w500/poster.jpg"
        assert record.backdrop_url == "https://image.tmdb.org/t/p/w1280/backdrop.jpg"
        assert record.external_ids["imdb"] == "tt0245429"
        assert record.tags == {"tag.animation", "tag.family"}
        # Wikidata titles win over provider titles
        assert record.titles[LOCAL] == "A Viagem de Chihiro"

    def test_rawg_enriches_game(self, fast_config, wikidata_api, musicbrainz_api, entity, recording):
        wd_api = wikidata_api(
            {
                "Q510": entity("Q510", claims={"P31": ["Q7889"], "P9968": ["the-game"]}),
                "Q600": entity("Q600", labels={"en": "Studio X"}, claims={"P17": ["Q17"]}),
                "Q17": entity("Q17", claims={"P297": ["JP"]}),
            },
            search={"Studio X": [{"id": "Q600", "label": "Studio X"}]},
        )
        rawg_payload = {
            "id": 3498,
            "name": "The Game",
            "description_raw": "Drive around.",
            "background_image": "https://media.rawg.io/poster.jpg",
            "released": "2013-09-17",
            "developers": [{"name": "Studio X"}],
            "genres": [{"name": "Action"}, {"name": "RPG"}],
            "platforms": [{"platform": {"name": "PC"}}, {"platform": {"name": "PlayStation 4"}}],
        }
        rawg_api = recording(lambda request: httpx.Response(200, json=rawg_payload, request=request))

        record = resolve(
            lambda: make_hydrator(
                fast_config,
                wd_api,
                musicbrainz_api({}),
                rawg=RawgClient("rawg-key", client=rawg_api.client()),
            ),
            "game",
            "Q510",
        )

        assert rawg_api.paths() == ["/api/games/the-game"]
        # Wikidata has no label, so the RAWG name fills every slot
        assert set(record.titles.values()) == {"The Game"}
        assert set(record.synopses.values()) == {"Drive around."}
        assert record.poster_url == "https://media.rawg.io/poster.jpg"
        assert record.genres == ["Action", "RPG"]
        assert record.tags == {"tag.action", "tag.rpg"}
        assert record.details["platforms"] == ["PC", "PlayStation 4"]
        assert record.year == 2013
        assert record.primary_creator == "Studio X"
        assert record.country == "JP"
        assert record.country_source == CountrySource.WIKIDATA_STUDIO
        assert record.external_ids["rawg"] == "the-game"

    def test_google_books_enriches_book(
        self, fast_config, wikidata_api, musicbrainz_api, entity, recording
    ):
        wd_api = wikidata_api(
            {
                "Q700": entity(
                    "Q700",
                    labels={"pt-br": "O Livro", "en": "The Book", "es": "El Libro"},
                    claims={"P31": ["Q7725634"], "P50": ["Q701"]},
                ),
                "Q701": entity("Q701", labels={"en": "Jane Author"}),
            }
        )
        descriptions = {
            "pt": "Uma longa sinopse em português, com palavras suficientes para contar.",
            "en": "A long English synopsis, with more than enough words to count as real.",
        }

        def books_handler(request: httpx.Request) -> httpx.Response:
            lang = request.url.params["langRestrict"]
            if lang not in descriptions:
                return httpx.Response(200, json={"totalItems": 0}, request=request)
            item = {
                "id": f"vol-{lang}",
                "volumeInfo": {
                    "description": descriptions[lang],
                    "imageLinks": {"thumbnail": f"http://books.example/{lang}?zoom=1&edge=curl"},
                },
            }
            return httpx.Response(200, json={"items": [item]}, request=request)

        books_api = recording(books_handler)

        record = resolve(
            lambda: make_hydrator(
                fast_config,
                wd_api,
                musicbrainz_api({}),
                books=GoogleBooksClient(client=books_api.client()),
            ),
            "book",
            "Q700",
        )

        assert len(books_api.requests) == 3
        assert record.titles[SECONDARY_B] == "El Libro"
        assert record.primary_creator == "Jane Author"
        assert record.synopses == {
            LOCAL: descriptions["pt"],
            SECONDARY_A: descriptions["en"],
            SECONDARY_B: descriptions["pt"],
            DEFAULT: descriptions["pt"],
        }
        assert record.poster_url == "https://books.example/pt?zoom=1"
        assert record.external_ids["googleBooksPT"] == "vol-pt"
        assert record.external_ids["googleBooksEN"] == "vol-en"
        assert "googleBooksES" not in record.external_ids

    def test_unavailable_provider_degrades(
        self, fast_config, wikidata_api, musicbrainz_api, film_entities, recording
    ):
        tmdb_api = recording(lambda request: httpx.Response(503, request=request))

        record = resolve(
            lambda: make_hydrator(
                fast_config,
                wikidata_api(film_entities),
                musicbrainz_api({}),
                tmdb=TmdbClient("tmdb-key", client=tmdb_api.client(), retries=0),
            ),
            "film",
            "Q100",
        )

        assert tmdb_api.requests
        assert record.titles[SECONDARY_A] == "Spirited Away"
        assert record.poster_url is None
        assert set(record.synopses.values()) == {None}

    def test_missing_entity_is_not_found(self, fast_config, wikidata_api, musicbrainz_api):
        with pytest.raises(NotFound):
            resolve(
                lambda: make_hydrator(fast_config, wikidata_api({}), musicbrainz_api({})),
                "book",
                "Q404",
            )

    def test_franchise_is_blocked(self, fast_config, wikidata_api, musicbrainz_api, entity):
        wd_api = wikidata_api(
            {"Q1": entity("Q1", labels={"en": "Star Wars"}, claims={"P31": ["Q196600"]})}
        )

        with pytest.raises(Blocked) as exc_info:
            resolve(lambda: make_hydrator(fast_config, wd_api, musicbrainz_api({})), "film", "Q1")

        assert exc_info.value.instance_of == ["Q196600"]


class TestInvalidInput:
    @pytest.mark.parametrize(
        "kind, identifier, error",
        [
            ("film", "tt0245429", InvalidIdentifier),
            ("book", "", InvalidIdentifier),
            ("podcast", "Q1", InvalidIdentifier),
            ("album", "spotify:album:1", InvalidAlbumIdentifier),
            ("album", "release-group:not valid", InvalidAlbumIdentifier),
        ],
    )
    def test_rejected_before_any_request(
        self, fast_config, wikidata_api, musicbrainz_api, kind, identifier, error
    ):
        wd_api = wikidata_api({})
        mb_api = musicbrainz_api({})

        with pytest.raises(error):
            resolve(lambda: make_hydrator(fast_config, wd_api, mb_api), kind, identifier)

        assert wd_api.requests == []
        assert mb_api.requests == []


def test_resolve_and_store(fast_config, wikidata_api, musicbrainz_api, film_entities):
    sink = MemoryRecordSink()

    async def main():
        hydrator = MediaHydrator(
            fast_config,
            wikidata=WikidataClient(
                fast_config.wikidata, client=wikidata_api(film_entities).client()
            ),
            musicbrainz=MusicBrainzClient(
                fast_config.musicbrainz, client=musicbrainz_api({}).client()
            ),
            sink=sink,
        )
        async with hydrator:
            return await hydrator.resolve_and_store(MediaKind.FILM, "Q100")

    record = asyncio.run(main())

    assert sink.get("wikidata_Q100") is record
    assert record.to_dict()["titles"][SECONDARY_A] == "Spirited Away"
