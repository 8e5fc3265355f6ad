"""Tests for the secondary content providers against mocked HTTP."""

from __future__ import annotations

import asyncio

import httpx

from media_canon.models import LOCAL, SECONDARY_A, SECONDARY_B
from media_canon.providers import GoogleBooksClient, RawgClient, TmdbClient

LONG_TEXT = "A story told at length, with more than enough words to pass the placeholder filter."


class TestTmdb:
    @staticmethod
    def movie_payload(language: str) -> dict:
        return {
            "id": 129,
            "title": {"pt-BR": "A Viagem de Chihiro", "en-US": "Spirited Away"}[language],
            "overview": f"overview {language}",
            "poster_path": "/poster.jpg",
            "release_date": "2001-07-20",
            "production_countries": [{"iso_3166_1": "JP"}],
            "genres": [{"name": "Animation"}],
        }

    def test_failed_language_keeps_the_others(self, recording):
        def handler(request: httpx.Request) -> httpx.Response:
            language = request.url.params["language"]
            if language == "es-ES":
                return httpx.Response(503, request=request)
            return httpx.Response(200, json=self.movie_payload(language), request=request)

        api = recording(handler)

        async def fetch():
            async with TmdbClient("tmdb-key", client=api.client(), retries=0) as tmdb:
                return await tmdb.get_movie("129")

        movie = asyncio.run(fetch())

        assert len(api.requests) == 3
        assert movie.titles == {
            LOCAL: "A Viagem de Chihiro",
            SECONDARY_A: "Spirited Away",
            SECONDARY_B: None,
        }
        assert movie.synopses[LOCAL] == "overview pt-BR"
        assert movie.synopses[SECONDARY_B] is None
        assert movie.poster_url == "https://image.tmdb.org/t/p/w500/poster.jpg"
        assert movie.production_countries == ["JP"]
        assert movie.genres == ["Animation"]

    def test_every_language_failing_gives_none(self, recording):
        api = recording(lambda request: httpx.Response(503, request=request))

        async def fetch():
            async with TmdbClient("tmdb-key", client=api.client(), retries=0) as tmdb:
                return await tmdb.get_movie("129")

        assert asyncio.run(fetch()) is None

    def test_missing_key_makes_no_request(self, recording):
        api = recording(lambda request: httpx.Response(200, json={}, request=request))

        async def fetch():
            async with TmdbClient(None, client=api.client()) as tmdb:
                return await tmdb.get_movie("129")

        assert asyncio.run(fetch()) is None
        assert api.requests == []


class TestGoogleBooks:
    def test_failed_language_keeps_the_others(self, recording):
        def handler(request: httpx.Request) -> httpx.Response:
            lang = request.url.params["langRestrict"]
            if lang == "es":
                return httpx.Response(503, request=request)
            item = {
                "id": f"vol-{lang}",
                "volumeInfo": {
                    "description": f"{LONG_TEXT} ({lang})",
                    "imageLinks": {"thumbnail": f"http://books.example/{lang}?zoom=5&edge=curl"},
                },
            }
            return httpx.Response(200, json={"items": [item]}, request=request)

        api = recording(handler)
        titles = {LOCAL: "O Livro", SECONDARY_A: "The Book", SECONDARY_B: "El Libro"}

        async def fetch():
            async with GoogleBooksClient(client=api.client(), retries=0) as books:
                return await books.get_enrichment(titles, "Jane Author")

        enrichment = asyncio.run(fetch())

        assert enrichment.synopses == {
            LOCAL: f"{LONG_TEXT} (pt)",
            SECONDARY_A: f"{LONG_TEXT} (en)",
            SECONDARY_B: None,
        }
        assert enrichment.volume_ids == {LOCAL: "vol-pt", SECONDARY_A: "vol-en"}
        assert enrichment.poster_url == "https://books.example/pt?zoom=1"
        queries = {r.url.params["langRestrict"]: r.url.params["q"] for r in api.requests}
        assert queries["en"] == 'intitle:"The Book" inauthor:"Jane Author"'

    def test_short_descriptions_are_skipped(self, recording):
        payload = {
            "items": [
                {"id": "short", "volumeInfo": {"description": "Too short."}},
                {"id": "long", "volumeInfo": {"description": LONG_TEXT}},
            ]
        }
        api = recording(lambda request: httpx.Response(200, json=payload, request=request))

        async def fetch():
            async with GoogleBooksClient(client=api.client()) as books:
                return await books.find_volume("The Book", None, "en")

        volume = asyncio.run(fetch())

        assert volume.volume_id == "long"
        assert volume.thumbnail is None
        assert "inauthor" not in api.requests[0].url.params["q"]


class TestRawg:
    def test_game_details(self, recording):
        payload = {
            "id": 3498,
            "name": "The Game",
            "description_raw": "  Drive around.  ",
            "background_image": "https://media.rawg.io/poster.jpg",
            "released": "2013-09-17",
            "developers": [{"name": "Studio X"}, {"name": "Studio Y"}],
            "genres": [{"name": "Action"}, {"name": ""}],
            "platforms": [{"platform": {"name": "PC"}}, {"platform": {}}],
            "metacritic": 92,
        }
        api = recording(lambda request: httpx.Response(200, json=payload, request=request))

        async def fetch():
            async with RawgClient("rawg-key", client=api.client()) as rawg:
                return await rawg.get_game("the-game")

        game = asyncio.run(fetch())

        assert api.paths() == ["/api/games/the-game"]
        assert game.rawg_id == "3498"
        assert game.description == "Drive around."
        assert game.backdrop_url == "https://media.rawg.io/poster.jpg"
        assert game.developer == "Studio X"
        assert game.release_year == 2013
        assert game.genres == ["Action"]
        assert game.platforms == ["PC"]
        assert game.metacritic == 92

    def test_unknown_game_is_none(self, recording):
        api = recording(lambda request: httpx.Response(404, request=request))

        async def fetch():
            async with RawgClient("rawg-key", client=api.client()) as rawg:
                return await rawg.get_game("nothing")

        assert asyncio.run(fetch()) is None
