"""
TMDB client for film synopses, artwork and production countries.

Titles, year and director come from Wikidata; TMDB only enriches.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from media_canon.models import LANGUAGE_SLOTS, LOCAL, SECONDARY_A, SECONDARY_B
from media_canon.normalize import normalize_country_code
from media_canon.providers.base import ProviderClient

TMDB_API_URL = "https://api.themoviedb.org/3"
TMDB_IMAGE_URL = "https://image.tmdb.org/t/p"

TMDB_LANGUAGES = {LOCAL: "pt-BR", SECONDARY_A: "en-US", SECONDARY_B: "es-ES"}


def image_url(path: str | None, size: str) -> str | None:
    return f"{TMDB_IMAGE_URL}/{size}{path}" if path else None


@dataclass
class TmdbMovie:
    """A movie's details, merged across the three language requests."""

    tmdb_id: str
    titles: dict[str, str | None] = field(default_factory=dict)
    synopses: dict[str, str | None] = field(default_factory=dict)
    poster_url: str | None = None
    backdrop_url: str | None = None
    production_countries: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    imdb_id: str | None = None
    release_year: int | None = None


class TmdbClient(ProviderClient):
    """TMDB v3 client."""

    name = "tmdb"

    async def _movie(self, tmdb_id: str, language: str) -> dict[str, Any] | None:
        return await self._get_json(
            f"{TMDB_API_URL}/movie/{tmdb_id}",
            {"api_key": self.api_key or "", "language": language},
            label=f"movie {tmdb_id} ({language})",
        )

    async def get_movie(self, tmdb_id: str) -> TmdbMovie | None:
        """
        Movie details in pt-BR, en-US and es-ES, fetched concurrently.

        A language whose request fails is left empty; the others still count.

        Returns:
            TmdbMovie, or None if no language returned the movie
        """
        if not self._check_available():
            return None

        slots = list(LANGUAGE_SLOTS)
        payloads = await asyncio.gather(
            *(
                self._skip_on_failure(
                    self._movie(tmdb_id, TMDB_LANGUAGES[s]), f"movie {tmdb_id} ({TMDB_LANGUAGES[s]})"
                )
                for s in slots
            )
        )
        by_slot = {slot: data for slot, data in zip(slots, payloads, strict=True) if data}
        if not by_slot:
            return None

        # Artwork and ids are language independent; prefer the local response
        primary = by_slot.get(LOCAL) or by_slot.get(SECONDARY_A) or next(iter(by_slot.values()))
        english = by_slot.get(SECONDARY_A) or primary
        release_date = primary.get("release_date") or ""

        return TmdbMovie(
            tmdb_id=str(tmdb_id),
            titles={slot: (by_slot.get(slot) or {}).get("title") or None for slot in slots},
            synopses={slot: (by_slot.get(slot) or {}).get("overview") or None for slot in slots},
            poster_url=image_url(primary.get("poster_path"), "w500"),
            backdrop_url=image_url(primary.get("backdrop_path"), "w1280"),
            production_countries=[
                code
                for c in primary.get("production_countries") or []
                if (code := normalize_country_code(c.get("iso_3166_1")))
            ],
            genres=[g["name"] for g in english.get("genres") or [] if g.get("name")],
            imdb_id=primary.get("imdb_id") or None,
            release_year=int(release_date[:4]) if release_date[:4].isdigit() else None,
        )
