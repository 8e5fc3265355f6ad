"""
Secondary content providers consumed by the hydrator.

- TMDB: film synopses, artwork, production countries
- RAWG: game description, artwork, developer, genres
- Google Books: per-language book synopses and covers
- Last.fm: album summary, artwork, tags
"""

from __future__ import annotations

from media_canon.providers.base import ProviderClient
from media_canon.providers.books import BookEnrichment, GoogleBooksClient
from media_canon.providers.lastfm import LastFmAlbum, LastFmClient
from media_canon.providers.rawg import RawgClient, RawgGame
from media_canon.providers.tmdb import TmdbClient, TmdbMovie

__all__ = [
    "ProviderClient",
    "TmdbClient",
    "TmdbMovie",
    "RawgClient",
    "RawgGame",
    "GoogleBooksClient",
    "BookEnrichment",
    "LastFmClient",
    "LastFmAlbum",
]
