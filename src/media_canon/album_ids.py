"""
Album identifier schemes.

Three shapes name an album:

- ``release-group:<id>``: already canonical
- ``mbid:<id>``: a release id, upgraded to its release group on resolution
- ``artist-album:<artist>,<album>``: free text, percent-encoded per side, or a
  single base64url token wrapping the same ``artist,album`` text

Parsing never touches the network; anything else is rejected up front.
"""

from __future__ import annotations

import base64
import binascii
import csv
import re
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import quote, unquote

from media_canon.errors import InvalidAlbumIdentifier

_ID_TOKEN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]*$")


class AlbumIdScheme(StrEnum):
    RELEASE_GROUP = "release-group"
    RELEASE = "mbid"
    ARTIST_ALBUM = "artist-album"


@dataclass(frozen=True)
class AlbumIdentifier:
    """A parsed album identifier; ``value`` for id schemes, artist/album for free text."""

    scheme: AlbumIdScheme
    value: str | None = None
    artist: str | None = None
    album: str | None = None


def is_album_identifier(raw: str | None) -> bool:
    """True when ``raw`` carries one of the album scheme prefixes (not that it parses)."""
    s = str(raw or "").strip()
    return any(s.startswith(f"{scheme.value}:") for scheme in AlbumIdScheme)


def _split_pair(text: str) -> tuple[str, str] | None:
    rows = list(csv.reader([text], skipinitialspace=True))
    if not rows or len(rows[0]) != 2:
        return None
    artist, album = (unquote(part).strip() for part in rows[0])
    return artist, album


def _decode_base64url(token: str) -> str:
    padded = token + "=" * (-len(token) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidAlbumIdentifier(f"Undecodable artist-album token: {token!r}") from e


def _parse_artist_album(payload: str) -> AlbumIdentifier:
    text = payload if "," in payload else _decode_base64url(payload)
    pair = _split_pair(text)
    if pair is None:
        raise InvalidAlbumIdentifier(f"Expected '<artist>,<album>', got {payload!r}")
    artist, album = pair
    if not artist or not album:
        raise InvalidAlbumIdentifier(f"Empty artist or album in {payload!r}")
    return AlbumIdentifier(AlbumIdScheme.ARTIST_ALBUM, artist=artist, album=album)


def parse_album_identifier(raw: str | None) -> AlbumIdentifier:
    """
    Parse an album identifier into its scheme and payload.

    Raises:
        InvalidAlbumIdentifier: Unknown prefix, malformed id, or an empty side
    """
    s = str(raw or "").strip()
    scheme_name, sep, payload = s.partition(":")
    if not sep:
        raise InvalidAlbumIdentifier(f"Not an album identifier: {raw!r}")

    try:
        scheme = AlbumIdScheme(scheme_name)
    except ValueError as e:
        raise InvalidAlbumIdentifier(f"Unknown album identifier scheme: {scheme_name!r}") from e

    payload = payload.strip()
    if not payload:
        raise InvalidAlbumIdentifier(f"Empty payload in {raw!r}")

    if scheme is AlbumIdScheme.ARTIST_ALBUM:
        return _parse_artist_album(payload)

    if not _ID_TOKEN.match(payload):
        raise InvalidAlbumIdentifier(f"Malformed {scheme.value} id: {payload!r}")
    return AlbumIdentifier(scheme, value=payload)


def encode_album_identifier(artist: str, album: str) -> str:
    """Id-safe ``artist-album:`` form of a free-text pair."""
    artist = (artist or "").strip()
    album = (album or "").strip()
    if not artist or not album:
        raise InvalidAlbumIdentifier("Artist and album must both be non-empty")
    return f'artist-album:"{quote(artist, safe="")}","{quote(album, safe="")}"'


def encode_album_token(artist: str, album: str) -> str:
    """Compact base64url variant of the ``artist-album:`` payload."""
    text = f"{quote(artist.strip(), safe='')},{quote(album.strip(), safe='')}"
    token = base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")
    return f"artist-album:{token}"
