"""
Google Books client for per-language book synopses and covers.

Volumes are matched by the Wikidata title of each language plus the author.
An API key is optional; without one the public quota applies.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any

from media_canon.models import LOCAL, SECONDARY_A, SECONDARY_B
from media_canon.normalize import pick_first
from media_canon.providers.base import ProviderClient

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"

BOOK_LANGUAGES = {LOCAL: "pt", SECONDARY_A: "en", SECONDARY_B: "es"}

# Shorter descriptions are usually placeholders
MIN_DESCRIPTION_CHARS = 50

IMAGE_KEYS = ["extraLarge", "large", "medium", "thumbnail", "smallThumbnail"]


def upgrade_cover_url(url: str | None) -> str | None:
    """Serve covers over https, without the page-curl effect, at the larger zoom level."""
    if not url:
        return None
    upgraded = str(url).replace("http:", "https:", 1).split("&edge=curl")[0]
    if "zoom=5" in upgraded or "zoom=0" in upgraded:
        upgraded = re.sub(r"zoom=\d", "zoom=1", upgraded)
    return upgraded


def _quote(value: str) -> str:
    return '"' + value.replace('"', " ").strip() + '"'


@dataclass
class BookVolume:
    volume_id: str
    description: str
    thumbnail: str | None = None


@dataclass
class BookEnrichment:
    """Synopses per language slot plus the best cover found."""

    synopses: dict[str, str | None] = field(default_factory=dict)
    poster_url: str | None = None
    volume_ids: dict[str, str] = field(default_factory=dict)


class GoogleBooksClient(ProviderClient):
    """Google Books volumes search client."""

    name = "google-books"
    requires_key = False

    async def find_volume(
        self, title: str | None, author: str | None, lang: str
    ) -> BookVolume | None:
        """First volume in ``lang`` matching title/author with a substantial description."""
        if not title or not title.strip():
            return None

        query = f"intitle:{_quote(title)}"
        if author and author.strip():
            query += f" inauthor:{_quote(author)}"

        params: dict[str, str] = {
            "q": query,
            "langRestrict": lang,
            "maxResults": "3",
            "printType": "books",
            "orderBy": "relevance",
        }
        if self.api_key:
            params["key"] = self.api_key

        data = await self._get_json(GOOGLE_BOOKS_URL, params, label=f"volumes ({lang})")
        for item in (data or {}).get("items") or []:
            info: dict[str, Any] = item.get("volumeInfo") or {}
            description = (info.get("description") or "").strip()
            if len(description) <= MIN_DESCRIPTION_CHARS:
                continue
            links = info.get("imageLinks") or {}
            return BookVolume(
                volume_id=item.get("id", ""),
                description=description,
                thumbnail=pick_first(*(links.get(k) for k in IMAGE_KEYS)),
            )
        return None

    async def get_enrichment(
        self, titles: dict[str, str | None], author: str | None
    ) -> BookEnrichment:
        """
        Search each language with its own title, concurrently.

        The cover prefers the local edition, then English, then Spanish. A
        language whose search fails is left empty.
        """
        slots = list(BOOK_LANGUAGES)
        volumes = await asyncio.gather(
            *(
                self._skip_on_failure(
                    self.find_volume(titles.get(slot), author, BOOK_LANGUAGES[slot]),
                    f"volumes ({BOOK_LANGUAGES[slot]})",
                )
                for slot in slots
            )
        )
        by_slot = dict(zip(slots, volumes, strict=True))

        synopses = {slot: v.description if v else None for slot, v in by_slot.items()}
        cover = pick_first(*(v.thumbnail if v else None for v in volumes))
        return BookEnrichment(
            synopses=synopses,
            poster_url=upgrade_cover_url(cover),
            volume_ids={slot: v.volume_id for slot, v in by_slot.items() if v and v.volume_id},
        )


## Tests


def test_upgrade_cover_url():
    url = "http://books.google.com/books/content?id=abc&printsec=frontcover&img=1&zoom=5&edge=curl&source=gbs_api"
    assert upgrade_cover_url(url) == (
        "https://books.google.com/books/content?id=abc&printsec=frontcover&img=1&zoom=1"
    )
    assert upgrade_cover_url(None) is None
