"""RAWG client for game descriptions, artwork, developer and genres."""

from __future__ import annotations

from dataclasses import dataclass, field

from media_canon.providers.base import ProviderClient

RAWG_API_URL = "https://api.rawg.io/api"


@dataclass
class RawgGame:
    """RAWG game details. Text is provider-global (not localized)."""

    rawg_id: str
    name: str
    description: str | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    developer: str | None = None
    release_year: int | None = None
    genres: list[str] = field(default_factory=list)
    platforms: list[str] = field(default_factory=list)
    metacritic: int | None = None
    playtime: int | None = None
    website: str | None = None


class RawgClient(ProviderClient):
    """RAWG video game database client."""

    name = "rawg"

    async def get_game(self, rawg_id: str) -> RawgGame | None:
        data = await self._get_json(
            f"{RAWG_API_URL}/games/{rawg_id}",
            {"key": self.api_key or ""},
            label=f"game {rawg_id}",
        )
        if not data or "id" not in data:
            return None

        released = data.get("released") or ""
        developers = data.get("developers") or []
        return RawgGame(
            rawg_id=str(data["id"]),
            name=data.get("name", ""),
            description=(data.get("description_raw") or data.get("description") or "").strip() or None,
            poster_url=data.get("background_image"),
            backdrop_url=data.get("background_image_additional") or data.get("background_image"),
            developer=developers[0].get("name") if developers else None,
            release_year=int(released[:4]) if released[:4].isdigit() else None,
            genres=[g["name"] for g in data.get("genres") or [] if g.get("name")],
            platforms=[
                p["platform"]["name"]
                for p in data.get("platforms") or []
                if (p.get("platform") or {}).get("name")
            ],
            metacritic=data.get("metacritic"),
            playtime=data.get("playtime"),
            website=data.get("website") or None,
        )
