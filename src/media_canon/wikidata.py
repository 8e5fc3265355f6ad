"""
Wikidata client for labels, typed claims and genre canonicalization.

Talks to the MediaWiki action API (wbsearchentities / wbgetentities) with
retry-with-backoff on 429/5xx. Entities are parsed into ``WikidataEntity`` at
the boundary and memoized in a TTL cache owned by the client.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from media_canon.config import HttpConfig, WikidataConfig
from media_canon.errors import UpstreamUnavailable
from media_canon.http_retry import request_with_retry
from media_canon.models import LOCAL, SECONDARY_A, SECONDARY_B, MediaKind
from media_canon.normalize import names_match, normalize_country_code
from media_canon.ttl_cache import MISS, TTLCache

log = logging.getLogger(__name__)

QID_PATTERN = re.compile(r"^Q\d+$")

# wbgetentities accepts at most 50 ids per call
MAX_IDS_PER_REQUEST = 50

DEFAULT_LANGUAGES = ["pt-br", "pt", "en", "es"]
ENTITY_PROPS = ["labels", "descriptions", "claims"]


class WD:
    """Wikidata property ids used by the resolver."""

    INSTANCE_OF = "P31"
    SUBCLASS_OF = "P279"
    GENRE = "P136"
    PUBLICATION_DATE = "P577"
    COUNTRY = "P17"
    COUNTRY_OF_ORIGIN = "P495"
    CITIZENSHIP = "P27"
    ISO3166_ALPHA2 = "P297"

    DIRECTOR = "P57"
    AUTHOR = "P50"
    DEVELOPER = "P178"
    PUBLISHER = "P123"
    PERFORMER = "P175"
    CREATOR = "P170"

    TMDB_MOVIE_ID = "P4947"
    RAWG_GAME_ID = "P9968"
    OPEN_LIBRARY_ID = "P648"
    MUSICBRAINZ_RELEASE_GROUP_ID = "P436"


PRIMARY_CREATOR_PROPS: dict[MediaKind, list[str]] = {
    MediaKind.FILM: [WD.DIRECTOR, WD.CREATOR],
    MediaKind.BOOK: [WD.AUTHOR, WD.CREATOR],
    MediaKind.GAME: [WD.DEVELOPER, WD.PUBLISHER, WD.CREATOR],
    MediaKind.ALBUM: [WD.PERFORMER, WD.CREATOR],
}

EXTERNAL_ID_PROPS = {
    "tmdb": WD.TMDB_MOVIE_ID,
    "rawg": WD.RAWG_GAME_ID,
    "openLibrary": WD.OPEN_LIBRARY_ID,
    "releaseGroupMbid": WD.MUSICBRAINZ_RELEASE_GROUP_ID,
}


def is_qid(value: Any) -> bool:
    return bool(QID_PATTERN.match(str(value if value is not None else "").strip()))


def normalize_ui_lang(lang: str | None) -> str:
    """Map a UI language to the Wikidata code; Portuguese means Brazilian."""
    if not lang:
        return "pt-br"
    normalized = str(lang).strip().lower()
    if normalized.startswith("pt"):
        return "pt-br"
    if normalized.startswith("en"):
        return "en"
    if normalized.startswith("es"):
        return "es"
    return "pt-br"


def parse_wikidata_year(time_string: str | None) -> int | None:
    """Year from a Wikidata time value such as ``+1999-03-31T00:00:00Z``."""
    if not time_string or not isinstance(time_string, str):
        return None
    match = re.match(r"^([+-]?\d+)-", time_string)
    if not match:
        return None
    return int(match.group(1))


@dataclass
class Snak:
    """The value of one claim, narrowed to the shapes the resolver reads."""

    entity_id: str | None = None
    text: str | None = None
    time: str | None = None

    @classmethod
    def from_claim(cls, claim: dict[str, Any]) -> Snak | None:
        datavalue = (claim.get("mainsnak") or {}).get("datavalue")
        if not datavalue:
            return None
        dv_type = datavalue.get("type")
        value = datavalue.get("value")
        if dv_type == "wikibase-entityid" and isinstance(value, dict):
            qid = value.get("id")
            return cls(entity_id=qid) if is_qid(qid) else None
        if dv_type == "time" and isinstance(value, dict):
            return cls(time=value.get("time"))
        if isinstance(value, str):
            return cls(text=value)
        if isinstance(value, int | float):
            return cls(text=str(value))
        return None


@dataclass
class WikidataEntity:
    """Parsed wbgetentities entity."""

    id: str
    labels: dict[str, str] = field(default_factory=dict)
    descriptions: dict[str, str] = field(default_factory=dict)
    claims: dict[str, list[Snak]] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> WikidataEntity | None:
        """Parse one entity; ``None`` for missing/invalid entries."""
        if not data or "missing" in data or not is_qid(data.get("id")):
            return None

        def _values(obj: dict[str, Any] | None) -> dict[str, str]:
            return {
                lang: str(item["value"])
                for lang, item in (obj or {}).items()
                if isinstance(item, dict) and str(item.get("value") or "").strip()
            }

        claims: dict[str, list[Snak]] = {}
        for prop, raw_claims in (data.get("claims") or {}).items():
            if not isinstance(raw_claims, list):
                continue
            snaks = [s for s in (Snak.from_claim(c) for c in raw_claims) if s is not None]
            if snaks:
                claims[prop] = snaks

        return cls(
            id=data["id"],
            labels=_values(data.get("labels")),
            descriptions=_values(data.get("descriptions")),
            claims=claims,
        )

    def entity_ids(self, prop: str) -> list[str]:
        """Distinct entity ids claimed under ``prop``, in claim order."""
        out: list[str] = []
        for snak in self.claims.get(prop, []):
            if snak.entity_id and snak.entity_id not in out:
                out.append(snak.entity_id)
        return out

    def first_string(self, prop: str) -> str | None:
        for snak in self.claims.get(prop, []):
            if snak.text and snak.text.strip():
                return snak.text.strip()
        return None

    def earliest_year(self, prop: str) -> int | None:
        years = [parse_wikidata_year(s.time) for s in self.claims.get(prop, [])]
        known = [y for y in years if y is not None]
        return min(known) if known else None

    def best_label(self, languages: Iterable[str]) -> str | None:
        for lang in languages:
            if value := self.labels.get(lang):
                return value
        return next(iter(self.labels.values()), None)

    def titles(self) -> dict[str, str | None]:
        """Labels in the three language slots; Brazilian Portuguese wins for PT."""
        return {
            LOCAL: self.labels.get("pt-br") or self.labels.get("pt"),
            SECONDARY_A: self.labels.get("en"),
            SECONDARY_B: self.labels.get("es"),
        }


@dataclass
class SearchResult:
    """One wbsearchentities hit."""

    id: str
    label: str | None = None
    description: str | None = None
    concept_uri: str | None = None


@dataclass
class GenreFacts:
    """A canonical genre and its per-language labels."""

    qid: str
    titles: dict[str, str | None] = field(default_factory=dict)


@dataclass
class TechnicalDetails:
    """Composite facts about one work, gathered in a single pass."""

    qid: str
    kind: MediaKind
    found: bool
    blocked: bool = False
    titles: dict[str, str | None] = field(default_factory=dict)
    instance_of: list[str] = field(default_factory=list)
    year: int | None = None
    creator_qid: str | None = None
    creator_name: str | None = None
    country_qid: str | None = None
    country_iso2: str | None = None
    genres: list[GenreFacts] = field(default_factory=list)
    external_ids: dict[str, str] = field(default_factory=dict)


class WikidataClient:
    """
    Wikidata action-API client.

    Provides entity search, batch entity fetch, claim extraction, two-hop
    country resolution and breadth-first genre canonicalization.
    """

    def __init__(
        self,
        config: WikidataConfig | None = None,
        http_config: HttpConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize Wikidata client.

        Args:
            config: Adapter settings (retries, genre roots, blocked types, ...)
            http_config: Timeout and User-Agent
            client: Pre-built httpx client (tests pass one with a mock transport)
        """
        self.config = config or WikidataConfig()
        http_config = http_config or HttpConfig()
        self._client = client or httpx.AsyncClient(
            timeout=http_config.timeout_s,
            headers={"User-Agent": http_config.user_agent},
        )
        self.entity_cache: TTLCache[WikidataEntity] = TTLCache(
            "wikidata-entities", self.config.entity_cache_ttl_s
        )

    async def _request(self, params: dict[str, str], label: str) -> dict[str, Any]:
        params = {**params, "format": "json"}
        response = await request_with_retry(
            lambda: self._client.get(self.config.api_url, params=params),
            retries=self.config.retries,
            backoff_base_s=self.config.backoff_base_s,
            label=label,
        )
        return response.json()

    async def search_entities(
        self, query: str, language: str = "pt-br", limit: int = 10
    ) -> list[SearchResult]:
        """
        Search items by free text.

        Raises:
            UpstreamUnavailable: On persistent 429/5xx
        """
        if not query or not str(query).strip():
            return []

        lang = normalize_ui_lang(language)
        data = await self._request(
            {
                "action": "wbsearchentities",
                "type": "item",
                "search": str(query),
                "language": lang,
                "uselang": lang,
                "limit": str(limit),
            },
            label=f"wikidata search {query!r}",
        )

        return [
            SearchResult(
                id=hit["id"],
                label=hit.get("label"),
                description=hit.get("description"),
                concept_uri=hit.get("concepturi"),
            )
            for hit in data.get("search", [])
            if is_qid(hit.get("id"))
        ]

    async def get_entities(
        self,
        ids: Iterable[str | None],
        languages: Iterable[str] = DEFAULT_LANGUAGES,
        props: Iterable[str] = ENTITY_PROPS,
    ) -> dict[str, WikidataEntity]:
        """
        Batch fetch entities by id (uncached passthrough).

        Blank and malformed ids are dropped before the call; an empty id list
        returns ``{}`` without touching the network. Missing entities are
        absent from the result.
        """
        clean_ids: list[str] = []
        for raw in ids:
            qid = str(raw if raw is not None else "").strip()
            if is_qid(qid) and qid not in clean_ids:
                clean_ids.append(qid)
        if not clean_ids:
            return {}

        langs = "|".join(dict.fromkeys(str(lang).strip().lower() for lang in languages))
        result: dict[str, WikidataEntity] = {}
        for start in range(0, len(clean_ids), MAX_IDS_PER_REQUEST):
            chunk = clean_ids[start : start + MAX_IDS_PER_REQUEST]
            data = await self._request(
                {
                    "action": "wbgetentities",
                    "ids": "|".join(chunk),
                    "languages": langs,
                    "props": "|".join(props),
                },
                label=f"wikidata entities {chunk[0]}..",
            )
            for qid, raw_entity in (data.get("entities") or {}).items():
                entity = WikidataEntity.from_json(raw_entity)
                if entity is not None:
                    result[qid] = entity
        return result

    async def _get_entities_cached(self, ids: Iterable[str]) -> dict[str, WikidataEntity | None]:
        """Fetch full entities through the TTL cache; absent entities cache as ``None``."""
        found: dict[str, WikidataEntity | None] = {}
        missing: list[str] = []
        for qid in ids:
            if not is_qid(qid):
                continue
            cached = self.entity_cache.get(qid)
            if cached is MISS:
                missing.append(qid)
            else:
                found[qid] = cached

        if missing:
            fetched = await self.get_entities(missing)
            for qid in missing:
                entity = fetched.get(qid)
                self.entity_cache.set(qid, entity)
                found[qid] = entity
        return found

    async def get_entity(self, qid: str) -> WikidataEntity | None:
        if not is_qid(qid):
            return None
        entities = await self._get_entities_cached([qid])
        return entities.get(qid)

    async def get_label(self, qid: str, ui_lang: str = "pt-br") -> str | None:
        """Best label for ``qid``: UI language, then pt-br, pt, en, es, then any."""
        entity = await self.get_entity(qid)
        if entity is None:
            return None
        lang = normalize_ui_lang(ui_lang)
        return entity.best_label([lang, *DEFAULT_LANGUAGES])

    async def get_country_iso2(self, country_qid: str | None) -> str | None:
        """
        Two-letter code of a country entity (its own P297 claim).

        The work's country-of-origin claim points at the country entity; the
        code lives on that entity, hence the second lookup.
        """
        if not is_qid(country_qid):
            return None
        country = await self.get_entity(country_qid)  # type: ignore[arg-type]
        if country is None:
            return None
        return normalize_country_code(country.first_string(WD.ISO3166_ALPHA2))

    async def resolve_entity_country_iso2(self, qid: str | None) -> str | None:
        """Country code of an arbitrary entity via P17, then P495, then P27."""
        if not is_qid(qid):
            return None
        entity = await self.get_entity(qid)  # type: ignore[arg-type]
        if entity is None:
            return None
        for prop in (WD.COUNTRY, WD.COUNTRY_OF_ORIGIN, WD.CITIZENSHIP):
            if country_ids := entity.entity_ids(prop):
                return await self.get_country_iso2(country_ids[0])
        return None

    async def find_organization_country(self, name: str | None, limit: int = 6) -> str | None:
        """
        Country of an organization known only by name (e.g. a game studio).

        Search hits whose label does not match the name either way are skipped.
        """
        if not name or not name.strip():
            return None
        for hit in await self.search_entities(name, language="en", limit=limit):
            if hit.label and not names_match(hit.label, name):
                continue
            entity = await self.get_entity(hit.id)
            if entity is None:
                continue
            country_ids = entity.entity_ids(WD.COUNTRY) or entity.entity_ids(WD.COUNTRY_OF_ORIGIN)
            if not country_ids:
                continue
            if iso2 := await self.get_country_iso2(country_ids[0]):
                return iso2
        return None

    async def resolve_genre_to_root(
        self,
        genre_id: str,
        root_ids: Iterable[str],
        max_depth: int | None = None,
    ) -> str | None:
        """
        Fold a specific genre into one of the configured root genres.

        Walks "subclass of" upward breadth-first. A visited set guarantees
        termination on cyclic taxonomies and ``max_depth`` bounds the number of
        levels fetched. Without a root in reach, the first resolvable node of
        the deepest level fetched is returned (the input id itself when no
        ancestor resolves).

        Returns:
            Root id, best-effort ancestor, or ``None`` for a malformed id
        """
        if not is_qid(genre_id):
            return None

        roots = {r for r in root_ids if is_qid(r)}
        if not roots:
            return genre_id
        if genre_id in roots:
            return genre_id

        depth_limit = self.config.max_depth if max_depth is None else max_depth
        visited = {genre_id}
        frontier = [genre_id]
        deepest = genre_id
        depth = 0

        while frontier and depth < depth_limit:
            entities = await self._get_entities_cached(frontier)
            next_frontier: list[str] = []

            resolved_here = [qid for qid in frontier if entities.get(qid) is not None]
            if resolved_here and depth > 0:
                deepest = resolved_here[0]

            for current in frontier:
                entity = entities.get(current)
                if entity is None:
                    continue
                for parent in entity.entity_ids(WD.SUBCLASS_OF):
                    if parent in visited:
                        continue
                    visited.add(parent)
                    if parent in roots:
                        log.debug(f"Genre {genre_id} folded into root {parent} at depth {depth + 1}")
                        return parent
                    next_frontier.append(parent)

            frontier = next_frontier
            depth += 1

        log.debug(f"Genre {genre_id} reached no root within {depth_limit} levels, using {deepest}")
        return deepest

    async def resolve_canonical_genres(
        self,
        genre_ids: Iterable[str],
        root_ids: Iterable[str],
        max_genres: int | None = None,
        max_depth: int | None = None,
    ) -> list[str]:
        """
        Canonicalize the first ``max_genres`` genre ids (input order).

        Results collapsing onto the same root are kept once, so fewer than
        ``max_genres`` ids may come back.
        """
        limit = self.config.max_genres if max_genres is None else max_genres
        roots = list(root_ids)
        candidates = [g for g in genre_ids if is_qid(g)][: max(0, limit)]

        resolved: list[str] = []
        for genre_id in candidates:
            root = await self.resolve_genre_to_root(genre_id, roots, max_depth=max_depth)
            if root and root not in resolved:
                resolved.append(root)
        return resolved

    async def build_technical_details(
        self,
        qid: str,
        kind: MediaKind,
        *,
        ui_lang: str = "pt-br",
        blocked_instance_of: Iterable[str] | None = None,
        genre_roots: Iterable[str] | None = None,
        max_genres: int | None = None,
    ) -> TechnicalDetails:
        """
        Gather instance types, genres, country, year and primary creator.

        Fetching the work itself is mandatory and its failure propagates.
        Creator, country and genre lookups are optional: their failures are
        logged and leave the field empty.
        """
        entity = await self.get_entity(qid)
        if entity is None:
            return TechnicalDetails(qid=qid, kind=kind, found=False)

        blocked_set = set(
            self.config.blocked_instance_of if blocked_instance_of is None else blocked_instance_of
        )
        instance_of = entity.entity_ids(WD.INSTANCE_OF)
        details = TechnicalDetails(
            qid=entity.id,
            kind=kind,
            found=True,
            titles=entity.titles(),
            instance_of=instance_of,
        )

        if blocked_set.intersection(instance_of):
            details.blocked = True
            return details

        details.year = entity.earliest_year(WD.PUBLICATION_DATE)
        details.external_ids = {
            key: value
            for key, prop in EXTERNAL_ID_PROPS.items()
            if (value := entity.first_string(prop))
        }

        creator_ids = [
            creator
            for prop in PRIMARY_CREATOR_PROPS.get(kind, [WD.CREATOR])
            for creator in entity.entity_ids(prop)
        ]
        details.creator_qid = creator_ids[0] if creator_ids else None

        country_ids = entity.entity_ids(WD.COUNTRY_OF_ORIGIN)
        details.country_qid = country_ids[0] if country_ids else None

        try:
            if details.creator_qid:
                details.creator_name = await self.get_label(details.creator_qid, ui_lang)
            if details.country_qid:
                details.country_iso2 = await self.get_country_iso2(details.country_qid)
        except (UpstreamUnavailable, httpx.HTTPError) as e:
            log.warning(f"Wikidata creator/country lookup failed for {qid}: {e}")

        roots = self.config.genre_roots if genre_roots is None else list(genre_roots)
        try:
            canonical = await self.resolve_canonical_genres(
                entity.entity_ids(WD.GENRE), roots, max_genres=max_genres
            )
            genre_entities = await self._get_entities_cached(canonical)
            details.genres = [
                GenreFacts(qid=g, titles=genre_entities[g].titles())  # type: ignore[union-attr]
                for g in canonical
                if genre_entities.get(g) is not None
            ]
        except (UpstreamUnavailable, httpx.HTTPError) as e:
            log.warning(f"Wikidata genre canonicalization failed for {qid}: {e}")

        return details

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> WikidataClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
