"""Pytest configuration and shared fixtures for media-canon tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from media_canon.config import Config

# =============================================================================
# Recording transport
# =============================================================================


class RecordingTransport:
    """Serves canned responses through httpx.MockTransport and records every request."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self._handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


def _reply(request: httpx.Request, payload: Any) -> httpx.Response:
    if isinstance(payload, int):
        return httpx.Response(payload, request=request)
    return httpx.Response(200, json=payload, request=request)


# =============================================================================
# Wikidata payloads
# =============================================================================


def _snak(value: Any) -> dict[str, Any]:
    if isinstance(value, str) and value[:1] == "Q" and value[1:].isdigit():
        datavalue = {"type": "wikibase-entityid", "value": {"id": value}}
    elif isinstance(value, str) and value.startswith(("+", "-")) and "T" in value:
        datavalue = {"type": "time", "value": {"time": value}}
    else:
        datavalue = {"type": "string", "value": value}
    return {"mainsnak": {"datavalue": datavalue}}


def make_entity(
    qid: str,
    labels: dict[str, str] | None = None,
    claims: dict[str, list[Any]] | None = None,
) -> dict[str, Any]:
    """wbgetentities entity JSON. Claim values starting with Q are item links."""
    return {
        "id": qid,
        "labels": {lang: {"language": lang, "value": v} for lang, v in (labels or {}).items()},
        "descriptions": {},
        "claims": {prop: [_snak(v) for v in values] for prop, values in (claims or {}).items()},
    }


def wikidata_handler(
    entities: dict[str, dict[str, Any]],
    search: dict[str, list[dict[str, Any]]] | None = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """Answer wbgetentities from ``entities`` and wbsearchentities from ``search``."""

    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        action = params.get("action")
        if action == "wbgetentities":
            found = {
                qid: entities.get(qid, {"id": qid, "missing": ""})
                for qid in params["ids"].split("|")
            }
            return _reply(request, {"entities": found})
        if action == "wbsearchentities":
            return _reply(request, {"search": (search or {}).get(params["search"], [])})
        return _reply(request, 400)

    return handler


# =============================================================================
# MusicBrainz payloads
# =============================================================================


def musicbrainz_handler(
    routes: dict[str, Any],
) -> Callable[[httpx.Request], httpx.Response]:
    """
    Answer MusicBrainz requests from ``routes``.

    Keys are entity paths (``release/r1``), ``browse:<release-group>`` for
    release browsing and ``search:<entity>`` for searches. Values are JSON
    payloads or bare status codes; unknown keys answer 404.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path.split("/ws/2/", 1)[-1]
        params = request.url.params
        if "query" in params:
            key = f"search:{path}"
        elif path == "release" and "release-group" in params:
            key = f"browse:{params['release-group']}"
        else:
            key = path
        return _reply(request, routes.get(key, 404))

    return handler


def make_release(
    release_id: str,
    titles: list[str],
    *,
    title: str = "Album",
    date: str | None = "1990-01-01",
    country: str | None = None,
    status: str = "Official",
    fmt: str = "CD",
    release_group: str | None = "rg1",
) -> dict[str, Any]:
    """Release JSON with one medium holding ``titles``."""
    data: dict[str, Any] = {
        "id": release_id,
        "title": title,
        "date": date,
        "country": country,
        "status": status,
        "media": [
            {
                "format": fmt,
                "track-count": len(titles),
                "tracks": [{"title": t, "length": 180000} for t in titles],
            }
        ],
    }
    if release_group:
        data["release-group"] = {"id": release_group}
    return data


def browse_entry(release: dict[str, Any]) -> dict[str, Any]:
    """The browse-level view of a release: formats and counts, no tracks."""
    return {
        **{k: v for k, v in release.items() if k not in ("media", "release-group")},
        "media": [
            {"format": m["format"], "track-count": m["track-count"]} for m in release["media"]
        ],
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def recording():
    """Factory wrapping a handler in a RecordingTransport."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> RecordingTransport:
        return RecordingTransport(handler)

    return _make


@pytest.fixture
def wikidata_api():
    """Factory for a RecordingTransport serving Wikidata entities."""

    def _make(
        entities: dict[str, dict[str, Any]],
        search: dict[str, list[dict[str, Any]]] | None = None,
    ) -> RecordingTransport:
        return RecordingTransport(wikidata_handler(entities, search))

    return _make


@pytest.fixture
def musicbrainz_api():
    """Factory for a RecordingTransport serving MusicBrainz routes."""

    def _make(routes: dict[str, Any]) -> RecordingTransport:
        return RecordingTransport(musicbrainz_handler(routes))

    return _make


@pytest.fixture
def entity():
    """The ``make_entity`` builder."""
    return make_entity


@pytest.fixture
def release():
    """The ``make_release`` builder."""
    return make_release


@pytest.fixture
def fast_config() -> Config:
    """Defaults with pacing and backoff switched off and a single test genre root."""
    return Config.model_validate(
        {
            "wikidata": {"backoff_base_s": 0, "genre_roots": ["Q900"]},
            "musicbrainz": {"min_interval_s": 0, "backoff_base_s": 0},
        }
    )


@pytest.fixture
def browse():
    """The ``browse_entry`` builder."""
    return browse_entry
