"""
Shared plumbing for the secondary content providers.

TMDB, RAWG, Google Books and Last.fm are not rate limited by a queue; they
share the retry helper and the "absent, not failed" conventions defined here.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

import httpx

from media_canon.config import HttpConfig
from media_canon.errors import UpstreamUnavailable
from media_canon.http_retry import request_with_retry

log = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderClient:
    """
    Base for an API-key provider client.

    A client without its key is unavailable: requests return ``None`` and the
    missing key is logged once. 404 answers are ``None`` too; persistent
    429/5xx raise ``UpstreamUnavailable`` for the orchestrator to degrade on.
    """

    name = "provider"
    requires_key = True

    def __init__(
        self,
        api_key: str | None = None,
        http_config: HttpConfig | None = None,
        client: httpx.AsyncClient | None = None,
        retries: int = 2,
        backoff_base_s: float = 0.25,
    ):
        http_config = http_config or HttpConfig()
        self.api_key = api_key
        self.retries = retries
        self.backoff_base_s = backoff_base_s
        self._client = client or httpx.AsyncClient(
            timeout=http_config.timeout_s,
            headers={"User-Agent": http_config.user_agent},
        )
        self._reported_unavailable = False

    @property
    def available(self) -> bool:
        return bool(self.api_key) or not self.requires_key

    def _check_available(self) -> bool:
        if self.available:
            return True
        if not self._reported_unavailable:
            log.debug(f"{self.name}: no API key configured, provider disabled")
            self._reported_unavailable = True
        return False

    async def _get_json(
        self, url: str, params: dict[str, str], label: str
    ) -> dict[str, Any] | None:
        """GET ``url`` with retry; ``None`` when unavailable or not found."""
        if not self._check_available():
            return None

        try:
            response = await request_with_retry(
                lambda: self._client.get(url, params=params),
                retries=self.retries,
                backoff_base_s=self.backoff_base_s,
                label=f"{self.name} {label}",
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        return response.json()

    async def _skip_on_failure(self, awaitable: Awaitable[T], label: str) -> T | None:
        """Await one of several independent requests; its failure only loses that part."""
        try:
            return await awaitable
        except (UpstreamUnavailable, httpx.HTTPError) as e:
            log.warning(f"{self.name} {label} skipped: {e}")
            return None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> ProviderClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
