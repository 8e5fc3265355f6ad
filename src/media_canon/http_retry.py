"""Retry with exponential backoff for transient HTTP failures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from media_canon.errors import UpstreamUnavailable

log = logging.getLogger(__name__)

DEFAULT_RETRIES = 2
DEFAULT_BACKOFF_BASE_S = 0.25


def is_retryable_status(status_code: int) -> bool:
    """429 and every 5xx are transient; other statuses are final."""
    return status_code == 429 or 500 <= status_code <= 599


async def request_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    retries: int = DEFAULT_RETRIES,
    backoff_base_s: float = DEFAULT_BACKOFF_BASE_S,
    label: str = "request",
) -> httpx.Response:
    """
    Call ``send`` until it yields a non-transient response.

    Transient statuses, timeouts and transport errors are retried ``retries``
    more times, sleeping ``backoff_base_s * 2**attempt`` in between. When the
    budget runs out the failure becomes ``UpstreamUnavailable``. Other error
    statuses raise ``httpx.HTTPStatusError`` immediately.

    Returns:
        The successful response
    """
    last_status: int | None = None
    last_error: str = ""

    for attempt in range(retries + 1):
        try:
            response = await send()
        except httpx.TransportError as e:
            # Timeouts are transport errors too
            last_status = None
            last_error = f"{type(e).__name__}: {e}"
        else:
            if not is_retryable_status(response.status_code):
                response.raise_for_status()
                return response
            last_status = response.status_code
            last_error = f"HTTP {response.status_code}"

        if attempt == retries:
            break

        delay = backoff_base_s * (2**attempt)
        log.debug(f"{label} failed ({last_error}), retry {attempt + 1}/{retries} in {delay:.2f}s")
        await asyncio.sleep(delay)

    raise UpstreamUnavailable(
        f"{label} failed after {retries + 1} attempts: {last_error}",
        status_code=last_status,
    )
