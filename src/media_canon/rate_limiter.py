"""Single-lane rate limiting for etiquette-constrained services.

MusicBrainz asks clients to keep at least one second between requests. Every
call through a ``RateLimitedClient`` waits its turn on one lock and sleeps
whatever remains of the minimum interval since the previous call finished.
The pacing state belongs to the instance, so independent clients never
interfere with each other.
"""

from __future__ import annotations

import asyncio
import logging
import time

import httpx

log = logging.getLogger(__name__)


class SerialPacer:
    """
    FIFO gate enforcing a minimum interval between consecutive operations.

    ``asyncio.Lock`` wakes waiters in acquisition order, so concurrent callers
    are dispatched in enqueue order. A caller cancelled while queued simply
    drops out of the lock's wait list and holds no slot.
    """

    def __init__(self, min_interval_s: float):
        self.min_interval_s = min_interval_s
        self._lock = asyncio.Lock()
        self._last_finished: float | None = None
        self.dispatched = 0

    def _remaining_wait(self) -> float:
        if self._last_finished is None or self.min_interval_s <= 0:
            return 0.0
        elapsed = time.monotonic() - self._last_finished
        return max(0.0, self.min_interval_s - elapsed)

    async def run(self, operation):
        """Await ``operation()`` once this caller reaches the head of the lane."""
        async with self._lock:
            wait = self._remaining_wait()
            if wait > 0:
                log.debug(f"Pacing: sleeping {wait:.3f}s before next request")
                await asyncio.sleep(wait)
            self.dispatched += 1
            try:
                return await operation()
            finally:
                self._last_finished = time.monotonic()


class RateLimitedClient:
    """
    ``httpx.AsyncClient`` wrapper whose ``send`` is serialized through a pacer.

    Transport errors and error statuses are surfaced untouched; retry policy is
    the caller's decision.
    """

    def __init__(self, client: httpx.AsyncClient, min_interval_s: float = 1.1):
        self._client = client
        self._pacer = SerialPacer(min_interval_s)

    @property
    def min_interval_s(self) -> float:
        return self._pacer.min_interval_s

    @property
    def dispatched(self) -> int:
        return self._pacer.dispatched

    async def send(self, request: httpx.Request) -> httpx.Response:
        return await self._pacer.run(lambda: self._client.send(request))

    def build_request(self, method: str, url: str, **kwargs) -> httpx.Request:
        return self._client.build_request(method, url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()


## Tests


def test_pacer_spaces_consecutive_calls():
    """Calls issued back to back are at least min_interval apart."""
    starts: list[float] = []

    async def op():
        starts.append(time.monotonic())

    async def scenario():
        pacer = SerialPacer(0.05)
        await asyncio.gather(*(pacer.run(op) for _ in range(3)))
        return pacer

    pacer = asyncio.run(scenario())
    assert pacer.dispatched == 3
    gaps = [b - a for a, b in zip(starts, starts[1:], strict=False)]
    assert all(gap >= 0.045 for gap in gaps)


def test_pacer_preserves_enqueue_order():
    order: list[int] = []

    def make_op(i: int):
        async def op():
            order.append(i)

        return op

    async def scenario():
        pacer = SerialPacer(0.0)
        await asyncio.gather(*(pacer.run(make_op(i)) for i in range(5)))

    asyncio.run(scenario())
    assert order == [0, 1, 2, 3, 4]


def test_independent_clients_do_not_share_pacing():
    a = SerialPacer(10.0)
    b = SerialPacer(10.0)

    async def noop():
        return None

    async def scenario():
        await a.run(noop)
        # b has never run, so it must not wait on a's history
        assert b._remaining_wait() == 0.0

    asyncio.run(scenario())


def test_rate_limited_client_surfaces_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, request=request)

    async def scenario():
        client = RateLimitedClient(
            httpx.AsyncClient(transport=httpx.MockTransport(handler)), min_interval_s=0
        )
        request = client.build_request("GET", "https://example.org/x")
        response = await client.send(request)
        await client.aclose()
        return response

    response = asyncio.run(scenario())
    assert response.status_code == 503
