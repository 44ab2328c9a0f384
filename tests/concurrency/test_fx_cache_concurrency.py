"""
Concurrency tests for FxRateCache.

Covers:
- Only one thread fetches while a refresh is in flight
- Other threads are answered immediately (fallback, or the stale rate)
- A slow failing source does not serialize callers behind its timeout
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal

from agency_kernel.domain.clock import DeterministicClock
from agency_kernel.exceptions import FxSourceError
from agency_services.fx_rate_service import FxRateCache, RateOrigin

FALLBACK = Decimal("0.92")
WAIT_SECONDS = 5


class GatedSource:
    """Source answering ``results`` in order; calls from ``gate_from`` on block until released."""

    name = "gated"

    def __init__(self, *results, gate_from: int = 0):
        self.results = list(results)
        self.gate_from = gate_from
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0
        self._calls_lock = threading.Lock()

    def fetch_rate(self) -> Decimal:
        with self._calls_lock:
            index = self.calls
            self.calls += 1
        if index >= self.gate_from:
            self.started.set()
            self.release.wait(WAIT_SECONDS)
        result = self.results[index]
        if isinstance(result, Exception):
            raise result
        return result


class SlowFailingSource:
    name = "slow"

    def __init__(self, delay: float):
        self.delay = delay

    def fetch_rate(self) -> Decimal:
        time.sleep(self.delay)
        raise FxSourceError(self.name, "timeout")


def make_clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 3, 15, 9, 0, 0, tzinfo=timezone.utc))


class TestSingleFlightRefresh:
    def test_waiting_callers_get_fallback_during_outage(self):
        source = GatedSource(FxSourceError("gated", "timeout"))
        cache = FxRateCache(source, fallback_rate=FALLBACK, clock=make_clock())

        with ThreadPoolExecutor(max_workers=5) as pool:
            refreshing = pool.submit(cache.current_rate)
            assert source.started.wait(WAIT_SECONDS)

            others = [pool.submit(cache.current_rate) for _ in range(4)]
            quotes = [future.result(timeout=1) for future in others]

            source.release.set()
            first = refreshing.result(timeout=WAIT_SECONDS)

        assert source.calls == 1
        assert all(quote.origin == RateOrigin.FALLBACK for quote in quotes)
        assert all(quote.rate == Decimal("0.920000") for quote in quotes)
        assert first.origin == RateOrigin.FALLBACK

    def test_stale_rate_served_while_refreshing(self):
        clock = make_clock()
        source = GatedSource(Decimal("0.91"), Decimal("0.95"), gate_from=1)
        cache = FxRateCache(source, fallback_rate=FALLBACK, ttl_seconds=600, clock=clock)
        assert cache.current_rate().origin == RateOrigin.LIVE

        clock.advance(600)

        with ThreadPoolExecutor(max_workers=3) as pool:
            refreshing = pool.submit(cache.current_rate)
            assert source.started.wait(WAIT_SECONDS)

            stale = [pool.submit(cache.current_rate).result(timeout=1) for _ in range(2)]

            source.release.set()
            fresh = refreshing.result(timeout=WAIT_SECONDS)

        assert all(quote.origin == RateOrigin.CACHED for quote in stale)
        assert all(quote.rate == Decimal("0.910000") for quote in stale)
        assert fresh.origin == RateOrigin.LIVE
        assert fresh.rate == Decimal("0.950000")
        assert cache.current_rate().rate == Decimal("0.950000")
        assert source.calls == 2

    def test_outage_does_not_serialize_callers(self):
        delay = 0.3
        cache = FxRateCache(SlowFailingSource(delay), fallback_rate=FALLBACK, clock=make_clock())
        barrier = threading.Barrier(5)

        def call():
            barrier.wait(WAIT_SECONDS)
            return cache.current_rate()

        started = time.monotonic()
        with ThreadPoolExecutor(max_workers=5) as pool:
            quotes = [future.result(timeout=WAIT_SECONDS) for future in [pool.submit(call) for _ in range(5)]]
        elapsed = time.monotonic() - started

        assert all(quote.rate == Decimal("0.920000") for quote in quotes)
        assert elapsed < delay * 2
