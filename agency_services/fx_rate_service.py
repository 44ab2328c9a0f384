"""
agency_services.fx_rate_service -- Current USD->EUR rate with a TTL cache.

Responsibility:
    Supplies the one external scalar every engine run takes: EUR per 1 USD.
    ``FrankfurterRateSource`` fetches the daily rate over HTTP;
    ``FxRateCache`` memoizes it for a TTL and degrades to a static
    fallback rate when the source fails.

Architecture position:
    Services -- imperative shell.  The only module that performs network
    I/O.  Engines never call it; services read ``current_rate()`` once per
    computation and pass the value in.

Invariants enforced:
    - ``current_rate()`` never raises and never returns a non-positive
      rate.
    - Only live rates are cached; a fallback quote is returned but not
      stored, so the next call retries the source.
    - Cache state is guarded by a ``threading.Lock`` that is never held
      across the network fetch.  One caller refreshes at a time; the
      others are answered immediately from the stale value or the
      fallback, so an outage never queues callers behind the timeout.

Failure modes:
    - ``FxSourceError`` from a source is caught inside the cache and
      logged as ``fx_rate_fallback_used``.

Usage:
    cache = FxRateCache.from_settings(get_engine_settings())
    rate = cache.current_rate().rate
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Protocol

import requests

from agency_kernel.domain.clock import Clock, SystemClock
from agency_kernel.domain.values import round_rate, to_decimal
from agency_kernel.exceptions import FxSourceError, InvalidExchangeRateError
from agency_kernel.logging_config import get_logger

logger = get_logger("services.fx_rate")


class RateOrigin(str, Enum):
    LIVE = "live"
    CACHED = "cached"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class RateQuote:
    """A USD->EUR rate and where it came from."""

    rate: Decimal
    as_of: datetime
    origin: RateOrigin


class RateSource(Protocol):
    """Anything that can fetch the current EUR-per-USD rate."""

    name: str

    def fetch_rate(self) -> Decimal:
        """Return the live rate; raise FxSourceError on any failure."""
        ...


class FrankfurterRateSource:
    """
    Reads ``rates.EUR`` from a Frankfurter-style JSON endpoint.

    Contract:
        ``GET <url>`` returns ``{"rates": {"EUR": <number>}, ...}``.

    Guarantees:
        - Every failure (transport, non-2xx, malformed body, non-positive
          rate) surfaces as ``FxSourceError``.
    """

    name = "frankfurter"

    def __init__(self, url: str, timeout: float = 5.0, session: requests.Session | None = None):
        self.url = url
        self.timeout = timeout
        self._http = session or requests.Session()

    def fetch_rate(self) -> Decimal:
        try:
            resp = self._http.get(
                self.url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise FxSourceError(self.name, f"request failed: {exc}") from exc

        if not resp.ok:
            raise FxSourceError(self.name, f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise FxSourceError(self.name, "response is not JSON") from exc

        rates = data.get("rates") if isinstance(data, dict) else None
        raw = rates.get("EUR") if isinstance(rates, dict) else None
        rate = to_decimal(raw)
        if rate is None or rate <= 0:
            raise FxSourceError(self.name, f"missing or non-positive EUR rate: {raw!r}")
        return rate


class FxRateCache:
    """
    Process-wide, explicitly passed rate cache.

    Contract:
        Construct once per process and hand the instance to services.
        ``ttl_seconds`` bounds how long a live rate is reused.

    Guarantees:
        - Lazy refresh: the source is called only when the cached value is
          absent or older than the TTL.
        - Falls back to ``fallback_rate`` on any source failure.

    Non-goals:
        - No background refresh thread.
    """

    def __init__(
        self,
        source: RateSource,
        fallback_rate: Decimal,
        ttl_seconds: int = 600,
        clock: Clock | None = None,
    ):
        if fallback_rate is None or fallback_rate <= 0:
            raise InvalidExchangeRateError(fallback_rate, "fallback rate must be positive")
        self._source = source
        self._fallback_rate = round_rate(fallback_rate)
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._value: Decimal | None = None
        self._fetched_at: datetime | None = None
        self._refreshing = False

    @classmethod
    def from_settings(
        cls,
        settings,
        clock: Clock | None = None,
        source: RateSource | None = None,
    ) -> FxRateCache:
        """Build the cache (and, unless given, the HTTP source) from EngineSettings."""
        if source is None:
            source = FrankfurterRateSource(
                settings.fx_api_url,
                timeout=settings.fx_request_timeout_seconds,
            )
        return cls(
            source,
            fallback_rate=settings.fx_fallback_rate,
            ttl_seconds=settings.fx_cache_ttl_seconds,
            clock=clock,
        )

    @property
    def fallback_rate(self) -> Decimal:
        return self._fallback_rate

    def _is_fresh(self, now: datetime) -> bool:
        return (
            self._value is not None
            and self._fetched_at is not None
            and now - self._fetched_at < self._ttl
        )

    def current_rate(self) -> RateQuote:
        """The cached rate if fresh, else a live fetch, else the fallback.

        Only one caller fetches at a time.  While that fetch is in flight,
        other callers get the stale cached rate, or the fallback when
        nothing has been cached yet, without waiting.
        """
        with self._lock:
            now = self._clock.now()
            if self._is_fresh(now):
                return RateQuote(self._value, self._fetched_at, RateOrigin.CACHED)
            if self._refreshing:
                return self._quote_during_refresh(now)
            self._refreshing = True

        rate: Decimal | None = None
        try:
            rate = round_rate(self._source.fetch_rate())
        except FxSourceError as exc:
            logger.warning(
                "fx_rate_fallback_used",
                extra={
                    "source": exc.source,
                    "reason": exc.reason,
                    "fallback_rate": str(self._fallback_rate),
                },
            )
        finally:
            with self._lock:
                self._refreshing = False
                if rate is not None:
                    self._value = rate
                    self._fetched_at = now

        if rate is None:
            return RateQuote(self._fallback_rate, now, RateOrigin.FALLBACK)
        logger.info(
            "fx_rate_refreshed",
            extra={"source": self._source.name, "rate": str(rate)},
        )
        return RateQuote(rate, now, RateOrigin.LIVE)

    def _quote_during_refresh(self, now: datetime) -> RateQuote:
        # caller holds self._lock
        if self._value is not None:
            return RateQuote(self._value, self._fetched_at, RateOrigin.CACHED)
        logger.debug("fx_rate_refresh_in_flight", extra={"fallback_rate": str(self._fallback_rate)})
        return RateQuote(self._fallback_rate, now, RateOrigin.FALLBACK)

    def invalidate(self) -> None:
        """Drop the cached value; the next call fetches."""
        with self._lock:
            self._value = None
            self._fetched_at = None
