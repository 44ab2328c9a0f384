"""
Tests for the USD->EUR rate source and TTL cache.

Covers:
- Live fetch, then cached reuse within the TTL
- Refresh after the TTL elapses
- Fallback on source failure, never cached
- Frankfurter response parsing and failure mapping
"""

from decimal import Decimal

import pytest
import requests

from agency_config.schema import EngineSettings
from agency_services.fx_rate_service import FrankfurterRateSource, FxRateCache, RateOrigin
from agency_kernel.exceptions import FxSourceError, InvalidExchangeRateError


class FakeSource:
    name = "fake"

    def __init__(self, *results):
        self._results = list(results)
        self.calls = 0

    def fetch_rate(self):
        self.calls += 1
        result = self._results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeResponse:
    def __init__(self, status_code=200, payload=None, body_is_json=True):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload
        self._body_is_json = body_is_json

    def json(self):
        if not self._body_is_json:
            raise ValueError("Expecting value")
        return self._payload


class FakeHttp:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, headers=None, timeout=None):
        self.requests.append((url, headers, timeout))
        if self.error is not None:
            raise self.error
        return self.response


class TestFxRateCache:
    def test_live_then_cached(self, clock):
        source = FakeSource(Decimal("0.91"))
        cache = FxRateCache(source, fallback_rate=Decimal("0.92"), ttl_seconds=600, clock=clock)

        first = cache.current_rate()
        clock.advance(599)
        second = cache.current_rate()

        assert first.origin == RateOrigin.LIVE
        assert first.rate == Decimal("0.910000")
        assert second.origin == RateOrigin.CACHED
        assert second.rate == first.rate
        assert source.calls == 1

    def test_refresh_after_ttl(self, clock):
        source = FakeSource(Decimal("0.91"), Decimal("0.93"))
        cache = FxRateCache(source, fallback_rate=Decimal("0.92"), ttl_seconds=600, clock=clock)

        cache.current_rate()
        clock.advance(600)
        quote = cache.current_rate()

        assert quote.origin == RateOrigin.LIVE
        assert quote.rate == Decimal("0.930000")
        assert source.calls == 2

    def test_fallback_not_cached(self, clock, captured_logs):
        source = FakeSource(FxSourceError("fake", "timeout"), Decimal("0.90"))
        cache = FxRateCache(source, fallback_rate=Decimal("0.92"), clock=clock)

        fallback = cache.current_rate()
        live = cache.current_rate()

        assert fallback.origin == RateOrigin.FALLBACK
        assert fallback.rate == Decimal("0.920000")
        assert live.origin == RateOrigin.LIVE
        assert live.rate == Decimal("0.900000")
        records = [r for r in captured_logs() if r["message"] == "fx_rate_fallback_used"]
        assert records and records[0]["reason"] == "timeout"

    def test_invalidate(self, clock):
        source = FakeSource(Decimal("0.91"), Decimal("0.95"))
        cache = FxRateCache(source, fallback_rate=Decimal("0.92"), clock=clock)
        cache.current_rate()
        cache.invalidate()
        assert cache.current_rate().rate == Decimal("0.950000")

    @pytest.mark.parametrize("rate", [Decimal("0"), Decimal("-1")])
    def test_fallback_must_be_positive(self, rate):
        with pytest.raises(InvalidExchangeRateError):
            FxRateCache(FakeSource(), fallback_rate=rate)

    def test_from_settings(self, clock):
        settings = EngineSettings(fx_fallback_rate=Decimal("0.95"), fx_cache_ttl_seconds=10)
        cache = FxRateCache.from_settings(settings, clock=clock, source=FakeSource(FxSourceError("fake", "down")))
        assert cache.fallback_rate == Decimal("0.950000")
        assert cache.current_rate().rate == Decimal("0.950000")


class TestFrankfurterRateSource:
    URL = "https://api.frankfurter.app/latest?from=USD&to=EUR"

    def test_parses_rate(self):
        http = FakeHttp(FakeResponse(payload={"amount": 1.0, "base": "USD", "rates": {"EUR": 0.9187}}))
        source = FrankfurterRateSource(self.URL, timeout=3.0, session=http)
        assert source.fetch_rate() == Decimal("0.9187")
        assert http.requests == [(self.URL, {"Accept": "application/json"}, 3.0)]

    def test_transport_error(self):
        source = FrankfurterRateSource(self.URL, session=FakeHttp(error=requests.ConnectionError("refused")))
        with pytest.raises(FxSourceError) as exc_info:
            source.fetch_rate()
        assert exc_info.value.code == "FX_SOURCE_UNAVAILABLE"

    def test_http_error(self):
        source = FrankfurterRateSource(self.URL, session=FakeHttp(FakeResponse(status_code=503)))
        with pytest.raises(FxSourceError):
            source.fetch_rate()

    def test_non_json_body(self):
        source = FrankfurterRateSource(self.URL, session=FakeHttp(FakeResponse(body_is_json=False)))
        with pytest.raises(FxSourceError):
            source.fetch_rate()

    @pytest.mark.parametrize(
        "payload",
        [{}, {"rates": {}}, {"rates": {"EUR": 0}}, {"rates": {"EUR": "abc"}}, ["EUR"]],
    )
    def test_bad_payload(self, payload):
        source = FrankfurterRateSource(self.URL, session=FakeHttp(FakeResponse(payload=payload)))
        with pytest.raises(FxSourceError):
            source.fetch_rate()
