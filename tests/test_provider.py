"""Tests for the simulator and Massive providers."""

import json

import pytest

from stockterm.errors import FetchError, RateLimitedError
from stockterm.models import TimeRange
from stockterm.provider import MassiveProvider, SimulatorProvider, make_provider

NOW = 1_700_000_000.0


class FakeClient:
    """FetchClient stand-in returning canned JSON bodies."""

    def __init__(self, *bodies):
        self.bodies = list(bodies)
        self.calls = []
        self.closed = False

    def fetch(self, url, params=None, options=None, cancel=None):
        self.calls.append((url, params))
        body = self.bodies.pop(0)
        if isinstance(body, Exception):
            raise body
        if isinstance(body, bytes):
            return body
        return json.dumps(body).encode()

    def close(self):
        self.closed = True


class TestSimulator:
    @pytest.mark.parametrize("time_range, count", [
        (TimeRange.H1, 60),
        (TimeRange.H24, 288),
        (TimeRange.D7, 168),
        (TimeRange.D30, 30),
    ])
    def test_history_length(self, time_range, count):
        sim = SimulatorProvider(clock=lambda: NOW)
        assert len(sim.get_history("AAPL", time_range)) == count

    def test_history_is_reproducible(self):
        a = SimulatorProvider(clock=lambda: NOW).get_history("MSFT", TimeRange.D7)
        b = SimulatorProvider(clock=lambda: NOW).get_history("MSFT", TimeRange.D7)
        assert a == b

    def test_history_differs_per_symbol(self):
        sim = SimulatorProvider(clock=lambda: NOW)
        assert sim.get_history("AAPL", TimeRange.H1) != sim.get_history("MSFT", TimeRange.H1)

    def test_candles_are_well_formed(self):
        candles = SimulatorProvider(clock=lambda: NOW).get_history("X:BTCUSD", TimeRange.H24)
        for c in candles:
            assert c.low <= min(c.open, c.close)
            assert c.high >= max(c.open, c.close)
            assert c.low > 0
        stamps = [c.timestamp for c in candles]
        assert stamps == sorted(stamps)
        assert stamps[1] - stamps[0] == 300_000

    def test_quotes_follow_request_order(self):
        sim = SimulatorProvider()
        quotes = sim.get_quotes(["TSLA", "X:ETHUSD", "SPY"])
        assert [q.symbol for q in quotes] == ["TSLA", "X:ETHUSD", "SPY"]
        assert all(q.price > 0 for q in quotes)

    def test_quotes_walk_from_base_price(self):
        sim = SimulatorProvider()
        base = SimulatorProvider.base_price("NVDA")
        for _ in range(5):
            q = sim.get_quotes(["NVDA"])[0]
        assert abs(q.price - base) / base < 0.1
        assert q.change_pct == pytest.approx((q.price - base) / base * 100, abs=1e-3)

    def test_crypto_priced_higher(self):
        assert SimulatorProvider.base_price("X:BTCUSD") >= 1000
        assert SimulatorProvider.base_price("AAPL") < 500


class TestMassiveQuotes:
    def test_snapshot_request_and_normalisation(self):
        client = FakeClient({
            "status": "OK",
            "results": [
                {"ticker": "MSFT", "session": {"price": 410.5, "change_percent": -0.8}},
                {"ticker": "AAPL", "session": {"close": 190.0}},
                {"ticker": "X:BTCUSD", "last_trade": {"price": 64000.0}},
                {"ticker": "SPY", "last_quote": {"ask": 501.0, "bid": 499.0}},
                {"ticker": "BAD", "error": "NOT_FOUND"},
            ],
        })
        provider = MassiveProvider("key123", client)
        quotes = provider.get_quotes(["AAPL", "MSFT", "X:BTCUSD", "SPY", "BAD"])

        assert [(q.symbol, q.price, q.change_pct) for q in quotes] == [
            ("AAPL", 190.0, 0.0),
            ("MSFT", 410.5, -0.8),
            ("X:BTCUSD", 64000.0, 0.0),
            ("SPY", 500.0, 0.0),
        ]
        url, params = client.calls[0]
        assert url == "https://api.massive.com/v3/snapshot"
        assert params["ticker.any_of"] == "AAPL,MSFT,X:BTCUSD,SPY,BAD"
        assert params["apiKey"] == "key123"

    def test_no_symbols_makes_no_request(self):
        client = FakeClient()
        assert MassiveProvider("k", client).get_quotes([]) == []
        assert client.calls == []

    def test_rate_limit_propagates(self):
        client = FakeClient(RateLimitedError(12.0))
        with pytest.raises(RateLimitedError):
            MassiveProvider("k", client).get_quotes(["AAPL"])

    def test_error_status_raises(self):
        client = FakeClient({"status": "ERROR", "error": "Unknown API Key"})
        with pytest.raises(FetchError, match="Unknown API Key"):
            MassiveProvider("k", client).get_quotes(["AAPL"])

    def test_invalid_json_raises(self):
        client = FakeClient(b"<html>oops</html>")
        with pytest.raises(FetchError):
            MassiveProvider("k", client).get_quotes(["AAPL"])


class TestMassiveHistory:
    def test_aggs_request(self):
        client = FakeClient({"status": "OK", "results": [
            {"o": 1, "h": 2, "l": 0.5, "c": 1.5, "t": 1000},
            {"o": 1.5, "h": 2.5, "l": 1.0, "c": 2.0, "t": 2000},
        ]})
        provider = MassiveProvider("k", client, clock=lambda: NOW)
        candles = provider.get_history("AAPL", TimeRange.H1)

        assert [(c.open, c.close, c.timestamp) for c in candles] == [(1.0, 1.5, 1000), (1.5, 2.0, 2000)]
        url, params = client.calls[0]
        assert url == ("https://api.massive.com/v2/aggs/ticker/AAPL/range/1/minute/"
                       "1699996400000/1700000000000")
        assert params["sort"] == "asc"

    @pytest.mark.parametrize("time_range, fragment", [
        (TimeRange.H24, "/range/5/minute/"),
        (TimeRange.D7, "/range/1/hour/"),
        (TimeRange.D30, "/range/1/day/"),
    ])
    def test_bar_size_per_range(self, time_range, fragment):
        client = FakeClient({"results": []})
        MassiveProvider("k", client, clock=lambda: NOW).get_history("AAPL", time_range)
        assert fragment in client.calls[0][0]

    def test_malformed_bars_are_skipped(self):
        client = FakeClient({"results": [
            {"o": 1, "h": 2, "l": 0.5},
            {"o": "x", "h": 2, "l": 0.5, "c": 1},
            {"o": 1, "h": 2, "l": 0.5, "c": 1.2},
        ]})
        candles = MassiveProvider("k", client).get_history("AAPL", TimeRange.H1)
        assert len(candles) == 1
        assert candles[0].close == 1.2

    def test_missing_results_is_empty(self):
        client = FakeClient({"status": "OK", "resultsCount": 0})
        assert MassiveProvider("k", client).get_history("AAPL", TimeRange.D30) == []

    def test_close_closes_client(self):
        client = FakeClient()
        MassiveProvider("k", client).close()
        assert client.closed


class TestMakeProvider:
    def test_simulator(self):
        assert isinstance(make_provider("Simulator"), SimulatorProvider)

    def test_massive_requires_key(self):
        with pytest.raises(ValueError, match="MASSIVE_API_KEY"):
            make_provider("massive")

    def test_massive(self):
        provider = make_provider("massive", api_key="abc")
        assert isinstance(provider, MassiveProvider)
        provider.close()

    def test_unknown(self):
        with pytest.raises(ValueError, match="unknown provider"):
            make_provider("bloomberg")
