"""Shared fixtures for stockterm tests."""

from typing import Dict, List, Tuple

import pytest

from stockterm.models import Candle, Quote, TimeRange
from stockterm.orchestrator import Orchestrator
from stockterm.provider import Provider


def make_candles(closes: List[float]) -> List[Candle]:
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        candles.append(Candle(
            open=prev,
            high=max(prev, close) + 0.5,
            low=min(prev, close) - 0.5,
            close=close,
            timestamp=1_700_000_000_000 + i * 60_000,
        ))
        prev = close
    return candles


class FakeProvider(Provider):
    """Counts calls; answers from queued responses, else a 5-point series."""

    name = "fake"

    def __init__(self):
        self.quote_calls: List[List[str]] = []
        self.history_calls: List[Tuple[str, TimeRange]] = []
        self.quotes_error = None
        self.responses: Dict[Tuple[str, TimeRange], list] = {}

    def queue(self, symbol: str, time_range: TimeRange, *responses):
        self.responses.setdefault((symbol, time_range), []).extend(responses)

    def get_quotes(self, symbols):
        self.quote_calls.append(list(symbols))
        if self.quotes_error is not None:
            raise self.quotes_error
        return [Quote(symbol=s, price=100.0, change_pct=1.0) for s in symbols]

    def get_history(self, symbol, time_range):
        self.history_calls.append((symbol, time_range))
        pending = self.responses.get((symbol, time_range))
        if pending:
            result = pending.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return make_candles([100.0, 101.0, 102.0, 101.5, 103.0])

    def history_calls_for(self, symbol, time_range=TimeRange.H24):
        return [c for c in self.history_calls if c == (symbol, time_range)]


class RecordingScheduler:
    def __init__(self):
        self.calls = []

    def __call__(self, delay, event):
        self.calls.append((delay, event))

    def events(self, kind):
        return [(d, e) for d, e in self.calls if isinstance(e, kind)]


class DeferredSpawner:
    """Holds spawned work until the test runs it."""

    def __init__(self):
        self.pending = []

    def __call__(self, fn, *args):
        self.pending.append((fn, args))

    def run(self, index):
        fn, args = self.pending[index]
        fn(*args)

    def run_all(self):
        pending, self.pending = self.pending, []
        for fn, args in pending:
            fn(*args)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def run_inline(fn, *args):
    fn(*args)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def orch(provider, scheduler, clock) -> Orchestrator:
    """Orchestrator whose fetches run inline and whose timers are only recorded."""
    return Orchestrator(
        provider, ["AAPL", "BTC-USD", "MSFT"],
        time_range=TimeRange.H24,
        refresh_interval=10.0,
        spawn=run_inline,
        schedule=scheduler,
        clock=clock,
        wall_clock=lambda: 1_700_000_000.0,
    )


@pytest.fixture
def primed(orch, provider, scheduler):
    """Started orchestrator with the startup fetches applied and counters reset."""
    orch.start()
    orch.drain()
    provider.quote_calls.clear()
    provider.history_calls.clear()
    scheduler.calls.clear()
    return orch
