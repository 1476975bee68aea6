"""Market data providers.

The dashboard only ever talks to ``Provider``; everything source-specific
(URLs, payload shapes, symbol quirks) stays in this module.
"""

import json
import logging
import math
import random
import threading
import time
import zlib
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from stockterm.constants import MASSIVE_BASE_URL, RANGE_BARS
from stockterm.errors import FetchError
from stockterm.fetch import FetchClient
from stockterm.models import Candle, Quote, TimeRange

logger = logging.getLogger(__name__)

_TIMESPAN_SECONDS = {"minute": 60, "hour": 3600, "day": 86400}


class Provider(ABC):
    """Capability every data source implements.

    Both calls may raise ``RateLimitedError``; any other exception is
    treated as fatal for that call only.
    """

    name = "provider"

    @abstractmethod
    def get_quotes(self, symbols: List[str]) -> List[Quote]:
        """Latest quote per symbol, in the order given (unknown symbols skipped)."""

    @abstractmethod
    def get_history(self, symbol: str, time_range: TimeRange) -> List[Candle]:
        """Candles for ``time_range``, oldest first."""

    def close(self):
        pass


class MassiveProvider(Provider):
    """Massive (formerly Polygon.io) REST API over the shared fetch client."""

    name = "massive"

    def __init__(self, api_key: str, client: FetchClient,
                 base_url: str = MASSIVE_BASE_URL,
                 clock: Callable[[], float] = time.time):
        self._api_key = api_key
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    # -- Snapshots -------------------------------------------------------

    def get_quotes(self, symbols: List[str]) -> List[Quote]:
        if not symbols:
            return []
        payload = self._get_json("/v3/snapshot", {
            "ticker.any_of": ",".join(symbols),
            "limit": 250,
        })
        by_symbol: Dict[str, Quote] = {}
        for snap in payload.get("results") or []:
            t = snap.get("ticker")
            if not t or snap.get("error"):
                continue
            quote = self._normalize_snapshot(snap, t)
            if quote is not None:
                by_symbol[t] = quote
        return [by_symbol[s] for s in symbols if s in by_symbol]

    # -- Aggs ------------------------------------------------------------

    def get_history(self, symbol: str, time_range: TimeRange) -> List[Candle]:
        lookback, multiplier, timespan = RANGE_BARS[time_range.value]
        to_ms = int(self._clock() * 1000)
        from_ms = to_ms - lookback * 1000
        path = f"/v2/aggs/ticker/{symbol}/range/{multiplier}/{timespan}/{from_ms}/{to_ms}"
        payload = self._get_json(path, {"adjusted": "true", "sort": "asc", "limit": 50000})
        candles = []
        for bar in payload.get("results") or []:
            try:
                candles.append(Candle(
                    open=float(bar["o"]),
                    high=float(bar["h"]),
                    low=float(bar["l"]),
                    close=float(bar["c"]),
                    timestamp=int(bar.get("t") or 0),
                ))
            except (KeyError, TypeError, ValueError):
                logger.debug("skipping malformed bar for %s: %r", symbol, bar)
        return candles

    def close(self):
        self._client.close()

    # -- Internal helpers ------------------------------------------------

    def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        params = dict(params, apiKey=self._api_key)
        body = self._client.fetch(self._base_url + path, params=params)
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise FetchError(f"invalid JSON from {path}: {e}") from e
        if not isinstance(payload, dict):
            raise FetchError(f"unexpected payload from {path}")
        if payload.get("status") == "ERROR":
            raise FetchError(payload.get("error") or payload.get("message") or "provider error")
        return payload

    @staticmethod
    def _normalize_snapshot(snap: Dict[str, Any], ticker: str) -> Optional[Quote]:
        """Convert a universal snapshot result to a Quote."""
        session = snap.get("session") or {}
        price = session.get("price") or session.get("close") or snap.get("value")

        # Fallback: last_trade
        if price is None:
            price = (snap.get("last_trade") or {}).get("price")

        # Fallback: last_quote midpoint
        if price is None:
            lq = snap.get("last_quote") or {}
            ask, bid = lq.get("ask"), lq.get("bid")
            if ask and bid:
                price = (ask + bid) / 2

        if price is None:
            return None
        change_pct = session.get("change_percent")
        return Quote(symbol=ticker, price=float(price),
                     change_pct=float(change_pct) if change_pct is not None else 0.0)


def _seed(*parts: str) -> int:
    return zlib.crc32("|".join(parts).encode("utf-8"))


class SimulatorProvider(Provider):
    """Offline random-walk data, reproducible per symbol and range."""

    name = "simulator"

    def __init__(self, latency: float = 0.0,
                 cancel: Optional[threading.Event] = None,
                 clock: Callable[[], float] = time.time):
        self._latency = latency
        self._cancel = cancel if cancel is not None else threading.Event()
        self._clock = clock
        self._lock = threading.Lock()
        self._prices: Dict[str, float] = {}
        self._rngs: Dict[str, random.Random] = {}

    @staticmethod
    def base_price(symbol: str) -> float:
        seed = _seed(symbol)
        if symbol.upper().startswith("X:") or "-USD" in symbol.upper():
            return float(1000 + seed % 60000)
        return float(20 + seed % 480)

    def get_quotes(self, symbols: List[str]) -> List[Quote]:
        self._pause()
        quotes = []
        with self._lock:
            for symbol in symbols:
                rng = self._rngs.setdefault(symbol, random.Random(_seed(symbol, "quotes")))
                base = self.base_price(symbol)
                price = self._prices.get(symbol, base) * (1 + rng.gauss(0, 0.002))
                self._prices[symbol] = price
                quotes.append(Quote(symbol=symbol, price=round(price, 4),
                                    change_pct=(price - base) / base * 100))
        return quotes

    def get_history(self, symbol: str, time_range: TimeRange) -> List[Candle]:
        self._pause()
        lookback, multiplier, timespan = RANGE_BARS[time_range.value]
        step = multiplier * _TIMESPAN_SECONDS[timespan]
        count = max(2, lookback // step)
        rng = random.Random(_seed(symbol, time_range.value))
        vol = 0.004 * math.sqrt(step / 60)

        end = int(self._clock()) // step * step
        price = self.base_price(symbol)
        candles = []
        for i in range(count):
            open_ = price
            close = open_ * (1 + rng.gauss(0, vol))
            high = max(open_, close) * (1 + abs(rng.gauss(0, vol / 2)))
            low = min(open_, close) * (1 - abs(rng.gauss(0, vol / 2)))
            ts = (end - (count - 1 - i) * step) * 1000
            candles.append(Candle(open=round(open_, 4), high=round(high, 4),
                                  low=round(low, 4), close=round(close, 4), timestamp=ts))
            price = close
        return candles

    def _pause(self):
        if self._latency > 0:
            self._cancel.wait(self._latency)


def make_provider(name: str, api_key: str = "",
                  cancel: Optional[threading.Event] = None) -> Provider:
    """Build the provider named in the config."""
    key = name.strip().lower()
    if key == "simulator":
        return SimulatorProvider(latency=0.3, cancel=cancel)
    if key == "massive":
        if not api_key:
            raise ValueError("MASSIVE_API_KEY is required for the massive provider")
        return MassiveProvider(api_key, FetchClient(cancel=cancel))
    raise ValueError(f"unknown provider '{name}'")
