from dataclasses import dataclass
from enum import Enum
from typing import Tuple


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: float
    change_pct: float


@dataclass(frozen=True)
class Candle:
    open: float
    high: float
    low: float
    close: float
    timestamp: int = 0  # period start, epoch milliseconds


History = Tuple[Candle, ...]


class TimeRange(Enum):
    H1 = "1H"
    H24 = "24H"
    D7 = "7D"
    D30 = "30D"

    @classmethod
    def parse(cls, value: str) -> "TimeRange":
        """Look up a range by its label ('1h', '24H', ...)."""
        label = value.strip().upper()
        for tr in cls:
            if tr.value == label:
                return tr
        raise ValueError(f"unknown time range '{value}'")

    def next(self) -> "TimeRange":
        members = list(TimeRange)
        return members[(members.index(self) + 1) % len(members)]


class ChartMode(Enum):
    LINE = "line"
    AREA = "area"
    CANDLE = "candle"

    @classmethod
    def parse(cls, value: str) -> "ChartMode":
        label = value.strip().lower()
        for mode in cls:
            if mode.value == label:
                return mode
        raise ValueError(f"unknown chart mode '{value}'")

    @property
    def label(self) -> str:
        return self.value.capitalize()

    def next(self) -> "ChartMode":
        members = list(ChartMode)
        return members[(members.index(self) + 1) % len(members)]
