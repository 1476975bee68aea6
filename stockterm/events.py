"""Messages delivered to the orchestrator inbox.

Fetch workers and timers never touch dashboard state; they post one of
these and the event loop applies it.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from stockterm.models import Candle, Quote, TimeRange


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class QuotesArrived:
    quotes: Tuple[Quote, ...] = ()
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class HistoryArrived:
    symbol: str
    time_range: TimeRange
    data: Tuple[Candle, ...] = ()
    error: Optional[BaseException] = None
    generation: int = 0


@dataclass(frozen=True)
class RetryHistoryDue:
    symbol: str
    time_range: TimeRange


@dataclass(frozen=True)
class UserSelectSymbol:
    symbol: str


@dataclass(frozen=True)
class UserMoveSelection:
    delta: int


@dataclass(frozen=True)
class UserSetRange:
    time_range: TimeRange


@dataclass(frozen=True)
class UserCycleRange:
    pass


@dataclass(frozen=True)
class UserCycleChartMode:
    pass


@dataclass(frozen=True)
class UserRequestRefresh:
    pass


@dataclass(frozen=True)
class KeyPress:
    key: str


@dataclass(frozen=True)
class PointerClick:
    x: int
    y: int


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


@dataclass(frozen=True)
class Quit:
    pass
