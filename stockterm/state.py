from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from stockterm.models import Candle, ChartMode, Quote, TimeRange

SORT_MODES = ("watchlist", "symbol", "price", "change")


class PaneStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"
    STALE = "stale"


@dataclass(frozen=True)
class WatchlistRow:
    symbol: str
    price: Optional[float] = None
    change_pct: Optional[float] = None       # as reported by the provider
    history_change_pct: Optional[float] = None  # first-to-last close under the active range

    @property
    def display_change(self) -> Optional[float]:
        if self.history_change_pct is not None:
            return self.history_change_pct
        return self.change_pct


class Watchlist:
    """Rows in configured order plus the sort, filter and selection applied to them."""

    def __init__(self, symbols: Iterable[str]):
        self._rows: Dict[str, WatchlistRow] = {}
        for s in symbols:
            if s not in self._rows:
                self._rows[s] = WatchlistRow(symbol=s)
        self.sort_mode = SORT_MODES[0]
        self.descending = False
        self.filter_text = ""
        self.selected: Optional[str] = next(iter(self._rows), None)

    @property
    def symbols(self) -> List[str]:
        return list(self._rows)

    def row(self, symbol: str) -> Optional[WatchlistRow]:
        return self._rows.get(symbol)

    def visible(self) -> List[WatchlistRow]:
        """Rows after filter and sort, in display order."""
        needle = self.filter_text.strip().lower()
        rows = [r for r in self._rows.values() if needle in r.symbol.lower()]
        if self.sort_mode == "watchlist":
            return rows[::-1] if self.descending else rows
        if self.sort_mode == "symbol":
            return sorted(rows, key=lambda r: r.symbol, reverse=self.descending)

        def value(r: WatchlistRow) -> Optional[float]:
            return r.price if self.sort_mode == "price" else r.display_change

        known = sorted((r for r in rows if value(r) is not None),
                       key=value, reverse=self.descending)
        return known + [r for r in rows if value(r) is None]

    def selected_index(self) -> int:
        for i, r in enumerate(self.visible()):
            if r.symbol == self.selected:
                return i
        return -1

    # -- Data ------------------------------------------------------------

    def update_quotes(self, quotes: Iterable[Quote]):
        for q in quotes:
            row = self._rows.get(q.symbol)
            if row is not None:
                self._rows[q.symbol] = replace(row, price=q.price, change_pct=q.change_pct)

    def set_history_change(self, symbol: str, pct: Optional[float]):
        row = self._rows.get(symbol)
        if row is not None:
            self._rows[symbol] = replace(row, history_change_pct=pct)

    # -- Selection -------------------------------------------------------

    def select(self, symbol: str) -> bool:
        if symbol not in self._rows:
            return False
        self.selected = symbol
        return True

    def select_index(self, index: int) -> bool:
        rows = self.visible()
        if not 0 <= index < len(rows):
            return False
        self.selected = rows[index].symbol
        return True

    def move(self, delta: int):
        rows = self.visible()
        if not rows:
            return
        idx = self.selected_index()
        if idx < 0:
            idx = 0
        else:
            idx = max(0, min(len(rows) - 1, idx + delta))
        self.selected = rows[idx].symbol

    def set_filter(self, text: str):
        self.filter_text = text
        self._keep_selection_visible()

    def cycle_sort(self):
        self.sort_mode = SORT_MODES[(SORT_MODES.index(self.sort_mode) + 1) % len(SORT_MODES)]

    def toggle_direction(self):
        self.descending = not self.descending

    def _keep_selection_visible(self):
        rows = self.visible()
        if any(r.symbol == self.selected for r in rows):
            return
        self.selected = rows[0].symbol if rows else None


@dataclass
class ViewState:
    """Everything the dashboard shows, owned by the orchestrator."""
    time_range: TimeRange = TimeRange.H24
    chart_mode: ChartMode = ChartMode.LINE

    pane_status: PaneStatus = PaneStatus.IDLE
    pane_error: str = ""
    retry_deadline: Optional[float] = None  # monotonic seconds, set while stale

    chart_symbol: Optional[str] = None
    chart_range: Optional[TimeRange] = None
    chart_series: Tuple[Candle, ...] = ()

    quotes_updated: Optional[float] = None  # wall clock
    quotes_error: str = ""

    help_visible: bool = False
    filter_editing: bool = False
    width: int = 0
    height: int = 0
    quit_flag: bool = False


@dataclass(frozen=True)
class RenderSnapshot:
    view: ViewState
    rows: Tuple[WatchlistRow, ...]
    selected: Optional[str]
    sort_mode: str
    descending: bool
    filter_text: str
    provider_name: str = ""
    now: float = 0.0  # monotonic time the snapshot was taken
    symbol_count: int = field(default=0)

    def retry_remaining(self) -> Optional[float]:
        if self.view.retry_deadline is None:
            return None
        return max(0.0, self.view.retry_deadline - self.now)
