"""Event loop core of the dashboard.

All state (watchlist, view, history cache) is mutated from ``dispatch``
only, one event at a time, on the thread that calls ``drain``. Fetches run
on worker threads and timers on ``threading.Timer``; both report back by
posting an event to ``inbox``.
"""

import itertools
import logging
import math
import queue
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Set, Tuple

from stockterm.constants import DEFAULT_RATE_LIMIT_WAIT, MAX_RATE_LIMIT_WAIT
from stockterm.errors import FetchCancelledError, RateLimitedError
from stockterm.events import (
    HistoryArrived, KeyPress, PointerClick, Quit, QuotesArrived, Resize,
    RetryHistoryDue, Tick, UserCycleChartMode, UserCycleRange,
    UserMoveSelection, UserRequestRefresh, UserSelectSymbol, UserSetRange,
)
from stockterm.layout import is_footer_row, watchlist_row_at
from stockterm.models import ChartMode, History, TimeRange
from stockterm.provider import Provider
from stockterm.state import PaneStatus, RenderSnapshot, ViewState, Watchlist

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, TimeRange]

RANGE_KEYS = {
    "1": TimeRange.H1,
    "2": TimeRange.H24,
    "3": TimeRange.D7,
    "4": TimeRange.D30,
}
QUIT_KEYS = ("q", "ctrl+c")


def _spawn_thread(fn: Callable, *args):
    threading.Thread(target=fn, args=args, daemon=True).start()


def percent_change(first: float, last: float) -> Optional[float]:
    if not first:
        return None
    return (last - first) / first * 100


def history_change(data: History) -> Optional[float]:
    """First-to-last close change of a series, or None below two points."""
    if len(data) < 2:
        return None
    return percent_change(data[0].close, data[-1].close)


def retry_delay(seconds: float) -> float:
    """Timer-safe delay for a rate-limit retry."""
    if not math.isfinite(seconds) or seconds < 0:
        return DEFAULT_RATE_LIMIT_WAIT
    return min(seconds, MAX_RATE_LIMIT_WAIT)


class Orchestrator:
    def __init__(self, provider: Provider, symbols: List[str],
                 time_range: TimeRange = TimeRange.H24,
                 chart_mode: ChartMode = ChartMode.LINE,
                 refresh_interval: float = 10.0,
                 spawn: Optional[Callable] = None,
                 schedule: Optional[Callable[[float, object], None]] = None,
                 cancel: Optional[threading.Event] = None,
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time):
        self.provider = provider
        self.inbox: "queue.Queue[object]" = queue.Queue()
        self.cache: Dict[CacheKey, History] = {}
        self.watchlist = Watchlist(symbols)
        self.view = ViewState(time_range=time_range, chart_mode=chart_mode)

        self._refresh_interval = refresh_interval
        self._spawn = spawn or _spawn_thread
        self._schedule = schedule or self._start_timer
        self._cancel = cancel if cancel is not None else threading.Event()
        self._clock = clock
        self._wall_clock = wall_clock

        self._timers: Set[threading.Timer] = set()
        self._timer_lock = threading.Lock()

        # Per-key request generations; a response older than the newest
        # one already applied for its key is dropped.
        self._generations = itertools.count(1)
        self._applied: Dict[CacheKey, int] = {}

        self._handlers = {
            Tick: self._on_tick,
            QuotesArrived: self._on_quotes,
            HistoryArrived: self._on_history,
            RetryHistoryDue: self._on_retry_history,
            UserSelectSymbol: self._on_select_symbol,
            UserMoveSelection: self._on_move_selection,
            UserSetRange: self._on_set_range,
            UserCycleRange: self._on_cycle_range,
            UserCycleChartMode: self._on_cycle_chart_mode,
            UserRequestRefresh: self._on_refresh,
            KeyPress: self._on_key,
            PointerClick: self._on_click,
            Resize: self._on_resize,
            Quit: self._on_quit,
        }

    # -- Lifecycle -------------------------------------------------------

    def start(self):
        """Prime quotes and every symbol's history, then start the refresh timer."""
        self._request_quotes()
        for symbol in self.watchlist.symbols:
            self._request_history(symbol, self.view.time_range)
        if self.watchlist.selected is not None:
            self.view.chart_symbol = self.watchlist.selected
            self.view.chart_range = self.view.time_range
            self._mark_loading()
        self._schedule(self._refresh_interval, Tick())

    def shutdown(self):
        """Stop timers and signal in-flight fetches to abort."""
        self._cancel.set()
        with self._timer_lock:
            timers = list(self._timers)
            self._timers.clear()
        for t in timers:
            t.cancel()
        logger.debug("orchestrator stopped (%d timers cancelled)", len(timers))

    def post(self, event: object):
        self.inbox.put(event)

    def drain(self, timeout: Optional[float] = None) -> int:
        """Dispatch queued events in arrival order. Waits up to ``timeout`` for the first."""
        handled = 0
        try:
            event = self.inbox.get(timeout=timeout) if timeout else self.inbox.get_nowait()
        except queue.Empty:
            return 0
        while True:
            self.dispatch(event)
            handled += 1
            try:
                event = self.inbox.get_nowait()
            except queue.Empty:
                return handled

    def dispatch(self, event: object):
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("no handler for %r", event)
            return
        handler(event)

    def snapshot(self) -> RenderSnapshot:
        wl = self.watchlist
        return RenderSnapshot(
            view=replace(self.view),
            rows=tuple(wl.visible()),
            selected=wl.selected,
            sort_mode=wl.sort_mode,
            descending=wl.descending,
            filter_text=wl.filter_text,
            provider_name=getattr(self.provider, "name", ""),
            now=self._clock(),
            symbol_count=len(wl.symbols),
        )

    # -- Side effects ----------------------------------------------------

    def _start_timer(self, delay: float, event: object):
        def fire():
            with self._timer_lock:
                self._timers.discard(timer)
            self.post(event)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._timer_lock:
            if self._cancel.is_set():
                return
            self._timers.add(timer)
        timer.start()

    def _request_quotes(self):
        self._spawn(self._fetch_quotes, list(self.watchlist.symbols))

    def _request_history(self, symbol: str, time_range: TimeRange):
        generation = next(self._generations)
        logger.debug("history request %s/%s gen=%d", symbol, time_range.value, generation)
        self._spawn(self._fetch_history, symbol, time_range, generation)

    # Worker-thread bodies: call the provider, post exactly one result.

    def _fetch_quotes(self, symbols: List[str]):
        try:
            quotes = self.provider.get_quotes(symbols)
        except Exception as e:
            self.post(QuotesArrived(error=e))
            return
        self.post(QuotesArrived(quotes=tuple(quotes)))

    def _fetch_history(self, symbol: str, time_range: TimeRange, generation: int):
        try:
            data = self.provider.get_history(symbol, time_range)
        except Exception as e:
            self.post(HistoryArrived(symbol, time_range, error=e, generation=generation))
            return
        self.post(HistoryArrived(symbol, time_range, data=tuple(data), generation=generation))

    # -- Pane helpers ----------------------------------------------------

    def _is_current(self, symbol: str, time_range: TimeRange) -> bool:
        return self.watchlist.selected == symbol and self.view.time_range == time_range

    def _present(self, symbol: str, time_range: TimeRange, data: History):
        v = self.view
        v.chart_symbol = symbol
        v.chart_range = time_range
        v.chart_series = data
        v.pane_status = PaneStatus.IDLE
        v.pane_error = ""
        v.retry_deadline = None

    def _mark_loading(self):
        self.view.pane_status = PaneStatus.LOADING
        self.view.pane_error = ""

    def _mark_stale(self, retry_after: float):
        self.view.pane_status = PaneStatus.STALE
        self.view.pane_error = ""
        self.view.retry_deadline = self._clock() + retry_after

    def _show_error(self, error: BaseException):
        self.view.pane_status = PaneStatus.ERROR
        self.view.pane_error = str(error)
        self.view.retry_deadline = None

    def _load_current(self):
        """Show the selection from cache, or fetch it."""
        symbol = self.watchlist.selected
        time_range = self.view.time_range
        if symbol is None:
            self._present(None, time_range, ())
            return
        cached = self.cache.get((symbol, time_range))
        if cached is not None:
            self._present(symbol, time_range, cached)
            return
        self.view.chart_symbol = symbol
        self.view.chart_range = time_range
        self.view.chart_series = ()
        self._mark_loading()
        self._request_history(symbol, time_range)

    def _after_selection_change(self, previous: Optional[str]):
        if self.watchlist.selected != previous:
            self._load_current()

    # -- Fetch results ---------------------------------------------------

    def _on_tick(self, event: Tick):
        self._request_quotes()
        self._schedule(self._refresh_interval, Tick())

    def _on_quotes(self, event: QuotesArrived):
        if isinstance(event.error, FetchCancelledError):
            return
        if event.error is not None:
            logger.warning("quote refresh failed: %s", event.error)
            self.view.quotes_error = str(event.error)[:80]
            return

        self.watchlist.update_quotes(event.quotes)
        self.view.quotes_updated = self._wall_clock()
        self.view.quotes_error = ""

        symbol = self.watchlist.selected
        if symbol is not None and (symbol, self.view.time_range) not in self.cache:
            self._mark_loading()
            self._request_history(symbol, self.view.time_range)

    def _on_history(self, event: HistoryArrived):
        if isinstance(event.error, FetchCancelledError):
            return
        key = (event.symbol, event.time_range)
        if event.generation and event.generation <= self._applied.get(key, 0):
            logger.debug("dropping superseded history %s/%s gen=%d",
                         event.symbol, event.time_range.value, event.generation)
            return
        current = self._is_current(*key)

        if event.error is None:
            self.cache[key] = event.data
            self._applied[key] = event.generation
            logger.debug("cached %d candles for %s/%s", len(event.data),
                         event.symbol, event.time_range.value)
            if current:
                self._present(event.symbol, event.time_range, event.data)
            if event.time_range == self.view.time_range:
                pct = history_change(event.data)
                if pct is not None:
                    self.watchlist.set_history_change(event.symbol, pct)
            return

        if isinstance(event.error, RateLimitedError):
            retry_after = retry_delay(event.error.retry_after)
            cached = self.cache.get(key)
            if current:
                if cached is not None:
                    self._present(event.symbol, event.time_range, cached)
                    self._mark_stale(retry_after)
                else:
                    self._show_error(event.error)
            logger.info("history %s/%s rate limited, retrying in %gs",
                        event.symbol, event.time_range.value, retry_after)
            self._schedule(retry_after, RetryHistoryDue(event.symbol, event.time_range))
            return

        logger.warning("history %s/%s failed: %s", event.symbol, event.time_range.value, event.error)
        if current:
            self._show_error(event.error)

    def _on_retry_history(self, event: RetryHistoryDue):
        if self._is_current(event.symbol, event.time_range):
            self._mark_loading()
        self._request_history(event.symbol, event.time_range)

    # -- User actions ----------------------------------------------------

    def _on_select_symbol(self, event: UserSelectSymbol):
        previous = self.watchlist.selected
        if self.watchlist.select(event.symbol):
            self._after_selection_change(previous)

    def _on_move_selection(self, event: UserMoveSelection):
        previous = self.watchlist.selected
        self.watchlist.move(event.delta)
        self._after_selection_change(previous)

    def _on_set_range(self, event: UserSetRange):
        self._switch_range(event.time_range)

    def _on_cycle_range(self, event: UserCycleRange):
        self._switch_range(self.view.time_range.next())

    def _switch_range(self, time_range: TimeRange):
        self.view.time_range = time_range
        # the change column always describes the active range
        for symbol in self.watchlist.symbols:
            cached = self.cache.get((symbol, time_range))
            self.watchlist.set_history_change(symbol, history_change(cached or ()))
        self._load_current()

    def _on_cycle_chart_mode(self, event: UserCycleChartMode):
        self.view.chart_mode = self.view.chart_mode.next()

    def _on_refresh(self, event: UserRequestRefresh):
        self._request_quotes()
        symbol = self.watchlist.selected
        if symbol is None:
            return
        self.view.chart_symbol = symbol
        self.view.chart_range = self.view.time_range
        self._mark_loading()
        self._request_history(symbol, self.view.time_range)

    def _on_resize(self, event: Resize):
        self.view.width = event.width
        self.view.height = event.height

    def _on_quit(self, event: Quit):
        self.view.quit_flag = True

    # -- Raw input -------------------------------------------------------

    def _on_key(self, event: KeyPress):
        key = event.key
        if key in QUIT_KEYS and not (self.view.filter_editing and key == "q"):
            self._on_quit(Quit())
            return

        if self.view.help_visible:
            if key in ("?", "esc"):
                self.view.help_visible = False
            return

        if self.view.filter_editing:
            self._edit_filter(key)
            return

        if key == "?":
            self.view.help_visible = True
        elif key in ("up", "k"):
            self.dispatch(UserMoveSelection(-1))
        elif key in ("down", "j"):
            self.dispatch(UserMoveSelection(1))
        elif key == "tab":
            self.dispatch(UserCycleRange())
        elif key in RANGE_KEYS:
            self.dispatch(UserSetRange(RANGE_KEYS[key]))
        elif key == "c":
            self.dispatch(UserCycleChartMode())
        elif key == "r":
            self.dispatch(UserRequestRefresh())
        elif key == "s":
            self.watchlist.cycle_sort()
        elif key == "S":
            self.watchlist.toggle_direction()
        elif key == "/":
            self.view.filter_editing = True

    def _edit_filter(self, key: str):
        previous = self.watchlist.selected
        text = self.watchlist.filter_text
        if key == "enter":
            self.view.filter_editing = False
        elif key == "esc":
            self.view.filter_editing = False
            self.watchlist.set_filter("")
        elif key == "backspace":
            self.watchlist.set_filter(text[:-1])
        elif key in ("up", "down"):
            self.watchlist.move(-1 if key == "up" else 1)
        elif len(key) == 1 and key.isprintable():
            self.watchlist.set_filter(text + key)
        self._after_selection_change(previous)

    def _on_click(self, event: PointerClick):
        if self.view.help_visible:
            return
        width, height = self.view.width, self.view.height
        if is_footer_row(event.y, height):
            self.dispatch(UserCycleRange())
            return
        index = watchlist_row_at(event.x, event.y, width, height,
                                 len(self.watchlist.visible()),
                                 self.watchlist.selected_index())
        if index is None:
            return
        previous = self.watchlist.selected
        if self.watchlist.select_index(index):
            self._after_selection_change(previous)
