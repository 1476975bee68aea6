"""Price chart rendering.

``render_chart`` is a pure function of (series, canvas size, mode): it
returns a grid of (glyph, up) cells plus a one-line sparkline. The
``*_text`` helpers turn that into styled ``rich.text.Text``.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from rich.text import Text

from stockterm.constants import (
    DOWN_STYLE, GLYPH_AREA_CAP, GLYPH_AREA_FILL, GLYPH_BODY_DOWN, GLYPH_BODY_UP,
    GLYPH_CONNECTOR, GLYPH_LINE, GLYPH_WICK, MIN_CHART_HEIGHT, MIN_CHART_WIDTH,
    SPARK_BLOCKS, UP_STYLE, Y_LABEL_WIDTH,
)
from stockterm.formatting import fmt_duration
from stockterm.models import Candle, ChartMode, TimeRange

PAD_RATIO = 0.05
FLAT_SPREAD_RATIO = 0.01


@dataclass(frozen=True)
class Cell:
    glyph: str = " "
    up: bool = True


BLANK = Cell()


class _PaneTooSmall:
    def __repr__(self):
        return "TOO_SMALL"


TOO_SMALL = _PaneTooSmall()


@dataclass(frozen=True)
class PriceScale:
    """Maps prices to canvas rows; row 0 is the top (highest price)."""
    max_price: float
    min_price: float
    height: int

    @property
    def spread(self) -> float:
        return self.max_price - self.min_price

    @property
    def mid_price(self) -> float:
        return (self.max_price + self.min_price) / 2

    def row(self, price: float) -> int:
        r = math.floor((self.max_price - price) / self.spread * (self.height - 1) + 0.5)
        return max(0, min(self.height - 1, r))


@dataclass(frozen=True)
class ChartRender:
    grid: Tuple[Tuple[Cell, ...], ...]
    sparkline: Tuple[Cell, ...]
    scale: PriceScale

    @property
    def width(self) -> int:
        return len(self.sparkline)

    @property
    def height(self) -> int:
        return len(self.grid)


def price_scale(closes: Sequence[float], height: int) -> PriceScale:
    """Padded price bounds over the positive closes."""
    valid = [c for c in closes if c > 0] or list(closes)
    lo, hi = min(valid), max(valid)
    spread = hi - lo
    if spread == 0:
        spread = abs(hi) * FLAT_SPREAD_RATIO or 1.0
    lo -= spread * PAD_RATIO
    hi += spread * PAD_RATIO
    return PriceScale(max_price=hi, min_price=lo, height=height)


def sample_index(col: int, n: int, width: int) -> int:
    """Nearest-neighbour source index for a column."""
    return min(n - 1, col * n // width)


def _draw_line(canvas: List[List[Cell]], closes: Sequence[float], scale: PriceScale, width: int):
    n = len(closes)
    prev_row = None
    prev_close = None
    for col in range(width):
        close = closes[sample_index(col, n, width)]
        row = scale.row(close)
        up = prev_close is None or close >= prev_close
        if prev_row is not None and prev_row != row:
            for r in range(min(prev_row, row), max(prev_row, row) + 1):
                canvas[r][col] = Cell(GLYPH_CONNECTOR, up)
        canvas[row][col] = Cell(GLYPH_LINE, up)
        prev_row, prev_close = row, close


def _draw_area(canvas: List[List[Cell]], closes: Sequence[float], scale: PriceScale, width: int):
    n = len(closes)
    prev_close = None
    for col in range(width):
        close = closes[sample_index(col, n, width)]
        row = scale.row(close)
        up = prev_close is None or close >= prev_close
        canvas[row][col] = Cell(GLYPH_AREA_CAP, up)
        for r in range(row + 1, scale.height):
            canvas[r][col] = Cell(GLYPH_AREA_FILL, up)
        prev_close = close


def aggregate(bucket: Sequence[Candle]) -> Candle:
    """Collapse consecutive candles into one; non-positive lows are ignored."""
    open_ = bucket[0].open
    close = bucket[-1].close
    high = max(c.high for c in bucket)
    lows = [c.low for c in bucket if c.low > 0]
    low = min(lows) if lows else min(open_, close)
    return Candle(open=open_, high=high, low=low, close=close, timestamp=bucket[0].timestamp)


def _draw_candles(canvas: List[List[Cell]], series: Sequence[Candle], scale: PriceScale, width: int):
    n = len(series)
    per_col = max(1, n // width)
    for col in range(width):
        start = col * per_col
        if start >= n:
            break
        c = aggregate(series[start:start + per_col])
        up = c.close >= c.open

        wick_a, wick_b = scale.row(c.high), scale.row(c.low)
        for r in range(min(wick_a, wick_b), max(wick_a, wick_b) + 1):
            canvas[r][col] = Cell(GLYPH_WICK, up)

        body_a, body_b = scale.row(c.open), scale.row(c.close)
        glyph = GLYPH_BODY_UP if up else GLYPH_BODY_DOWN
        for r in range(min(body_a, body_b), max(body_a, body_b) + 1):
            canvas[r][col] = Cell(glyph, up)


def sparkline(closes: Sequence[float], width: int) -> Tuple[Cell, ...]:
    """One gradient glyph per column, scaled to the series' own min/max."""
    n = len(closes)
    if n == 0 or width <= 0:
        return ()
    lo, hi = min(closes), max(closes)
    rng = (hi - lo) or 1.0
    top = len(SPARK_BLOCKS) - 1
    cells = []
    prev = closes[0]
    for col in range(width):
        p = closes[sample_index(col, n, width)]
        level = max(0, min(top, int((p - lo) / rng * top)))
        cells.append(Cell(SPARK_BLOCKS[level], p >= prev))
        prev = p
    return tuple(cells)


def render_chart(series: Sequence[Candle], width: int, height: int,
                 mode: ChartMode) -> Union[ChartRender, _PaneTooSmall]:
    """Render ``series`` onto a ``width`` x ``height`` canvas.

    Returns ``TOO_SMALL`` when the canvas cannot hold a readable chart.
    """
    if width < MIN_CHART_WIDTH or height < MIN_CHART_HEIGHT:
        return TOO_SMALL
    if not series:
        raise ValueError("cannot render an empty series")

    closes = [c.close for c in series]
    scale = price_scale(closes, height)
    canvas = [[BLANK] * width for _ in range(height)]

    if mode is ChartMode.LINE:
        _draw_line(canvas, closes, scale, width)
    elif mode is ChartMode.AREA:
        _draw_area(canvas, closes, scale, width)
    else:
        _draw_candles(canvas, series, scale, width)

    return ChartRender(
        grid=tuple(tuple(row) for row in canvas),
        sparkline=sparkline(closes, width),
        scale=scale,
    )


# -- Styled output -----------------------------------------------------------

def _append_cells(text: Text, cells: Sequence[Cell]):
    """Append cells, batching runs that share a colour."""
    run: List[str] = []
    run_up = None
    for cell in cells:
        if run and cell.up != run_up:
            text.append("".join(run), style=UP_STYLE if run_up else DOWN_STYLE)
            run = []
        run.append(cell.glyph)
        run_up = cell.up
    if run:
        text.append("".join(run), style=UP_STYLE if run_up else DOWN_STYLE)


def axis_label(row: int, scale: PriceScale) -> str:
    """Y-axis label: max on the top row, midpoint in the middle, min at the bottom."""
    if row == 0:
        price = scale.max_price
    elif row == scale.height - 1:
        price = scale.min_price
    elif row == scale.height // 2:
        price = scale.mid_price
    else:
        return " " * Y_LABEL_WIDTH
    return _axis_price(price) + " "


def _axis_price(price: float) -> str:
    # eight columns wide at any magnitude
    if abs(price) < 99999.995:
        return f"{price:8.2f}"
    if abs(price) < 99999999.5:
        return f"{price:8.0f}"
    return f"{price:8.2e}"


def chart_header(symbol: str, time_range: TimeRange, series: Sequence[Candle],
                 mode: ChartMode, stale_remaining: Optional[float] = None) -> Text:
    first, last = series[0].close, series[-1].close
    pct = (last - first) / first * 100 if first else 0.0
    trend = UP_STYLE if last >= first else DOWN_STYLE

    header = Text()
    header.append(symbol, style="bold")
    header.append("  ")
    header.append(time_range.value, style="grey46")
    header.append("  ")
    header.append(f"${last:.2f} ({pct:+.2f}%)", style=f"bold {trend}")
    header.append("  ")
    header.append(f"[{mode.label}]", style="grey46")
    if stale_remaining is not None:
        header.append("  ")
        header.append(f"⚠ RATE LIMITED (refreshing in {fmt_duration(stale_remaining)})",
                      style="bold yellow")
    return header


def chart_text(render: ChartRender) -> Text:
    text = Text()
    for i, row in enumerate(render.grid):
        text.append(axis_label(i, render.scale), style="grey46")
        _append_cells(text, row)
        text.append("\n")
    text.append("\n")
    text.append("   Trend ", style="grey46")
    _append_cells(text, render.sparkline)
    return text
