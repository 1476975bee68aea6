"""Screen geometry shared by the renderer and pointer hit-testing."""

from typing import Optional, Tuple

from stockterm.constants import (
    CHART_CHROME_HEIGHT, CHART_CHROME_WIDTH, FOOTER_HEIGHT, HEADER_HEIGHT,
    WATCHLIST_MAX_WIDTH, WATCHLIST_MIN_WIDTH, WATCHLIST_WIDTH_RATIO,
)

# Panel top border + table header row
_LIST_TOP_CHROME = 2
# Panel top and bottom borders + table header row
_LIST_CHROME = 3


def watchlist_width(width: int) -> int:
    w = int(width * WATCHLIST_WIDTH_RATIO)
    return max(WATCHLIST_MIN_WIDTH, min(WATCHLIST_MAX_WIDTH, w))


def body_height(height: int) -> int:
    return max(0, height - HEADER_HEIGHT - FOOTER_HEIGHT)


def chart_pane_size(width: int, height: int) -> Tuple[int, int]:
    return max(0, width - watchlist_width(width)), body_height(height)


def chart_canvas_size(pane_width: int, pane_height: int) -> Tuple[int, int]:
    """Plot area left once the pane border, header, axis labels and sparkline are drawn."""
    return pane_width - CHART_CHROME_WIDTH, pane_height - CHART_CHROME_HEIGHT


def list_capacity(height: int) -> int:
    return max(1, body_height(height) - _LIST_CHROME)


def visible_window(count: int, selected: int, capacity: int) -> Tuple[int, int]:
    """Slice of rows to draw so that the selected row stays on screen."""
    if count <= capacity:
        return 0, count
    start = 0
    if selected >= capacity:
        start = selected - capacity + 1
    return start, min(count, start + capacity)


def is_footer_row(y: int, height: int) -> bool:
    return height > 0 and y == height - FOOTER_HEIGHT


def watchlist_row_at(x: int, y: int, width: int, height: int,
                     count: int, selected: int) -> Optional[int]:
    """Index (into the visible rows) under a click, or None."""
    if x < 0 or x >= watchlist_width(width):
        return None
    start, end = visible_window(count, max(selected, 0), list_capacity(height))
    local = y - HEADER_HEIGHT - _LIST_TOP_CHROME
    if 0 <= local < end - start:
        return start + local
    return None
