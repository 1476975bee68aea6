import logging
import os
import select
import sys
import threading
import time
from datetime import datetime
from typing import Callable, List

from rich.align import Align
from rich.console import Group
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from stockterm.chart import TOO_SMALL, chart_header, chart_text, render_chart
from stockterm.constants import FOOTER_HEIGHT, HEADER_HEIGHT
from stockterm.events import KeyPress, PointerClick
from stockterm.formatting import fmt_pct, fmt_price
from stockterm.layout import (
    chart_canvas_size, chart_pane_size, list_capacity, visible_window,
    watchlist_width,
)
from stockterm.models import TimeRange
from stockterm.state import PaneStatus, RenderSnapshot

logger = logging.getLogger(__name__)

HELP_KEYS = [
    ("↑/k ↓/j", "Move selection"),
    ("tab", "Cycle time range"),
    ("1-4", "1H / 24H / 7D / 30D"),
    ("c", "Cycle chart type"),
    ("r", "Refresh now"),
    ("/", "Filter symbols"),
    ("s / S", "Sort mode / direction"),
    ("?", "Toggle help"),
    ("q", "Quit"),
]

_ESCAPES = {
    "\x1b[A": "up",
    "\x1b[B": "down",
    "\x1b[C": "right",
    "\x1b[D": "left",
    "\x1bOA": "up",
    "\x1bOB": "down",
    "\x1b[Z": "shift+tab",
}

_CONTROL_KEYS = {
    "\t": "tab",
    "\r": "enter",
    "\n": "enter",
    "\x7f": "backspace",
    "\x08": "backspace",
    "\x03": "ctrl+c",
}

MOUSE_ON = "\x1b[?1000h"
MOUSE_OFF = "\x1b[?1000l"


def make_header(snap: RenderSnapshot) -> Panel:
    now = datetime.now().strftime("%H:%M:%S")

    left = Text()
    left.append(snap.provider_name, style="bold cyan")
    left.append(f"  {snap.symbol_count} symbols", style="grey46")
    if snap.view.quotes_error:
        left.append("  ")
        left.append(f"⚠ {snap.view.quotes_error}", style="bold yellow")

    right = Text(f"{now}  [?] Help  [q] Quit", style="dim")

    header_table = Table(expand=True, box=None, show_header=False, padding=0)
    header_table.add_column("left")
    header_table.add_column("right", justify="right")
    header_table.add_row(left, right)

    return Panel(header_table, title="[bold grey70]STOCKTERM[/bold grey70]", border_style="grey70")


def build_watchlist_panel(snap: RenderSnapshot) -> Panel:
    table = Table(expand=True, box=None, padding=(0, 1))
    table.add_column("Symbol", justify="left", style="bold white", no_wrap=True)
    table.add_column("Last", justify="right", no_wrap=True)
    table.add_column("Chg%", justify="right", no_wrap=True)

    rows = snap.rows
    selected = next((i for i, r in enumerate(rows) if r.symbol == snap.selected), 0)
    start, end = visible_window(len(rows), selected, list_capacity(snap.view.height or 24))
    if not rows:
        table.add_row("—", "", "")
    for i in range(start, end):
        r = rows[i]
        style = "bold white on grey23" if r.symbol == snap.selected else None
        table.add_row(r.symbol, fmt_price(r.price, style="white"), fmt_pct(r.display_change), style=style)

    arrow = "↓" if snap.descending else "↑"
    subtitle = f"sort: {snap.sort_mode} {arrow}"
    if snap.view.filter_editing or snap.filter_text:
        cursor = "_" if snap.view.filter_editing else ""
        subtitle = f"/{snap.filter_text}{cursor}  {subtitle}"
    return Panel(table, title="[bold grey70]WATCHLIST[/bold grey70]",
                 subtitle=f"[grey46]{subtitle}[/grey46]", subtitle_align="right",
                 border_style="grey70")


def _centered(message: str, style: str = "grey46") -> Align:
    return Align.center(Text(message, style=style), vertical="middle")


def build_chart_body(snap: RenderSnapshot, pane_width: int, pane_height: int):
    view = snap.view
    if view.pane_status is PaneStatus.LOADING:
        return _centered("Loading...")
    if view.pane_status is PaneStatus.ERROR:
        return _centered(view.pane_error, style="bold red")
    if not view.chart_symbol:
        return _centered("No symbol selected")
    if not view.chart_series:
        return _centered("No data")

    width, height = chart_canvas_size(pane_width, pane_height)
    render = render_chart(view.chart_series, width, height, view.chart_mode)
    if render is TOO_SMALL:
        return _centered("Too small")

    stale = snap.retry_remaining() if view.pane_status is PaneStatus.STALE else None
    header = chart_header(view.chart_symbol, view.chart_range or view.time_range,
                          view.chart_series, view.chart_mode, stale_remaining=stale)
    return Group(header, Text(""), chart_text(render))


def build_chart_panel(snap: RenderSnapshot) -> Panel:
    pane_width, pane_height = chart_pane_size(snap.view.width or 80, snap.view.height or 24)
    body = build_chart_body(snap, pane_width, pane_height)
    border = "yellow" if snap.view.pane_status is PaneStatus.STALE else "medium_purple"
    return Panel(body, title="[bold grey70]CHART[/bold grey70]", border_style=border)


def build_footer(snap: RenderSnapshot) -> Text:
    view = snap.view
    footer = Text(" ")
    for tr in TimeRange:
        if tr is view.time_range:
            footer.append(f" {tr.value} ", style="bold white on medium_purple")
        else:
            footer.append(f" {tr.value} ", style="grey46")
    footer.append("  ")
    if view.quotes_error:
        footer.append("⚠ quotes stale", style="yellow")
    elif view.quotes_updated:
        footer.append(f"updated {time.strftime('%H:%M:%S', time.localtime(view.quotes_updated))}",
                      style="grey46")
    else:
        footer.append("connecting...", style="grey46")
    footer.append(f"  {view.chart_mode.label}", style="grey46")
    return footer


def build_help_panel() -> Panel:
    table = Table(box=None, show_header=False, padding=(0, 2))
    table.add_column("Key", style="bold cyan", no_wrap=True)
    table.add_column("Action", style="white")
    for key, action in HELP_KEYS:
        table.add_row(key, action)
    return Panel(Align.center(table, vertical="middle"), title="[bold grey70]HELP[/bold grey70]",
                 subtitle="[grey46]? or esc to close[/grey46]", border_style="medium_purple")


def build_layout(snap: RenderSnapshot) -> Layout:
    layout = Layout()
    layout.split_column(
        Layout(name="header", size=HEADER_HEIGHT),
        Layout(name="body"),
        Layout(name="footer", size=FOOTER_HEIGHT),
    )
    layout["header"].update(make_header(snap))
    layout["footer"].update(build_footer(snap))

    if snap.view.help_visible:
        layout["body"].update(build_help_panel())
        return layout

    body = Layout()
    body.split_row(
        Layout(name="watchlist", size=watchlist_width(snap.view.width or 80)),
        Layout(name="chart"),
    )
    body["watchlist"].update(build_watchlist_panel(snap))
    body["chart"].update(build_chart_panel(snap))
    layout["body"].update(body)
    return layout


# -- Input -------------------------------------------------------------------

def decode_input(data: bytes) -> List[object]:
    """Turn raw terminal bytes into KeyPress / PointerClick events."""
    text = data.decode("latin-1")
    events: List[object] = []
    i = 0
    while i < len(text):
        # X10 mouse report: ESC [ M <button+32> <x+33> <y+33>
        if text.startswith("\x1b[M", i):
            if i + 6 > len(text):
                break
            button = ord(text[i + 3]) - 32
            x, y = ord(text[i + 4]) - 33, ord(text[i + 5]) - 33
            # left press only; 3 is release, 64+ is the wheel
            if (button & 3) == 0 and not button & 64:
                events.append(PointerClick(x, y))
            i += 6
            continue
        for seq, name in _ESCAPES.items():
            if text.startswith(seq, i):
                events.append(KeyPress(name))
                i += len(seq)
                break
        else:
            ch = text[i]
            if ch == "\x1b":
                events.append(KeyPress("esc"))
            elif ch in _CONTROL_KEYS:
                events.append(KeyPress(_CONTROL_KEYS[ch]))
            elif ch.isprintable():
                events.append(KeyPress(ch))
            i += 1
    return events


def key_listener(post: Callable[[object], None], stop: threading.Event):
    """Background thread that forwards key presses and clicks to ``post``."""
    try:
        import tty
        import termios

        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
    except Exception as e:
        # No TTY: the dashboard still runs, it just can't be driven
        logger.warning("keyboard input unavailable: %s", e)
        stop.wait()
        return

    try:
        tty.setcbreak(fd)
        sys.stdout.write(MOUSE_ON)
        sys.stdout.flush()
        while not stop.is_set():
            ready, _, _ = select.select([fd], [], [], 0.25)
            if not ready:
                continue
            data = os.read(fd, 64)
            if not data:
                break
            for event in decode_input(data):
                post(event)
    finally:
        sys.stdout.write(MOUSE_OFF)
        sys.stdout.flush()
        termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
