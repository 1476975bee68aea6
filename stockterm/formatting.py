import math
from typing import Optional

from rich.text import Text


def fmt_price(val: Optional[float], style: str = "cyan") -> Text:
    if val is None or val == 0:
        return Text("—", style="dim")
    if val >= 1000:
        return Text(f"{val:,.0f}", style=style)
    return Text(f"{val:.2f}", style=style)


def fmt_pct(val: Optional[float]) -> Text:
    if val is None:
        return Text("—", style="dim")
    sign = "+" if val >= 0 else ""
    s = f"{sign}{val:.2f}%"
    style = "green" if val >= 0 else "red"
    return Text(s, style=style)


def fmt_duration(seconds: float) -> str:
    """Round to the nearest second: 9.6 -> '10s', 90 -> '1m30s'."""
    if not math.isfinite(seconds):
        return "--"
    total = int(max(0.0, seconds) + 0.5)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m{secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes}m{secs}s"
