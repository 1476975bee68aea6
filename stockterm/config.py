import configparser
import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from stockterm.constants import (
    CONFIG_PATH, DEFAULT_CHART_MODE, DEFAULT_LOG_LEVEL, DEFAULT_PROVIDER,
    DEFAULT_RANGE, DEFAULT_REFRESH, DEFAULT_SYMBOLS, WATCHLIST_PATH,
)
from stockterm.models import ChartMode, TimeRange

logger = logging.getLogger(__name__)

WATCHLIST_SECTIONS = ("stocks", "crypto", "indices")
LOG_LEVELS = ("debug", "info", "warning", "error")


def parse_interval(value: str, default: int) -> int:
    """Convert interval string like '10s', '1m', '5m', '1h', '1d' to seconds."""
    value = value.strip().lower()
    m = re.match(r"^(\d+)\s*(s|m|h|d)$", value)
    if not m or int(m.group(1)) == 0:
        print(f"[warning] Invalid interval '{value}', using {default}s")
        return default
    num, unit = int(m.group(1)), m.group(2)
    multipliers = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    return num * multipliers[unit]


@dataclass
class Config:
    provider: str = DEFAULT_PROVIDER
    refresh_interval: int = DEFAULT_REFRESH
    default_range: TimeRange = TimeRange.parse(DEFAULT_RANGE)
    chart_mode: ChartMode = ChartMode.parse(DEFAULT_CHART_MODE)
    log_file: str = ""
    log_level: str = DEFAULT_LOG_LEVEL


def parse_config(path: Optional[str] = None) -> Config:
    """Read config.ini and return a Config object."""
    path = path or CONFIG_PATH
    cfg_obj = Config()
    if not os.path.exists(path):
        print("[notice] config.ini not found, using defaults")
        return cfg_obj

    cfg = configparser.RawConfigParser()
    cfg.read(path)
    sect = cfg["dashboard"] if "dashboard" in cfg else {}

    cfg_obj.provider = sect.get("provider", DEFAULT_PROVIDER).strip().lower() or DEFAULT_PROVIDER
    cfg_obj.refresh_interval = parse_interval(sect.get("refresh_interval", "10s"), DEFAULT_REFRESH)

    try:
        cfg_obj.default_range = TimeRange.parse(sect.get("default_range", DEFAULT_RANGE))
    except ValueError as e:
        print(f"[warning] {e}, using {DEFAULT_RANGE}")
    try:
        cfg_obj.chart_mode = ChartMode.parse(sect.get("chart_mode", DEFAULT_CHART_MODE))
    except ValueError as e:
        print(f"[warning] {e}, using {DEFAULT_CHART_MODE}")

    cfg_obj.log_file = sect.get("log_file", "").strip()
    level = sect.get("log_level", DEFAULT_LOG_LEVEL).strip().lower()
    if level in LOG_LEVELS:
        cfg_obj.log_level = level
    else:
        print(f"[warning] Invalid log_level '{level}', using {DEFAULT_LOG_LEVEL}")

    return cfg_obj


def parse_watchlist(path: str = "") -> Dict[str, List[str]]:
    """Parse a watchlist file into {stocks: [], crypto: [], indices: []}."""
    path = path or WATCHLIST_PATH
    result: Dict[str, List[str]] = {s: [] for s in WATCHLIST_SECTIONS}

    current_section = None
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("[") and line.endswith("]"):
                section = line[1:-1].lower()
                current_section = section if section in result else None
                continue
            if current_section:
                result[current_section].append(line.upper())
    return result


def load_symbols(path: str = "") -> List[str]:
    """Watchlist symbols (stocks, crypto, indices), or the built-in list when there is no file."""
    path = path or WATCHLIST_PATH
    if not os.path.exists(path):
        return list(DEFAULT_SYMBOLS)
    symbols: List[str] = []
    for section in parse_watchlist(path).values():
        for s in section:
            if s not in symbols:
                symbols.append(s)
    if not symbols:
        logger.warning("%s has no symbols, using defaults", path)
        return list(DEFAULT_SYMBOLS)
    return symbols


def load_dotenv(path: str):
    """Seed unset environment variables from a KEY=VALUE file."""
    if not os.path.exists(path):
        return
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, val = line.partition("=")
                os.environ.setdefault(key.strip(), val.strip())
