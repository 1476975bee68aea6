import os

# Project root: parent of the stockterm/ package directory
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.ini")
WATCHLIST_PATH = os.path.join(PROJECT_ROOT, "watchlist.txt")
ENV_PATH = os.path.join(PROJECT_ROOT, ".env")

DEFAULT_REFRESH = 10
DEFAULT_PROVIDER = "simulator"
DEFAULT_RANGE = "24H"
DEFAULT_CHART_MODE = "line"
DEFAULT_LOG_LEVEL = "warning"

DEFAULT_SYMBOLS = ["AAPL", "MSFT", "NVDA", "TSLA", "SPY", "X:BTCUSD", "X:ETHUSD"]

# Fetch client
USER_AGENT = "stockterm/1.0"
REQUEST_TIMEOUT = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 0.5
DEFAULT_RATE_LIMIT_WAIT = 60.0
MAX_RATE_LIMIT_WAIT = 3600.0

# Massive (formerly Polygon.io) REST API
MASSIVE_BASE_URL = "https://api.massive.com"

# Per range: (lookback seconds, bar multiplier, bar timespan)
RANGE_BARS = {
    "1H": (3600, 1, "minute"),
    "24H": (86400, 5, "minute"),
    "7D": (7 * 86400, 1, "hour"),
    "30D": (30 * 86400, 1, "day"),
}

# Layout
HEADER_HEIGHT = 3
FOOTER_HEIGHT = 1
WATCHLIST_MIN_WIDTH = 30
WATCHLIST_MAX_WIDTH = 45
WATCHLIST_WIDTH_RATIO = 0.28

# Chart chrome: pane border, padding and the y-axis label column
CHART_CHROME_WIDTH = 14
CHART_CHROME_HEIGHT = 8
MIN_CHART_WIDTH = 10
MIN_CHART_HEIGHT = 4
Y_LABEL_WIDTH = 9

SPARK_BLOCKS = "▁▂▃▄▅▆▇█"

GLYPH_LINE = "━"
GLYPH_CONNECTOR = "│"
GLYPH_AREA_CAP = "▀"
GLYPH_AREA_FILL = "░"
GLYPH_WICK = "│"
GLYPH_BODY_UP = "█"
GLYPH_BODY_DOWN = "▓"

UP_STYLE = "green"
DOWN_STYLE = "red"
