import argparse
import logging
import os
import sys
import threading

from rich.console import Console
from rich.live import Live

from stockterm.config import load_dotenv, load_symbols, parse_config
from stockterm.constants import CONFIG_PATH, ENV_PATH, WATCHLIST_PATH
from stockterm.events import Resize
from stockterm.orchestrator import Orchestrator
from stockterm.provider import make_provider
from stockterm.ui import build_layout, key_listener

logger = logging.getLogger("stockterm")


def setup_logging(log_file: str, level: str):
    """Send package logs to ``log_file``; the terminal belongs to the dashboard."""
    if not log_file:
        logger.addHandler(logging.NullHandler())
        return
    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level.upper())


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="stockterm", description="Terminal market dashboard")
    parser.add_argument("-c", "--config", default=CONFIG_PATH, help="path to config.ini")
    parser.add_argument("-w", "--watchlist", default=WATCHLIST_PATH, help="path to watchlist file")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    load_dotenv(ENV_PATH)

    config = parse_config(args.config)
    setup_logging(config.log_file, config.log_level)
    symbols = load_symbols(args.watchlist)

    stop = threading.Event()
    try:
        provider = make_provider(config.provider, os.environ.get("MASSIVE_API_KEY", ""), cancel=stop)
    except ValueError as e:
        print(f"[error] {e}")
        sys.exit(1)

    print(f"[stockterm] Provider: {provider.name}, refresh every {config.refresh_interval}s")
    print(f"[stockterm] Watching {len(symbols)} symbols")

    orch = Orchestrator(
        provider, symbols,
        time_range=config.default_range,
        chart_mode=config.chart_mode,
        refresh_interval=config.refresh_interval,
        cancel=stop,
    )

    console = Console()
    size = (console.size.width, console.size.height)
    orch.post(Resize(*size))

    listener = threading.Thread(target=key_listener, args=(orch.post, stop), daemon=True)
    listener.start()

    orch.start()
    logger.info("started with %d symbols via %s", len(symbols), provider.name)

    try:
        orch.drain()
        with Live(build_layout(orch.snapshot()), console=console, screen=True, refresh_per_second=4) as live:
            while not orch.view.quit_flag:
                current = (console.size.width, console.size.height)
                if current != size:
                    size = current
                    orch.post(Resize(*size))
                orch.drain(timeout=0.25)
                live.update(build_layout(orch.snapshot()))
    except KeyboardInterrupt:
        pass
    finally:
        stop.set()
        orch.shutdown()
        listener.join(timeout=1)
        provider.close()
        logger.info("shut down")
        print("[stockterm] Goodbye.")


if __name__ == "__main__":
    main()
