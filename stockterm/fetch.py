"""HTTP fetch with bounded retry. The only module that talks to requests."""

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from stockterm.constants import (
    DEFAULT_BASE_DELAY, DEFAULT_MAX_RETRIES, DEFAULT_RATE_LIMIT_WAIT,
    MAX_RATE_LIMIT_WAIT, REQUEST_TIMEOUT, USER_AGENT,
)
from stockterm.errors import (
    FetchCancelledError, FetchError, HTTPStatusError, RateLimitedError,
    RetriesExhaustedError,
)

logger = logging.getLogger(__name__)

# Failures below the HTTP layer that are worth another attempt
_TRANSPORT_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)

_SECONDS_RE = re.compile(r"^\d+(\.\d+)?$")


@dataclass(frozen=True)
class FetchOptions:
    max_retries: int = DEFAULT_MAX_RETRIES  # attempts beyond the first
    base_delay: float = DEFAULT_BASE_DELAY  # seconds


def parse_retry_after(value: Optional[str], default: float = DEFAULT_RATE_LIMIT_WAIT) -> float:
    """Convert a Retry-After header (plain decimal seconds) to a float.

    Anything else (HTTP dates, exponents, "inf") gives ``default``; huge
    values are capped at ``MAX_RATE_LIMIT_WAIT``.
    """
    if value is None:
        return default
    text = value.strip()
    if not _SECONDS_RE.match(text):
        return default
    return min(float(text), MAX_RATE_LIMIT_WAIT)


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before ``attempt`` (1-based retries): base, 2x base, 4x base ..."""
    return base_delay * (2 ** (attempt - 1))


class FetchClient:
    """Performs single logical GET requests over a shared connection pool.

    429 responses are never retried here: they come back as
    ``RateLimitedError`` so the caller can decide when to try again.
    5xx responses and transport failures are retried with exponential
    backoff; the backoff wait aborts as soon as ``cancel`` is set.
    """

    def __init__(self, timeout: float = REQUEST_TIMEOUT,
                 cancel: Optional[threading.Event] = None,
                 session: Optional[requests.Session] = None):
        self.timeout = timeout
        self._cancel = cancel if cancel is not None else threading.Event()
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=4, pool_maxsize=16)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
        self._session = session

    def fetch(self, url: str, params: Optional[Dict[str, Any]] = None,
              options: Optional[FetchOptions] = None,
              cancel: Optional[threading.Event] = None) -> bytes:
        opts = options or FetchOptions()
        cancel = cancel if cancel is not None else self._cancel

        last_error: Optional[BaseException] = None
        for attempt in range(opts.max_retries + 1):
            if attempt > 0:
                delay = backoff_delay(attempt, opts.base_delay)
                logger.debug("retry %d/%d for %s in %.2fs", attempt, opts.max_retries, url, delay)
                if cancel.wait(delay):
                    raise FetchCancelledError()
            elif cancel.is_set():
                raise FetchCancelledError()

            try:
                resp = self._session.get(url, params=params, timeout=self.timeout)
                body = resp.content
            except _TRANSPORT_ERRORS as e:
                logger.debug("transport failure for %s: %s", url, e)
                last_error = e
                continue
            except requests.RequestException as e:
                raise FetchError(str(e)) from e

            status = resp.status_code
            if status == 429:
                retry_after = parse_retry_after(resp.headers.get("Retry-After"))
                logger.info("rate limited by %s, retry after %gs", url, retry_after)
                raise RateLimitedError(retry_after)

            if not 200 <= status < 300:
                err = HTTPStatusError(status, resp.reason or "")
                if err.retryable:
                    logger.debug("server error %d for %s", status, url)
                    last_error = err
                    continue
                raise err

            return body

        logger.warning("giving up on %s: %s", url, last_error)
        raise RetriesExhaustedError(opts.max_retries, last_error) from last_error

    def close(self):
        self._session.close()
