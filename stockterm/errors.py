"""Fetch error types.

Only ``RetriesExhaustedError`` reflects failures the fetch client already
retried; everything else is handed back to the caller on first sight.
"""

from typing import Optional


class FetchError(Exception):
    """Base class for anything a data fetch can fail with."""


class RateLimitedError(FetchError):
    """Server answered 429. ``retry_after`` is in seconds."""

    def __init__(self, retry_after: float):
        super().__init__(f"rate limited, retry after {retry_after:g}s")
        self.retry_after = retry_after


class HTTPStatusError(FetchError):
    """Non-2xx response that is not worth retrying."""

    def __init__(self, status: int, reason: str = ""):
        text = f"http error: {status} {reason}".rstrip()
        super().__init__(text)
        self.status = status
        self.reason = reason

    @property
    def retryable(self) -> bool:
        return self.status >= 500


class RetriesExhaustedError(FetchError):
    """Every attempt failed with a retryable error; ``cause`` is the last one."""

    def __init__(self, retries: int, cause: Optional[BaseException]):
        super().__init__(f"after {retries} retries: {cause}")
        self.retries = retries
        self.cause = cause


class FetchCancelledError(FetchError):
    """The fetch was aborted by the shutdown signal."""

    def __init__(self):
        super().__init__("fetch cancelled")
