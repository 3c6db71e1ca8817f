"""Interface to the fetch collaborator.

A fetcher is any callable mapping an archive URL to its bytes. Retry and
backoff policy belong to the fetcher; the core only distinguishes "not
found" from every other failure.
"""

from typing import Callable, Optional

Fetcher = Callable[[str], bytes]


class FetchError(Exception):
    """Raised when a URL cannot be fetched."""

    def __init__(self, message: str, url: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class NotFoundError(FetchError):
    """Raised when the server answers 404 for a URL."""
