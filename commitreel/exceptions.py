"""Custom exceptions for commitreel."""

from __future__ import annotations


class CommitReelError(Exception):
    """Base exception for all ingestion errors."""


class TransportError(CommitReelError):
    """Raised on network or connection failure (no HTTP response was received)."""


class HttpError(CommitReelError):
    """Raised when a REST API answers with a non-2xx status."""

    def __init__(self, status: int, url: str = "", message: str | None = None) -> None:
        self.status = status
        self.url = url
        super().__init__(message or f"HTTP {status} for {url or 'request'}")


class RateLimitError(HttpError):
    """Raised when the API rate budget is exhausted and waiting did not help."""

    def __init__(self, status: int, url: str, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(status, url, f"rate limit exceeded, retry after {retry_after}s")


class CloneError(CommitReelError):
    """Raised when cloning or reading the local clone fails."""


class EmptyRepository(CommitReelError):
    """Raised when a repository has no commits or no file changes."""


class CacheError(CommitReelError):
    """Raised by the cache storage layer. Never surfaced past RepositoryCache."""


class CacheCapacityError(CacheError):
    """Raised when a cache write would exceed the store's capacity."""
