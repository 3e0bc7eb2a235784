"""Async GitHub REST client with rate-limit observation and waiting."""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from commitreel.core.config import DEFAULT_API_URL
from commitreel.engines.history.rate_limit import RateLimitTracker, _parse_header_int
from commitreel.exceptions import HttpError, RateLimitError, TransportError

log = structlog.get_logger("commitreel.engine")

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')

_MAX_RATE_LIMIT_ATTEMPTS = 3
_MAX_RESET_WAIT = 3600  # seconds


@dataclass
class PageResponse:
    """One page of a list endpoint."""

    items: list[Any]
    has_next: bool | None = None  # None: the endpoint gives no continuation signal


class GitHubClient:
    """Thin async wrapper around the GitHub REST API.

    Every response, successful or not, is reported to *tracker*.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str = DEFAULT_API_URL,
        tracker: RateLimitTracker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "commitreel",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.tracker = tracker if tracker is not None else RateLimitTracker()
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_session(cls, session: Any, **kwargs: Any) -> GitHubClient:
        """Build a client bound to an :class:`~commitreel.core.session.AppSession`."""
        return cls(
            session.token,
            base_url=session.settings.api_url,
            tracker=session.rate_limit,
            **kwargs,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Single-resource GET, returns parsed JSON."""
        response = await self._request(path, params)
        return self._json(response, path)

    async def get_page(self, path: str, params: dict[str, Any] | None = None) -> PageResponse:
        """GET one page of a list endpoint.

        ``has_next`` reflects a ``Link: <...>; rel="next"`` header.
        """
        response = await self._request(path, params)
        data = self._json(response, path)
        items = data if isinstance(data, list) else [data]
        has_next = self._parse_next_link(response.headers.get("Link", "")) is not None
        return PageResponse(items=items, has_next=has_next)

    # ── internal ───────────────────────────────────────────────────────────

    async def _request(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """GET with wait-and-retry on rate-limited 403/429.

        Transport failures and 5xx are not retried; re-running the pipeline
        is the retry.
        """
        for attempt in range(_MAX_RATE_LIMIT_ATTEMPTS):
            try:
                resp = await self._client.get(url, params=params)
            except httpx.TransportError as exc:
                raise TransportError(f"request to {url} failed: {exc}") from exc

            self.tracker.observe(resp.headers)

            if resp.status_code in (403, 429) and self._is_rate_limited(resp):
                wait = self._get_rate_limit_wait(resp)
                if attempt == _MAX_RATE_LIMIT_ATTEMPTS - 1:
                    raise RateLimitError(resp.status_code, url, wait)
                log.warning(
                    "github.rate_limit",
                    url=url,
                    wait_seconds=wait,
                    attempt=attempt + 1,
                    max_attempts=_MAX_RATE_LIMIT_ATTEMPTS,
                )
                await asyncio.sleep(wait)
                continue

            if resp.status_code >= 400:
                raise HttpError(resp.status_code, url)

            await self._check_rate_limit(resp)
            return resp

        raise AssertionError("unreachable")  # pragma: no cover

    async def _check_rate_limit(self, response: httpx.Response) -> None:
        """Sleep until rate-limit resets if remaining == 0."""
        remaining = _parse_header_int(response.headers.get("X-RateLimit-Remaining"))
        if remaining is not None and remaining == 0:
            wait = self._get_rate_limit_wait(response)
            log.warning("github.rate_limit_wait", wait_seconds=wait)
            await asyncio.sleep(wait)

    @staticmethod
    def _json(response: httpx.Response, url: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise HttpError(response.status_code, url, f"invalid JSON from {url}: {exc}") from exc

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        """Check if a 403/429 response is due to rate limiting."""
        remaining = _parse_header_int(response.headers.get("X-RateLimit-Remaining"))
        if remaining is not None:
            return remaining == 0
        # GitHub also uses Retry-After header for secondary rate limits
        return "Retry-After" in response.headers

    @staticmethod
    def _get_rate_limit_wait(response: httpx.Response) -> int:
        """Calculate how long to wait based on rate-limit headers."""
        retry_after = _parse_header_int(response.headers.get("Retry-After"))
        if retry_after is not None:
            return min(max(retry_after, 1), _MAX_RESET_WAIT)
        reset_ts = _parse_header_int(response.headers.get("X-RateLimit-Reset"))
        if reset_ts is not None:
            return min(max(reset_ts - int(time.time()), 1), _MAX_RESET_WAIT)
        return 60

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the ``next`` URL from a GitHub ``Link`` header."""
        match = _NEXT_LINK_RE.search(link_header)
        return match.group(1) if match else None
