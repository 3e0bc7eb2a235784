"""Rate-limit bookkeeping for REST responses.

Purely observational: the tracker records the budget reported by each
response and classifies it. Waiting and retrying live in the client and
the walker.
"""

from __future__ import annotations

import enum
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

import structlog

log = structlog.get_logger("commitreel.engine")

CRITICAL_RATIO = 0.10
WARNING_RATIO = 0.30


class Pressure(str, enum.Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class RateLimitStatus:
    """Point-in-time view handed to display listeners."""

    remaining: int | None
    limit: int | None
    reset_at: int | None
    pressure: Pressure


RateLimitListener = Callable[[RateLimitStatus], None]


class RateLimitTracker:
    """Tracks ``X-RateLimit-*`` headers across all responses of a session."""

    def __init__(self) -> None:
        self.remaining: int | None = None
        self.limit: int | None = None
        self.reset_at: int | None = None
        self._listeners: list[RateLimitListener] = []
        self._last_pressure = Pressure.UNKNOWN

    def subscribe(self, listener: RateLimitListener) -> None:
        self._listeners.append(listener)

    def observe(self, headers: Mapping[str, str]) -> None:
        """Record the budget fields present in *headers*.

        Missing or malformed fields keep their previous value.
        """
        remaining = _parse_header_int(headers.get("X-RateLimit-Remaining"))
        limit = _parse_header_int(headers.get("X-RateLimit-Limit"))
        reset_at = _parse_header_int(headers.get("X-RateLimit-Reset"))
        if remaining is not None:
            self.remaining = remaining
        if limit is not None:
            self.limit = limit
        if reset_at is not None:
            self.reset_at = reset_at

        pressure = self.current_pressure()
        if pressure != self._last_pressure:
            log.info(
                "rate_limit.pressure",
                pressure=pressure.value,
                remaining=self.remaining,
                limit=self.limit,
            )
            self._last_pressure = pressure

        status = self.status()
        for listener in self._listeners:
            listener(status)

    def current_pressure(self) -> Pressure:
        if self.remaining is None or not self.limit:
            return Pressure.UNKNOWN
        ratio = self.remaining / self.limit
        if ratio < CRITICAL_RATIO:
            return Pressure.CRITICAL
        if ratio < WARNING_RATIO:
            return Pressure.WARNING
        return Pressure.OK

    def status(self) -> RateLimitStatus:
        return RateLimitStatus(
            remaining=self.remaining,
            limit=self.limit,
            reset_at=self.reset_at,
            pressure=self.current_pressure(),
        )

    def seconds_until_reset(self, now: float | None = None) -> float | None:
        if self.reset_at is None:
            return None
        now = time.time() if now is None else now
        return max(self.reset_at - now, 0.0)

    def reset(self) -> None:
        """Forget every observation (used on logout)."""
        self.remaining = None
        self.limit = None
        self.reset_at = None
        self._last_pressure = Pressure.UNKNOWN


def _parse_header_int(value: str | None) -> int | None:
    """Safely parse an integer header value."""
    if value is None:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None
