"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_CLONE_URL = "https://github.com"
DEFAULT_CACHE_PATH = Path.home() / ".cache" / "commitreel" / "cache.db"


def _env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def _env_float(key: str, default: float) -> float:
    return float(os.environ.get(key, default))


@dataclass(frozen=True)
class Settings:
    token: str | None = None
    api_url: str = DEFAULT_API_URL
    clone_url: str = DEFAULT_CLONE_URL
    cache_url: str = f"sqlite:///{DEFAULT_CACHE_PATH}"
    cache_max_entries: int = 200
    cache_max_bytes: int = 50_000_000
    cache_ttl: float = 3600.0
    concurrency: int = 10
    clone_depth: int = 10_000

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from ``GITHUB_TOKEN`` and ``COMMITREEL_*`` variables."""
        return cls(
            token=os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN") or None,
            api_url=os.environ.get("COMMITREEL_API_URL", DEFAULT_API_URL),
            clone_url=os.environ.get("COMMITREEL_CLONE_URL", DEFAULT_CLONE_URL),
            cache_url=os.environ.get("COMMITREEL_CACHE_URL", f"sqlite:///{DEFAULT_CACHE_PATH}"),
            cache_max_entries=_env_int("COMMITREEL_CACHE_MAX_ENTRIES", 200),
            cache_max_bytes=_env_int("COMMITREEL_CACHE_MAX_BYTES", 50_000_000),
            cache_ttl=_env_float("COMMITREEL_CACHE_TTL", 3600.0),
            concurrency=_env_int("COMMITREEL_CONCURRENCY", 10),
            clone_depth=_env_int("COMMITREEL_CLONE_DEPTH", 10_000),
        )

    def with_overrides(self, **overrides: object) -> Settings:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
