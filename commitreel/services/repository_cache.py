"""Per-repository cache of ingestion results.

Best-effort by contract: every storage failure is logged and absorbed, so a
broken cache behaves exactly like an empty one.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from commitreel.core.github import RepositoryId
from commitreel.dao.cache_dao import CacheDAO
from commitreel.exceptions import CacheCapacityError, CacheError
from commitreel.models.cache_entry import CacheRecord

logger = logging.getLogger(__name__)

# Bump when the stored event-log encoding changes; old entries become misses.
SCHEMA_VERSION = 1


@dataclass
class CacheEntry:
    owner: str
    name: str
    event_log: list[str]
    last_commit_sha: str
    last_commit_at: int
    cached_at: float = field(default_factory=time.time)
    schema_version: int = SCHEMA_VERSION

    @property
    def identity(self) -> RepositoryId:
        return RepositoryId(self.owner, self.name)

    def age(self, now: float | None = None) -> float:
        return (time.time() if now is None else now) - self.cached_at


@dataclass(frozen=True)
class CacheSummary:
    owner: str
    name: str
    event_count: int
    last_commit_sha: str
    cached_at: float
    schema_version: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class RepositoryCache:
    def __init__(
        self,
        dao: CacheDAO,
        *,
        schema_version: int = SCHEMA_VERSION,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._dao = dao
        self.schema_version = schema_version
        self._clock = clock

    def key_for(self, identity: RepositoryId) -> str:
        return f"commitreel:v{self.schema_version}:{identity.owner}/{identity.name}"

    def get(self, identity: RepositoryId) -> CacheEntry | None:
        """Stored entry for *identity*, or None on miss, version mismatch or failure."""
        try:
            record = self._dao.get(self.key_for(identity))
        except CacheError as exc:
            logger.warning("Cache read failed for %s: %s", identity, exc)
            return None
        if record is None:
            return None
        if record.schema_version != self.schema_version:
            logger.debug(
                "Ignoring cache entry for %s: schema v%d != v%d",
                identity,
                record.schema_version,
                self.schema_version,
            )
            return None
        return CacheEntry(
            owner=record.owner,
            name=record.name,
            event_log=list(record.event_log),
            last_commit_sha=record.last_commit_sha,
            last_commit_at=record.last_commit_at,
            cached_at=record.cached_at,
            schema_version=record.schema_version,
        )

    def put(self, identity: RepositoryId, entry: CacheEntry) -> None:
        """Store *entry*; on capacity exhaustion evict the oldest half and retry once."""
        record = CacheRecord(
            key=self.key_for(identity),
            schema_version=entry.schema_version,
            owner=identity.owner,
            name=identity.name,
            event_log=list(entry.event_log),
            last_commit_sha=entry.last_commit_sha,
            last_commit_at=entry.last_commit_at,
            cached_at=entry.cached_at,
        )
        try:
            self._dao.put(record)
            return
        except CacheCapacityError as exc:
            logger.info("Cache full while storing %s (%s), evicting oldest half", identity, exc)
        except CacheError as exc:
            logger.warning("Cache write failed for %s: %s", identity, exc)
            return

        try:
            self._dao.evict_oldest(0.5)
            self._dao.put(record)
        except CacheError as exc:
            logger.warning("Cache write for %s failed after eviction: %s", identity, exc)

    def invalidate(self, identity: RepositoryId) -> None:
        try:
            if self._dao.delete(self.key_for(identity)):
                logger.info("Invalidated cache entry for %s", identity)
        except CacheError as exc:
            logger.warning("Cache invalidation failed for %s: %s", identity, exc)

    def list(self) -> list[CacheSummary]:
        """Summaries of all stored entries, newest first."""
        try:
            records = self._dao.list_all()
        except CacheError as exc:
            logger.warning("Cache listing failed: %s", exc)
            return []
        return [
            CacheSummary(
                owner=r.owner,
                name=r.name,
                event_count=len(r.event_log),
                last_commit_sha=r.last_commit_sha,
                cached_at=r.cached_at,
                schema_version=r.schema_version,
            )
            for r in records
        ]

    def clear(self) -> int:
        try:
            return self._dao.clear()
        except CacheError as exc:
            logger.warning("Cache clear failed: %s", exc)
            return 0

    def is_fresh(self, entry: CacheEntry, ttl: float) -> bool:
        return ttl > 0 and entry.age(self._clock()) < ttl
