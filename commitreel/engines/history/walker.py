"""CommitHistoryWalker — turns a repository's history into a sorted change log.

Two acquisition strategies produce the same output:

* ``rest``  — list commits through the REST API, then fetch each commit's
  per-file status with bounded concurrency.
* ``clone`` — shallow, checkout-free clone; walk the first-parent chain
  oldest to newest and diff consecutive tree snapshots.

Results are written through :class:`RepositoryCache`. A fresh entry is
served without network work; a stale one is extended incrementally from
its last processed commit.
"""

from __future__ import annotations

import asyncio
import enum
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from pydantic import ValidationError

from commitreel.core.config import DEFAULT_CLONE_URL
from commitreel.core.github import RepositoryId
from commitreel.engines.history.executor import run_all
from commitreel.engines.history.github_client import GitHubClient
from commitreel.engines.history.models import (
    ChangeEvent,
    Commit,
    IngestResult,
    decode_log,
    sort_events,
)
from commitreel.engines.history.pagination import MAX_ITEMS, PaginatedFetcher
from commitreel.engines.history.rate_limit import Pressure
from commitreel.engines.history.repo import DEFAULT_DEPTH, shallow_clone
from commitreel.engines.history.schemas import CommitDetail, CommitSummary
from commitreel.engines.history.sink import LogSink
from commitreel.engines.history.tree_diff import TreeReader, TreeSnapshot, diff
from commitreel.exceptions import EmptyRepository
from commitreel.services.repository_cache import CacheEntry, RepositoryCache

log = structlog.get_logger("commitreel.engine")

DEFAULT_CONCURRENCY = 10
_WARNING_DELAY = 0.1  # seconds before each detail request under Warning pressure
_CRITICAL_DELAY = 1.0


class Strategy(str, enum.Enum):
    REST = "rest"
    CLONE = "clone"


class WalkerState(str, enum.Enum):
    IDLE = "idle"
    LISTING_COMMITS = "listing_commits"
    FETCHING_DETAILS = "fetching_details"
    CLONING = "cloning"
    READING_LOG = "reading_log"
    DIFFING_COMMITS = "diffing_commits"
    SORTING = "sorting"
    DONE = "done"
    FAILED = "failed"


_TERMINAL = {WalkerState.DONE, WalkerState.FAILED}


@dataclass
class IngestRun:
    """State of one ``ingest`` call."""

    identity: RepositoryId
    strategy: Strategy
    state: WalkerState = WalkerState.IDLE
    error: str | None = None
    history: list[WalkerState] = field(default_factory=lambda: [WalkerState.IDLE])

    def advance(self, state: WalkerState) -> None:
        if self.state in _TERMINAL:
            raise RuntimeError(f"run for {self.identity} already {self.state.value}")
        self.state = state
        self.history.append(state)
        log.debug("walker.state", repo=str(self.identity), state=state.value)

    def fail(self, message: str) -> None:
        self.advance(WalkerState.FAILED)
        self.error = message


class CommitHistoryWalker:
    def __init__(
        self,
        client: GitHubClient | None = None,
        cache: RepositoryCache | None = None,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        depth: int = DEFAULT_DEPTH,
        max_commits: int = MAX_ITEMS,
        cache_ttl: float = 3600.0,
        clone_url: str = DEFAULT_CLONE_URL,
        token: str | None = None,
    ) -> None:
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive, got {concurrency}")
        self._client = client
        self._cache = cache
        self._concurrency = concurrency
        self._depth = depth
        self._max_commits = max_commits
        self._cache_ttl = cache_ttl
        self._clone_url = clone_url
        self._token = token
        self._locks: dict[RepositoryId, asyncio.Lock] = {}
        self._lock_users: dict[RepositoryId, int] = {}
        self.runs: dict[RepositoryId, IngestRun] = {}

    # ── public ─────────────────────────────────────────────────────────────

    async def ingest(
        self,
        identity: RepositoryId,
        strategy: Strategy = Strategy.REST,
        *,
        refresh: bool = False,
    ) -> IngestResult:
        """Produce the full, timestamp-sorted change log for *identity*.

        Concurrent calls for the same repository run one after another.
        Raises ``EmptyRepository``, ``TransportError``, ``HttpError`` or
        ``CloneError``; the cached entry is left untouched on failure.
        """
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._lock_users[identity] = self._lock_users.get(identity, 0) + 1
        try:
            async with lock:
                return await self._ingest_locked(identity, Strategy(strategy), refresh)
        finally:
            self._lock_users[identity] -= 1
            if not self._lock_users[identity]:
                del self._lock_users[identity]
                del self._locks[identity]

    async def ingest_into(
        self,
        identity: RepositoryId,
        sink: LogSink,
        strategy: Strategy = Strategy.REST,
        *,
        refresh: bool = False,
    ) -> IngestResult:
        """Ingest, then hand the complete log to *sink*. Failed runs load nothing."""
        result = await self.ingest(identity, strategy, refresh=refresh)
        sink.reset()
        if not sink.load_log(result.to_log()):
            log.warning("walker.sink_rejected", repo=str(identity), events=len(result.events))
        return result

    # ── orchestration ──────────────────────────────────────────────────────

    async def _ingest_locked(
        self, identity: RepositoryId, strategy: Strategy, refresh: bool
    ) -> IngestResult:
        if strategy is Strategy.REST and self._client is None:
            raise ValueError("the rest strategy needs a GitHubClient")
        run = IngestRun(identity=identity, strategy=strategy)
        self.runs[identity] = run

        cached, cached_events = self._load_cached(identity, refresh)
        if cached is not None and self._cache.is_fresh(cached, self._cache_ttl):
            log.info("walker.cache_hit", repo=str(identity), events=len(cached_events))
            run.advance(WalkerState.DONE)
            return IngestResult(
                events=cached_events,
                last_commit_sha=cached.last_commit_sha,
                last_commit_at=cached.last_commit_at,
                from_cache=True,
            )

        try:
            run.advance(WalkerState.LISTING_COMMITS)
            if strategy is Strategy.REST:
                result = await self._ingest_rest(run, cached, cached_events)
            else:
                result = await self._ingest_clone(run, cached, cached_events)
        except Exception as exc:
            run.fail(str(exc) or type(exc).__name__)
            log.error("walker.failed", repo=str(identity), strategy=strategy.value, error=str(exc))
            raise
        run.advance(WalkerState.DONE)

        log.info(
            "walker.done",
            repo=str(identity),
            strategy=strategy.value,
            commits=result.commit_count,
            events=len(result.events),
            incremental=result.incremental,
            failed_commits=len(result.failed_commits),
        )
        self._store(identity, result)
        return result

    def _load_cached(
        self, identity: RepositoryId, refresh: bool
    ) -> tuple[CacheEntry | None, list[ChangeEvent]]:
        if self._cache is None:
            return None, []
        if refresh:
            self._cache.invalidate(identity)
            return None, []
        cached = self._cache.get(identity)
        if cached is None:
            return None, []
        try:
            return cached, decode_log(cached.event_log)
        except ValueError as exc:
            log.warning("walker.cache_corrupt", repo=str(identity), error=str(exc))
            return None, []

    def _store(self, identity: RepositoryId, result: IngestResult) -> None:
        if self._cache is None:
            return
        if not result.complete:
            log.warning(
                "walker.cache_skipped",
                repo=str(identity),
                reason="incomplete",
                failed_commits=len(result.failed_commits),
            )
            return
        self._cache.put(
            identity,
            CacheEntry(
                owner=identity.owner,
                name=identity.name,
                event_log=[e.to_line() for e in result.events],
                last_commit_sha=result.last_commit_sha,
                last_commit_at=result.last_commit_at,
            ),
        )

    def _finish(
        self,
        run: IngestRun,
        events: list[ChangeEvent],
        newest: Commit,
        **extra: object,
    ) -> IngestResult:
        if not events:
            raise EmptyRepository(f"no changes found in {run.identity}")
        run.advance(WalkerState.SORTING)
        return IngestResult(
            events=sort_events(events),
            last_commit_sha=newest.sha,
            last_commit_at=newest.timestamp,
            **extra,  # type: ignore[arg-type]
        )

    @staticmethod
    def _unchanged(cached: CacheEntry, cached_events: list[ChangeEvent]) -> IngestResult:
        return IngestResult(
            events=cached_events,
            last_commit_sha=cached.last_commit_sha,
            last_commit_at=cached.last_commit_at,
            incremental=True,
        )

    # ── REST strategy ──────────────────────────────────────────────────────

    async def _ingest_rest(
        self,
        run: IngestRun,
        cached: CacheEntry | None,
        cached_events: list[ChangeEvent],
    ) -> IngestResult:
        identity = run.identity
        base = f"/repos/{identity.owner}/{identity.name}"

        fetcher = PaginatedFetcher(self._client, max_items=self._max_commits)
        stop_at = None
        if cached is not None:
            last_sha = cached.last_commit_sha
            stop_at = lambda item: isinstance(item, dict) and item.get("sha") == last_sha  # noqa: E731
        listing = await fetcher.fetch_all(f"{base}/commits", stop_at=stop_at)
        if listing.empty:
            raise EmptyRepository(f"{identity} is empty")

        summaries = _parse_summaries(listing.items)
        incremental = cached is not None and listing.stopped
        if cached is not None and not incremental:
            log.info("walker.cache_baseline_missing", repo=str(identity), sha=cached.last_commit_sha)
            cached_events = []
        if incremental and not summaries:
            return self._unchanged(cached, cached_events)
        if not summaries:
            raise EmptyRepository(f"no commits found in {identity}")

        run.advance(WalkerState.FETCHING_DETAILS)
        # Listing is newest-first; discover oldest-first so equal timestamps keep history order.
        ordered = list(reversed(summaries))

        async def _fetch_detail(summary: CommitSummary, _index: int) -> list[ChangeEvent]:
            await self._throttle()
            raw = await self._client.get(f"{base}/commits/{summary.sha}")
            detail = CommitDetail.model_validate(raw)
            return [
                ChangeEvent(summary.timestamp, summary.author_name, f.action, f.filename)
                for f in detail.files
            ]

        results = await run_all(ordered, self._concurrency, _fetch_detail)

        events = list(cached_events)
        failed: list[str] = []
        for summary, result in zip(ordered, results, strict=True):
            if result.ok:
                events.extend(result.value)
            else:
                failed.append(summary.sha)
                log.warning("walker.detail_failed", sha=summary.sha, error=str(result.error))
        if failed and len(failed) == len(ordered):
            # every detail fetch failed: report the cause, not an empty repository
            next(r for r in results if not r.ok).unwrap()

        return self._finish(
            run,
            events,
            summaries[0].to_commit(),
            commit_count=len(summaries),
            incremental=incremental,
            truncated=listing.truncated,
            failed_commits=failed,
        )

    async def _throttle(self) -> None:
        pressure = self._client.tracker.current_pressure()
        if pressure is Pressure.CRITICAL:
            await asyncio.sleep(_CRITICAL_DELAY)
        elif pressure is Pressure.WARNING:
            await asyncio.sleep(_WARNING_DELAY)

    # ── clone strategy ─────────────────────────────────────────────────────

    async def _ingest_clone(
        self,
        run: IngestRun,
        cached: CacheEntry | None,
        cached_events: list[ChangeEvent],
    ) -> IngestResult:
        identity = run.identity
        run.advance(WalkerState.CLONING)
        with tempfile.TemporaryDirectory(prefix="commitreel-clone-") as tmp:
            repo = await shallow_clone(
                identity.clone_url(self._clone_url, self._token), Path(tmp), depth=self._depth
            )

            run.advance(WalkerState.READING_LOG)
            commits = await repo.list_first_parent("HEAD", self._depth)
            if not commits:
                raise EmptyRepository(f"{identity} is empty")
            commits.reverse()  # oldest -> newest

            reader = TreeReader(repo)
            start = 0
            previous: TreeSnapshot | None = None
            incremental = False
            if cached is not None:
                index = next(
                    (i for i, c in enumerate(commits) if c.sha == cached.last_commit_sha), None
                )
                if index is None:
                    log.info(
                        "walker.cache_baseline_missing", repo=str(identity), sha=cached.last_commit_sha
                    )
                    cached_events = []
                elif index == len(commits) - 1:
                    return self._unchanged(cached, cached_events)
                else:
                    incremental = True
                    start = index + 1
                    previous = await reader.snapshot(commits[index].sha)

            run.advance(WalkerState.DIFFING_COMMITS)
            events = list(cached_events)
            for commit in commits[start:]:
                snapshot = await reader.snapshot(commit.sha)
                for path, action in diff(previous, snapshot):
                    events.append(ChangeEvent(commit.timestamp, commit.author, action, path))
                previous = snapshot

        return self._finish(
            run,
            events,
            commits[-1],
            commit_count=len(commits) - start,
            incremental=incremental,
        )


def _parse_summaries(items: list) -> list[CommitSummary]:
    """Validate raw listing items, dropping any that do not look like commits."""
    summaries: list[CommitSummary] = []
    for item in items:
        try:
            summaries.append(CommitSummary.model_validate(item))
        except ValidationError as exc:
            log.warning("walker.commit_malformed", error=str(exc).splitlines()[0])
    return summaries
