"""Tests for CommitHistoryWalker — REST strategy against a fake API,
clone strategy against real repositories built in tmp_path."""

from __future__ import annotations

import asyncio
import shutil
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from commitreel.core.github import RepositoryId
from commitreel.engines.history.github_client import PageResponse
from commitreel.engines.history.rate_limit import RateLimitTracker
from commitreel.engines.history.sink import FileLogSink
from commitreel.engines.history.walker import CommitHistoryWalker, Strategy, WalkerState
from commitreel.exceptions import CloneError, EmptyRepository, HttpError, TransportError

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")

RID = RepositoryId("o", "r")


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class FakeGitHub:
    """Minimal stand-in for GitHubClient: commits newest-first, details per sha."""

    def __init__(self, commits=(), *, empty=False):
        self.tracker = RateLimitTracker()
        self.commits: list[dict] = []
        self.details: dict[str, list[dict]] = {}
        self.failing: dict[str, Exception] = {}
        self.empty = empty
        self.page_calls = 0
        self.detail_calls: list[str] = []
        for c in commits:
            self.add(*c)

    def add(self, sha, author, ts, files):
        parents = [{"sha": self.commits[0]["sha"]}] if self.commits else []
        self.commits.insert(
            0,
            {
                "sha": sha,
                "commit": {"author": {"name": author, "date": _iso(ts)}},
                "author": {"login": author.lower()},
                "parents": parents,
            },
        )
        self.details[sha] = [{"filename": f, "status": s} for f, s in files]

    async def get_page(self, path, params=None):
        self.page_calls += 1
        if self.empty:
            raise HttpError(409, path)
        page, size = params["page"], params["per_page"]
        chunk = self.commits[(page - 1) * size : page * size]
        return PageResponse(items=chunk, has_next=page * size < len(self.commits))

    async def get(self, path, params=None):
        sha = path.rsplit("/", 1)[-1]
        self.detail_calls.append(sha)
        await asyncio.sleep(0)
        if sha in self.failing:
            raise self.failing[sha]
        return {"sha": sha, "files": self.details[sha]}


def _three_commits():
    return FakeGitHub(
        [
            ("c0", "author0", 100, [("a", "added")]),
            ("c1", "author1", 200, [("a", "modified"), ("b", "added")]),
            ("c2", "author2", 300, [("b", "removed")]),
        ]
    )


# ── REST strategy ─────────────────────────────────────────────────────────


class TestRestStrategy:
    @pytest.mark.anyio
    async def test_end_to_end_order(self):
        walker = CommitHistoryWalker(_three_commits(), concurrency=2)
        result = await walker.ingest(RID)
        assert result.to_log().splitlines() == [
            "100|author0|A|a",
            "200|author1|M|a",
            "200|author1|A|b",
            "300|author2|D|b",
        ]
        assert result.last_commit_sha == "c2"
        assert result.last_commit_at == 300
        assert result.commit_count == 3
        assert walker.runs[RID].history == [
            WalkerState.IDLE,
            WalkerState.LISTING_COMMITS,
            WalkerState.FETCHING_DETAILS,
            WalkerState.SORTING,
            WalkerState.DONE,
        ]

    @pytest.mark.anyio
    async def test_renamed_and_unknown_status_are_modifications(self):
        api = FakeGitHub([("c0", "x", 1, [("n", "renamed"), ("m", "changed"), ("r", "removed")])])
        result = await CommitHistoryWalker(api).ingest(RID)
        assert result.to_log() == "1|x|M|n\n1|x|M|m\n1|x|D|r"

    @pytest.mark.anyio
    async def test_regressing_clock_sorted_globally(self):
        api = FakeGitHub(
            [
                ("c0", "a", 500, [("x", "added")]),
                ("c1", "b", 100, [("y", "added")]),
            ]
        )
        result = await CommitHistoryWalker(api).ingest(RID)
        assert [e.timestamp for e in result.events] == [100, 500]

    @pytest.mark.anyio
    async def test_equal_timestamps_keep_history_order(self):
        api = FakeGitHub(
            [
                ("c0", "a", 100, [("first", "added")]),
                ("c1", "b", 100, [("second", "added")]),
            ]
        )
        result = await CommitHistoryWalker(api, concurrency=2).ingest(RID)
        assert [e.path for e in result.events] == ["first", "second"]

    @pytest.mark.anyio
    async def test_empty_repository(self):
        walker = CommitHistoryWalker(FakeGitHub(empty=True))
        with pytest.raises(EmptyRepository):
            await walker.ingest(RID)
        assert walker.runs[RID].state is WalkerState.FAILED
        assert walker.runs[RID].error

    @pytest.mark.anyio
    async def test_no_commits(self):
        with pytest.raises(EmptyRepository):
            await CommitHistoryWalker(FakeGitHub()).ingest(RID)

    @pytest.mark.anyio
    async def test_no_file_changes(self):
        api = FakeGitHub([("c0", "a", 1, [])])
        with pytest.raises(EmptyRepository, match="no changes"):
            await CommitHistoryWalker(api).ingest(RID)

    @pytest.mark.anyio
    async def test_detail_failure_isolated(self, repo_cache):
        api = _three_commits()
        api.failing["c1"] = TransportError("connection reset")
        result = await CommitHistoryWalker(api, repo_cache).ingest(RID)
        assert result.to_log().splitlines() == ["100|author0|A|a", "300|author2|D|b"]
        assert result.failed_commits == ["c1"]
        # incomplete results are not cached
        assert repo_cache.get(RID) is None

    @pytest.mark.anyio
    async def test_listing_failure_propagates(self, repo_cache):
        api = _three_commits()
        api.get_page = AsyncMock(side_effect=TransportError("offline"))
        walker = CommitHistoryWalker(api, repo_cache)
        with pytest.raises(TransportError):
            await walker.ingest(RID)
        assert walker.runs[RID].state is WalkerState.FAILED

    @pytest.mark.anyio
    async def test_every_detail_failing_reports_the_cause(self, repo_cache):
        api = _three_commits()
        for sha in ("c0", "c1", "c2"):
            api.failing[sha] = TransportError("network down")
        walker = CommitHistoryWalker(api, repo_cache)
        with pytest.raises(TransportError, match="network down"):
            await walker.ingest(RID)
        assert walker.runs[RID].state is WalkerState.FAILED
        assert repo_cache.get(RID) is None

    @pytest.mark.anyio
    async def test_unexpected_error_marks_run_failed(self):
        api = _three_commits()
        api.get_page = AsyncMock(side_effect=RuntimeError("boom"))
        walker = CommitHistoryWalker(api)
        with pytest.raises(RuntimeError):
            await walker.ingest(RID)
        assert walker.runs[RID].state is WalkerState.FAILED
        assert walker.runs[RID].error == "boom"

    @pytest.mark.anyio
    async def test_needs_client(self):
        with pytest.raises(ValueError):
            await CommitHistoryWalker().ingest(RID, Strategy.REST)

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            CommitHistoryWalker(FakeGitHub(), concurrency=0)

    @pytest.mark.anyio
    async def test_throttles_under_critical_pressure(self):
        api = _three_commits()
        api.tracker.observe({"X-RateLimit-Remaining": "10", "X-RateLimit-Limit": "5000"})
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await CommitHistoryWalker(api).ingest(RID)
        throttled = [c for c in mock_sleep.call_args_list if c.args == (1.0,)]
        assert len(throttled) == 3


# ── caching ───────────────────────────────────────────────────────────────


class TestRestCaching:
    @pytest.mark.anyio
    async def test_fresh_cache_skips_network(self, repo_cache):
        api = _three_commits()
        walker = CommitHistoryWalker(api, repo_cache, cache_ttl=3600)
        first = await walker.ingest(RID)
        calls = api.page_calls

        second = await walker.ingest(RID)
        assert second.from_cache is True
        assert second.events == first.events
        assert api.page_calls == calls

    @pytest.mark.anyio
    async def test_stale_cache_fetches_only_new_commits(self, repo_cache):
        api = _three_commits()
        walker = CommitHistoryWalker(api, repo_cache, cache_ttl=0)
        await walker.ingest(RID)

        api.add("c3", "author3", 400, [("c", "added")])
        api.detail_calls.clear()
        result = await walker.ingest(RID)

        assert api.detail_calls == ["c3"]
        assert result.incremental is True
        assert result.to_log().splitlines()[-1] == "400|author3|A|c"
        assert len(result.events) == 5
        assert repo_cache.get(RID).last_commit_sha == "c3"

    @pytest.mark.anyio
    async def test_stale_cache_without_new_commits(self, repo_cache):
        api = _three_commits()
        walker = CommitHistoryWalker(api, repo_cache, cache_ttl=0)
        first = await walker.ingest(RID)
        api.detail_calls.clear()

        again = await walker.ingest(RID)
        assert api.detail_calls == []
        assert again.events == first.events
        assert again.incremental is True

    @pytest.mark.anyio
    async def test_rewritten_history_falls_back_to_full(self, repo_cache):
        api = _three_commits()
        walker = CommitHistoryWalker(api, repo_cache, cache_ttl=0)
        await walker.ingest(RID)

        rewritten = FakeGitHub([("x0", "z", 50, [("only", "added")])])
        walker._client = rewritten
        result = await walker.ingest(RID)
        assert result.incremental is False
        assert result.to_log() == "50|z|A|only"

    @pytest.mark.anyio
    async def test_refresh_invalidates(self, repo_cache):
        api = _three_commits()
        walker = CommitHistoryWalker(api, repo_cache, cache_ttl=3600)
        await walker.ingest(RID)
        api.detail_calls.clear()

        result = await walker.ingest(RID, refresh=True)
        assert result.from_cache is False
        assert sorted(api.detail_calls) == ["c0", "c1", "c2"]

    @pytest.mark.anyio
    async def test_failure_keeps_prior_cache(self, repo_cache):
        api = _three_commits()
        walker = CommitHistoryWalker(api, repo_cache, cache_ttl=0)
        await walker.ingest(RID)
        before = repo_cache.get(RID)

        api.get_page = AsyncMock(side_effect=HttpError(500, "/repos/o/r/commits"))
        with pytest.raises(HttpError):
            await walker.ingest(RID)
        assert repo_cache.get(RID) == before

    @pytest.mark.anyio
    async def test_concurrent_ingests_are_serialized(self, repo_cache):
        api = _three_commits()
        walker = CommitHistoryWalker(api, repo_cache, cache_ttl=3600)
        first, second = await asyncio.gather(walker.ingest(RID), walker.ingest(RID))
        assert first.from_cache is False
        assert second.from_cache is True
        assert first.events == second.events
        assert sorted(api.detail_calls) == ["c0", "c1", "c2"]
        assert walker._locks == {}

    @pytest.mark.anyio
    async def test_locks_released_after_each_run(self):
        walker = CommitHistoryWalker(_three_commits())
        await walker.ingest(RID)
        assert walker._locks == {}

        walker._client = FakeGitHub(empty=True)
        with pytest.raises(EmptyRepository):
            await walker.ingest(RepositoryId("o", "other"))
        assert walker._locks == {}
        assert walker._lock_users == {}


class TestIngestInto:
    @pytest.mark.anyio
    async def test_loads_complete_log(self, tmp_path):
        sink = FileLogSink(tmp_path / "out" / "repo.log")
        await CommitHistoryWalker(_three_commits()).ingest_into(RID, sink)
        assert sink.path.read_text().splitlines()[0] == "100|author0|A|a"

    @pytest.mark.anyio
    async def test_failed_run_loads_nothing(self, tmp_path):
        sink = FileLogSink(tmp_path / "repo.log")
        with pytest.raises(EmptyRepository):
            await CommitHistoryWalker(FakeGitHub(empty=True)).ingest_into(RID, sink)
        assert not sink.path.exists()


# ── clone strategy ────────────────────────────────────────────────────────


def _clone_walker(tmp_path, cache=None, **kwargs):
    return CommitHistoryWalker(
        None, cache, clone_url=f"file://{tmp_path / 'remote'}", **kwargs
    )


@needs_git
class TestCloneStrategy:
    @pytest.mark.anyio
    async def test_end_to_end_order(self, tmp_path, git_repo_builder):
        repo = git_repo_builder()
        repo.commit("author0", 1000, write={"a": "one"})
        repo.commit("author1", 2000, write={"a": "two", "b": "new"})
        repo.commit("author2", 3000, remove=["b"])

        walker = _clone_walker(tmp_path)
        result = await walker.ingest(RID, Strategy.CLONE)
        assert result.to_log().splitlines() == [
            "1000|author0|A|a",
            "2000|author1|M|a",
            "2000|author1|A|b",
            "3000|author2|D|b",
        ]
        assert walker.runs[RID].history == [
            WalkerState.IDLE,
            WalkerState.LISTING_COMMITS,
            WalkerState.CLONING,
            WalkerState.READING_LOG,
            WalkerState.DIFFING_COMMITS,
            WalkerState.SORTING,
            WalkerState.DONE,
        ]

    @pytest.mark.anyio
    async def test_nested_paths_and_unchanged_files(self, tmp_path, git_repo_builder):
        repo = git_repo_builder()
        repo.commit("dev", 10, write={"src/pkg/mod.py": "x", "README": "r"})
        repo.commit("dev", 20, write={"src/pkg/mod.py": "y", "docs/guide.md": "g"})

        result = await _clone_walker(tmp_path).ingest(RID, Strategy.CLONE)
        assert result.to_log().splitlines() == [
            "10|dev|A|README",
            "10|dev|A|src/pkg/mod.py",
            "20|dev|A|docs/guide.md",
            "20|dev|M|src/pkg/mod.py",
        ]

    @pytest.mark.anyio
    async def test_depth_bound_treats_oldest_as_root(self, tmp_path, git_repo_builder):
        repo = git_repo_builder()
        repo.commit("a", 10, write={"old": "1"})
        repo.commit("b", 20, write={"new": "1"})

        result = await _clone_walker(tmp_path, depth=1).ingest(RID, Strategy.CLONE)
        assert result.to_log().splitlines() == ["20|b|A|new", "20|b|A|old"]

    @pytest.mark.anyio
    async def test_incremental(self, tmp_path, git_repo_builder, repo_cache):
        repo = git_repo_builder()
        repo.commit("a", 10, write={"x": "1"})
        walker = _clone_walker(tmp_path, repo_cache, cache_ttl=0)
        await walker.ingest(RID, Strategy.CLONE)

        head = repo.commit("b", 20, write={"x": "2", "y": "1"})
        result = await walker.ingest(RID, Strategy.CLONE)
        assert result.incremental is True
        assert result.commit_count == 1
        assert result.to_log().splitlines() == ["10|a|A|x", "20|b|M|x", "20|b|A|y"]
        assert repo_cache.get(RID).last_commit_sha == head

    @pytest.mark.anyio
    async def test_empty_repository(self, tmp_path, git_repo_builder):
        git_repo_builder()
        with pytest.raises(EmptyRepository):
            await _clone_walker(tmp_path).ingest(RID, Strategy.CLONE)

    @pytest.mark.anyio
    async def test_clone_failure(self, tmp_path):
        walker = _clone_walker(tmp_path)
        with pytest.raises(CloneError):
            await walker.ingest(RepositoryId("o", "missing"), Strategy.CLONE)
        assert walker.runs[RepositoryId("o", "missing")].state is WalkerState.FAILED
