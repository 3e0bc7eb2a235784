"""Shared fixtures for commitreel tests.

Cache tests run against a throwaway SQLite file; git-backed tests build
small repositories under tmp_path.
"""

import os
import subprocess

import pytest

from commitreel.core.database import create_session_factory
from commitreel.dao.cache_dao import CacheDAO
from commitreel.services.repository_cache import RepositoryCache


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def session_factory(tmp_path):
    factory = create_session_factory(f"sqlite:///{tmp_path / 'cache.db'}")
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture
def cache_dao(session_factory):
    return CacheDAO(session_factory, max_entries=50, max_bytes=1_000_000)


@pytest.fixture
def repo_cache(cache_dao):
    return RepositoryCache(cache_dao)


class GitRepoBuilder:
    """Builds a small repository commit by commit with fixed authors and dates."""

    def __init__(self, path):
        self.path = path
        path.mkdir(parents=True)
        self._git("init", "--quiet", "--initial-branch=main")
        self._git("config", "commit.gpgsign", "false")

    def _git(self, *args, env=None):
        return subprocess.run(
            ["git", "-C", str(self.path), *args],
            check=True,
            capture_output=True,
            text=True,
            env=env,
        ).stdout.strip()

    def commit(self, author, timestamp, *, write=None, remove=()):
        for rel, content in (write or {}).items():
            target = self.path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
            self._git("add", "--", rel)
        for rel in remove:
            self._git("rm", "--quiet", "--", rel)
        date = f"@{timestamp} +0000"
        env = {
            "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
            "HOME": str(self.path),
            "GIT_AUTHOR_NAME": author,
            "GIT_AUTHOR_EMAIL": f"{author}@example.com",
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_NAME": author,
            "GIT_COMMITTER_EMAIL": f"{author}@example.com",
            "GIT_COMMITTER_DATE": date,
        }
        self._git("commit", "--quiet", "--allow-empty", "-m", f"commit by {author}", env=env)
        return self._git("rev-parse", "HEAD")


@pytest.fixture
def git_repo_builder(tmp_path):
    """Factory: ``git_repo_builder("owner", "name")`` -> GitRepoBuilder at tmp/owner/name.git."""

    def _make(owner="o", name="r"):
        return GitRepoBuilder(tmp_path / "remote" / owner / f"{name}.git")

    return _make
