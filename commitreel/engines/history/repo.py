"""Git subprocess helpers: shallow clone, first-parent log, tree reads."""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path

import structlog

from commitreel.engines.history.models import Commit
from commitreel.engines.history.tree_diff import TreeEntry
from commitreel.exceptions import CloneError

log = structlog.get_logger("commitreel.engine")

DEFAULT_DEPTH = 10_000

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = f"%H{_FIELD_SEP}%P{_FIELD_SEP}%an{_FIELD_SEP}%at{_RECORD_SEP}"


class GitRepository:
    """A local object store driven through the ``git`` binary."""

    def __init__(self, path: Path) -> None:
        self.path = path

    async def has_commits(self, ref: str = "HEAD") -> bool:
        try:
            await _run(
                ["git", "-C", str(self.path), "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"]
            )
        except CloneError:
            return False
        return True

    async def list_first_parent(self, ref: str = "HEAD", depth: int = DEFAULT_DEPTH) -> list[Commit]:
        """Commits reachable from *ref* along first parents, newest first.

        Returns an empty list when *ref* does not resolve (empty repository).
        """
        if not await self.has_commits(ref):
            return []
        out = await _run(
            [
                "git",
                "-C",
                str(self.path),
                "log",
                "--first-parent",
                f"--max-count={depth}",
                f"--format={_LOG_FORMAT}",
                ref,
                "--",
            ]
        )
        return parse_log(out.decode("utf-8", errors="replace"))

    async def read_tree(self, tree_ish: str) -> list[TreeEntry]:
        """Direct children of one tree object (not recursive)."""
        out = await _run(["git", "-C", str(self.path), "ls-tree", "-z", tree_ish])
        return parse_ls_tree(out)


async def shallow_clone(
    repo_url: str,
    workdir: Path,
    *,
    depth: int = DEFAULT_DEPTH,
    branch: str | None = None,
) -> GitRepository:
    """Clone the default (or given) branch without a working copy.

    The caller owns *workdir* and cleans it up (e.g. via
    ``tempfile.TemporaryDirectory``). Raises ``CloneError`` on failure.
    """
    target = workdir / f"repo-{uuid.uuid4().hex[:8]}"
    cmd = ["git", "clone", f"--depth={depth}", "--single-branch", "--no-checkout", "--quiet"]
    if branch:
        cmd.append(f"--branch={branch}")
    cmd += ["--", repo_url, str(target)]
    log.info("git.clone", url=_redact(repo_url), depth=depth)
    try:
        await _run(cmd)
    except CloneError as exc:
        raise CloneError(_redact(str(exc))) from None
    return GitRepository(target)


def parse_log(output: str) -> list[Commit]:
    commits: list[Commit] = []
    for record in output.split(_RECORD_SEP):
        record = record.strip("\n")
        if not record:
            continue
        fields = record.split(_FIELD_SEP)
        if len(fields) != 4:
            log.warning("git.log_record_malformed", record=record[:80])
            continue
        sha, parents, author, timestamp = fields
        commits.append(
            Commit(
                sha=sha,
                author=author or "Unknown",
                timestamp=int(timestamp),
                parents=tuple(parents.split()),
            )
        )
    return commits


def parse_ls_tree(output: bytes) -> list[TreeEntry]:
    entries: list[TreeEntry] = []
    for raw in output.split(b"\0"):
        if not raw:
            continue
        meta, _, name = raw.partition(b"\t")
        mode, kind, oid = meta.decode().split(" ")
        entries.append(
            TreeEntry(mode=mode, type=kind, oid=oid, name=name.decode("utf-8", errors="replace"))
        )
    return entries


def _redact(text: str) -> str:
    """Hide credentials embedded in clone URLs."""
    if "x-access-token:" not in text:
        return text
    head, _, rest = text.partition("x-access-token:")
    _, _, tail = rest.partition("@")
    return f"{head}x-access-token:***@{tail}"


async def _run(cmd: list[str]) -> bytes:
    """Run a git command, raising CloneError on failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CloneError(f"cannot run git: {exc}") from exc
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise CloneError(
            f"git command failed (exit {proc.returncode}): {stderr.decode(errors='replace').strip()}"
        )
    return stdout
