"""Tree snapshots and the add/modify/delete diff between two of them."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Protocol

import structlog

from commitreel.engines.history.models import ChangeAction
from commitreel.exceptions import CommitReelError

log = structlog.get_logger("commitreel.engine")

MAX_TREE_DEPTH = 10_000
_TREE_CACHE_LIMIT = 50_000


@dataclass(frozen=True)
class TreeEntry:
    """One line of a tree object: ``<mode> <type> <oid>\\t<name>``."""

    mode: str
    type: str  # "blob" | "tree" | "commit" (submodule)
    oid: str
    name: str


class TreeSource(Protocol):
    async def read_tree(self, tree_ish: str) -> list[TreeEntry]: ...


class TreeSnapshot(Mapping[str, str]):
    """Slash-joined path -> content id for every file at one commit."""

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._entries: dict[str, str] = dict(entries or {})

    @classmethod
    def empty(cls) -> TreeSnapshot:
        return cls()

    def __getitem__(self, path: str) -> str:
        return self._entries[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"TreeSnapshot({len(self._entries)} files)"


def diff(old: Mapping[str, str] | None, new: Mapping[str, str]) -> list[tuple[str, ChangeAction]]:
    """Compare two snapshots by path and content id.

    Enumeration order is fixed: additions and modifications in *new*'s
    order, then deletions in *old*'s order.
    """
    old = old if old is not None else {}
    changes: list[tuple[str, ChangeAction]] = []
    for path, oid in new.items():
        previous = old.get(path)
        if previous is None:
            changes.append((path, ChangeAction.ADDED))
        elif previous != oid:
            changes.append((path, ChangeAction.MODIFIED))
    for path in old:
        if path not in new:
            changes.append((path, ChangeAction.DELETED))
    return changes


class TreeReader:
    """Materializes a :class:`TreeSnapshot` from hierarchical tree objects.

    Traversal uses an explicit stack, so tree depth never touches the
    interpreter's recursion limit. Tree objects are content-addressed, so
    reads are memoized by oid across commits.
    """

    def __init__(self, source: TreeSource, *, max_depth: int = MAX_TREE_DEPTH) -> None:
        self._source = source
        self._max_depth = max_depth
        self._cache: dict[str, list[TreeEntry]] = {}

    async def snapshot(self, tree_ish: str) -> TreeSnapshot:
        """Read every blob reachable from *tree_ish*.

        Unreadable subtrees are logged and treated as absent; an unreadable
        root yields the empty snapshot.
        """
        files: dict[str, str] = {}
        # (path, oid, kind, depth); popped in tree order for a preorder walk
        stack: list[tuple[str, str, str, int]] = [("", tree_ish, "tree", 0)]
        while stack:
            path, oid, kind, depth = stack.pop()
            if kind == "blob":
                files[path] = oid
                continue

            if depth > self._max_depth:
                log.warning("tree.depth_exceeded", path=path, max_depth=self._max_depth)
                continue
            try:
                entries = await self._read(oid)
            except CommitReelError as exc:
                log.warning("tree.subtree_unreadable", path=path or "/", oid=oid, error=str(exc))
                continue

            for entry in reversed(entries):
                if entry.type not in ("blob", "tree"):
                    continue
                child = f"{path}/{entry.name}" if path else entry.name
                stack.append((child, entry.oid, entry.type, depth + 1))
        return TreeSnapshot(files)

    async def _read(self, oid: str) -> list[TreeEntry]:
        cached = self._cache.get(oid)
        if cached is not None:
            return cached
        entries = await self._source.read_tree(oid)
        if len(self._cache) >= _TREE_CACHE_LIMIT:
            self._cache.clear()
        self._cache[oid] = entries
        return entries
