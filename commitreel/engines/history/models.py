"""Data models for the history engine — commits, change events, log codec."""

from __future__ import annotations

import enum
import re
from collections.abc import Iterable
from dataclasses import dataclass, field


class ChangeAction(str, enum.Enum):
    ADDED = "A"
    MODIFIED = "M"
    DELETED = "D"


# GitHub per-file status -> action; anything unlisted counts as a modification.
_STATUS_ACTIONS = {
    "added": ChangeAction.ADDED,
    "removed": ChangeAction.DELETED,
    "renamed": ChangeAction.MODIFIED,
    "modified": ChangeAction.MODIFIED,
}


def action_for_status(status: str | None) -> ChangeAction:
    return _STATUS_ACTIONS.get((status or "").lower(), ChangeAction.MODIFIED)


@dataclass(frozen=True)
class Commit:
    """A commit as seen by the walker. Only ``parents[0]`` is ever followed."""

    sha: str
    author: str
    timestamp: int  # author time, seconds since epoch; may regress between commits
    parents: tuple[str, ...] = ()

    @property
    def first_parent(self) -> str | None:
        return self.parents[0] if self.parents else None


# ── log line codec ────────────────────────────────────────────────────────

_ESCAPES = {"%": "%25", "|": "%7C", "\n": "%0A", "\r": "%0D"}
_ESCAPE_TABLE = str.maketrans(_ESCAPES)
_UNESCAPES = {v: k for k, v in _ESCAPES.items()}
_UNESCAPE_RE = re.compile(r"%(?:25|7[Cc]|0[Aa]|0[Dd])")


def escape_field(value: str) -> str:
    """Percent-encode the characters that would break a ``|``-delimited line."""
    return value.translate(_ESCAPE_TABLE)


def unescape_field(value: str) -> str:
    return _UNESCAPE_RE.sub(lambda m: _UNESCAPES[m.group(0).upper()], value)


@dataclass(frozen=True)
class ChangeEvent:
    """One file change, rendered as a Gource custom-log line."""

    timestamp: int
    author: str
    action: ChangeAction
    path: str

    def to_line(self) -> str:
        return (
            f"{self.timestamp}|{escape_field(self.author)}|"
            f"{self.action.value}|{escape_field(self.path)}"
        )

    @classmethod
    def from_line(cls, line: str) -> ChangeEvent:
        """Parse a line produced by :meth:`to_line`.

        Raises ValueError on malformed input.
        """
        parts = line.rstrip("\r\n").split("|")
        if len(parts) != 4:
            raise ValueError(f"expected 4 fields, got {len(parts)}: {line!r}")
        timestamp, author, action, path = parts
        return cls(
            timestamp=int(timestamp),
            author=unescape_field(author),
            action=ChangeAction(action),
            path=unescape_field(path),
        )


def sort_events(events: Iterable[ChangeEvent]) -> list[ChangeEvent]:
    """Stable sort by timestamp; equal timestamps keep discovery order."""
    return sorted(events, key=lambda e: e.timestamp)


def encode_log(events: Iterable[ChangeEvent]) -> str:
    return "\n".join(e.to_line() for e in events)


def decode_log(lines: Iterable[str]) -> list[ChangeEvent]:
    return [ChangeEvent.from_line(line) for line in lines if line.strip()]


@dataclass
class IngestResult:
    """Outcome of one successful ingestion run."""

    events: list[ChangeEvent]
    last_commit_sha: str
    last_commit_at: int
    commit_count: int = 0
    from_cache: bool = False
    incremental: bool = False
    truncated: bool = False
    failed_commits: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        """False when some per-commit detail could not be fetched."""
        return not self.failed_commits

    def to_log(self) -> str:
        return encode_log(self.events)
