"""History engine — repository commit history to a sorted change log."""

from commitreel.engines.history.executor import TaskResult, run_all
from commitreel.engines.history.github_client import GitHubClient, PageResponse
from commitreel.engines.history.models import (
    ChangeAction,
    ChangeEvent,
    Commit,
    IngestResult,
    decode_log,
    encode_log,
)
from commitreel.engines.history.pagination import FetchResult, PaginatedFetcher
from commitreel.engines.history.rate_limit import Pressure, RateLimitTracker
from commitreel.engines.history.sink import FileLogSink, LogSink, StreamLogSink
from commitreel.engines.history.tree_diff import TreeReader, TreeSnapshot, diff
from commitreel.engines.history.walker import CommitHistoryWalker, Strategy, WalkerState

__all__ = [
    "ChangeAction",
    "ChangeEvent",
    "Commit",
    "CommitHistoryWalker",
    "FetchResult",
    "FileLogSink",
    "GitHubClient",
    "IngestResult",
    "LogSink",
    "PageResponse",
    "PaginatedFetcher",
    "Pressure",
    "RateLimitTracker",
    "Strategy",
    "StreamLogSink",
    "TaskResult",
    "TreeReader",
    "TreeSnapshot",
    "WalkerState",
    "decode_log",
    "diff",
    "encode_log",
    "run_all",
]
