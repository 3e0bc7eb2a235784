"""Visualization ingest targets for an assembled change log."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Protocol, TextIO

import structlog

log = structlog.get_logger("commitreel.engine")


class LogSink(Protocol):
    """What the visualization engine accepts: the whole log text, or a reset."""

    def load_log(self, text: str) -> bool: ...

    def reset(self) -> None: ...


class FileLogSink:
    """Writes the log to a Gource custom-log file, replacing it atomically."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load_log(self, text: str) -> bool:
        if not text:
            return False
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".commitreel-", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as fh:
                fh.write(text)
                fh.write("\n")
            os.replace(tmp, self.path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise
        log.info("sink.written", path=str(self.path), lines=text.count("\n") + 1)
        return True

    def reset(self) -> None:
        self.path.unlink(missing_ok=True)


class StreamLogSink:
    """Writes the log to an open text stream (e.g. stdout)."""

    def __init__(self, stream: TextIO) -> None:
        self.stream = stream

    def load_log(self, text: str) -> bool:
        if not text:
            return False
        self.stream.write(text)
        self.stream.write("\n")
        self.stream.flush()
        return True

    def reset(self) -> None:
        pass
