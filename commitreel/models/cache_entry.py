"""repository_cache table."""

from __future__ import annotations

import json

from sqlalchemy import BigInteger, Double, Index, Integer, Text, types
from sqlalchemy.orm import Mapped, mapped_column

from commitreel.core.database import Base


class StringList(types.TypeDecorator):
    """list[str] stored as JSON text."""

    impl = types.Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return json.loads(value)


class CacheRecord(Base):
    __tablename__ = "repository_cache"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    owner: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    event_log: Mapped[list[str]] = mapped_column(StringList, nullable=False)
    last_commit_sha: Mapped[str] = mapped_column(Text, nullable=False)
    last_commit_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    cached_at: Mapped[float] = mapped_column(Double, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (Index("idx_repository_cache_cached_at", "cached_at"),)

    def __repr__(self) -> str:
        return f"<CacheRecord {self.key} v{self.schema_version} events={len(self.event_log)}>"
