"""Cache store DAO — whole-entry upserts under an entry/byte quota."""

from __future__ import annotations

import logging
import math

from sqlalchemy import delete, func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from commitreel.exceptions import CacheCapacityError, CacheError
from commitreel.models.cache_entry import CacheRecord

logger = logging.getLogger(__name__)


def record_size(record: CacheRecord) -> int:
    """Approximate stored size of a record in bytes."""
    return sum(len(line.encode("utf-8")) + 1 for line in record.event_log) + len(record.key)


class CacheDAO:
    """Persistence for :class:`CacheRecord` rows.

    Writes that would push the store past *max_entries* rows or *max_bytes*
    of event log raise :class:`CacheCapacityError`; the store itself running
    out of space is reported the same way. Every other database failure is
    raised as :class:`CacheError`.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        max_entries: int = 200,
        max_bytes: int = 50_000_000,
    ) -> None:
        self._session_factory = session_factory
        self.max_entries = max_entries
        self.max_bytes = max_bytes

    def close(self) -> None:
        engine = self._session_factory.kw.get("bind")
        if engine is not None:
            engine.dispose()

    def get(self, key: str) -> CacheRecord | None:
        try:
            with self._session_factory() as session:
                return session.get(CacheRecord, key)
        except SQLAlchemyError as exc:
            raise CacheError(f"cache read failed for {key}: {exc}") from exc

    def put(self, record: CacheRecord) -> None:
        """Insert or replace the row for ``record.key``."""
        record.size_bytes = record_size(record)
        try:
            with self._session_factory() as session:
                existing = session.get(CacheRecord, record.key)
                count, total = session.execute(
                    select(func.count(), func.coalesce(func.sum(CacheRecord.size_bytes), 0))
                ).one()
                if existing is not None:
                    count -= 1
                    total -= existing.size_bytes
                if count + 1 > self.max_entries or total + record.size_bytes > self.max_bytes:
                    raise CacheCapacityError(
                        f"cache full: {count} entries / {total} bytes, "
                        f"limit {self.max_entries} / {self.max_bytes}"
                    )
                session.merge(record)
                session.commit()
        except OperationalError as exc:
            if "full" in str(exc).lower():
                raise CacheCapacityError(f"cache store is full: {exc}") from exc
            raise CacheError(f"cache write failed for {record.key}: {exc}") from exc
        except SQLAlchemyError as exc:
            raise CacheError(f"cache write failed for {record.key}: {exc}") from exc

    def delete(self, key: str) -> bool:
        try:
            with self._session_factory() as session:
                result = session.execute(delete(CacheRecord).where(CacheRecord.key == key))
                session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            raise CacheError(f"cache delete failed for {key}: {exc}") from exc

    def list_all(self) -> list[CacheRecord]:
        """All rows, most recently cached first."""
        try:
            with self._session_factory() as session:
                stmt = select(CacheRecord).order_by(CacheRecord.cached_at.desc())
                return list(session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise CacheError(f"cache listing failed: {exc}") from exc

    def evict_oldest(self, fraction: float = 0.5) -> int:
        """Delete the oldest ``ceil(count * fraction)`` rows by ``cached_at``."""
        try:
            with self._session_factory() as session:
                count = session.scalar(select(func.count()).select_from(CacheRecord)) or 0
                n = math.ceil(count * fraction)
                if n == 0:
                    return 0
                keys = list(
                    session.scalars(
                        select(CacheRecord.key).order_by(CacheRecord.cached_at.asc()).limit(n)
                    ).all()
                )
                session.execute(delete(CacheRecord).where(CacheRecord.key.in_(keys)))
                session.commit()
        except SQLAlchemyError as exc:
            raise CacheError(f"cache eviction failed: {exc}") from exc
        logger.info("Evicted %d of %d cache entries", len(keys), count)
        return len(keys)

    def clear(self) -> int:
        try:
            with self._session_factory() as session:
                result = session.execute(delete(CacheRecord))
                session.commit()
                return result.rowcount
        except SQLAlchemyError as exc:
            raise CacheError(f"cache clear failed: {exc}") from exc
