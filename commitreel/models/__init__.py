"""ORM models for the repository cache."""

from commitreel.models.cache_entry import CacheRecord

__all__ = ["CacheRecord"]
