"""Service layer — cache policy over the storage DAO."""

from commitreel.services.repository_cache import (
    SCHEMA_VERSION,
    CacheEntry,
    CacheSummary,
    RepositoryCache,
)

__all__ = ["SCHEMA_VERSION", "CacheEntry", "CacheSummary", "RepositoryCache"]
