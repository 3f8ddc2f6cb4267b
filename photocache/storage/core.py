"""
CacheStorage facade over the SQLite cache store.
"""

from __future__ import annotations

from typing import Optional

from ..config import CACHE_DB_FILE
from ..models import CachedEntry, StorageStatistics
from .connection import ConnectionManager
from .schema import initialize_schema, SCHEMA_VERSION
from .operations import EntryOperations
from .maintenance import MaintenanceOperations


class CacheStorage:
    """
    Durable content-hash -> CachedEntry store.

    Thread-safe; every call opens its own connection, and writes are
    serialized. No method raises on I/O or decoding errors.

    Usage:
        storage = CacheStorage("/tmp/cache.db")
        storage.store(entry.content_hash, entry)
        entry = storage.load(content_hash)
    """

    SCHEMA_VERSION = SCHEMA_VERSION

    def __init__(self, db_path: Optional[str] = None):
        """
        Args:
            db_path: Path to SQLite database file. Uses default if None.
        """
        self.db_path = str(db_path or CACHE_DB_FILE)

        self._conn_mgr = ConnectionManager(self.db_path)
        self._operations = EntryOperations(self._conn_mgr)
        self._maintenance = MaintenanceOperations(self._conn_mgr)

        with self._conn_mgr.connection(exclusive=True) as conn:
            initialize_schema(conn)

    def store(self, key: str, entry: CachedEntry) -> bool:
        """Insert or replace an entry. Returns False on failure."""
        return self._operations.store(key, entry)

    def load(self, key: str) -> Optional[CachedEntry]:
        """Load an entry, or None if absent or unreadable."""
        return self._operations.load(key)

    def batch_store(self, entries: dict[str, CachedEntry]) -> int:
        """Store many entries; returns how many were written."""
        return self._operations.batch_store(entries)

    def batch_load(self, keys: list[str]) -> dict[str, CachedEntry]:
        """Load many entries; missing and unreadable keys are absent."""
        return self._operations.batch_load(keys)

    def delete(self, key: str) -> bool:
        """Remove an entry. Returns True if one was removed."""
        return self._operations.delete(key)

    def record_access(self, key: str) -> bool:
        """Count a hit on an entry for size-limit eviction."""
        return self._operations.record_access(key)

    def delete_expired(self, now: float) -> list[str]:
        """Remove entries expired at now; returns their keys."""
        return self._maintenance.delete_expired(now)

    def evict_least_used(self, count: int, exclude: Optional[str] = None) -> list[str]:
        """Remove up to count least-used entries; returns their keys."""
        return self._maintenance.evict_least_used(count, exclude)

    def iter_entries(self) -> list[CachedEntry]:
        """Every readable entry, oldest first."""
        return self._maintenance.all_entries()

    def statistics(self) -> StorageStatistics:
        return self._maintenance.statistics()

    def clear(self) -> bool:
        """Remove all entries."""
        return self._maintenance.clear()

    def vacuum(self):
        """Compact the database file."""
        self._maintenance.vacuum()


__all__ = ['CacheStorage']
