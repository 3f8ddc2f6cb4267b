"""
Maintenance operations for the cache store.

Provides expiry sweeps, size-limit eviction, full scans, statistics and compaction.
"""

from __future__ import annotations

import os
import sqlite3
import logging
from typing import Optional

from ..models import CachedEntry, StorageStatistics
from .connection import ConnectionManager
from .utils import CHUNK_SIZE, row_to_entry


logger = logging.getLogger(__name__)


class MaintenanceOperations:
    """Expiry, statistics and compaction for the cache store."""

    def __init__(self, connection_manager: ConnectionManager):
        self.conn_mgr = connection_manager

    def delete_expired(self, now: float) -> list[str]:
        """
        Remove entries whose expiry time has been reached.

        Args:
            now: Current epoch seconds

        Returns:
            Content hashes of the removed entries
        """
        try:
            with self.conn_mgr.connection(exclusive=True) as conn:
                rows = conn.execute(
                    "SELECT content_hash FROM entries WHERE expires_at <= ?", (now,)
                ).fetchall()
                expired = [row['content_hash'] for row in rows]

                for i in range(0, len(expired), CHUNK_SIZE):
                    chunk = expired[i:i + CHUNK_SIZE]
                    placeholders = ','.join('?' * len(chunk))
                    conn.execute(
                        f"DELETE FROM entries WHERE content_hash IN ({placeholders})",
                        chunk
                    )

                return expired
        except Exception as e:
            logger.warning(f"Failed to remove expired cache entries: {e}")
            return []

    def evict_least_used(self, count: int, exclude: Optional[str] = None) -> list[str]:
        """
        Remove the entries with the fewest hits, least recently used first.

        Args:
            count: Maximum number of entries to remove
            exclude: Content hash that must survive (e.g. the entry just stored)

        Returns:
            Content hashes of the removed entries
        """
        if count <= 0:
            return []
        try:
            with self.conn_mgr.connection(exclusive=True) as conn:
                rows = conn.execute("""
                    SELECT content_hash FROM entries
                    WHERE content_hash != ?
                    ORDER BY access_count, last_accessed, stored_at, rowid
                    LIMIT ?
                """, (exclude or "", count)).fetchall()
                evicted = [row['content_hash'] for row in rows]

                for i in range(0, len(evicted), CHUNK_SIZE):
                    chunk = evicted[i:i + CHUNK_SIZE]
                    placeholders = ','.join('?' * len(chunk))
                    conn.execute(
                        f"DELETE FROM entries WHERE content_hash IN ({placeholders})",
                        chunk
                    )

                return evicted
        except Exception as e:
            logger.warning(f"Failed to evict least-used cache entries: {e}")
            return []

    def all_entries(self) -> list[CachedEntry]:
        """
        Every readable entry, oldest first.

        Unreadable rows are skipped.
        """
        entries = []
        try:
            with self.conn_mgr.connection(exclusive=False) as conn:
                rows = conn.execute("SELECT * FROM entries ORDER BY stored_at, rowid").fetchall()
        except Exception as e:
            logger.warning(f"Failed to read cache entries: {e}")
            return entries

        for row in rows:
            try:
                entries.append(row_to_entry(row))
            except Exception as e:
                logger.debug(f"Skipping unreadable cache entry: {e}")
        return entries

    def statistics(self) -> StorageStatistics:
        """
        Size and compression figures.

        total_size_bytes counts compressed payloads plus stored artifacts;
        compression_ratio is compressed / uncompressed payload bytes.
        """
        db_path = self.conn_mgr.db_path
        try:
            with self.conn_mgr.connection(exclusive=False) as conn:
                row = conn.execute("""
                    SELECT
                        COUNT(*) AS cnt,
                        COALESCE(SUM(raw_size), 0) AS raw,
                        COALESCE(SUM(stored_size), 0) AS stored,
                        COALESCE(SUM(length(features)), 0)
                            + COALESCE(SUM(length(histogram)), 0) AS artifacts
                    FROM entries
                """).fetchone()

            db_size = os.path.getsize(db_path) if os.path.exists(db_path) else 0
            return StorageStatistics(
                entry_count=row['cnt'],
                total_size_bytes=row['stored'] + row['artifacts'],
                compression_ratio=(row['stored'] / row['raw']) if row['raw'] else 1.0,
                db_size_bytes=db_size,
                db_path=db_path,
            )
        except Exception as e:
            logger.warning(f"Failed to get cache statistics: {e}")
            return StorageStatistics(db_path=db_path)

    def clear(self) -> bool:
        """Remove every entry and compact the file."""
        try:
            with self.conn_mgr.connection(exclusive=True) as conn:
                conn.execute("DELETE FROM entries")
        except Exception as e:
            logger.warning(f"Failed to clear cache: {e}")
            return False
        self.vacuum()
        return True

    def vacuum(self):
        """Compact the database file."""
        try:
            # VACUUM cannot run inside a transaction
            conn = sqlite3.connect(self.conn_mgr.db_path, timeout=30.0)
            try:
                conn.execute("VACUUM")
            finally:
                conn.close()
        except Exception as e:
            logger.debug(f"Failed to vacuum database: {e}")


__all__ = ['MaintenanceOperations']
