"""
Single and batch read/write operations for the cache store.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..models import CachedEntry
from .connection import ConnectionManager
from .schema import EPOCH_NOW_SQL
from .utils import CHUNK_SIZE, INSERT_SQL, encode_entry, row_to_entry


logger = logging.getLogger(__name__)


class EntryOperations:
    """
    Stores, loads and deletes cache entries.

    Failures never propagate: loads degrade to "not found" and writes to
    False (or a smaller count for batches).
    """

    def __init__(self, connection_manager: ConnectionManager):
        self.conn_mgr = connection_manager

    def store(self, key: str, entry: CachedEntry) -> bool:
        """
        Insert or replace the entry stored under key.

        Returns:
            True if the entry was written
        """
        try:
            encoded = encode_entry(key, entry)
            with self.conn_mgr.connection(exclusive=True) as conn:
                conn.execute(INSERT_SQL, encoded.as_params())
            return True
        except Exception as e:
            logger.warning(f"Failed to store cache entry {key[:12]}: {e}")
            return False

    def load(self, key: str) -> Optional[CachedEntry]:
        """
        Load the entry stored under key.

        Returns:
            The entry, or None if absent or unreadable
        """
        try:
            with self.conn_mgr.connection(exclusive=True) as conn:
                row = conn.execute(
                    "SELECT * FROM entries WHERE content_hash = ?", (key,)
                ).fetchone()
                if row is None:
                    return None

                conn.execute(f"""
                    UPDATE entries SET last_accessed = {EPOCH_NOW_SQL}
                    WHERE content_hash = ?
                """, (key,))

            return row_to_entry(row)

        except Exception as e:
            logger.debug(f"Failed to load cache entry {key[:12]}: {e}")
            return None

    def batch_store(self, entries: dict[str, CachedEntry]) -> int:
        """
        Store many entries in one transaction.

        Entries that cannot be encoded or written are skipped; the rest
        are committed.

        Returns:
            Number of entries written
        """
        stored = 0

        try:
            with self.conn_mgr.connection(exclusive=True) as conn:
                for key, entry in entries.items():
                    try:
                        conn.execute(INSERT_SQL, encode_entry(key, entry).as_params())
                        stored += 1
                    except Exception as e:
                        logger.debug(f"Skipping cache entry {key[:12]} in batch: {e}")
                        continue

        except Exception as e:
            logger.warning(f"Error during batch store: {e}")
            return 0

        return stored

    def batch_load(self, keys: list[str]) -> dict[str, CachedEntry]:
        """
        Load many entries at once.

        Returns:
            Dict of key -> entry for keys that were found and readable
        """
        results: dict[str, CachedEntry] = {}
        unique_keys = list(dict.fromkeys(keys))
        if not unique_keys:
            return results

        try:
            with self.conn_mgr.connection(exclusive=True) as conn:
                for i in range(0, len(unique_keys), CHUNK_SIZE):
                    chunk = unique_keys[i:i + CHUNK_SIZE]
                    placeholders = ','.join('?' * len(chunk))

                    rows = conn.execute(f"""
                        SELECT * FROM entries WHERE content_hash IN ({placeholders})
                    """, chunk).fetchall()

                    for row in rows:
                        try:
                            results[row['content_hash']] = row_to_entry(row)
                        except Exception as e:
                            logger.debug(f"Skipping unreadable cache entry: {e}")

                    conn.execute(f"""
                        UPDATE entries SET last_accessed = {EPOCH_NOW_SQL}
                        WHERE content_hash IN ({placeholders})
                    """, chunk)

        except Exception as e:
            logger.warning(f"Error during batch load: {e}")

        return results

    def delete(self, key: str) -> bool:
        """
        Remove the entry stored under key.

        Returns:
            True if an entry was removed
        """
        try:
            with self.conn_mgr.connection(exclusive=True) as conn:
                result = conn.execute("DELETE FROM entries WHERE content_hash = ?", (key,))
                return result.rowcount > 0
        except Exception as e:
            logger.debug(f"Failed to delete cache entry {key[:12]}: {e}")
            return False

    def record_access(self, key: str) -> bool:
        """
        Count a cache hit on the entry stored under key.

        Returns:
            True if the entry exists
        """
        try:
            with self.conn_mgr.connection(exclusive=True) as conn:
                result = conn.execute(f"""
                    UPDATE entries
                    SET access_count = access_count + 1, last_accessed = {EPOCH_NOW_SQL}
                    WHERE content_hash = ?
                """, (key,))
                return result.rowcount > 0
        except Exception as e:
            logger.debug(f"Failed to record access to cache entry {key[:12]}: {e}")
            return False


__all__ = ['EntryOperations']
