"""
Database connection management with thread safety.

Provides ConnectionManager for thread-safe SQLite operations with WAL mode.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator


class ConnectionManager:
    """
    Manages SQLite connections for the cache store.

    Every call opens a short-lived connection, so no lock or connection is
    held between operations:
    - Writers serialize on a process-wide lock
    - WAL mode lets readers proceed while a write is in flight
    - Each block runs in one transaction (BEGIN/COMMIT/ROLLBACK)
    """

    def __init__(self, db_path: str, busy_timeout: float = 30.0):
        """
        Args:
            db_path: Path to SQLite database file
            busy_timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._write_lock = threading.Lock()
        self._ensure_directory()

    def _ensure_directory(self):
        db_dir = Path(self.db_path).resolve().parent
        db_dir.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connection(self, exclusive: bool = False) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Args:
            exclusive: If True, hold the write lock for the whole block

        Yields:
            sqlite3.Connection with row factory, inside an open transaction

        Example:
            with conn_mgr.connection(exclusive=True) as conn:
                conn.execute("DELETE FROM entries WHERE content_hash = ?", (key,))
        """
        if exclusive:
            self._write_lock.acquire()

        try:
            conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            # fsync at checkpoints only
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("BEGIN")

            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()
        finally:
            if exclusive:
                self._write_lock.release()


__all__ = ['ConnectionManager']
