"""
Cache database schema and versioning.
"""

from __future__ import annotations

import sqlite3


# Increment when changing table structure; older tables are dropped
SCHEMA_VERSION = 2

# Current epoch seconds with sub-second precision
EPOCH_NOW_SQL = "((julianday('now') - 2440587.5) * 86400.0)"


def initialize_schema(conn: sqlite3.Connection) -> None:
    """
    Create the cache tables, recreating them if the schema version changed.

    Args:
        conn: Active database connection

    Tables created:
        - meta: Schema version tracking
        - entries: One row per cached recognition result
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT
        )
    """)

    result = conn.execute(
        "SELECT value FROM meta WHERE key = 'schema_version'"
    ).fetchone()
    current_version = int(result['value']) if result else 0

    if current_version < SCHEMA_VERSION:
        conn.execute("DROP TABLE IF EXISTS entries")

    conn.execute(f"""
        CREATE TABLE IF NOT EXISTS entries (
            content_hash TEXT PRIMARY KEY,
            perceptual_hash TEXT NOT NULL,

            -- zlib-compressed JSON of the result and metadata
            payload BLOB NOT NULL,
            raw_size INTEGER NOT NULL,
            stored_size INTEGER NOT NULL,

            -- Similarity artifacts (float64 arrays), NULL if not computed
            features BLOB,
            histogram BLOB,

            stored_at REAL NOT NULL,
            expires_at REAL NOT NULL,
            -- Usage record for size-limit eviction
            access_count INTEGER NOT NULL DEFAULT 0,
            last_accessed REAL DEFAULT {EPOCH_NOW_SQL}
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_entries_expires_at
        ON entries(expires_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_entries_usage
        ON entries(access_count, last_accessed)
    """)

    conn.execute("""
        INSERT OR REPLACE INTO meta (key, value)
        VALUES ('schema_version', ?)
    """, (str(SCHEMA_VERSION),))


__all__ = ['SCHEMA_VERSION', 'EPOCH_NOW_SQL', 'initialize_schema']
