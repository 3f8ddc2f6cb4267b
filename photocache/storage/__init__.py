"""
SQLite persistence for cached recognition results.

Each entry is keyed by the image's content hash and holds the compressed
recognition result, the image metadata and the similarity artifacts needed
to rebuild the fuzzy index after a restart.

Public API:
- CacheStorage: Store facade
- StorageStatistics: Size/compression figures
"""

from __future__ import annotations

from ..models import StorageStatistics
from .core import CacheStorage


__all__ = [
    'CacheStorage',
    'StorageStatistics',
]
