"""
In-memory index of cached entries for exact and fuzzy lookup.

Entries are reachable by content hash (exact) or through candidate
enumeration for similarity search (fuzzy). Once optimized, or once the
index grows past the LSH threshold, fuzzy candidates are narrowed with
bit-sampling LSH buckets over the perceptual hashes.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .config import LSH_AUTO_THRESHOLD, GRID_SIZE
from .hashing import bits_to_imagehash
from .lsh import HammingLSH, calculate_optimal_params
from .models import CachedEntry, ImageSignature

logger = logging.getLogger(__name__)


class SimilarityIndex:
    """
    Thread-safe map of content hash -> CachedEntry with optional LSH buckets.

    Insertion order is preserved, so candidate lists are stable across calls.
    Flat images (all-zero perceptual hash) never land in LSH buckets; they
    are always offered as candidates because only color can match them.
    """

    def __init__(
        self,
        lsh_auto_threshold: Optional[int] = LSH_AUTO_THRESHOLD,
        num_tables: Optional[int] = None,
        bits_per_table: Optional[int] = None,
    ):
        """
        Args:
            lsh_auto_threshold: Build LSH buckets automatically once the index
                                holds this many entries (None disables)
            num_tables: LSH tables; derived from the index size if omitted
            bits_per_table: LSH bits per table; derived if omitted
        """
        self.lsh_auto_threshold = lsh_auto_threshold
        self.num_tables = num_tables
        self.bits_per_table = bits_per_table
        self._lock = threading.RLock()
        self._entries: dict[str, CachedEntry] = {}
        self._lsh: Optional[HammingLSH] = None

    def add(self, entry: CachedEntry) -> None:
        """Index an entry, replacing any entry with the same content hash."""
        with self._lock:
            self._entries.pop(entry.content_hash, None)
            self._entries[entry.content_hash] = entry
            if self._lsh is not None:
                self._lsh.remove(entry.content_hash)
                self._bucket(entry)

    def remove(self, content_hash: str) -> Optional[CachedEntry]:
        """Drop an entry; returns it if it was indexed."""
        with self._lock:
            entry = self._entries.pop(content_hash, None)
            if entry is not None and self._lsh is not None:
                self._lsh.remove(content_hash)
            return entry

    def get(self, content_hash: str) -> Optional[CachedEntry]:
        with self._lock:
            return self._entries.get(content_hash)

    def entries(self) -> list[CachedEntry]:
        """Snapshot of all indexed entries in insertion order."""
        with self._lock:
            return list(self._entries.values())

    def live_entries(self, now: float) -> list[CachedEntry]:
        """Entries that have not expired at time now."""
        return [entry for entry in self.entries() if not entry.is_expired(now)]

    def expired_keys(self, now: float) -> list[str]:
        return [entry.content_hash for entry in self.entries() if entry.is_expired(now)]

    def candidates(self, signature: ImageSignature, now: float) -> list[CachedEntry]:
        """
        Live entries worth scoring against a query signature.

        Without LSH this is every live entry. With LSH it is the entries
        sharing a bucket with the query plus every flat entry. Queries with
        uninformative hashes always get the full list.
        """
        with self._lock:
            if self._lsh is None and self._should_auto_build():
                self._build_lsh()

            if (self._lsh is None or not signature.is_informative
                    or len(signature.perceptual_hash) != self._lsh.hash_bits):
                pool = list(self._entries.values())
            else:
                hits = self._lsh.get_candidates(bits_to_imagehash(signature.perceptual_hash))
                pool = [
                    entry for key, entry in self._entries.items()
                    if key in hits or key not in self._lsh
                ]

        return [entry for entry in pool if not entry.is_expired(now)]

    def _should_auto_build(self) -> bool:
        return self.lsh_auto_threshold is not None and len(self._entries) >= self.lsh_auto_threshold

    def _bucket(self, entry: CachedEntry) -> None:
        if '1' in entry.perceptual_hash and len(entry.perceptual_hash) == self._lsh.hash_bits:
            self._lsh.add(entry.content_hash, bits_to_imagehash(entry.perceptual_hash))

    def _build_lsh(self) -> HammingLSH:
        hash_bits = self._hash_bits()
        num_tables, bits_per_table = calculate_optimal_params(len(self._entries), hash_bits=hash_bits)
        self._lsh = HammingLSH(
            num_tables=self.num_tables or num_tables,
            bits_per_table=min(self.bits_per_table or bits_per_table, hash_bits),
            hash_bits=hash_bits,
        )
        for entry in self._entries.values():
            self._bucket(entry)
        logger.debug(f"Built LSH index over {self._lsh.size:,} of {len(self._entries):,} entries")
        return self._lsh

    def _hash_bits(self) -> int:
        for entry in self._entries.values():
            if entry.perceptual_hash:
                return len(entry.perceptual_hash)
        return GRID_SIZE * GRID_SIZE - 1

    def optimize(self, now: float) -> dict:
        """
        Drop expired entries and rebuild the LSH buckets.

        Args:
            now: Current epoch seconds

        Returns:
            Dict with the expired keys dropped and LSH statistics
        """
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            lsh = self._build_lsh()
            stats = lsh.get_stats()
            stats['entries'] = len(self._entries)
            stats['expired_dropped'] = expired
            return stats

    @property
    def is_optimized(self) -> bool:
        with self._lock:
            return self._lsh is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._lsh = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, content_hash: str) -> bool:
        with self._lock:
            return content_hash in self._entries


__all__ = ['SimilarityIndex']
