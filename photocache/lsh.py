"""
Locality-Sensitive Hashing (LSH) for narrowing fuzzy cache lookups.

This module implements LSH using bit sampling, which suits the Hamming
distance between perceptual hashes.

If two perceptual hashes differ in only a few bits, a random subset of bit
positions is likely to agree on both. Each table uses one such subset as a
bucket key, so near-duplicates collide in at least one table with high
probability while unrelated images rarely do.

Lookup cost:
- Full scan: every live cache entry is scored against the query
- LSH: only entries sharing a bucket with the query are scored
"""

import math
import random
from collections import defaultdict
from typing import Optional

import imagehash

from .config import LSH_DEFAULT_TABLES, LSH_DEFAULT_BITS, GRID_SIZE


class HammingLSH:
    """
    Bit-sampling LSH index over perceptual hashes, keyed by content hash.

    Usage:
        lsh = HammingLSH(num_tables=12, bits_per_table=8, hash_bits=63)

        for entry in entries:
            lsh.add(entry.content_hash, bits_to_imagehash(entry.perceptual_hash))

        candidates = lsh.get_candidates(bits_to_imagehash(query_hash))
    """

    def __init__(
        self,
        num_tables: int = LSH_DEFAULT_TABLES,
        bits_per_table: int = LSH_DEFAULT_BITS,
        hash_bits: int = GRID_SIZE * GRID_SIZE - 1,
        seed: int = 42,
    ):
        """
        Initialize LSH index.

        Args:
            num_tables: Number of hash tables. More tables = better recall
                        but more memory.
            bits_per_table: Bits sampled per table. Fewer bits = more
                            candidates (better recall, more comparisons).
            hash_bits: Total bits in a perceptual hash (63 for an 8x8 grid).
            seed: Random seed for reproducibility.
        """
        if bits_per_table > hash_bits:
            raise ValueError(f"bits_per_table ({bits_per_table}) exceeds hash_bits ({hash_bits})")

        self.num_tables = num_tables
        self.bits_per_table = bits_per_table
        self.hash_bits = hash_bits
        self.seed = seed

        rng = random.Random(seed)
        self.bit_positions: list[list[int]] = [
            sorted(rng.sample(range(hash_bits), bits_per_table))
            for _ in range(num_tables)
        ]

        # table_idx -> bucket_key -> set of content hashes
        self.tables: list[dict[tuple, set[str]]] = [
            defaultdict(set) for _ in range(num_tables)
        ]

        self._hashes: dict[str, imagehash.ImageHash] = {}

    def _hash_to_bits(self, phash: imagehash.ImageHash) -> list[bool]:
        """Flatten an ImageHash to a list of bits."""
        bits = phash.hash.flatten().tolist()
        if len(bits) != self.hash_bits:
            raise ValueError(f"Expected a {self.hash_bits}-bit hash, got {len(bits)} bits")
        return bits

    def _get_bucket_key(self, bits: list[bool], table_idx: int) -> tuple:
        """Tuple of the bits this table samples (hashable bucket key)."""
        positions = self.bit_positions[table_idx]
        return tuple(bits[p] for p in positions)

    def add(self, key: str, phash: Optional[imagehash.ImageHash]) -> None:
        """
        Add a perceptual hash to the index, replacing any previous one for key.

        Args:
            key: Content hash identifying the cache entry
            phash: Perceptual hash of the entry
        """
        if phash is None:
            return
        if key in self._hashes:
            self.remove(key)

        bits = self._hash_to_bits(phash)
        self._hashes[key] = phash

        for table_idx, table in enumerate(self.tables):
            table[self._get_bucket_key(bits, table_idx)].add(key)

    def remove(self, key: str) -> bool:
        """Remove a key from every bucket it occupies. Returns True if present."""
        phash = self._hashes.pop(key, None)
        if phash is None:
            return False

        bits = self._hash_to_bits(phash)
        for table_idx, table in enumerate(self.tables):
            bucket_key = self._get_bucket_key(bits, table_idx)
            bucket = table.get(bucket_key)
            if bucket is not None:
                bucket.discard(key)
                if not bucket:
                    del table[bucket_key]
        return True

    def get_candidates(self, phash: Optional[imagehash.ImageHash], exclude: Optional[str] = None) -> set[str]:
        """
        Keys whose hash shares at least one bucket with phash.

        Args:
            phash: Query perceptual hash
            exclude: Key to leave out of the result (typically the query itself)
        """
        if phash is None:
            return set()

        bits = self._hash_to_bits(phash)
        candidates: set[str] = set()

        for table_idx, table in enumerate(self.tables):
            bucket = table.get(self._get_bucket_key(bits, table_idx))
            if bucket:
                candidates.update(bucket)

        candidates.discard(exclude)
        return candidates

    def clear(self) -> None:
        """Clear all data from the index."""
        for table in self.tables:
            table.clear()
        self._hashes.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._hashes

    @property
    def size(self) -> int:
        """Number of hashes in the index."""
        return len(self._hashes)

    def get_stats(self) -> dict:
        """Get statistics about the index."""
        non_empty_buckets = sum(len(table) for table in self.tables)
        items_in_buckets = sum(
            len(bucket) for table in self.tables
            for bucket in table.values()
        )

        return {
            'num_tables': self.num_tables,
            'bits_per_table': self.bits_per_table,
            'total_items': self.size,
            'non_empty_buckets': non_empty_buckets,
            'avg_bucket_size': items_in_buckets / max(1, non_empty_buckets),
        }


def calculate_optimal_params(
    num_entries: int,
    max_distance: int = 6,
    hash_bits: int = GRID_SIZE * GRID_SIZE - 1,
    target_recall: float = 0.99,
    max_tables: int = 32,
) -> tuple[int, int]:
    """
    Choose LSH parameters for an index size and tolerated hash distance.

    The math:
    - Two hashes at Hamming distance d agree on k sampled bits with
      probability p = ((hash_bits - d) / hash_bits) ** k
    - With L tables, they share at least one bucket with probability
      1 - (1 - p) ** L

    Larger indexes sample more bits per table so buckets stay small; the
    table count is then the smallest L reaching target_recall.

    Args:
        num_entries: Expected number of indexed entries
        max_distance: Largest Hamming distance that should still collide
        hash_bits: Bits in a perceptual hash
        target_recall: Wanted collision probability at max_distance
        max_tables: Upper bound on the table count

    Returns:
        Tuple of (num_tables, bits_per_table)
    """
    if num_entries < 1_000:
        bits_per_table = 6
    elif num_entries < 10_000:
        bits_per_table = 8
    elif num_entries < 100_000:
        bits_per_table = 10
    else:
        bits_per_table = 12
    bits_per_table = min(bits_per_table, hash_bits)

    p_match = ((hash_bits - max_distance) / hash_bits) ** bits_per_table
    if p_match >= 1.0:
        return (1, bits_per_table)
    if p_match <= 0.0:
        return (max_tables, bits_per_table)

    num_tables = math.ceil(math.log(1 - target_recall) / math.log(1 - p_match))
    return (max(1, min(max_tables, num_tables)), bits_per_table)


__all__ = ['HammingLSH', 'calculate_optimal_params']
