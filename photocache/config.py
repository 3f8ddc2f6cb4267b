"""
Configuration constants for photocache.

This module contains the tunable defaults for:
- Fingerprint and feature extraction geometry
- Similarity weighting and match thresholds
- Cache lifetime, size limits, concurrency and timeouts
- LSH index parameters and file locations
"""

import os

# Perceptual hash grid (hash length = GRID_SIZE ** 2 - 1 bits)
GRID_SIZE = 8

# Grayscale grid used for Sobel/LBP structural features
# 32x32 gives 30x30 interior pixels -> 1800-element feature vectors
FEATURE_GRID_SIZE = 32

# Histogram bins per RGB channel (must divide 256)
COLOR_BINS = 64

# DCT coefficients below this magnitude are treated as exactly zero,
# so flat images hash to all zeros on every platform
DCT_EPSILON = 1e-6

# Similarity signal weights (hash, structural, color)
# Empirical values; override through the user config for your data set
HASH_WEIGHT = 0.40
STRUCTURAL_WEIGHT = 0.35
COLOR_WEIGHT = 0.25

# Minimum combined similarity for a fuzzy cache hit (0-1)
DEFAULT_SIMILARITY_THRESHOLD = 0.7

# Perceptual distance below which two images count as identical
# With 63-bit hashes this admits at most one differing bit
IDENTICAL_DISTANCE_THRESHOLD = 0.02

# Cache entry lifetime
SECONDS_PER_DAY = 24 * 60 * 60
DEFAULT_TTL_SECONDS = 7 * SECONDS_PER_DAY
MIN_TTL_SECONDS = SECONDS_PER_DAY  # floor when TTL is scaled by confidence

# Cache size limits; crossing one evicts the least-used entries
DEFAULT_MAX_CACHE_BYTES = 100 * 1024 * 1024
EVICTION_FRACTION = 0.3

# Query images remembered as resolving to a similar cached entry
PROMOTION_MAX_ENTRIES = 256

# Number of parallel workers for candidate scoring and preloading
DEFAULT_WORKERS = 4

# Upper bound on waiting for the three metrics of one comparison (seconds)
DEFAULT_COMPARISON_TIMEOUT = 10.0

# Upper bound on one fuzzy search across all candidates (seconds)
DEFAULT_BATCH_TIMEOUT = 60.0

# Maximum number of images whose hash/features/histogram are memoized
MEMO_MAX_ENTRIES = 2048

# LSH (Locality-Sensitive Hashing) configuration
# Bit-sampling buckets narrow fuzzy search to candidates sharing hash bits
LSH_AUTO_THRESHOLD = 500  # Auto-enable LSH when the index holds >= this many entries
LSH_DEFAULT_TABLES = 12   # Number of hash tables (more = better recall)
LSH_DEFAULT_BITS = 8      # Bits per table (fewer = more candidates)

# zlib level for stored recognition payloads
PAYLOAD_COMPRESSION_LEVEL = 6

# SQLite cache database location
CACHE_DIR = os.path.join(os.path.expanduser('~'), '.photocache')
CACHE_DB_FILE = os.path.join(CACHE_DIR, 'cache.db')
