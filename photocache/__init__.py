"""
Photo Recognition Cache
=======================
A similarity-aware cache for photo recognition results.

Features:
- Exact lookups by content hash
- Similarity lookups for resized, recompressed or slightly edited photos
- Perceptual hash, structural and color signals, blended with tunable weights
- SQLite persistence with compressed payloads and TTL expiry
- LSH acceleration for large caches
- CLI for inspection and maintenance

Author: Zach
"""

__version__ = "1.0.0"
__author__ = "Zedidence"

from .models import (
    ItemInfo,
    ImageMetadata,
    RecognitionResult,
    RecognitionStrategy,
    ImageFingerprint,
    ImageSignature,
    CachedEntry,
    SimilarityCandidate,
    CacheStatistics,
    StorageStatistics,
)
from .config import DEFAULT_SIMILARITY_THRESHOLD, DEFAULT_TTL_SECONDS, LSH_AUTO_THRESHOLD
from .exceptions import PhotoCacheError, HashLengthMismatchError, StorageError
from .hashing import ImageHasher
from .similarity import SimilarityMatcher, SimilarityWeights, ArtifactMemo
from .index import SimilarityIndex
from .lsh import HammingLSH, calculate_optimal_params
from .storage import CacheStorage
from .events import CacheObserver
from .manager import CacheManager
from .user_config import UserConfig

__all__ = [
    "ItemInfo",
    "ImageMetadata",
    "RecognitionResult",
    "RecognitionStrategy",
    "ImageFingerprint",
    "ImageSignature",
    "CachedEntry",
    "SimilarityCandidate",
    "CacheStatistics",
    "StorageStatistics",
    "DEFAULT_SIMILARITY_THRESHOLD",
    "DEFAULT_TTL_SECONDS",
    "LSH_AUTO_THRESHOLD",
    "PhotoCacheError",
    "HashLengthMismatchError",
    "StorageError",
    "ImageHasher",
    "SimilarityMatcher",
    "SimilarityWeights",
    "ArtifactMemo",
    "SimilarityIndex",
    "HammingLSH",
    "calculate_optimal_params",
    "CacheStorage",
    "CacheObserver",
    "CacheManager",
    "UserConfig",
]
