"""
Data models for photocache.

Contains dataclasses for recognition results, image fingerprints and
cache entries, plus the statistics objects reported by the cache.
"""

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

import numpy as np


def format_size(size_bytes: int) -> str:
    """Format a byte count in human-readable form."""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


class RecognitionStrategy(Enum):
    """How a recognition result was produced."""
    AI_VISION = "ai_vision"
    TEXT_EXTRACTION = "text_extraction"
    COLOR_ANALYSIS = "color_analysis"
    SHAPE_ANALYSIS = "shape_analysis"


@dataclass
class ItemInfo:
    """
    Identity of a recognized item.

    Attributes:
        name: Display name of the item
        category: Item category (clothing, electronics, ...)
        confidence: Recognizer confidence for this item (0-1)
        weight: Estimated weight in kilograms, if known
        volume: Estimated volume in liters, if known
        source: Which service or heuristic produced the item
    """
    name: str
    category: str = "other"
    confidence: float = 0.0
    weight: Optional[float] = None
    volume: Optional[float] = None
    source: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'name': self.name,
            'category': self.category,
            'confidence': self.confidence,
            'weight': self.weight,
            'volume': self.volume,
            'source': self.source,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ItemInfo':
        """Create ItemInfo from dictionary."""
        return cls(
            name=data['name'],
            category=data.get('category', 'other'),
            confidence=data.get('confidence', 0.0),
            weight=data.get('weight'),
            volume=data.get('volume'),
            source=data.get('source', ''),
        )


@dataclass
class ImageMetadata:
    """
    Descriptive metadata about a recognized image.

    Carried through the cache unchanged; presentation layers read it back
    from both exact and similarity hits.

    Attributes:
        width: Image width in pixels
        height: Image height in pixels
        file_size: Encoded size in bytes (0 if the image was decoded in memory)
        format: Image format (PNG, JPEG, HEIF, ...)
        dominant_colors: Up to three '#RRGGBB' colors, most frequent first
        brightness: Mean luma normalized to 0-1
        contrast: Luma standard deviation normalized to 0-1
        has_text: Whether text was detected in the image
        estimated_object_count: Number of objects the recognizer saw
    """
    width: int = 0
    height: int = 0
    file_size: int = 0
    format: str = ""
    dominant_colors: list = field(default_factory=list)
    brightness: float = 0.0
    contrast: float = 0.0
    has_text: bool = False
    estimated_object_count: int = 0

    @property
    def resolution(self) -> str:
        """Return resolution as 'WxH' string."""
        return f"{self.width}x{self.height}"

    @property
    def file_size_formatted(self) -> str:
        """Return human-readable file size."""
        return format_size(self.file_size)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'width': self.width,
            'height': self.height,
            'file_size': self.file_size,
            'format': self.format,
            'dominant_colors': list(self.dominant_colors),
            'brightness': self.brightness,
            'contrast': self.contrast,
            'has_text': self.has_text,
            'estimated_object_count': self.estimated_object_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ImageMetadata':
        """Create ImageMetadata from dictionary."""
        return cls(
            width=data.get('width', 0),
            height=data.get('height', 0),
            file_size=data.get('file_size', 0),
            format=data.get('format', ''),
            dominant_colors=list(data.get('dominant_colors', [])),
            brightness=data.get('brightness', 0.0),
            contrast=data.get('contrast', 0.0),
            has_text=data.get('has_text', False),
            estimated_object_count=data.get('estimated_object_count', 0),
        )


@dataclass
class RecognitionResult:
    """
    Output of the recognition service, as stored and served by the cache.

    Attributes:
        primary_result: Best guess for the item in the photo
        alternative_results: Other plausible items, best first
        confidence: Overall confidence (0-1)
        strategies_used: Recognition strategies that contributed
        processing_time: Seconds the recognizer spent on the image
        image_metadata: Metadata of the recognized image
        similarity_score: Set only when served from a similar (not identical) image
        cache_expires_at: Epoch seconds after which the cached copy is stale
    """
    primary_result: ItemInfo
    alternative_results: list = field(default_factory=list)
    confidence: float = 0.0
    strategies_used: list = field(default_factory=list)
    processing_time: float = 0.0
    image_metadata: Optional[ImageMetadata] = None
    similarity_score: Optional[float] = None
    cache_expires_at: Optional[float] = None

    @property
    def is_similarity_match(self) -> bool:
        """True if this result was served for a similar, not identical, image."""
        return self.similarity_score is not None

    def with_cache_fields(self, **changes) -> 'RecognitionResult':
        """Return an independent deep copy with the given fields replaced."""
        return replace(copy.deepcopy(self), **changes)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'primary_result': self.primary_result.to_dict(),
            'alternative_results': [item.to_dict() for item in self.alternative_results],
            'confidence': self.confidence,
            'strategies_used': [strategy.value for strategy in self.strategies_used],
            'processing_time': self.processing_time,
            'image_metadata': self.image_metadata.to_dict() if self.image_metadata else None,
            'similarity_score': self.similarity_score,
            'cache_expires_at': self.cache_expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'RecognitionResult':
        """Create RecognitionResult from dictionary."""
        metadata = data.get('image_metadata')
        return cls(
            primary_result=ItemInfo.from_dict(data['primary_result']),
            alternative_results=[ItemInfo.from_dict(item) for item in data.get('alternative_results', [])],
            confidence=data.get('confidence', 0.0),
            strategies_used=[RecognitionStrategy(value) for value in data.get('strategies_used', [])],
            processing_time=data.get('processing_time', 0.0),
            image_metadata=ImageMetadata.from_dict(metadata) if metadata else None,
            similarity_score=data.get('similarity_score'),
            cache_expires_at=data.get('cache_expires_at'),
        )


@dataclass(frozen=True)
class ImageFingerprint:
    """
    Exact and perceptual identity of an image.

    Attributes:
        content_hash: SHA-256 hex digest of the canonical pixel buffer
        perceptual_hash: DCT hash as a string of '0'/'1' characters
    """
    content_hash: str
    perceptual_hash: str

    @property
    def is_empty(self) -> bool:
        """True for degenerate images, which cannot be attributed."""
        return not self.content_hash or not self.perceptual_hash

    @property
    def is_informative(self) -> bool:
        """False for empty hashes and for flat images (no AC energy)."""
        return '1' in self.perceptual_hash


@dataclass
class ImageSignature:
    """
    Per-image artifacts the similarity matcher compares.

    Attributes:
        content_hash: SHA-256 hex digest of the canonical pixel buffer
        perceptual_hash: DCT hash bits
        features: Sobel edge magnitudes followed by LBP codes
        histogram: Concatenated R/G/B histograms summing to 1
    """
    content_hash: str
    perceptual_hash: str
    features: np.ndarray
    histogram: np.ndarray

    @property
    def fingerprint(self) -> ImageFingerprint:
        return ImageFingerprint(self.content_hash, self.perceptual_hash)

    @property
    def is_empty(self) -> bool:
        return self.fingerprint.is_empty

    @property
    def is_informative(self) -> bool:
        return self.fingerprint.is_informative


@dataclass
class CachedEntry:
    """
    A recognition result stored under an image's content hash.

    Attributes:
        content_hash: Exact-match key
        perceptual_hash: Perceptual hash bits of the stored image
        result: Recognition result as it was cached
        metadata: Metadata of the stored image
        stored_at: Epoch seconds when the entry was written
        expires_at: Epoch seconds from which the entry is no longer served
        signature: Similarity artifacts, if available
    """
    content_hash: str
    perceptual_hash: str
    result: RecognitionResult
    metadata: Optional[ImageMetadata] = None
    stored_at: float = 0.0
    expires_at: float = 0.0
    signature: Optional[ImageSignature] = None

    def is_expired(self, now: float) -> bool:
        """Whether the entry has reached its expiry time."""
        return now >= self.expires_at

    def detached(self) -> 'CachedEntry':
        """Copy whose result and metadata can be modified without affecting this entry."""
        return replace(self, result=self.result.with_cache_fields(), metadata=copy.deepcopy(self.metadata))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization (artifacts excluded)."""
        return {
            'content_hash': self.content_hash,
            'perceptual_hash': self.perceptual_hash,
            'result': self.result.to_dict(),
            'metadata': self.metadata.to_dict() if self.metadata else None,
            'stored_at': self.stored_at,
            'expires_at': self.expires_at,
        }


@dataclass
class SimilarityCandidate:
    """A cached entry paired with its similarity to a query image."""
    entry: CachedEntry
    similarity: float

    def to_dict(self) -> dict:
        return {
            'content_hash': self.entry.content_hash,
            'similarity': round(self.similarity, 4),
            'name': self.entry.result.primary_result.name,
            'confidence': self.entry.result.confidence,
        }


@dataclass
class StorageStatistics:
    """Size and compression figures for the persistent store."""
    entry_count: int = 0
    total_size_bytes: int = 0
    compression_ratio: float = 1.0
    db_size_bytes: int = 0
    db_path: str = ""

    @property
    def total_size_formatted(self) -> str:
        return format_size(self.total_size_bytes)

    def to_dict(self) -> dict:
        return {
            'entry_count': self.entry_count,
            'total_size_bytes': self.total_size_bytes,
            'total_size_formatted': self.total_size_formatted,
            'compression_ratio': round(self.compression_ratio, 3),
            'db_size_bytes': self.db_size_bytes,
            'db_path': self.db_path,
        }


@dataclass
class CacheStatistics:
    """Usage counters for a cache manager."""
    memory_entries: int = 0
    exact_hits: int = 0
    similarity_hits: int = 0
    misses: int = 0

    @property
    def total_hits(self) -> int:
        return self.exact_hits + self.similarity_hits

    @property
    def cache_hit_rate(self) -> float:
        """Return hits / lookups as a fraction (0-1)."""
        lookups = self.total_hits + self.misses
        if lookups == 0:
            return 0.0
        return self.total_hits / lookups

    def to_dict(self) -> dict:
        return {
            'memory_entries': self.memory_entries,
            'total_hits': self.total_hits,
            'exact_hits': self.exact_hits,
            'similarity_hits': self.similarity_hits,
            'misses': self.misses,
            'cache_hit_rate': round(self.cache_hit_rate, 4),
        }
