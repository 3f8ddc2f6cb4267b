"""
Unit tests for data models.
"""

import numpy as np
import pytest

from photocache.models import (
    format_size,
    ItemInfo,
    ImageMetadata,
    RecognitionResult,
    RecognitionStrategy,
    ImageFingerprint,
    ImageSignature,
    CachedEntry,
    SimilarityCandidate,
    StorageStatistics,
    CacheStatistics,
)


class TestFormatSize:
    """Test the format_size utility function."""

    def test_bytes(self):
        assert format_size(500) == "500.0 B"

    def test_kilobytes(self):
        assert format_size(2048) == "2.0 KB"

    def test_megabytes(self):
        assert format_size(5242880) == "5.0 MB"

    def test_gigabytes(self):
        assert format_size(3221225472) == "3.0 GB"

    def test_zero(self):
        assert format_size(0) == "0.0 B"


class TestItemInfo:
    """Test ItemInfo data class."""

    def test_defaults(self):
        item = ItemInfo(name="Lamp")
        assert item.category == "other"
        assert item.confidence == 0.0
        assert item.weight is None

    def test_dict_round_trip(self):
        item = ItemInfo(name="Lamp", category="furniture", confidence=0.7, weight=2.5, volume=12.0,
                        source="vision")
        assert ItemInfo.from_dict(item.to_dict()) == item

    def test_from_minimal_dict(self):
        assert ItemInfo.from_dict({'name': 'Lamp'}) == ItemInfo(name="Lamp")


class TestImageMetadata:
    """Test ImageMetadata data class."""

    def test_resolution(self):
        assert ImageMetadata(width=1920, height=1080).resolution == "1920x1080"

    def test_file_size_formatted(self):
        assert ImageMetadata(file_size=2048).file_size_formatted == "2.0 KB"

    def test_dict_round_trip(self):
        metadata = ImageMetadata(width=10, height=20, file_size=300, format="JPEG",
                                 dominant_colors=["#000000"], brightness=0.2, contrast=0.3,
                                 has_text=True, estimated_object_count=4)
        assert ImageMetadata.from_dict(metadata.to_dict()) == metadata


class TestRecognitionResult:
    """Test RecognitionResult data class."""

    def test_dict_round_trip(self, sample_result):
        result = sample_result(metadata=ImageMetadata(width=5, height=5))
        result.cache_expires_at = 123.0
        restored = RecognitionResult.from_dict(result.to_dict())
        assert restored == result
        assert restored.strategies_used == [RecognitionStrategy.AI_VISION, RecognitionStrategy.COLOR_ANALYSIS]

    def test_strategy_values(self, sample_result):
        assert sample_result().to_dict()['strategies_used'] == ['ai_vision', 'color_analysis']

    def test_is_similarity_match(self, sample_result):
        result = sample_result()
        assert not result.is_similarity_match
        assert result.with_cache_fields(similarity_score=0.8).is_similarity_match

    def test_with_cache_fields_copies(self, sample_result):
        """Test tagging a result leaves the original untouched."""
        result = sample_result()
        tagged = result.with_cache_fields(similarity_score=0.9, cache_expires_at=50.0)
        assert tagged.similarity_score == 0.9
        assert result.similarity_score is None
        assert result.cache_expires_at is None
        assert tagged.primary_result == result.primary_result

    def test_with_cache_fields_shares_nothing(self, sample_result):
        result = sample_result(metadata=ImageMetadata(dominant_colors=["#112233"]))
        copied = result.with_cache_fields()

        copied.primary_result.name = "Other"
        copied.alternative_results.append(ItemInfo(name="Extra"))
        copied.image_metadata.dominant_colors.append("#FFFFFF")

        assert result.primary_result.name == "Denim jacket"
        assert len(result.alternative_results) == 1
        assert result.image_metadata.dominant_colors == ["#112233"]


class TestFingerprints:
    """Test ImageFingerprint and ImageSignature."""

    def test_empty(self):
        assert ImageFingerprint("", "").is_empty
        assert ImageFingerprint("abc", "").is_empty
        assert not ImageFingerprint("abc", "010").is_empty

    def test_informative(self):
        assert ImageFingerprint("abc", "010").is_informative
        assert not ImageFingerprint("abc", "000").is_informative
        assert not ImageFingerprint("", "").is_informative

    def test_signature_fingerprint(self):
        sig = ImageSignature("abc", "001", np.zeros(2), np.zeros(2))
        assert sig.fingerprint == ImageFingerprint("abc", "001")
        assert not sig.is_empty
        assert sig.is_informative


class TestCachedEntry:
    """Test CachedEntry data class."""

    def test_expiry_boundary(self, sample_result):
        entry = CachedEntry("abc", "010", sample_result(), stored_at=0.0, expires_at=100.0)
        assert not entry.is_expired(99.999)
        assert entry.is_expired(100.0)
        assert entry.is_expired(101.0)

    def test_detached(self, sample_result):
        """Test a detached entry can be edited without touching the original."""
        entry = CachedEntry("abc", "010", sample_result(), metadata=ImageMetadata(width=64))
        detached = entry.detached()

        detached.result.primary_result.name = "Other"
        detached.metadata.width = 1

        assert entry.result.primary_result.name == "Denim jacket"
        assert entry.metadata.width == 64
        assert detached.content_hash == entry.content_hash

    def test_candidate_dict(self, sample_result):
        entry = CachedEntry("abc", "010", sample_result(name="Kettle", confidence=0.8))
        data = SimilarityCandidate(entry=entry, similarity=0.876543).to_dict()
        assert data == {'content_hash': 'abc', 'similarity': 0.8765, 'name': 'Kettle', 'confidence': 0.8}


class TestStatistics:
    """Test statistics data classes."""

    def test_hit_rate_calculation(self):
        stats = CacheStatistics(exact_hits=50, similarity_hits=25, misses=25)
        assert stats.total_hits == 75
        assert stats.cache_hit_rate == 0.75

    def test_hit_rate_no_lookups(self):
        assert CacheStatistics().cache_hit_rate == 0.0

    def test_cache_statistics_dict(self):
        data = CacheStatistics(memory_entries=3, exact_hits=1, misses=2).to_dict()
        assert data['memory_entries'] == 3
        assert data['total_hits'] == 1
        assert data['cache_hit_rate'] == pytest.approx(0.3333)

    def test_storage_statistics(self):
        stats = StorageStatistics(entry_count=2, total_size_bytes=4096, compression_ratio=0.41234)
        assert stats.total_size_formatted == "4.0 KB"
        assert stats.to_dict()['compression_ratio'] == 0.412
