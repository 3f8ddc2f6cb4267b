"""
Pytest configuration and shared fixtures for test suite.
"""

import pytest
import tempfile
import shutil
from pathlib import Path

import numpy as np
from PIL import Image


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def temp_cache_db(temp_dir):
    """Create a temporary database file for cache tests."""
    db_path = temp_dir / "test_cache.db"
    return str(db_path)


def make_solid(color, size=(100, 100)):
    """Single-color RGB image."""
    return Image.new('RGB', size, color=color)


def make_pattern(seed, size=64, blocks=8):
    """
    Random block pattern: blocks x blocks random colors scaled up to size.

    Scaling is by an integer factor with NEAREST, so the same seed at a
    different size has identical luma grids but different pixel data.
    """
    rng = np.random.default_rng(seed)
    cells = rng.integers(0, 256, (blocks, blocks, 3), dtype=np.uint8)
    return Image.fromarray(cells).resize((size, size), Image.Resampling.NEAREST)


def make_gradient(width, height, horizontal=True):
    """Grayscale ramp from black to white as an RGB image."""
    if horizontal:
        ramp = np.tile(np.linspace(0, 255, width), (height, 1))
    else:
        ramp = np.tile(np.linspace(0, 255, height)[:, None], (1, width))
    gray = ramp.astype(np.uint8)
    return Image.fromarray(np.stack([gray, gray, gray], axis=-1))


def encode(image, fmt='PNG'):
    """Encode an image to bytes."""
    import io
    buffer = io.BytesIO()
    image.save(buffer, fmt)
    return buffer.getvalue()


@pytest.fixture
def solid_image():
    """Factory for single-color images."""
    return make_solid


@pytest.fixture
def pattern_image():
    """Factory for random block-pattern images."""
    return make_pattern


@pytest.fixture
def gradient_image():
    """Factory for grayscale ramps."""
    return make_gradient


@pytest.fixture
def encode_image():
    """Factory encoding an image to bytes in a given format."""
    return encode


@pytest.fixture
def sample_result():
    """Factory for recognition results."""
    from photocache.models import ItemInfo, RecognitionResult, RecognitionStrategy

    def _make(name="Denim jacket", confidence=0.9, metadata=None):
        return RecognitionResult(
            primary_result=ItemInfo(name=name, category="clothing", confidence=confidence,
                                    weight=0.8, source="vision"),
            alternative_results=[ItemInfo(name="Work shirt", category="clothing", confidence=0.4)],
            confidence=confidence,
            strategies_used=[RecognitionStrategy.AI_VISION, RecognitionStrategy.COLOR_ANALYSIS],
            processing_time=1.25,
            image_metadata=metadata,
        )

    return _make


@pytest.fixture
def matcher():
    """Similarity matcher that is shut down after the test."""
    from photocache.similarity import SimilarityMatcher

    m = SimilarityMatcher(max_workers=2)
    yield m
    m.close()


@pytest.fixture
def make_entry(matcher, sample_result):
    """Factory for cache entries built from an image."""
    from photocache.models import CachedEntry

    def _make(image, result=None, stored_at=1000.0, ttl=100.0, m=None):
        signature = (m or matcher).signature(image)
        return CachedEntry(
            content_hash=signature.content_hash,
            perceptual_hash=signature.perceptual_hash,
            result=result or sample_result(),
            stored_at=stored_at,
            expires_at=stored_at + ttl,
            signature=signature,
        )

    return _make


class FakeClock:
    """Manually advanced epoch-seconds source."""

    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
