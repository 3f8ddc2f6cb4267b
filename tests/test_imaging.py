"""
Unit tests for image loading and metadata extraction.
"""

import numpy as np
from PIL import Image

from photocache.imaging import (
    load_image,
    is_degenerate,
    source_size,
    luma_grid,
    dominant_colors,
    extract_metadata,
)


class TestLoadImage:
    """Test load_image function."""

    def test_pil_passthrough(self, solid_image):
        img = solid_image('red')
        assert load_image(img) is img

    def test_bytes(self, pattern_image, encode_image):
        img = load_image(encode_image(pattern_image(1)))
        assert img.size == (64, 64)

    def test_bytearray(self, pattern_image, encode_image):
        assert load_image(bytearray(encode_image(pattern_image(1)))) is not None

    def test_path(self, pattern_image, temp_dir):
        path = temp_dir / "photo.jpg"
        pattern_image(1).save(path, 'JPEG')
        img = load_image(path)
        assert img.format == 'JPEG'

    def test_undecodable(self, temp_dir):
        bad = temp_dir / "corrupted.txt"
        bad.write_text("not an image")
        assert load_image(bad) is None
        assert load_image(b"") is None
        assert load_image(b"\x89PNG\r\n\x1a\n truncated") is None
        assert load_image(temp_dir / "missing.png") is None


class TestHelpers:
    """Test pixel-level helpers."""

    def test_is_degenerate(self, solid_image):
        assert is_degenerate(None)
        assert is_degenerate(Image.new('RGB', (0, 0)))
        assert not is_degenerate(solid_image('red', (1, 1)))

    def test_source_size(self, temp_dir, solid_image):
        path = temp_dir / "photo.png"
        solid_image('red').save(path)
        assert source_size(path) == path.stat().st_size
        assert source_size(b"12345") == 5
        assert source_size(solid_image('red')) == 0
        assert source_size(temp_dir / "missing.png") == 0

    def test_luma_grid(self, solid_image):
        grid = luma_grid(solid_image((100, 150, 200), (40, 30)), 8)
        assert grid.shape == (8, 8)
        np.testing.assert_allclose(grid, 0.299 * 100 + 0.587 * 150 + 0.114 * 200)

    def test_dominant_colors(self):
        img = Image.new('RGB', (64, 64), color=(255, 0, 0))
        img.paste((0, 0, 255), (0, 0, 64, 16))
        assert dominant_colors(img) == ['#FF0000', '#0000FF']


class TestExtractMetadata:
    """Test extract_metadata function."""

    def test_solid_white(self, solid_image):
        metadata = extract_metadata(solid_image('white', (120, 80)), file_size=999)
        assert metadata.width == 120
        assert metadata.height == 80
        assert metadata.file_size == 999
        assert metadata.brightness == 1.0
        assert metadata.contrast == 0.0
        assert metadata.dominant_colors == ['#FFFFFF']

    def test_format_from_decoded_file(self, pattern_image, encode_image):
        metadata = extract_metadata(load_image(encode_image(pattern_image(1), 'PNG')))
        assert metadata.format == 'PNG'
        assert 0.0 < metadata.contrast < 1.0
