"""
Image loading and pixel-level helpers.

Handles PIL, imagehash, HEIC/HEIF support and tqdm imports, and turns any
supported image source into a decoded PIL image. Also provides the luma
grid used by hashing and feature extraction, and metadata extraction for
results that arrive without it.
"""

from __future__ import annotations

import io
import os
import warnings
import logging
from pathlib import Path
from typing import Optional, Any, Union

import numpy as np

from .models import ImageMetadata

_logger = logging.getLogger(__name__)

# Check for required dependencies
try:
    from PIL import Image
    import imagehash
except ImportError:
    raise ImportError(
        "Required packages not found!\n"
        "Install with: pip install Pillow imagehash numpy"
    )

# Register HEIC/HEIF support via pillow-heif
# Phone cameras default to HEIC, so this must run before any decode
HAS_HEIF_SUPPORT = False
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
    HAS_HEIF_SUPPORT = True
    _logger.debug("HEIC/HEIF support enabled via pillow-heif")
except ImportError:
    _logger.warning(
        "pillow-heif not installed - HEIC/HEIF photos cannot be cached. "
        "Install with: pip install pillow-heif"
    )

# Phone photos and scans routinely exceed PIL's ~89MP default
Image.MAX_IMAGE_PIXELS = 500_000_000
warnings.filterwarnings("ignore", category=Image.DecompressionBombWarning)

# Optional: tqdm for progress bars
HAS_TQDM = False
_tqdm_class: Optional[Any] = None

try:
    from tqdm import tqdm as _tqdm_import
    HAS_TQDM = True
    _tqdm_class = _tqdm_import
except ImportError:
    pass


ImageSource = Union[Image.Image, bytes, bytearray, str, Path]

# ITU-R BT.601 luma coefficients
LUMA_R, LUMA_G, LUMA_B = 0.299, 0.587, 0.114


def load_image(source: ImageSource) -> Optional[Image.Image]:
    """
    Decode an image source into a PIL image.

    Args:
        source: A PIL image, encoded image bytes, or a path to an image file

    Returns:
        Decoded image, or None if the source is empty or cannot be decoded
    """
    if isinstance(source, Image.Image):
        return source

    try:
        if isinstance(source, (bytes, bytearray)):
            if not source:
                _logger.debug("Empty image buffer")
                return None
            img = Image.open(io.BytesIO(source))
        else:
            img = Image.open(source)
        # Force load to detect truncated/corrupt images early
        img.load()
        return img
    except Exception as e:
        _logger.debug(f"Image decode failed for {_describe(source)}: {e}")
        return None


def _describe(source: Any) -> str:
    if isinstance(source, (bytes, bytearray)):
        return f"<{len(source)} bytes>"
    return str(source)


def source_size(source: ImageSource) -> int:
    """Encoded size of an image source in bytes (0 for in-memory images)."""
    if isinstance(source, (bytes, bytearray)):
        return len(source)
    if isinstance(source, (str, Path)):
        try:
            return os.path.getsize(source)
        except OSError:
            return 0
    return 0


def is_degenerate(image: Optional[Image.Image]) -> bool:
    """True for missing images and images with no pixels."""
    return image is None or image.width == 0 or image.height == 0


def to_rgb(image: Image.Image) -> Image.Image:
    """Normalize any image mode to 8-bit RGB."""
    if image.mode == 'RGB':
        return image
    return image.convert('RGB')


def luma_grid(image: Image.Image, size: int) -> np.ndarray:
    """
    Downsample an image to a size x size grayscale grid.

    The aspect ratio is discarded. Grayscale uses 0.299R + 0.587G + 0.114B.

    Args:
        image: Non-degenerate image
        size: Grid edge length

    Returns:
        float64 array of shape (size, size) with values in 0-255
    """
    small = to_rgb(image).resize((size, size), Image.Resampling.BOX)
    pixels = np.asarray(small, dtype=np.float64)
    return pixels[..., 0] * LUMA_R + pixels[..., 1] * LUMA_G + pixels[..., 2] * LUMA_B


def dominant_colors(image: Image.Image, count: int = 3) -> list[str]:
    """
    Most frequent colors of an image as '#RRGGBB' strings.

    Args:
        image: Non-degenerate image
        count: Maximum number of colors to return

    Returns:
        Colors ordered by pixel share, most frequent first
    """
    thumb = to_rgb(image).resize((64, 64), Image.Resampling.BOX)
    quantized = thumb.quantize(colors=count)
    palette = quantized.getpalette() or []
    counts = sorted(quantized.getcolors() or [], reverse=True)

    colors = []
    for _, index in counts[:count]:
        r, g, b = palette[index * 3:index * 3 + 3]
        colors.append(f"#{r:02X}{g:02X}{b:02X}")
    return colors


def extract_metadata(image: Image.Image, file_size: int = 0) -> ImageMetadata:
    """
    Derive descriptive metadata from decoded pixels.

    Args:
        image: Non-degenerate image
        file_size: Encoded size of the source in bytes, if known

    Returns:
        ImageMetadata with geometry, color and exposure figures filled in
    """
    luma = luma_grid(image, 64)
    return ImageMetadata(
        width=image.width,
        height=image.height,
        file_size=file_size,
        format=image.format or "",
        dominant_colors=dominant_colors(image),
        brightness=round(float(luma.mean()) / 255.0, 4),
        contrast=round(float(luma.std()) / 255.0, 4),
        has_text=False,
        estimated_object_count=1,
    )


__all__ = [
    'Image',
    'imagehash',
    'ImageSource',
    'HAS_HEIF_SUPPORT',
    'HAS_TQDM',
    '_tqdm_class',
    'load_image',
    'source_size',
    'is_degenerate',
    'to_rgb',
    'luma_grid',
    'dominant_colors',
    'extract_metadata',
]
