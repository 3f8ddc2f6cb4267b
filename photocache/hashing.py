"""
Content and perceptual hashing.

Provides the exact-match cache key (SHA-256 over canonical RGB pixels) and
a DCT perceptual hash that survives resizing and mild re-encoding.
"""

from __future__ import annotations

import hashlib
import logging

import numpy as np
from scipy.fft import dctn

from .config import GRID_SIZE, DCT_EPSILON, IDENTICAL_DISTANCE_THRESHOLD
from .exceptions import HashLengthMismatchError
from .imaging import ImageSource, imagehash, load_image, is_degenerate, to_rgb, luma_grid
from .models import ImageFingerprint

logger = logging.getLogger(__name__)


def dct2(block: np.ndarray) -> np.ndarray:
    """Orthonormal two-dimensional DCT-II of a block."""
    return dctn(block, type=2, norm='ortho')


def bits_to_imagehash(bits: str) -> imagehash.ImageHash:
    """Wrap a '0'/'1' string as an imagehash.ImageHash."""
    return imagehash.ImageHash(np.fromiter((c == '1' for c in bits), dtype=bool, count=len(bits)))


class ImageHasher:
    """
    Computes image fingerprints and compares perceptual hashes.

    Usage:
        hasher = ImageHasher()
        fp = hasher.fingerprint(image)
        if hasher.identical(image, other):
            ...
    """

    def __init__(
        self,
        grid_size: int = GRID_SIZE,
        identical_threshold: float = IDENTICAL_DISTANCE_THRESHOLD,
    ):
        """
        Args:
            grid_size: Edge of the DCT grid; hashes are grid_size**2 - 1 bits
            identical_threshold: Perceptual distance under which two
                                 informative hashes count as identical
        """
        if grid_size < 2:
            raise ValueError(f"grid_size must be at least 2, got {grid_size}")
        self.grid_size = grid_size
        self.identical_threshold = identical_threshold

    @property
    def hash_length(self) -> int:
        return self.grid_size * self.grid_size - 1

    def content_hash(self, source: ImageSource) -> str:
        """
        SHA-256 digest of an image's pixels.

        The digest covers the dimensions and the RGB-normalized pixel bytes,
        so it depends on pixel data only, never on the container format.

        Returns:
            Hex digest, or empty string for degenerate images
        """
        img = load_image(source)
        if is_degenerate(img):
            logger.debug("Content hash skipped for degenerate image")
            return ""

        rgb = to_rgb(img)
        hasher = hashlib.sha256()
        hasher.update(f"{rgb.width}x{rgb.height}:RGB:".encode('ascii'))
        hasher.update(rgb.tobytes())
        return hasher.hexdigest()

    def perceptual_hash(self, source: ImageSource) -> str:
        """
        DCT perceptual hash of an image.

        Resizes to grid_size x grid_size, converts to luma, applies a 2D DCT
        and emits one bit per AC coefficient: '1' if it is above the mean of
        all AC coefficients, else '0'. Flat images have no AC energy and
        hash to all zeros.

        Returns:
            String of hash_length '0'/'1' characters, or empty string for
            degenerate images
        """
        img = load_image(source)
        if is_degenerate(img):
            logger.debug("Perceptual hash skipped for degenerate image")
            return ""

        coefficients = dct2(luma_grid(img, self.grid_size))
        coefficients[np.abs(coefficients) < DCT_EPSILON] = 0.0

        ac = coefficients.ravel()[1:]
        mean = ac.mean()
        return ''.join('1' if value > mean else '0' for value in ac)

    def fingerprint(self, source: ImageSource) -> ImageFingerprint:
        """Content and perceptual hash of an image, decoding it once."""
        img = load_image(source)
        if is_degenerate(img):
            return ImageFingerprint(content_hash="", perceptual_hash="")
        return ImageFingerprint(
            content_hash=self.content_hash(img),
            perceptual_hash=self.perceptual_hash(img),
        )

    def hash_distance(self, hash_a: str, hash_b: str) -> float:
        """
        Normalized Hamming distance between two perceptual hashes.

        Returns:
            Differing bits / bit length, in 0-1. Two empty hashes are
            maximally distant since neither can be attributed.

        Raises:
            HashLengthMismatchError: If the hashes differ in length
        """
        if len(hash_a) != len(hash_b):
            raise HashLengthMismatchError(len(hash_a), len(hash_b))
        if not hash_a:
            return 1.0
        differing = bits_to_imagehash(hash_a) - bits_to_imagehash(hash_b)
        return differing / len(hash_a)

    def identical(self, source_a: ImageSource, source_b: ImageSource) -> bool:
        """
        Whether two images are the same picture.

        True when the pixel digests match, or when both perceptual hashes
        carry information and are closer than identical_threshold.
        """
        a = self.fingerprint(source_a)
        b = self.fingerprint(source_b)
        if a.content_hash and a.content_hash == b.content_hash:
            return True
        if a.is_informative and b.is_informative:
            return self.hash_distance(a.perceptual_hash, b.perceptual_hash) < self.identical_threshold
        return False


__all__ = [
    'ImageHasher',
    'bits_to_imagehash',
    'dct2',
]
