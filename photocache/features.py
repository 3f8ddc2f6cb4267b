"""
Feature extraction for similarity scoring.

Structural features are Sobel edge magnitudes followed by 8-neighbor Local
Binary Pattern codes, both over the interior pixels of a grayscale grid.
Color features are per-channel RGB histograms concatenated and normalized
into a single distribution.
"""

from __future__ import annotations

import numpy as np
from scipy import ndimage
from skimage.feature import local_binary_pattern

from .config import FEATURE_GRID_SIZE, COLOR_BINS
from .imaging import Image, to_rgb, luma_grid

# Circular LBP neighborhood: 8 samples at radius 1
LBP_POINTS = 8
LBP_RADIUS = 1


def _interior(values: np.ndarray) -> np.ndarray:
    return values[1:-1, 1:-1]


def edge_magnitudes(grid: np.ndarray) -> np.ndarray:
    """
    Sobel gradient magnitude at each interior pixel.

    Border pixels are left out, so no value depends on how the filter pads
    the grid, and constant regions give exactly 0.
    """
    if min(grid.shape) < 3:
        return np.zeros(0)
    grid = np.asarray(grid, dtype=np.float64)
    gx = ndimage.sobel(grid, axis=1)
    gy = ndimage.sobel(grid, axis=0)
    return _interior(np.hypot(gx, gy)).ravel()


def lbp_codes(grid: np.ndarray) -> np.ndarray:
    """
    LBP code (0-255) per interior pixel.

    Bit p is set when the sample at angle 2*pi*p/8 (counter-clockwise from
    the right neighbor) is >= the center. The grid is quantized to 8-bit
    levels first.
    """
    if min(grid.shape) < 3:
        return np.zeros(0)
    levels = np.clip(np.rint(grid), 0, 255).astype(np.uint8)
    codes = local_binary_pattern(levels, LBP_POINTS, LBP_RADIUS, method='default')
    return _interior(codes).ravel().astype(np.float64)


def structural_features(image: Image.Image, grid_size: int = FEATURE_GRID_SIZE) -> np.ndarray:
    """Edge magnitudes followed by LBP codes of the image's luma grid."""
    grid = luma_grid(image, grid_size)
    return np.concatenate([edge_magnitudes(grid), lbp_codes(grid)])


def edge_energy(features: np.ndarray) -> float:
    """Total gradient magnitude stored in a structural feature vector."""
    edges = features[:len(features) // 2]
    return float(edges.sum())


def color_histogram(image: Image.Image, bins: int = COLOR_BINS) -> np.ndarray:
    """
    Concatenated R, G and B histograms of an image.

    The result sums to 1 (each channel contributes one third), so it can be
    compared with the Bhattacharyya coefficient directly.

    Args:
        image: Image to measure (an image with no pixels gives all zeros)
        bins: Bins per channel; must divide 256

    Returns:
        float64 array of length 3 * bins
    """
    if bins <= 0 or 256 % bins:
        raise ValueError(f"bins must divide 256, got {bins}")
    if image.width == 0 or image.height == 0:
        return np.zeros(3 * bins)

    counts = np.asarray(to_rgb(image).histogram(), dtype=np.float64)
    counts = counts.reshape(3, bins, 256 // bins).sum(axis=2).ravel()
    return counts / counts.sum()


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine of the angle between two vectors; 0 for empty, zero or mismatched vectors."""
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / norm, 0.0, 1.0))


def bhattacharyya_coefficient(h1: np.ndarray, h2: np.ndarray) -> float:
    """Sum of sqrt(h1[i] * h2[i]); 0 for empty or mismatched histograms."""
    if h1.shape != h2.shape or h1.size == 0:
        return 0.0
    return float(np.clip(np.sqrt(h1 * h2).sum(), 0.0, 1.0))


__all__ = [
    'LBP_POINTS',
    'LBP_RADIUS',
    'edge_magnitudes',
    'lbp_codes',
    'structural_features',
    'edge_energy',
    'color_histogram',
    'cosine_similarity',
    'bhattacharyya_coefficient',
]
