"""
Multi-signal image similarity.

Combines three independent signals into one score in 0-1:
- Hash: 1 - normalized Hamming distance of the DCT perceptual hashes
- Structural: cosine similarity of Sobel edge + LBP texture features
- Color: Bhattacharyya coefficient of RGB histograms

A signal that carries no information for a pair abstains, and the weights
of the remaining signals are renormalized. Flat images have no AC energy
(hash) and no gradients (structure), so two solid swatches are compared
on color alone.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_EXCEPTION
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import numpy as np

from .config import (
    HASH_WEIGHT,
    STRUCTURAL_WEIGHT,
    COLOR_WEIGHT,
    FEATURE_GRID_SIZE,
    COLOR_BINS,
    DEFAULT_WORKERS,
    DEFAULT_COMPARISON_TIMEOUT,
    DEFAULT_BATCH_TIMEOUT,
    MEMO_MAX_ENTRIES,
)
from .exceptions import HashLengthMismatchError
from .features import (
    structural_features,
    color_histogram,
    edge_energy,
    cosine_similarity,
    bhattacharyya_coefficient,
)
from .hashing import ImageHasher
from .imaging import Image, ImageSource, load_image, is_degenerate
from .models import CachedEntry, ImageSignature, SimilarityCandidate

logger = logging.getLogger(__name__)

PERCEPTUAL_HASH = 'perceptual_hash'
FEATURES = 'features'
HISTOGRAM = 'histogram'


@dataclass(frozen=True)
class SimilarityWeights:
    """Relative weights of the hash, structural and color signals."""
    hash: float = HASH_WEIGHT
    structural: float = STRUCTURAL_WEIGHT
    color: float = COLOR_WEIGHT

    def __post_init__(self):
        values = (self.hash, self.structural, self.color)
        if any(value < 0 for value in values):
            raise ValueError(f"Similarity weights must be non-negative, got {values}")
        if sum(values) <= 0:
            raise ValueError("At least one similarity weight must be positive")

    def as_dict(self) -> dict:
        return {'hash': self.hash, 'structural': self.structural, 'color': self.color}

    @classmethod
    def from_dict(cls, data: dict) -> 'SimilarityWeights':
        return cls(
            hash=float(data.get('hash', HASH_WEIGHT)),
            structural=float(data.get('structural', STRUCTURAL_WEIGHT)),
            color=float(data.get('color', COLOR_WEIGHT)),
        )


class ArtifactMemo:
    """
    Thread-safe memo of per-image artifacts keyed by content hash.

    Values are computed outside the lock; when two threads race on the same
    key both compute the same deterministic value and the last write wins.
    The oldest images are dropped once max_entries is exceeded.
    """

    def __init__(self, max_entries: Optional[int] = MEMO_MAX_ENTRIES):
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._items: OrderedDict[str, dict[str, Any]] = OrderedDict()

    def get(self, key: str, kind: str) -> Optional[Any]:
        with self._lock:
            artifacts = self._items.get(key)
            if artifacts is None:
                return None
            return artifacts.get(kind)

    def put(self, key: str, kind: str, value: Any) -> None:
        with self._lock:
            artifacts = self._items.setdefault(key, {})
            artifacts[kind] = value
            self._items.move_to_end(key)
            if self.max_entries is not None:
                while len(self._items) > self.max_entries:
                    self._items.popitem(last=False)

    def get_or_compute(self, key: str, kind: str, compute: Callable[[], Any]) -> Any:
        value = self.get(key, kind)
        if value is None:
            value = compute()
            self.put(key, kind, value)
        return value

    def remember(self, signature: ImageSignature) -> None:
        """Seed the memo with an already computed signature."""
        if not signature.content_hash:
            return
        self.put(signature.content_hash, PERCEPTUAL_HASH, signature.perceptual_hash)
        self.put(signature.content_hash, FEATURES, signature.features)
        self.put(signature.content_hash, HISTOGRAM, signature.histogram)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass
class _Operand:
    """One side of a comparison: a decoded image, a signature, or nothing usable."""
    content_hash: str
    image: Optional[Image.Image] = None
    signature: Optional[ImageSignature] = None


Comparable = Union[ImageSource, ImageSignature]


class SimilarityMatcher:
    """
    Scores image pairs and ranks cached entries against a query image.

    Owns a small thread pool on which the three metrics of a comparison run
    concurrently. Fuzzy searches use a separate pool per call, so candidate
    tasks can wait on metric tasks without starving them.

    Usage:
        with SimilarityMatcher() as matcher:
            score = matcher.similarity(image_a, image_b)
            matches = matcher.find_similar(image, entries, threshold=0.7)
    """

    def __init__(
        self,
        hasher: Optional[ImageHasher] = None,
        weights: Optional[SimilarityWeights] = None,
        feature_grid_size: int = FEATURE_GRID_SIZE,
        color_bins: int = COLOR_BINS,
        max_workers: int = DEFAULT_WORKERS,
        comparison_timeout: float = DEFAULT_COMPARISON_TIMEOUT,
        batch_timeout: float = DEFAULT_BATCH_TIMEOUT,
        memo: Optional[ArtifactMemo] = None,
    ):
        """
        Args:
            hasher: Hasher for content and perceptual hashes
            weights: Signal weights (defaults 0.40 / 0.35 / 0.25)
            feature_grid_size: Grid edge for structural features
            color_bins: Histogram bins per channel
            max_workers: Parallel candidate comparisons in find_similar
            comparison_timeout: Seconds to wait for one pair's metrics
            batch_timeout: Seconds to wait for a whole find_similar call
            memo: Artifact memo (a private one is created if omitted)
        """
        self.hasher = hasher or ImageHasher()
        self.weights = weights or SimilarityWeights()
        self.feature_grid_size = feature_grid_size
        self.color_bins = color_bins
        self.max_workers = max_workers
        self.comparison_timeout = comparison_timeout
        self.batch_timeout = batch_timeout
        self._memo = memo or ArtifactMemo()
        # Three metrics per comparison, for every concurrent comparison
        self._metric_pool = ThreadPoolExecutor(
            max_workers=3 * max(1, max_workers),
            thread_name_prefix="photocache-metric",
        )

    # -- artifacts --------------------------------------------------------

    def _operand(self, item: Comparable) -> _Operand:
        if isinstance(item, ImageSignature):
            return _Operand(content_hash=item.content_hash, signature=item)
        img = load_image(item)
        if is_degenerate(img):
            return _Operand(content_hash="")
        return _Operand(content_hash=self.hasher.content_hash(img), image=img)

    def _artifact(self, operand: _Operand, kind: str) -> Any:
        if operand.signature is not None:
            return getattr(operand.signature, kind)
        if operand.image is None:
            return self._empty_artifact(kind)

        compute = {
            PERCEPTUAL_HASH: lambda: self.hasher.perceptual_hash(operand.image),
            FEATURES: lambda: structural_features(operand.image, self.feature_grid_size),
            HISTOGRAM: lambda: color_histogram(operand.image, self.color_bins),
        }[kind]
        return self._memo.get_or_compute(operand.content_hash, kind, compute)

    def _empty_artifact(self, kind: str) -> Any:
        if kind == PERCEPTUAL_HASH:
            return ""
        if kind == HISTOGRAM:
            return np.zeros(3 * self.color_bins)
        return np.zeros(0)

    def signature(self, item: Comparable, content_hash: Optional[str] = None) -> ImageSignature:
        """
        Compute (or fetch memoized) similarity artifacts for an image.

        Args:
            item: Image source, or a signature (returned unchanged)
            content_hash: Precomputed content hash of item, if known

        Returns:
            ImageSignature; degenerate images get empty hashes and features
        """
        if isinstance(item, ImageSignature):
            return item
        img = load_image(item)
        if is_degenerate(img):
            operand = _Operand(content_hash="")
        else:
            operand = _Operand(content_hash=content_hash or self.hasher.content_hash(img), image=img)
        return ImageSignature(
            content_hash=operand.content_hash,
            perceptual_hash=self._artifact(operand, PERCEPTUAL_HASH),
            features=self._artifact(operand, FEATURES),
            histogram=self._artifact(operand, HISTOGRAM),
        )

    def remember(self, signature: ImageSignature) -> None:
        """Make a stored signature available to later comparisons."""
        self._memo.remember(signature)

    @property
    def memo_size(self) -> int:
        return len(self._memo)

    def clear_cache(self) -> None:
        """Drop all memoized hashes, features and histograms."""
        self._memo.clear()

    # -- metrics ----------------------------------------------------------

    def _hash_score(self, a: _Operand, b: _Operand) -> Optional[float]:
        hash_a = self._artifact(a, PERCEPTUAL_HASH)
        hash_b = self._artifact(b, PERCEPTUAL_HASH)
        if not hash_a or not hash_b:
            return 0.0
        if len(hash_a) != len(hash_b):
            raise HashLengthMismatchError(len(hash_a), len(hash_b))
        if '1' not in hash_a or '1' not in hash_b:
            # Flat image: the hash carries no information
            return None
        return 1.0 - self.hasher.hash_distance(hash_a, hash_b)

    def _structural_score(self, a: _Operand, b: _Operand) -> Optional[float]:
        features_a = self._artifact(a, FEATURES)
        features_b = self._artifact(b, FEATURES)
        if features_a.size == 0 or features_a.shape != features_b.shape:
            return 0.0
        if edge_energy(features_a) == 0 and edge_energy(features_b) == 0:
            return None
        return cosine_similarity(features_a, features_b)

    def _color_score(self, a: _Operand, b: _Operand) -> Optional[float]:
        return bhattacharyya_coefficient(self._artifact(a, HISTOGRAM), self._artifact(b, HISTOGRAM))

    def combine(self, hash_score: Optional[float], structural_score: Optional[float],
                color_score: Optional[float]) -> float:
        """
        Weighted mean of the participating signal scores, clamped to 0-1.

        A score of None means the signal abstained; its weight is left out.
        """
        parts = [
            (self.weights.hash, hash_score),
            (self.weights.structural, structural_score),
            (self.weights.color, color_score),
        ]
        total_weight = sum(weight for weight, score in parts if score is not None)
        if total_weight <= 0:
            return 0.0
        weighted = sum(weight * score for weight, score in parts if score is not None)
        return float(min(1.0, max(0.0, weighted / total_weight)))

    def _compare(self, a: _Operand, b: _Operand) -> float:
        if a.content_hash and a.content_hash == b.content_hash:
            return 1.0

        futures = [
            self._metric_pool.submit(self._hash_score, a, b),
            self._metric_pool.submit(self._structural_score, a, b),
            self._metric_pool.submit(self._color_score, a, b),
        ]
        done, pending = wait(futures, timeout=self.comparison_timeout, return_when=FIRST_EXCEPTION)

        for future in done:
            error = future.exception()
            if error is None:
                continue
            for other in pending:
                other.cancel()
            if isinstance(error, HashLengthMismatchError):
                raise error
            logger.warning(f"Similarity metric failed ({a.content_hash[:12]} vs {b.content_hash[:12]}): {error}")
            return 0.0
        if pending:
            for future in pending:
                future.cancel()
            logger.warning(
                f"Similarity metrics timed out after {self.comparison_timeout}s "
                f"({a.content_hash[:12]} vs {b.content_hash[:12]})"
            )
            return 0.0

        hash_score, structural_score, color_score = (future.result() for future in futures)
        return self.combine(hash_score, structural_score, color_score)

    def similarity(self, a: Comparable, b: Comparable) -> float:
        """
        Similarity of two images in 0-1.

        Identical pixel data short-circuits to 1.0. Otherwise the hash,
        structural and color metrics run concurrently and are combined with
        the configured weights. Degenerate images score 0 against any normal
        image. Metric failures and timeouts score 0.

        Args:
            a: Image source or signature
            b: Image source or signature

        Raises:
            HashLengthMismatchError: If the perceptual hashes differ in length
        """
        return self._compare(self._operand(a), self._operand(b))

    # -- search -----------------------------------------------------------

    def find_similar(
        self,
        target: Comparable,
        candidates: list[CachedEntry],
        threshold: float,
    ) -> list[SimilarityCandidate]:
        """
        Score cached entries against a query image.

        Entries without a signature or with an empty perceptual hash cannot
        be attributed and are skipped. Candidates that fail or are still
        running when batch_timeout expires are left out.

        Args:
            target: Query image source or signature
            candidates: Cached entries to compare against
            threshold: Minimum similarity to keep (0-1)

        Returns:
            Matches with similarity >= threshold, best first; ties keep
            the order of candidates

        Raises:
            HashLengthMismatchError: If a stored hash length disagrees with
                                     the hasher configuration
        """
        query = self.signature(target)
        if query.is_empty:
            logger.debug("Skipping similarity search for unattributable image")
            return []

        usable = [
            (position, entry) for position, entry in enumerate(candidates)
            if entry.signature is not None and entry.signature.perceptual_hash
        ]
        if not usable:
            return []

        query_operand = _Operand(content_hash=query.content_hash, signature=query)
        scored: list[tuple[int, SimilarityCandidate]] = []

        executor = ThreadPoolExecutor(
            max_workers=max(1, min(self.max_workers, len(usable))),
            thread_name_prefix="photocache-search",
        )
        try:
            futures = {
                executor.submit(
                    self._compare,
                    query_operand,
                    _Operand(content_hash=entry.content_hash, signature=entry.signature),
                ): (position, entry)
                for position, entry in usable
            }
            done, pending = wait(futures, timeout=self.batch_timeout)
            if pending:
                logger.warning(
                    f"Similarity search timed out after {self.batch_timeout}s; "
                    f"skipping {len(pending)} of {len(futures)} candidates"
                )

            for future in done:
                position, entry = futures[future]
                try:
                    score = future.result()
                except HashLengthMismatchError:
                    raise
                except Exception as e:
                    logger.warning(f"Comparison against {entry.content_hash[:12]} failed: {e}")
                    continue
                if score >= threshold:
                    scored.append((position, SimilarityCandidate(entry=entry, similarity=score)))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        scored.sort(key=lambda item: (-item[1].similarity, item[0]))
        return [candidate for _, candidate in scored]

    def close(self) -> None:
        """Shut down the metric thread pool."""
        self._metric_pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> 'SimilarityMatcher':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    'SimilarityWeights',
    'ArtifactMemo',
    'SimilarityMatcher',
]
