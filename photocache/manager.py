"""
Recognition cache manager.

The single entry point for applications: look up a photo before calling the
recognition service, and hand the service's result back afterwards.

Lookup order:
1. Exact match on the content hash (in-memory index, then storage)
2. A query image that already resolved to a similar entry
3. Similarity search over LSH candidates, then over every live entry
4. Miss; the caller runs live recognition and calls cache_result()
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Optional

from .config import (
    DEFAULT_SIMILARITY_THRESHOLD,
    DEFAULT_TTL_SECONDS,
    MIN_TTL_SECONDS,
    DEFAULT_MAX_CACHE_BYTES,
    EVICTION_FRACTION,
    PROMOTION_MAX_ENTRIES,
    DEFAULT_WORKERS,
    LSH_AUTO_THRESHOLD,
)
from .events import (
    CacheObserver,
    ObserverRegistry,
    EVICT_INVALIDATED,
    EVICT_EXPIRED,
    EVICT_CLEARED,
    EVICT_CAPACITY,
)
from .hashing import ImageHasher
from .imaging import (
    ImageSource,
    HAS_TQDM,
    _tqdm_class,
    load_image,
    is_degenerate,
    extract_metadata,
    source_size,
)
from .index import SimilarityIndex
from .models import (
    CachedEntry,
    CacheStatistics,
    RecognitionResult,
    SimilarityCandidate,
    StorageStatistics,
)
from .similarity import SimilarityMatcher
from .storage import CacheStorage

logger = logging.getLogger(__name__)


class CacheManager:
    """
    Similarity-aware cache of recognition results.

    Collaborators are injected; defaults are built only for the ones left
    out. Nothing is shared between managers unless passed in explicitly.

    Usage:
        with CacheManager(storage=CacheStorage(db_path)) as cache:
            result = cache.get_cached_result(photo)
            if result is None:
                result = recognizer.recognize(photo)
                cache.cache_result(photo, result)
    """

    def __init__(
        self,
        storage: Optional[CacheStorage] = None,
        matcher: Optional[SimilarityMatcher] = None,
        hasher: Optional[ImageHasher] = None,
        index: Optional[SimilarityIndex] = None,
        ttl: float = DEFAULT_TTL_SECONDS,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_workers: int = DEFAULT_WORKERS,
        scale_ttl_by_confidence: bool = False,
        max_entries: Optional[int] = None,
        max_size_bytes: Optional[int] = DEFAULT_MAX_CACHE_BYTES,
        observers: Optional[list[CacheObserver]] = None,
        clock: Callable[[], float] = time.time,
        rebuild_index: bool = True,
        owns_matcher: Optional[bool] = None,
    ):
        """
        Args:
            storage: Persistent store (default database location if omitted)
            matcher: Similarity matcher; built around hasher if omitted
            hasher: Hasher for a default matcher
            index: In-memory fuzzy index
            ttl: Seconds a cached result stays servable
            similarity_threshold: Minimum similarity for a fuzzy hit (0-1)
            max_workers: Parallel workers for preloading
            scale_ttl_by_confidence: Shorten TTL for low-confidence results
                                     (never below one day, never above ttl)
            max_entries: Evict least-used entries once storage holds more
                         (None for no limit)
            max_size_bytes: Evict least-used entries once stored payloads and
                            artifacts exceed this size (None for no limit)
            observers: Initial cache observers
            clock: Source of epoch seconds
            rebuild_index: Load live entries from storage on construction
            owns_matcher: Whether close() shuts the matcher down (defaults to
                          True only for a matcher built here)
        """
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        if not 0.0 <= similarity_threshold <= 1.0:
            raise ValueError(f"similarity_threshold must be within 0-1, got {similarity_threshold}")

        self.storage = storage if storage is not None else CacheStorage()
        self._owns_matcher = matcher is None if owns_matcher is None else owns_matcher
        if matcher is None:
            matcher = SimilarityMatcher(hasher=hasher, max_workers=max_workers)
        self.matcher = matcher
        self.hasher = matcher.hasher
        self.index = index if index is not None else SimilarityIndex(lsh_auto_threshold=LSH_AUTO_THRESHOLD)
        self.ttl = ttl
        self.similarity_threshold = similarity_threshold
        self.max_workers = max_workers
        self.scale_ttl_by_confidence = scale_ttl_by_confidence
        self.max_entries = max_entries
        self.max_size_bytes = max_size_bytes
        self._observers = ObserverRegistry(observers)
        self._clock = clock

        self._stats_lock = threading.Lock()
        self._exact_hits = 0
        self._similarity_hits = 0
        self._misses = 0

        # query content hash -> (matched content hash, similarity)
        self._promoted: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._promoted_lock = threading.Lock()

        if rebuild_index:
            self.rebuild_index()

    # -- observers --------------------------------------------------------

    def add_observer(self, observer: CacheObserver) -> None:
        self._observers.add(observer)

    def remove_observer(self, observer: CacheObserver) -> None:
        self._observers.remove(observer)

    # -- writes -----------------------------------------------------------

    def _ttl_for(self, result: RecognitionResult) -> float:
        if not self.scale_ttl_by_confidence:
            return self.ttl
        confidence = min(1.0, max(0.0, result.confidence))
        return min(self.ttl, max(MIN_TTL_SECONDS, self.ttl * confidence))

    def cache_result(self, image: ImageSource, result: RecognitionResult) -> bool:
        """
        Store a recognition result for an image.

        The result gets a cache expiry time and, if it carries none, metadata
        derived from the image. Degenerate images are not cached.

        Args:
            image: Photo that was recognized
            result: Recognition service output

        Returns:
            True if the entry was persisted and indexed
        """
        img = load_image(image)
        if is_degenerate(img):
            logger.debug("Not caching result for degenerate image")
            return False

        signature = self.matcher.signature(img)
        if signature.is_empty:
            logger.debug("Not caching result for unattributable image")
            return False

        now = self._clock()
        expires_at = now + self._ttl_for(result)
        # Stored copy shares nothing with the caller's result
        stored_result = result.with_cache_fields(similarity_score=None, cache_expires_at=expires_at)
        if stored_result.image_metadata is None:
            stored_result.image_metadata = extract_metadata(img, source_size(image))
        entry = CachedEntry(
            content_hash=signature.content_hash,
            perceptual_hash=signature.perceptual_hash,
            result=stored_result,
            metadata=stored_result.image_metadata,
            stored_at=now,
            expires_at=expires_at,
            signature=signature,
        )

        if not self.storage.store(entry.content_hash, entry):
            logger.warning(f"Failed to persist cache entry {entry.content_hash[:12]}")
            return False

        self.index.add(entry)
        with self._promoted_lock:
            self._promoted.pop(entry.content_hash, None)
        logger.debug(f"Cached '{result.primary_result.name}' under {entry.content_hash[:12]}")
        self._observers.notify('on_store', entry)
        self._enforce_size_limits(keep=entry.content_hash)
        return True

    def _enforce_size_limits(self, keep: str) -> int:
        """
        Evict the least-used entries once a size limit is exceeded.

        A pass removes EVICTION_FRACTION of the entries, or more if that is
        not enough to get back under max_entries. The entry under keep is
        never chosen.

        Returns:
            Number of entries evicted
        """
        if self.max_entries is None and self.max_size_bytes is None:
            return 0

        stats = self.storage.statistics()
        over_count = self.max_entries is not None and stats.entry_count > self.max_entries
        over_size = self.max_size_bytes is not None and stats.total_size_bytes > self.max_size_bytes
        if not (over_count or over_size):
            return 0

        count = max(1, int(stats.entry_count * EVICTION_FRACTION))
        if over_count:
            count = max(count, stats.entry_count - self.max_entries)

        evicted = self.storage.evict_least_used(count, exclude=keep)
        for content_hash in evicted:
            self.index.remove(content_hash)
            self._observers.notify('on_evict', content_hash, EVICT_CAPACITY)

        logger.info(
            f"Cache over its size limit ({stats.entry_count:,} entries, "
            f"{stats.total_size_formatted}); evicted {len(evicted):,} least-used entries"
        )
        return len(evicted)

    # -- lookups ----------------------------------------------------------

    def _record(self, exact: bool = False, similar: bool = False) -> None:
        with self._stats_lock:
            if exact:
                self._exact_hits += 1
            elif similar:
                self._similarity_hits += 1
            else:
                self._misses += 1

    def _exact_entry(self, content_hash: str, now: float) -> Optional[CachedEntry]:
        entry = self.index.get(content_hash)
        if entry is None:
            entry = self.storage.load(content_hash)
            if entry is not None and entry.signature is not None and not entry.is_expired(now):
                self.index.add(entry)
        if entry is None or entry.is_expired(now):
            return None
        return entry

    def get_cached_result(self, image: ImageSource) -> Optional[RecognitionResult]:
        """
        Look up a cached result for an image.

        Every call returns a fresh copy; modifying it does not affect the
        cache.

        Returns:
            A copy of the stored result for an exact match (similarity_score
            unset), a copy tagged with similarity_score and its confidence
            scaled by that similarity for the best similar match at or above
            the threshold, or None on a miss
        """
        img = load_image(image)
        if is_degenerate(img):
            self._record()
            self._observers.notify('on_miss', "")
            return None

        now = self._clock()
        content_hash = self.hasher.content_hash(img)

        entry = self._exact_entry(content_hash, now)
        if entry is not None:
            self._record(exact=True)
            self.storage.record_access(content_hash)
            logger.debug(f"Exact cache hit for {content_hash[:12]}")
            self._observers.notify('on_hit', content_hash, None)
            return entry.result.with_cache_fields()

        promoted = self._promoted_match(content_hash, now)
        if promoted is not None:
            return self._similarity_hit(content_hash, *promoted)

        signature = self.matcher.signature(img, content_hash=content_hash)
        candidates = self.index.candidates(signature, now)
        matches = self.matcher.find_similar(signature, candidates, self.similarity_threshold)
        if not matches and self.index.is_optimized:
            # LSH buckets only see hash bits; structure and color can still match
            scored = {candidate.content_hash for candidate in candidates}
            remaining = [e for e in self.index.live_entries(now) if e.content_hash not in scored]
            if remaining:
                matches = self.matcher.find_similar(signature, remaining, self.similarity_threshold)

        if matches:
            best = matches[0]
            self._promote(content_hash, best.entry.content_hash, best.similarity)
            return self._similarity_hit(content_hash, best.entry, best.similarity)

        self._record()
        self._observers.notify('on_miss', content_hash)
        return None

    def _similarity_hit(self, content_hash: str, entry: CachedEntry, similarity: float) -> RecognitionResult:
        self._record(similar=True)
        self.storage.record_access(entry.content_hash)
        logger.debug(
            f"Similarity cache hit for {content_hash[:12]}: "
            f"{entry.content_hash[:12]} ({similarity:.3f})"
        )
        self._observers.notify('on_hit', entry.content_hash, similarity)
        return entry.result.with_cache_fields(
            similarity_score=similarity,
            confidence=entry.result.confidence * similarity,
        )

    def _promote(self, content_hash: str, matched_hash: str, similarity: float) -> None:
        """Remember that a query image resolved to a similar cached entry."""
        with self._promoted_lock:
            self._promoted[content_hash] = (matched_hash, similarity)
            self._promoted.move_to_end(content_hash)
            while len(self._promoted) > PROMOTION_MAX_ENTRIES:
                self._promoted.popitem(last=False)

    def _promoted_match(self, content_hash: str, now: float) -> Optional[tuple[CachedEntry, float]]:
        with self._promoted_lock:
            link = self._promoted.get(content_hash)
            if link is None:
                return None
            self._promoted.move_to_end(content_hash)

        matched_hash, similarity = link
        entry = self.index.get(matched_hash)
        if entry is None or entry.is_expired(now) or similarity < self.similarity_threshold:
            with self._promoted_lock:
                self._promoted.pop(content_hash, None)
            return None
        return entry, similarity

    def find_similar_cached_results(
        self,
        image: ImageSource,
        threshold: Optional[float] = None,
    ) -> list[SimilarityCandidate]:
        """
        Rank live cached entries by similarity to an image.

        Read-only: statistics and observers are not touched, and the
        returned entries are copies.

        Args:
            image: Query photo
            threshold: Minimum similarity (defaults to the cache threshold)

        Returns:
            Matches at or above threshold, most similar first
        """
        img = load_image(image)
        if is_degenerate(img):
            return []
        if threshold is None:
            threshold = self.similarity_threshold
        now = self._clock()
        matches = self.matcher.find_similar(img, self.index.live_entries(now), threshold)
        return [SimilarityCandidate(match.entry.detached(), match.similarity) for match in matches]

    # -- lifecycle --------------------------------------------------------

    def invalidate_cache(self, content_hash: str) -> bool:
        """
        Remove one entry from storage and the index.

        Returns:
            True if the entry existed in either place
        """
        removed_stored = self.storage.delete(content_hash)
        removed_indexed = self.index.remove(content_hash) is not None
        if removed_stored or removed_indexed:
            logger.debug(f"Invalidated cache entry {content_hash[:12]}")
            self._observers.notify('on_evict', content_hash, EVICT_INVALIDATED)
            return True
        return False

    def cleanup_expired_cache(self) -> int:
        """
        Remove every expired entry from storage and the index.

        Returns:
            Number of distinct entries removed
        """
        now = self._clock()
        removed = dict.fromkeys(self.storage.delete_expired(now))
        for content_hash in self.index.expired_keys(now):
            removed[content_hash] = None
        for content_hash in removed:
            self.index.remove(content_hash)
            self._observers.notify('on_evict', content_hash, EVICT_EXPIRED)

        if removed:
            logger.info(f"Removed {len(removed):,} expired cache entries")
        return len(removed)

    def preload_cache(
        self,
        images: Iterable[ImageSource],
        progress_callback: Optional[Callable[[int, int], None]] = None,
        show_progress: bool = False,
    ) -> int:
        """
        Warm the cache for images that are about to be looked up.

        Signatures are computed concurrently and memoized, then any stored
        entries for those images are loaded into the index in one batch.

        Args:
            images: Photos expected to be looked up soon
            progress_callback: Optional callback(current, total) per image
            show_progress: Whether to show a tqdm progress bar

        Returns:
            Number of stored entries admitted into the index
        """
        images = list(images)
        if not images:
            return 0

        pbar: Optional[Any] = None
        if HAS_TQDM and show_progress and _tqdm_class is not None:
            pbar = _tqdm_class(total=len(images), desc="Preloading", unit="img", ncols=80)

        content_hashes: list[str] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self.matcher.signature, image) for image in images]
            for i, future in enumerate(as_completed(futures)):
                try:
                    signature = future.result()
                    if not signature.is_empty:
                        content_hashes.append(signature.content_hash)
                except Exception as e:
                    logger.debug(f"Preload signature failed: {e}")

                if pbar is not None:
                    pbar.update(1)
                if progress_callback:
                    progress_callback(i + 1, len(images))

        if pbar is not None:
            pbar.close()

        now = self._clock()
        missing = [key for key in dict.fromkeys(content_hashes) if key not in self.index]
        admitted = 0
        for entry in self.storage.batch_load(missing).values():
            if entry.signature is not None and not entry.is_expired(now):
                self.index.add(entry)
                admitted += 1

        logger.info(
            f"Preloaded {len(content_hashes):,} of {len(images):,} images, "
            f"admitted {admitted:,} stored entries"
        )
        return admitted

    def optimize_similarity_index(self) -> dict:
        """
        Drop expired entries from the index and rebuild its LSH buckets.

        Returns:
            Index statistics (entries, tables, buckets, expired dropped)
        """
        stats = self.index.optimize(self._clock())
        logger.info(
            f"Similarity index optimized: {stats['entries']:,} entries, "
            f"{stats['non_empty_buckets']:,} buckets, "
            f"{len(stats['expired_dropped']):,} expired dropped"
        )
        return stats

    def rebuild_index(self) -> int:
        """
        Reload live entries with similarity artifacts from storage.

        Returns:
            Number of entries indexed
        """
        now = self._clock()
        loaded = 0
        for entry in self.storage.iter_entries():
            if entry.signature is None or entry.is_expired(now):
                continue
            self.index.add(entry)
            self.matcher.remember(entry.signature)
            loaded += 1
        if loaded:
            logger.debug(f"Indexed {loaded:,} stored cache entries")
        return loaded

    def statistics(self) -> CacheStatistics:
        """Usage counters and the number of indexed entries."""
        with self._stats_lock:
            return CacheStatistics(
                memory_entries=len(self.index),
                exact_hits=self._exact_hits,
                similarity_hits=self._similarity_hits,
                misses=self._misses,
            )

    def storage_statistics(self) -> StorageStatistics:
        return self.storage.statistics()

    def clear_all_cache(self) -> None:
        """Empty storage, index, memoized artifacts and counters."""
        evicted = [entry.content_hash for entry in self.index.entries()]
        self.storage.clear()
        self.index.clear()
        self.matcher.clear_cache()
        with self._promoted_lock:
            self._promoted.clear()
        with self._stats_lock:
            self._exact_hits = 0
            self._similarity_hits = 0
            self._misses = 0
        for content_hash in evicted:
            self._observers.notify('on_evict', content_hash, EVICT_CLEARED)
        logger.info("Cleared recognition cache")

    def close(self) -> None:
        """Shut down the matcher if this manager created it."""
        if self._owns_matcher:
            self.matcher.close()

    def __enter__(self) -> 'CacheManager':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ['CacheManager']
