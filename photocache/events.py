"""
Observer hooks for cache activity.

Subclass CacheObserver and override the hooks you need, then register the
observer with CacheManager.add_observer(). Each hook fires once per event,
on the thread that performed the operation.
"""

from __future__ import annotations

import logging
from typing import Optional

from .models import CachedEntry

logger = logging.getLogger(__name__)

EVICT_INVALIDATED = 'invalidated'
EVICT_EXPIRED = 'expired'
EVICT_CLEARED = 'cleared'
EVICT_CAPACITY = 'capacity'


class CacheObserver:
    """Base observer; every hook is a no-op."""

    def on_hit(self, content_hash: str, similarity: Optional[float]) -> None:
        """A lookup was served. similarity is None for exact hits."""

    def on_miss(self, content_hash: str) -> None:
        """A lookup found nothing usable."""

    def on_store(self, entry: CachedEntry) -> None:
        """An entry was persisted and indexed."""

    def on_evict(self, content_hash: str, reason: str) -> None:
        """An entry was removed ('invalidated', 'expired', 'cleared' or 'capacity')."""


class ObserverRegistry:
    """Holds observers and dispatches events, isolating their failures."""

    def __init__(self, observers: Optional[list[CacheObserver]] = None):
        self._observers: list[CacheObserver] = list(observers or [])

    def add(self, observer: CacheObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove(self, observer: CacheObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def notify(self, event: str, *args) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, event)(*args)
            except Exception as e:
                logger.warning(f"Cache observer {type(observer).__name__}.{event} failed: {e}")

    def __len__(self) -> int:
        return len(self._observers)


__all__ = [
    'CacheObserver',
    'ObserverRegistry',
    'EVICT_INVALIDATED',
    'EVICT_EXPIRED',
    'EVICT_CLEARED',
    'EVICT_CAPACITY',
]
