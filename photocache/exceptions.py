"""
Exception types for photocache.

Most failures are absorbed where they happen and surface as "no match",
``False`` or ``None``. Only configuration-level violations propagate.
"""


class PhotoCacheError(Exception):
    """Base class for photocache errors."""


class HashLengthMismatchError(PhotoCacheError, ValueError):
    """
    Two perceptual hashes of different bit lengths were compared.

    This means fingerprints produced with different grid sizes ended up in
    the same comparison, which is a configuration bug rather than bad input.
    """

    def __init__(self, length_a: int, length_b: int):
        self.length_a = length_a
        self.length_b = length_b
        super().__init__(
            f"Cannot compare perceptual hashes of different lengths "
            f"({length_a} vs {length_b} bits)"
        )


class StorageError(PhotoCacheError):
    """A cache entry could not be encoded, decoded or persisted."""
