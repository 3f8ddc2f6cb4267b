"""
Row encoding shared by the storage operations.

Recognition results and metadata are stored as zlib-compressed JSON; the
similarity artifacts are stored as raw float64 buffers.
"""

from __future__ import annotations

import json
import sqlite3
import zlib
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..config import PAYLOAD_COMPRESSION_LEVEL
from ..exceptions import StorageError
from ..models import CachedEntry, ImageMetadata, ImageSignature, RecognitionResult


# SQLite has a limit of 999 variables, we use 500 for safety
CHUNK_SIZE = 500


@dataclass
class EncodedEntry:
    """Column values for one entries row."""
    content_hash: str
    perceptual_hash: str
    payload: bytes
    raw_size: int
    features: Optional[bytes]
    histogram: Optional[bytes]
    stored_at: float
    expires_at: float

    def as_params(self) -> tuple:
        return (
            self.content_hash, self.perceptual_hash,
            self.payload, self.raw_size, len(self.payload),
            self.features, self.histogram,
            self.stored_at, self.expires_at,
        )


INSERT_SQL = """
    INSERT OR REPLACE INTO entries (
        content_hash, perceptual_hash,
        payload, raw_size, stored_size,
        features, histogram,
        stored_at, expires_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def array_to_blob(values: Optional[np.ndarray]) -> Optional[bytes]:
    if values is None:
        return None
    return np.ascontiguousarray(values, dtype=np.float64).tobytes()


def blob_to_array(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float64).copy()


def encode_entry(key: str, entry: CachedEntry, level: int = PAYLOAD_COMPRESSION_LEVEL) -> EncodedEntry:
    """
    Serialize a cache entry for storage under key.

    Raises:
        StorageError: If the result or metadata is not JSON-serializable
    """
    try:
        raw = json.dumps({
            'result': entry.result.to_dict(),
            'metadata': entry.metadata.to_dict() if entry.metadata else None,
        }, sort_keys=True).encode('utf-8')
    except (TypeError, ValueError, AttributeError) as e:
        raise StorageError(f"Cannot serialize entry {key[:12]}: {e}") from e

    signature = entry.signature
    return EncodedEntry(
        content_hash=key,
        perceptual_hash=entry.perceptual_hash,
        payload=zlib.compress(raw, level),
        raw_size=len(raw),
        features=array_to_blob(signature.features) if signature else None,
        histogram=array_to_blob(signature.histogram) if signature else None,
        stored_at=entry.stored_at,
        expires_at=entry.expires_at,
    )


def row_to_entry(row: sqlite3.Row) -> CachedEntry:
    """
    Rebuild a cache entry from an entries row.

    Raises:
        StorageError: If the payload is corrupt
    """
    try:
        data = json.loads(zlib.decompress(row['payload']).decode('utf-8'))
        result = RecognitionResult.from_dict(data['result'])
        metadata = ImageMetadata.from_dict(data['metadata']) if data.get('metadata') else None
        features = blob_to_array(row['features'])
        histogram = blob_to_array(row['histogram'])
    except (zlib.error, UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
        raise StorageError(f"Corrupt entry {row['content_hash'][:12]}: {e}") from e

    signature = None
    if features is not None and histogram is not None:
        signature = ImageSignature(
            content_hash=row['content_hash'],
            perceptual_hash=row['perceptual_hash'],
            features=features,
            histogram=histogram,
        )

    return CachedEntry(
        content_hash=row['content_hash'],
        perceptual_hash=row['perceptual_hash'],
        result=result,
        metadata=metadata,
        stored_at=row['stored_at'],
        expires_at=row['expires_at'],
        signature=signature,
    )


__all__ = [
    'CHUNK_SIZE',
    'INSERT_SQL',
    'EncodedEntry',
    'array_to_blob',
    'blob_to_array',
    'encode_entry',
    'row_to_entry',
]
