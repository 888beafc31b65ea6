"""Embedding blob codec and brute-force cosine ranking.

Vectors are stored as a 4-byte little-endian dimension tag followed by
little-endian float32 values, so a blob of the wrong size or dimension is
caught before any math happens.
"""
import logging
import struct
import threading
import warnings
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from recall_db.errors import (
    DimensionMismatchWarning,
    InvalidVectorWarning,
    OperationCancelled,
    ValidationError,
)

logger = logging.getLogger(__name__)

DIM_TAG = struct.Struct("<I")
FLOAT_DTYPE = np.dtype("<f4")


def as_vector(vector: Sequence[float]) -> np.ndarray:
    """Convert to a 1-D float64 array, rejecting empty or non-finite input."""
    try:
        arr = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Vector is not numeric: {e}") from e
    if arr.ndim != 1 or arr.size == 0:
        raise ValidationError(f"Vector must be a non-empty 1-D sequence, got shape {arr.shape}")
    if not np.isfinite(arr).all():
        raise ValidationError("Vector contains NaN or infinite values")
    return arr


def encode_vector(vector: Sequence[float]) -> bytes:
    """Encode a vector as dimension tag + float32 payload."""
    arr = as_vector(vector)
    return DIM_TAG.pack(arr.size) + arr.astype(FLOAT_DTYPE).tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """Decode a blob produced by ``encode_vector``."""
    if not isinstance(blob, (bytes, bytearray, memoryview)) or len(blob) < DIM_TAG.size:
        raise ValidationError("Embedding blob is missing its dimension tag")
    (dim,) = DIM_TAG.unpack_from(blob)
    payload = memoryview(blob)[DIM_TAG.size:]
    if len(payload) != dim * FLOAT_DTYPE.itemsize:
        raise ValidationError(
            f"Embedding blob declares {dim} dimensions but holds {len(payload)} bytes"
        )
    return np.frombuffer(payload, dtype=FLOAT_DTYPE).astype(np.float64)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Compute cosine similarity between two vectors; 0.0 if either is zero."""
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


def _skip(message: str, category) -> None:
    logger.warning(message)
    warnings.warn(message, category, stacklevel=3)


def rank(
    query_vector: Sequence[float],
    candidates: Iterable[Tuple[Any, Sequence[float]]],
    top_k: int,
    cancel: Optional[threading.Event] = None,
) -> List[Tuple[Any, float]]:
    """Rank candidates by cosine similarity to ``query_vector``.

    Pure function over in-memory vectors. Candidates that are not finite numeric
    vectors, or whose dimension differs from the query, are skipped with an
    InvalidVectorWarning (DimensionMismatchWarning for the latter). Results are
    sorted by descending score, ties broken by ascending key, and at most
    ``top_k`` are returned.

    Raises:
        OperationCancelled: ``cancel`` was set between candidates
    """
    if top_k <= 0:
        return []
    query = as_vector(query_vector)

    scored = []
    skipped = 0
    for key, vector in candidates:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Ranking cancelled")
        try:
            candidate = as_vector(vector)
        except ValidationError as e:
            skipped += 1
            _skip(f"Skipping candidate {key!r}: {e}", InvalidVectorWarning)
            continue
        if candidate.shape[0] != query.shape[0]:
            skipped += 1
            _skip(
                f"Skipping candidate {key!r}: dimension {candidate.shape[0]} "
                f"does not match query dimension {query.shape[0]}",
                DimensionMismatchWarning,
            )
            continue
        scored.append((key, cosine_similarity(query, candidate)))

    if skipped:
        logger.info(f"Ranked {len(scored)} candidate(s), skipped {skipped} invalid")
    scored.sort(key=lambda item: (-item[1], item[0]))
    return scored[:top_k]
