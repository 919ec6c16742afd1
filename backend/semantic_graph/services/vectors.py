"""Numeric primitives shared by the layout, similarity, and clustering services.

Functions:
    encode_vector(values): Serialise a vector to float32 bytes for storage.
    decode_vector(blob, dim): Inverse of encode_vector, trimming to the recorded dimensionality.
    stack_vectors(vectors): Build a 2D float matrix from equally sized vectors.
    cosine_similarity_matrix(a, b): Pairwise cosine similarity in [-1, 1]; zero-norm rows score 0.
    cosine_distance_matrix(a, b): Pairwise cosine distance in [0, 2].
    similarity_from_distance(distance): Map cosine distance to the [0, 1] similarity scale.
    weighted_centroid(points, weights): Weighted mean of 2D (or nD) points.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike
from sklearn.preprocessing import normalize


def encode_vector(values: ArrayLike) -> bytes:
    return np.asarray(values, dtype=np.float32).tobytes()


def decode_vector(blob: bytes | None, dim: int | None = None) -> np.ndarray | None:
    if not blob:
        return None
    array = np.frombuffer(blob, dtype=np.float32)
    if dim and array.size != dim:
        array = array[:dim]
    return array.astype(np.float64)


def stack_vectors(vectors: Sequence[ArrayLike]) -> np.ndarray:
    if not vectors:
        return np.zeros((0, 0), dtype=float)
    return np.vstack([np.asarray(vector, dtype=float).ravel() for vector in vectors])


def _as_matrix(values: ArrayLike) -> np.ndarray:
    matrix = np.asarray(values, dtype=float)
    if matrix.ndim == 1:
        matrix = matrix.reshape(1, -1)
    return matrix


def _l2_normalise(matrix: np.ndarray) -> np.ndarray:
    # sklearn leaves zero-norm rows as zeros, so they come out orthogonal to everything
    if matrix.size == 0:
        return matrix
    return normalize(matrix, norm="l2", axis=1)


def cosine_similarity_matrix(a: ArrayLike, b: ArrayLike) -> np.ndarray:
    left = _l2_normalise(_as_matrix(a))
    right = _l2_normalise(_as_matrix(b))
    if left.shape[0] == 0 or right.shape[0] == 0:
        return np.zeros((left.shape[0], right.shape[0]), dtype=float)
    return np.clip(left @ right.T, -1.0, 1.0)


def cosine_distance_matrix(a: ArrayLike, b: ArrayLike) -> np.ndarray:
    return 1.0 - cosine_similarity_matrix(a, b)


def similarity_from_distance(distance: ArrayLike) -> np.ndarray:
    return np.clip(1.0 - np.asarray(distance, dtype=float) / 2.0, 0.0, 1.0)


def is_zero_vector(vector: ArrayLike) -> bool:
    array = np.asarray(vector, dtype=float)
    return array.size == 0 or not np.any(array)


def weighted_centroid(points: ArrayLike, weights: ArrayLike | None = None) -> np.ndarray:
    """Return the weighted mean of ``points``.

    Falls back to the unweighted mean when the weights sum to zero so callers
    always receive a finite coordinate.
    """

    coords = _as_matrix(points)
    if coords.shape[0] == 0:
        raise ValueError("weighted_centroid requires at least one point")
    if weights is None:
        return coords.mean(axis=0)
    w = np.clip(np.asarray(weights, dtype=float).ravel(), 0.0, None)
    total = float(w.sum())
    if total <= 0.0 or not np.isfinite(total):
        return coords.mean(axis=0)
    return (coords * w[:, None]).sum(axis=0) / total


__all__ = [
    "encode_vector",
    "decode_vector",
    "stack_vectors",
    "cosine_similarity_matrix",
    "cosine_distance_matrix",
    "similarity_from_distance",
    "is_zero_vector",
    "weighted_centroid",
]
