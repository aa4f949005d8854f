"""
Vector helpers for embedding comparison.

All functions are pure. ``cosine_similarity`` expects finite inputs; use
``validate_vector`` on untrusted data first.
"""

from typing import Optional, Sequence, Union

import numpy as np

from autoapply.libs.matching.exceptions import DimensionMismatchError, ProfileValidationError

VectorLike = Union[Sequence[float], np.ndarray]


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        DimensionMismatchError: if the vectors have different lengths
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatchError(
            f"Vectors must have the same dimensions ({va.size} != {vb.size})"
        )

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(va, vb) / (norm_a * norm_b))


def validate_vector(vector: Optional[VectorLike], expected_dimension: Optional[int] = None) -> np.ndarray:
    """
    Check that a vector is a non-empty, finite, one-dimensional float array.

    Args:
        vector: Raw embedding as read from a store
        expected_dimension: Required length, if any

    Returns:
        The vector as a float64 numpy array
    """
    if vector is None:
        raise ProfileValidationError("Embedding vector is missing")
    try:
        arr = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ProfileValidationError(f"Embedding vector is not numeric: {e}") from e

    if arr.ndim != 1 or arr.size == 0:
        raise ProfileValidationError("Embedding vector must be a non-empty flat sequence")
    if not np.all(np.isfinite(arr)):
        raise ProfileValidationError("Embedding vector contains NaN or infinite values")
    if expected_dimension is not None and arr.size != expected_dimension:
        raise DimensionMismatchError(
            f"Expected embedding of dimension {expected_dimension}, got {arr.size}"
        )
    return arr


def normalize(vector: VectorLike) -> np.ndarray:
    """L2-normalise a vector; a zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr
    return arr / norm


def cosine_similarity_matrix(rows: np.ndarray, columns: np.ndarray) -> np.ndarray:
    """
    Pairwise cosine similarities between the rows of two 2-D arrays.

    Zero rows yield 0 similarity, matching ``cosine_similarity``.
    """
    a = np.asarray(rows, dtype=np.float64)
    b = np.asarray(columns, dtype=np.float64)
    if a.ndim != 2 or b.ndim != 2 or a.shape[1] != b.shape[1]:
        raise DimensionMismatchError(
            f"Cannot compare matrices of shapes {a.shape} and {b.shape}"
        )
    a_norms = np.linalg.norm(a, axis=1, keepdims=True)
    b_norms = np.linalg.norm(b, axis=1, keepdims=True)
    a_unit = np.divide(a, a_norms, out=np.zeros_like(a), where=a_norms != 0)
    b_unit = np.divide(b, b_norms, out=np.zeros_like(b), where=b_norms != 0)
    return a_unit @ b_unit.T
