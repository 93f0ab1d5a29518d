"""Euclidean distance and distance-to-similarity conversion."""

import numpy as np

from .errors import DimensionMismatch


def euclidean_distance(a, b) -> float:
    """
    Euclidean distance between two equal-length vectors.

    Raises:
        DimensionMismatch: If the vectors differ in length
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        raise DimensionMismatch(a.shape[0], b.shape[0])
    return float(np.sqrt(np.sum((a - b) ** 2)))


def pairwise_distances(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """
    Distances from one query vector to every row of a candidate matrix.

    Args:
        query: Array of shape (dim,)
        matrix: Array of shape (n_candidates, dim)

    Returns:
        Array of shape (n_candidates,)
    """
    query = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
        actual = matrix.shape[-1] if matrix.ndim else 0
        raise DimensionMismatch(query.shape[0], actual)
    diff = matrix - query
    return np.sqrt(np.einsum("ij,ij->i", diff, diff))


def similarity(distance: float, max_distance: float) -> float:
    """
    Convert a distance into a 0-100 similarity score.

    ``100 * (1 - distance / max_distance)`` clamped at 0. When every
    candidate is at distance 0 from the query (max_distance == 0), all
    candidates are 100% similar.
    """
    if max_distance == 0:
        return 100.0
    return max(0.0, (1 - distance / max_distance) * 100)
