"""
Brute-force K-nearest-neighbour selection.

Every query is scored against the whole candidate pool in a single
vectorised pass: O(N * D) for N candidates of dimension D. Catalogs are
expected to hold tens to low thousands of careers, where an exact scan
costs well under a millisecond, so no approximate index (FAISS, trees)
is maintained. Exactness also keeps rankings reproducible, which the
result cache depends on.
"""

import logging
from typing import Any, Sequence

import numpy as np

from .distance import pairwise_distances, similarity
from .errors import DimensionMismatch, EmptyCandidatePool
from .models import Neighbor

logger = logging.getLogger(__name__)


def find_k_nearest(
    query: np.ndarray,
    candidates: Sequence[tuple[Any, np.ndarray]],
    k: int,
) -> list[Neighbor]:
    """
    Return the k candidates closest to the query.

    Candidates whose item has ``is_active == False`` are skipped. Ties in
    distance keep the order in which candidates were supplied. Similarity
    is normalised by the largest distance across the whole active pool,
    so scores are comparable between calls with different k.

    Args:
        query: Query vector of shape (dim,)
        candidates: Sequence of (item, vector) pairs in catalog order
        k: Number of neighbours to return (fewer if the pool is smaller)

    Returns:
        Neighbours ordered by ascending distance

    Raises:
        ValueError: If k < 1
        EmptyCandidatePool: If no active candidate exists
        DimensionMismatch: If any candidate vector differs in length from the query
    """
    if k < 1:
        raise ValueError(f"k must be at least 1, got {k}")

    pool = [
        (item, vector)
        for item, vector in candidates
        if getattr(item, "is_active", True)
    ]
    if not pool:
        raise EmptyCandidatePool()

    query = np.asarray(query, dtype=np.float64)
    dim = query.shape[0]
    for _, vector in pool:
        if len(vector) != dim:
            raise DimensionMismatch(dim, len(vector))

    matrix = np.vstack([np.asarray(v, dtype=np.float64) for _, v in pool])
    distances = pairwise_distances(query, matrix)
    max_distance = float(distances.max())

    order = np.argsort(distances, kind="stable")[:k]

    neighbors = [
        Neighbor(
            item=pool[i][0],
            distance=float(distances[i]),
            similarity=similarity(float(distances[i]), max_distance),
            position=int(i),
        )
        for i in order
    ]
    logger.debug(
        f"Selected {len(neighbors)} of {len(pool)} candidates (max distance {max_distance:.4f})"
    )
    return neighbors
