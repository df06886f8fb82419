"""Similarity score normalization.

Every backend reports results on one scale: a score in [0, 1] where higher
means more similar.

- cosine: ``(1 + cos) / 2``, i.e. ``1 - d / 2`` for cosine distance ``d``
- euclidean: ``1 / (1 + d)`` for L2 distance ``d``
- dot product: logistic ``1 / (1 + e^-p)`` for inner product ``p``

Each mapping is monotonic, so ordering by score equals ordering by the
native metric, and each has an inverse for pushing thresholds down.
"""

import math
from collections.abc import Sequence

import numpy as np

from vecstore.config import DistanceType


def _clamp(score: float) -> float:
    return min(1.0, max(0.0, score))


def cosine_similarity_to_score(similarity: float) -> float:
    """Map cosine similarity in [-1, 1] to [0, 1]."""
    return _clamp((1.0 + similarity) / 2.0)


def cosine_distance_to_score(distance: float) -> float:
    """Map cosine distance in [0, 2] to [0, 1]."""
    return _clamp(1.0 - distance / 2.0)


def score_to_cosine_distance(score: float) -> float:
    return 2.0 * (1.0 - score)


def euclidean_distance_to_score(distance: float) -> float:
    """Map L2 distance in [0, inf) to (0, 1]."""
    return 1.0 / (1.0 + max(0.0, distance))


def score_to_euclidean_distance(score: float) -> float:
    if score <= 0.0:
        return math.inf
    return 1.0 / score - 1.0


def dot_product_to_score(product: float) -> float:
    """Map an inner product to (0, 1) with the logistic function."""
    if product >= 0:
        return 1.0 / (1.0 + math.exp(-product))
    exp = math.exp(product)
    return exp / (1.0 + exp)


def score_to_dot_product(score: float) -> float:
    if score <= 0.0:
        return -math.inf
    if score >= 1.0:
        return math.inf
    return math.log(score / (1.0 - score))


def score_vectors(
    distance_type: DistanceType,
    vectors: Sequence[Sequence[float]],
    query: Sequence[float],
) -> list[float]:
    """Normalized scores of ``vectors`` against ``query``.

    Zero vectors have cosine similarity 0 with everything.
    """
    if not vectors:
        return []
    matrix = np.asarray(vectors, dtype=np.float64)
    target = np.asarray(query, dtype=np.float64)

    if distance_type == DistanceType.EUCLIDEAN:
        distances = np.linalg.norm(matrix - target, axis=1)
        return [euclidean_distance_to_score(float(d)) for d in distances]

    products = matrix @ target
    if distance_type == DistanceType.DOT:
        return [dot_product_to_score(float(p)) for p in products]

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(target)
    similarities = np.divide(
        products, norms, out=np.zeros_like(products), where=norms > 0
    )
    return [cosine_similarity_to_score(float(s)) for s in similarities]
