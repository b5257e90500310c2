"""
Distance Kernels

Every kernel returns a distance where smaller = closer, so the graph code
never branches on metric direction:

    EUCLIDEAN          ||a - b||₂
    MANHATTAN          Σ|aᵢ - bᵢ|
    DOT_PRODUCT        -(a · b)            (not a metric: no triangle inequality)
    COSINE_SIMILARITY  1 - cos θ           in [0, 2]
    ANGULAR            arccos(cos θ) / π   in [0, 1]

ANGULAR and COSINE_SIMILARITY rank candidates identically; they differ only
in scale. Zero vectors have cos θ = 0.

Batch variants compare one query (shape [d]) against a matrix (shape [n, d])
with NumPy broadcasting. All arithmetic is float64.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Union

import numpy as np

from ann_registry.core.types import MetricType

if TYPE_CHECKING:
    import numpy.typing as npt

VectorLike = Union[np.ndarray, list[float], "npt.NDArray[np.float64]"]
DistanceFn = Callable[[VectorLike, VectorLike], float]
BatchDistanceFn = Callable[[VectorLike, VectorLike], np.ndarray]

_EPS = 1e-12


# =============================================================================
# VECTOR NORMALIZATION
# =============================================================================
def normalize_vector(v: VectorLike) -> np.ndarray:
    """
    L2-normalize vector(s) to unit length; zero vectors are returned as-is.

    Accepts a single vector (1D) or a batch (2D).
    """
    v = np.asarray(v, dtype=np.float64)
    if v.ndim == 1:
        norm = np.linalg.norm(v)
        return v / norm if norm > 0 else v
    norms = np.linalg.norm(v, axis=1, keepdims=True)
    norms = np.where(norms > 0, norms, 1.0)
    return v / norms


# =============================================================================
# SIMILARITIES
# =============================================================================
def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """cos θ = (a · b) / (||a|| ||b||), 0.0 when either vector is zero."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


def cosine_similarity_batch(query: VectorLike, vectors: VectorLike) -> np.ndarray:
    """cos θ between query and every row of vectors."""
    query = np.asarray(query, dtype=np.float64)
    vectors = np.asarray(vectors, dtype=np.float64)
    query_norm = np.linalg.norm(query)
    vec_norms = np.linalg.norm(vectors, axis=1)
    denom = vec_norms * query_norm
    dots = vectors @ query
    sims = np.where(denom > _EPS, dots / np.where(denom > _EPS, denom, 1.0), 0.0)
    return np.clip(sims, -1.0, 1.0)


def inner_product(a: VectorLike, b: VectorLike) -> float:
    """Raw inner product, higher = more similar."""
    return float(np.dot(np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)))


# =============================================================================
# DISTANCES (SMALLER = CLOSER)
# =============================================================================
def euclidean_distance(a: VectorLike, b: VectorLike) -> float:
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return float(np.sqrt(np.dot(diff, diff)))


def euclidean_distance_batch(query: VectorLike, vectors: VectorLike) -> np.ndarray:
    # Direct difference rather than the ||a||² + ||b||² - 2ab expansion so that
    # identical vectors come out at exactly 0.
    diff = np.asarray(vectors, dtype=np.float64) - np.asarray(query, dtype=np.float64)
    return np.sqrt(np.einsum("ij,ij->i", diff, diff))


def manhattan_distance(a: VectorLike, b: VectorLike) -> float:
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return float(np.sum(np.abs(diff)))


def manhattan_distance_batch(query: VectorLike, vectors: VectorLike) -> np.ndarray:
    diff = np.asarray(vectors, dtype=np.float64) - np.asarray(query, dtype=np.float64)
    return np.sum(np.abs(diff), axis=1)


def dot_product_distance(a: VectorLike, b: VectorLike) -> float:
    return -inner_product(a, b)


def dot_product_distance_batch(query: VectorLike, vectors: VectorLike) -> np.ndarray:
    return -(np.asarray(vectors, dtype=np.float64) @ np.asarray(query, dtype=np.float64))


def cosine_distance(a: VectorLike, b: VectorLike) -> float:
    """1 - cos θ, in [0, 2]."""
    return 1.0 - cosine_similarity(a, b)


def cosine_distance_batch(query: VectorLike, vectors: VectorLike) -> np.ndarray:
    return 1.0 - cosine_similarity_batch(query, vectors)


def angular_distance(a: VectorLike, b: VectorLike) -> float:
    """arccos(cos θ) / π, in [0, 1]."""
    return float(np.arccos(cosine_similarity(a, b)) / np.pi)


def angular_distance_batch(query: VectorLike, vectors: VectorLike) -> np.ndarray:
    return np.arccos(cosine_similarity_batch(query, vectors)) / np.pi


# =============================================================================
# DISTANCE FUNCTION FACTORY
# =============================================================================
_DISTANCE_FNS: dict[MetricType, DistanceFn] = {
    MetricType.EUCLIDEAN: euclidean_distance,
    MetricType.MANHATTAN: manhattan_distance,
    MetricType.DOT_PRODUCT: dot_product_distance,
    MetricType.COSINE_SIMILARITY: cosine_distance,
    MetricType.ANGULAR: angular_distance,
}

_BATCH_DISTANCE_FNS: dict[MetricType, BatchDistanceFn] = {
    MetricType.EUCLIDEAN: euclidean_distance_batch,
    MetricType.MANHATTAN: manhattan_distance_batch,
    MetricType.DOT_PRODUCT: dot_product_distance_batch,
    MetricType.COSINE_SIMILARITY: cosine_distance_batch,
    MetricType.ANGULAR: angular_distance_batch,
}


def get_distance_fn(metric: MetricType) -> DistanceFn:
    """
    Pair distance for a metric.

    Raises:
        ValueError: for MetricType.UNKNOWN
    """
    try:
        return _DISTANCE_FNS[metric]
    except KeyError:
        raise ValueError(f"Unknown metric: {metric.value}") from None


def get_batch_distance_fn(metric: MetricType) -> BatchDistanceFn:
    """Batch distance for a metric (same contract as get_distance_fn)."""
    try:
        return _BATCH_DISTANCE_FNS[metric]
    except KeyError:
        raise ValueError(f"Unknown metric: {metric.value}") from None
