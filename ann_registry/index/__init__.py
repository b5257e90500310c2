"""
Index Module: HNSW Graph, Distance Kernels and Dump Format

Provides:
    - HNSWIndex: staged items plus a rebuildable layered graph
    - Distance kernels for every MetricType
    - encode_index / decode_index: checksummed binary dumps
"""

from ann_registry.index.distance import (
    angular_distance,
    cosine_distance,
    cosine_similarity,
    dot_product_distance,
    euclidean_distance,
    get_batch_distance_fn,
    get_distance_fn,
    manhattan_distance,
    normalize_vector,
)
from ann_registry.index.hnsw import HNSWGraph, HNSWIndex
from ann_registry.index.persistence import IndexSnapshot, decode_index, encode_index

__all__ = [
    # Index
    "HNSWIndex",
    "HNSWGraph",
    # Persistence
    "IndexSnapshot",
    "encode_index",
    "decode_index",
    # Distance
    "angular_distance",
    "cosine_distance",
    "cosine_similarity",
    "dot_product_distance",
    "euclidean_distance",
    "manhattan_distance",
    "normalize_vector",
    "get_distance_fn",
    "get_batch_distance_fn",
]
