"""
Core Type Definitions: Metrics, Index State, Items and Search Hits

Shared by the HNSW engine, the persistence codec and the registry.

Conventions:
    - Vectors are float64 numpy arrays, copied on entry and frozen
      (writeable=False) so a stored item can never be mutated by a caller
    - Labels are opaque strings, not unique, returned verbatim
    - Every distance is "smaller = closer", whatever the metric
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np


# =============================================================================
# METRIC TYPES
# =============================================================================
class MetricType(Enum):
    """
    Distance metrics selectable at build time.

    Values are the wire names accepted by the foreign boundary:
        ANGULAR:           arccos(cos θ) / π, in [0, 1]
        MANHATTAN:         L1 distance
        DOT_PRODUCT:       negated inner product (not a true metric)
        EUCLIDEAN:         L2 distance
        COSINE_SIMILARITY: 1 - cos θ, in [0, 2]
        UNKNOWN:           no comparator; build rejects it
    """
    ANGULAR = "angular"
    MANHATTAN = "manhattan"
    DOT_PRODUCT = "dot_product"
    EUCLIDEAN = "euclidean"
    COSINE_SIMILARITY = "cosine_similarity"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str) -> "MetricType":
        """
        Map a metric name to its enum value.

        Matching ignores case and surrounding whitespace, so "Euclidean" and
        " euclidean " both give EUCLIDEAN. Anything else, including near
        misses such as "cosine" or "dot-product", gives UNKNOWN.
        """
        key = name.strip().lower()
        for metric in cls:
            if metric.value == key:
                return metric
        return cls.UNKNOWN

    @classmethod
    def from_code(cls, code: int) -> Optional["MetricType"]:
        """Inverse of `code`; None for codes outside the table."""
        for metric, value in _METRIC_CODES.items():
            if value == code:
                return metric
        return None

    @property
    def code(self) -> int:
        """Stable integer used in the persisted header."""
        return _METRIC_CODES[self]

    def is_supported(self) -> bool:
        """True if the metric has a defined comparator."""
        return self is not MetricType.UNKNOWN


_METRIC_CODES: dict[MetricType, int] = {
    MetricType.UNKNOWN: 0,
    MetricType.ANGULAR: 1,
    MetricType.MANHATTAN: 2,
    MetricType.DOT_PRODUCT: 3,
    MetricType.EUCLIDEAN: 4,
    MetricType.COSINE_SIMILARITY: 5,
}


class IndexState(Enum):
    """Lifecycle of a VectorIndex: UNBUILT until the first successful build."""
    UNBUILT = 0
    BUILT = 1


# =============================================================================
# INDEX ITEM
# =============================================================================
@dataclass(frozen=True, slots=True)
class IndexItem:
    """
    A stored (vector, label) pair.

    The vector is an owned float64 copy with the write flag cleared.
    """
    vector: np.ndarray
    label: str

    @classmethod
    def create(cls, values: Any, label: str) -> "IndexItem":
        arr = np.array(values, dtype=np.float64, copy=True).reshape(-1)
        arr.flags.writeable = False
        return cls(vector=arr, label=label)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])


# =============================================================================
# SEARCH HIT
# =============================================================================
@dataclass(frozen=True, slots=True)
class SearchHit:
    """
    Single search result.

    Attributes:
        label: Label of the matched item
        distance: Distance under the build metric (smaller = closer)
        rank: Position in the result list (0-indexed)
        position: Insertion position of the matched item
    """
    label: str
    distance: float
    rank: int = 0
    position: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "distance": self.distance,
            "rank": self.rank,
            "position": self.position,
        }


# =============================================================================
# INDEX STATISTICS
# =============================================================================
@dataclass(frozen=True, slots=True)
class IndexStats:
    """
    Runtime statistics for a VectorIndex.

    Attributes:
        dimension: Vector dimension
        item_count: Items stored (including ones added after the last build)
        graph_size: Items covered by the current graph
        state: UNBUILT or BUILT
        metric: Metric of the last successful build (None before)
        max_level: Top layer of the graph (-1 without a graph)
        edge_count: Directed edges summed over all layers
        build_time_ms: Duration of the last successful build
    """
    dimension: int
    item_count: int
    graph_size: int
    state: IndexState
    metric: Optional[MetricType] = None
    max_level: int = -1
    edge_count: int = 0
    build_time_ms: float = 0.0
    layer_sizes: tuple[int, ...] = field(default_factory=tuple)

    @property
    def pending_items(self) -> int:
        """Items added since the last build, invisible to search."""
        return self.item_count - self.graph_size

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "dimension": self.dimension,
            "item_count": self.item_count,
            "graph_size": self.graph_size,
            "pending_items": self.pending_items,
            "state": self.state.name,
            "metric": self.metric.value if self.metric else None,
            "max_level": self.max_level,
            "edge_count": self.edge_count,
            "build_time_ms": self.build_time_ms,
            "layer_sizes": list(self.layer_sizes),
        }
