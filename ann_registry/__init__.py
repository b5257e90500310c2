"""
ann_registry: Named HNSW Vector Indexes Behind a Foreign-Call Boundary

Features:
    - HNSW approximate nearest-neighbor graphs over float64 vectors
    - Six metrics: euclidean, manhattan, dot_product, cosine_similarity,
      angular (plus unknown, which build rejects)
    - Process-wide registry addressing indexes by name under one lock
    - Checksummed, lz4-compressed binary dumps

Usage:
    from ann_registry import IndexRegistry

    registry = IndexRegistry()
    registry.create("docs", dimension=3)
    registry.add("docs", [1.0, 0.0, 0.0], "id")
    registry.build("docs", "euclidean")       # "Ok"
    registry.search("docs", 1, [1.0, 0.0, 0.0])  # ["id"]

    # C-shaped entry points on the default registry
    from ann_registry import ffi
    ffi.new_index(b"docs", 3)
"""

from __future__ import annotations

__version__ = "0.1.0"

# Core types (numpy only)
from ann_registry.core.types import (
    IndexState,
    IndexStats,
    MetricType,
    SearchHit,
)
from ann_registry.core.errors import (
    AnnIndexError,
    CorruptDataError,
    DimensionMismatchError,
    EmptyIndexError,
    Err,
    IndexNotFoundError,
    Ok,
    Result,
    StorageError,
    UnsupportedMetricError,
)
from ann_registry.core.config import HNSWConfig, RegistryConfig


# Index and registry (lazy-loaded on first access; they pull in lz4)
def __getattr__(name: str):
    """Lazy import of the engine modules."""
    if name in ("HNSWIndex", "VectorIndex"):
        from ann_registry.index.hnsw import HNSWIndex
        return HNSWIndex
    if name == "IndexRegistry":
        from ann_registry.registry import IndexRegistry
        return IndexRegistry
    if name == "get_default_registry":
        from ann_registry.registry import get_default_registry
        return get_default_registry
    if name == "ffi":
        import ann_registry.ffi as ffi
        return ffi
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Version
    "__version__",
    # Core types
    "IndexState",
    "IndexStats",
    "MetricType",
    "SearchHit",
    # Error handling
    "Result",
    "Ok",
    "Err",
    "AnnIndexError",
    "CorruptDataError",
    "DimensionMismatchError",
    "EmptyIndexError",
    "IndexNotFoundError",
    "StorageError",
    "UnsupportedMetricError",
    # Config
    "HNSWConfig",
    "RegistryConfig",
    # Engine (lazy)
    "HNSWIndex",
    "VectorIndex",
    "IndexRegistry",
    "get_default_registry",
    "ffi",
]
