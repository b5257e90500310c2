"""
Core Module: Types, Errors, and Configuration

Depends on numpy only. Shared by the index engine, the registry and the
foreign boundary.
"""

from ann_registry.core.types import (
    IndexItem,
    IndexState,
    IndexStats,
    MetricType,
    SearchHit,
)
from ann_registry.core.errors import (
    AnnIndexError,
    ConfigError,
    CorruptDataError,
    DimensionMismatchError,
    EmptyIndexError,
    Err,
    ErrorCode,
    IndexNotFoundError,
    Ok,
    Result,
    StorageError,
    UnsupportedMetricError,
)
from ann_registry.core.config import HNSWConfig, RegistryConfig

__all__ = [
    # Types
    "IndexItem",
    "IndexState",
    "IndexStats",
    "MetricType",
    "SearchHit",
    # Errors
    "Result",
    "Ok",
    "Err",
    "ErrorCode",
    "AnnIndexError",
    "ConfigError",
    "CorruptDataError",
    "DimensionMismatchError",
    "EmptyIndexError",
    "IndexNotFoundError",
    "StorageError",
    "UnsupportedMetricError",
    # Config
    "HNSWConfig",
    "RegistryConfig",
]
