"""
Index Registry: Process-Wide Name → Index Mapping

Every operation addresses an index by name and runs under mutual exclusion:

    lock_mode="global"     one RLock guards the map and all index work, so no
                           two operations run concurrently, even on unrelated
                           indexes
    lock_mode="per_index"  the map lock is held only for lookup/replace; each
                           entry has its own lock held for the index work, so
                           operations on different names overlap while each
                           index still sees at most one operation at a time

Fail-soft surface (matching the foreign boundary):
    build   → "Ok", the error text, or "No index"
    search  → [] for missing names, unbuilt indexes and malformed queries
    add     → Err(IndexNotFoundError) the boundary ignores
    dump    → Ok(False) when the name is absent
    load    → typed Err; the registry is unchanged on failure
"""

from __future__ import annotations

import contextlib
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from ann_registry.core.config import RegistryConfig
from ann_registry.core.errors import (
    AnnIndexError,
    Err,
    IndexNotFoundError,
    Ok,
    Result,
    StorageError,
)
from ann_registry.core.types import IndexStats, MetricType, SearchHit
from ann_registry.index.hnsw import HNSWIndex
from ann_registry.observability.logging import StructuredLogger
from ann_registry.observability.metrics import MetricsCollector

logger = StructuredLogger(__name__)

STATUS_OK = "Ok"
STATUS_NO_INDEX = "No index"

PathLike = Union[str, Path]


@dataclass(slots=True)
class _Entry:
    """Registered index plus the lock used in per_index mode."""
    index: HNSWIndex
    lock: threading.RLock = field(default_factory=threading.RLock)


class IndexRegistry:
    """
    Concurrency-safe mapping from index name to HNSWIndex.

    Usage:
        registry = IndexRegistry()
        registry.create("products", dimension=8)
        registry.add("products", [1.0] * 8, "sku-1")
        registry.build("products", "euclidean")    # "Ok"
        registry.search("products", 3, [1.0] * 8)  # ["sku-1"]
    """

    __slots__ = (
        "_config",
        "_indexes",
        "_lock",
        "_ops",
        "_latency",
        "_index_gauge",
    )

    _instance: Optional[IndexRegistry] = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self._config = config or RegistryConfig()
        self._indexes: dict[str, _Entry] = {}
        self._lock = threading.RLock()

        if self._config.metrics_enabled:
            collector = metrics or MetricsCollector.get_instance()
            self._ops = collector.counter(
                "ann_registry_operations_total",
                ["operation", "outcome"],
                "Registry operations by outcome",
            )
            self._latency = collector.histogram(
                "ann_registry_operation_seconds",
                ["operation"],
                "Registry operation latency, lock wait included",
            )
            self._index_gauge = collector.gauge(
                "ann_registry_indexes", (), "Registered indexes"
            )
        else:
            self._ops = None
            self._latency = None
            self._index_gauge = None

    # =========================================================================
    # PROCESS-WIDE INSTANCE
    # =========================================================================
    @classmethod
    def get_instance(cls) -> IndexRegistry:
        """
        Process-wide registry, created empty on first use.

        Configuration comes from ANN_REGISTRY_* variables; an invalid
        environment is logged and defaults are used.
        """
        with cls._instance_lock:
            if cls._instance is None:
                config_result = RegistryConfig.from_env()
                if config_result.is_err():
                    logger.warning(
                        "Invalid registry configuration, using defaults",
                        error=str(config_result.error),
                    )
                cls._instance = cls(config_result.unwrap_or(RegistryConfig()))
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the process-wide registry (tests only)."""
        with cls._instance_lock:
            cls._instance = None

    # =========================================================================
    # LOCKING & METRICS
    # =========================================================================
    @property
    def config(self) -> RegistryConfig:
        return self._config

    @property
    def _global(self) -> bool:
        return self._config.lock_mode == "global"

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Whole-operation lock in global mode, nothing in per_index mode."""
        if self._global:
            with self._lock:
                yield
        else:
            yield

    @contextlib.contextmanager
    def _locked_entry(self, name: str) -> Iterator[Optional[_Entry]]:
        """Yield the entry for name with the locks its mode requires held."""
        if self._global:
            with self._lock:
                yield self._indexes.get(name)
            return

        with self._lock:
            entry = self._indexes.get(name)
        if entry is None:
            yield None
            return
        with entry.lock:
            yield entry

    def _timer(self, operation: str) -> contextlib.AbstractContextManager:
        if self._latency is None:
            return contextlib.nullcontext()
        return self._latency.time(operation=operation)

    def _count(self, operation: str, result: Result[Any, AnnIndexError]) -> None:
        if self._ops is None:
            return
        if result.is_ok():
            outcome = "ok"
        elif isinstance(result.error, IndexNotFoundError):
            outcome = "not_found"
        else:
            outcome = "error"
        self._ops.inc(operation=operation, outcome=outcome)

    def _update_gauge(self) -> None:
        if self._index_gauge is not None:
            self._index_gauge.set(len(self._indexes))

    # =========================================================================
    # CREATE
    # =========================================================================
    def create(self, name: str, dimension: int) -> None:
        """
        Register a fresh, unbuilt index under name.

        Any index already registered under name is discarded.

        Raises:
            ValueError: if dimension is not a positive integer
        """
        with self._timer("create"):
            index = HNSWIndex(dimension, self._config.hnsw)
            with self._lock:
                replaced = name in self._indexes
                self._indexes[name] = _Entry(index)
                self._update_gauge()

        self._count("create", Ok(None))
        logger.debug("Created index", index=name, dimension=dimension, replaced=replaced)

    # =========================================================================
    # ADD
    # =========================================================================
    def add(self, name: str, vector: Any, label: str) -> Result[None, AnnIndexError]:
        """Stage a vector on the named index for its next build."""
        with self._timer("add"):
            with self._locked_entry(name) as entry:
                if entry is None:
                    result: Result[None, AnnIndexError] = Err(IndexNotFoundError.create(name))
                else:
                    result = entry.index.add(vector, label)

        self._count("add", result)
        if result.is_err():
            logger.debug("Add rejected", index=name, error=str(result.error))
        return result

    # =========================================================================
    # BUILD
    # =========================================================================
    def build_result(
        self,
        name: str,
        metric: Union[MetricType, str],
    ) -> Result[None, AnnIndexError]:
        """Build the named index; typed variant of build()."""
        if isinstance(metric, str):
            metric = MetricType.from_name(metric)

        with self._timer("build"):
            with self._locked_entry(name) as entry:
                if entry is None:
                    result: Result[None, AnnIndexError] = Err(IndexNotFoundError.create(name))
                else:
                    result = entry.index.build(metric)

        self._count("build", result)
        if result.is_ok():
            logger.info("Index built", index=name, metric=metric.value)
        elif not isinstance(result.error, IndexNotFoundError):
            logger.warning("Index build failed", index=name, error=str(result.error))
        return result

    def build(self, name: str, metric: Union[MetricType, str]) -> str:
        """
        Build the named index.

        Returns:
            "Ok", the error description, or "No index" when name is absent
        """
        result = self.build_result(name, metric)
        if result.is_ok():
            return STATUS_OK
        if isinstance(result.error, IndexNotFoundError):
            return STATUS_NO_INDEX
        return str(result.error)

    # =========================================================================
    # SEARCH
    # =========================================================================
    def search_hits(
        self,
        name: str,
        k: int,
        query: Any,
        ef: Optional[int] = None,
    ) -> Result[list[SearchHit], AnnIndexError]:
        """Typed search returning labels with distances."""
        with self._timer("search"):
            with self._locked_entry(name) as entry:
                if entry is None:
                    result: Result[list[SearchHit], AnnIndexError] = Err(
                        IndexNotFoundError.create(name)
                    )
                else:
                    result = entry.index.search_with_distances(query, k, ef)

        self._count("search", result)
        return result

    def search(self, name: str, k: int, query: Any) -> list[str]:
        """
        Up to k labels nearest-first; [] when the name is absent, the index
        is unbuilt, or the query has the wrong dimension.
        """
        result = self.search_hits(name, k, query)
        if result.is_err():
            if not isinstance(result.error, IndexNotFoundError):
                logger.warning("Search rejected", index=name, error=str(result.error))
            return []
        return [hit.label for hit in result.unwrap()]

    # =========================================================================
    # LOAD / DUMP
    # =========================================================================
    def load(self, name: str, path: PathLike) -> Result[None, AnnIndexError]:
        """
        Deserialize an index from path and register it under name.

        The file is fully decoded before the map is touched, so a failed load
        leaves any existing index under name in place.
        """
        with self._timer("load"):
            with self._exclusive():
                loaded = HNSWIndex.load(path, self._config.hnsw)
                if loaded.is_ok():
                    with self._lock:
                        self._indexes[name] = _Entry(loaded.unwrap())
                        self._update_gauge()

        result = loaded.map(lambda _: None)
        self._count("load", result)
        if result.is_err():
            logger.error("Index load failed", index=name, path=str(path), error=str(result.error))
        else:
            logger.info("Index loaded", index=name, path=str(path))
        return result

    def dump(self, name: str, path: PathLike) -> Result[bool, StorageError]:
        """
        Serialize the named index to path.

        Returns:
            Ok(True) when written, Ok(False) when name is absent
        """
        with self._timer("dump"):
            with self._locked_entry(name) as entry:
                if entry is None:
                    result: Result[bool, StorageError] = Ok(False)
                else:
                    result = entry.index.dump(path).map(lambda _: True)

        self._count("dump", result)
        if result.is_err():
            logger.error("Index dump failed", index=name, path=str(path), error=str(result.error))
        elif result.unwrap():
            logger.info("Index dumped", index=name, path=str(path))
        return result

    # =========================================================================
    # INTROSPECTION
    # =========================================================================
    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._indexes)

    def get_index(self, name: str) -> Optional[HNSWIndex]:
        """Live index object registered under name (not a copy)."""
        with self._lock:
            entry = self._indexes.get(name)
        return entry.index if entry is not None else None

    def stats(self, name: str) -> Optional[IndexStats]:
        with self._locked_entry(name) as entry:
            return entry.index.stats() if entry is not None else None

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._indexes

    def __len__(self) -> int:
        with self._lock:
            return len(self._indexes)


def get_default_registry() -> IndexRegistry:
    """Shortcut for IndexRegistry.get_instance()."""
    return IndexRegistry.get_instance()


def reset_default_registry() -> None:
    """Shortcut for IndexRegistry.reset_instance()."""
    IndexRegistry.reset_instance()
