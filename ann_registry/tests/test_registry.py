"""
Integration Tests: Index Registry

Tests:
    - Sentinel behaviour for missing names
    - Create / add / build / search lifecycle
    - Dump and load through the registry
    - Concurrency in both lock modes
    - Metrics and the process-wide instance
"""

import threading

import numpy as np
import pytest

from ann_registry.core.config import HNSWConfig, RegistryConfig
from ann_registry.core.errors import (
    CorruptDataError,
    DimensionMismatchError,
    IndexNotFoundError,
    StorageError,
)
from ann_registry.core.types import IndexState, MetricType
from ann_registry.index.hnsw import HNSWIndex
from ann_registry.observability.metrics import MetricsCollector
from ann_registry.registry import (
    IndexRegistry,
    get_default_registry,
    reset_default_registry,
)

SUPPORTED = [m for m in MetricType if m.is_supported()]

EXAMPLE = [
    ([1, 1, 1, 1, 1, 1, 1, 1], "id"),
    ([2, 2, 2, 2, 1, 1, 1, 1], "id2"),
    ([0, 0, 0, 0, 1, 1, 1, 1], "id3"),
]


def _fill(registry, name, rng, n=50, dimension=4):
    registry.create(name, dimension)
    for i, vector in enumerate(rng.normal(size=(n, dimension))):
        registry.add(name, vector, f"{name}-{i}")


class TestLifecycle:
    """Tests for the basic create → add → build → search flow."""

    def test_search_after_create_is_empty(self, registry):
        """Test a fresh index returns no hits."""
        registry.create("a", 4)
        assert registry.search("a", 5, [0.0] * 4) == []

    def test_example(self, registry):
        """Test the three-vector example."""
        registry.create("example", 8)
        for vector, label in EXAMPLE:
            registry.add("example", vector, label)

        assert registry.build("example", "euclidean") == "Ok"

        labels = registry.search("example", 3, [1] * 8)
        assert set(labels) == {"id", "id2", "id3"}
        assert labels[0] == "id"

    def test_wrong_length_add_leaves_count(self, registry):
        """Test a wrong-length add is rejected."""
        registry.create("a", 3)
        registry.add("a", [1.0, 2.0, 3.0], "ok")

        result = registry.add("a", [1.0, 2.0], "bad")

        assert isinstance(result.error, DimensionMismatchError)
        assert registry.get_index("a").count == 1

    def test_empty_build_status(self, registry):
        """Test building an empty index returns the error text."""
        registry.create("a", 3)

        status = registry.build("a", MetricType.EUCLIDEAN)

        assert status.startswith("[INDEX_EMPTY]")
        assert registry.stats("a").state is IndexState.UNBUILT

    def test_unknown_metric_status(self, registry):
        """Test building with an unknown metric returns the error text."""
        registry.create("a", 2)
        registry.add("a", [1.0, 0.0], "x")

        status = registry.build("a", "not-a-metric")

        assert status.startswith("[INDEX_UNSUPPORTED_METRIC]")
        assert registry.search("a", 1, [1.0, 0.0]) == []

    def test_wrong_length_query_is_empty(self, registry):
        """Test a wrong-length query returns no hits."""
        registry.create("a", 2)
        registry.add("a", [1.0, 0.0], "x")
        registry.build("a", "euclidean")

        assert registry.search("a", 1, [1.0, 0.0, 0.0]) == []

    def test_create_replaces(self, registry):
        """Test create replaces an existing index."""
        registry.create("a", 2)
        registry.add("a", [1.0, 0.0], "x")
        registry.create("a", 5)

        assert registry.get_index("a").dimension == 5
        assert registry.get_index("a").count == 0
        assert len(registry) == 1

    def test_invalid_dimension_raises(self, registry):
        """Test create rejects a bad dimension."""
        with pytest.raises(ValueError):
            registry.create("a", 0)
        assert "a" not in registry

    def test_repeated_search_identical(self, registry, rng):
        """Test repeated searches agree."""
        _fill(registry, "a", rng, n=200, dimension=8)
        registry.build("a", "angular")
        query = rng.normal(size=8)

        assert registry.search("a", 10, query) == registry.search("a", 10, query)

    def test_search_hits(self, registry):
        """Test typed search returns distances."""
        registry.create("a", 2)
        registry.add("a", [0.0, 0.0], "origin")
        registry.build("a", "manhattan")

        hits = registry.search_hits("a", 1, [1.0, 2.0]).unwrap()

        assert hits[0].label == "origin"
        assert hits[0].distance == 3.0

    def test_introspection(self, registry):
        """Test names, membership and lookups."""
        registry.create("b", 2)
        registry.create("a", 2)

        assert registry.names() == ["a", "b"]
        assert "a" in registry
        assert "c" not in registry
        assert registry.stats("c") is None
        assert registry.get_index("c") is None


class TestMissingName:
    """Operations on unknown names are silent no-ops with sentinel returns."""

    def test_search(self, registry):
        """Test search on a missing name returns nothing."""
        assert registry.search("ghost", 3, [1.0]) == []

    def test_build(self, registry):
        """Test build on a missing name returns "No index"."""
        assert registry.build("ghost", "euclidean") == "No index"

    def test_add(self, registry):
        """Test add on a missing name creates nothing."""
        result = registry.add("ghost", [1.0], "x")

        assert isinstance(result.error, IndexNotFoundError)
        assert "ghost" not in registry

    def test_dump(self, registry, tmp_path):
        """Test dump on a missing name writes nothing."""
        path = tmp_path / "ghost.hnsw"

        assert registry.dump("ghost", path).unwrap() is False
        assert not path.exists()


class TestPersistence:
    """Dump and load through the registry."""

    @pytest.mark.parametrize("metric", SUPPORTED, ids=lambda m: m.value)
    def test_round_trip(self, metric, registry, rng, tmp_path):
        """Test dump then load answers searches identically."""
        _fill(registry, "src", rng, n=60, dimension=5)
        assert registry.build("src", metric) == "Ok"
        path = tmp_path / f"{metric.value}.hnsw"

        assert registry.dump("src", path).unwrap() is True
        assert registry.load("dst", path).is_ok()

        for query in rng.normal(size=(5, 5)):
            assert registry.search("dst", 6, query) == registry.search("src", 6, query)

    def test_load_creates_name(self, registry, tmp_path):
        """Test load registers a new name."""
        registry.create("src", 2)
        registry.add("src", [1.0, 1.0], "x")
        registry.build("src", "euclidean")
        registry.dump("src", tmp_path / "x.hnsw")

        registry.load("fresh", tmp_path / "x.hnsw").unwrap()

        assert "fresh" in registry
        assert registry.search("fresh", 1, [1.0, 1.0]) == ["x"]

    def test_load_replaces_existing(self, registry, tmp_path):
        """Test load replaces an existing index."""
        registry.create("src", 2)
        registry.add("src", [1.0, 1.0], "x")
        registry.dump("src", tmp_path / "x.hnsw")
        registry.create("dst", 7)

        registry.load("dst", tmp_path / "x.hnsw").unwrap()

        assert registry.get_index("dst").dimension == 2

    def test_failed_load_leaves_registry_unchanged(self, registry, tmp_path):
        """Test a failed load changes nothing."""
        registry.create("keep", 2)
        registry.add("keep", [1.0, 0.0], "x")
        registry.build("keep", "euclidean")
        before = registry.get_index("keep")
        garbage = tmp_path / "garbage.hnsw"
        garbage.write_bytes(b"\x00" * 128)

        corrupt = registry.load("keep", garbage)
        missing = registry.load("other", tmp_path / "missing.hnsw")

        assert isinstance(corrupt.error, CorruptDataError)
        assert isinstance(missing.error, StorageError)
        assert registry.get_index("keep") is before
        assert registry.names() == ["keep"]

    def test_dump_unbuilt(self, registry, tmp_path):
        """Test an unbuilt index dumps and reloads unbuilt."""
        registry.create("a", 3)
        registry.add("a", [1.0, 2.0, 3.0], "x")

        assert registry.dump("a", tmp_path / "a.hnsw").unwrap() is True
        registry.load("b", tmp_path / "a.hnsw").unwrap()

        assert registry.stats("b").state is IndexState.UNBUILT
        assert registry.stats("b").item_count == 1


@pytest.mark.parametrize("lock_mode", ["global", "per_index"])
class TestConcurrency:
    """Stress the registry from many threads in both lock modes."""

    def _registry(self, lock_mode):
        config = RegistryConfig(hnsw=HNSWConfig(ef_construction=32, seed=2), lock_mode=lock_mode)
        return IndexRegistry(config, metrics=MetricsCollector())

    def test_distinct_names(self, lock_mode):
        """Test threads working on their own names."""
        registry = self._registry(lock_mode)
        errors = []
        results = {}

        def worker(worker_id):
            try:
                local = np.random.default_rng(worker_id)
                name = f"idx-{worker_id}"
                vectors = local.normal(size=(40, 6))
                registry.create(name, 6)
                for i, vector in enumerate(vectors):
                    registry.add(name, vector, f"{name}/{i}")
                status = registry.build(name, "euclidean")
                results[name] = (status, registry.search(name, 1, vectors[7]))
            except Exception as exc:  # surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(registry) == 8
        for name, (status, labels) in results.items():
            assert status == "Ok"
            assert labels == [f"{name}/7"]
            assert registry.get_index(name).count == 40

    def test_shared_name_no_lost_updates(self, lock_mode):
        """Test concurrent adds to one name are all kept."""
        registry = self._registry(lock_mode)
        registry.create("shared", 3)

        def worker(worker_id):
            for i in range(100):
                registry.add("shared", [float(worker_id), float(i), 0.0], f"{worker_id}:{i}")

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        index = registry.get_index("shared")
        assert index.count == 600
        for worker_id in range(6):
            mine = [label for label in index.labels() if label.startswith(f"{worker_id}:")]
            assert mine == [f"{worker_id}:{i}" for i in range(100)]

    def test_search_during_rebuilds(self, lock_mode, rng):
        """Test searches see a full graph while rebuilds run."""
        registry = self._registry(lock_mode)
        _fill(registry, "live", rng, n=100, dimension=4)
        registry.build("live", "euclidean")
        query = rng.normal(size=4)
        seen = []
        stop = threading.Event()

        def reader():
            while True:
                seen.append(len(registry.search("live", 5, query)))
                if stop.is_set():
                    break

        thread = threading.Thread(target=reader)
        thread.start()
        for _ in range(5):
            registry.build("live", "manhattan")
        stop.set()
        thread.join()

        assert seen and all(count == 5 for count in seen)


class TestLockModes:
    """A build holding one index blocks other names only in global mode."""

    @pytest.fixture
    def held_build(self, monkeypatch):
        """Make HNSWIndex.build wait until released; yields (started, release)."""
        started = threading.Event()
        release = threading.Event()
        original = HNSWIndex.build

        def build(index, *args, **kwargs):
            started.set()
            release.wait(timeout=10)
            return original(index, *args, **kwargs)

        monkeypatch.setattr(HNSWIndex, "build", build)
        yield started, release
        release.set()

    @pytest.mark.parametrize(
        "lock_mode, overlaps",
        [("global", False), ("per_index", True)],
    )
    @pytest.mark.parametrize("operation", ["search", "add"])
    def test_other_name_during_build(self, held_build, lock_mode, overlaps, operation):
        """Operations on another name wait for the build only under the global lock."""
        started, release = held_build
        registry = IndexRegistry(
            RegistryConfig(hnsw=HNSWConfig(seed=3), lock_mode=lock_mode),
            metrics=MetricsCollector(),
        )
        for name in ("slow", "other"):
            registry.create(name, 2)
            registry.add(name, [1.0, 0.0], name)

        builder = threading.Thread(target=registry.build, args=("slow", "euclidean"))
        builder.start()
        assert started.wait(timeout=10)

        finished = threading.Event()

        def touch_other():
            if operation == "search":
                registry.search("other", 1, [1.0, 0.0])
            else:
                registry.add("other", [0.0, 1.0], "late")
            finished.set()

        other = threading.Thread(target=touch_other)
        other.start()

        assert finished.wait(timeout=0.5) is overlaps

        release.set()
        builder.join(timeout=10)
        other.join(timeout=10)

        assert finished.is_set()
        assert registry.stats("slow").state is IndexState.BUILT


class TestMetrics:
    """Operation counters and gauges."""

    def test_operation_counts(self):
        """Test operation counters and the index gauge."""
        collector = MetricsCollector()
        registry = IndexRegistry(RegistryConfig(), metrics=collector)

        registry.create("a", 2)
        registry.add("a", [1.0, 0.0], "x")
        registry.add("a", [1.0], "bad")
        registry.build("ghost", "euclidean")
        registry.build("a", "euclidean")
        registry.search("a", 1, [1.0, 0.0])

        ops = collector.counter("ann_registry_operations_total")
        assert ops.get(operation="add", outcome="ok") == 1
        assert ops.get(operation="add", outcome="error") == 1
        assert ops.get(operation="build", outcome="not_found") == 1
        assert ops.get(operation="build", outcome="ok") == 1
        assert collector.gauge("ann_registry_indexes").get() == 1
        assert collector.histogram("ann_registry_operation_seconds").count(operation="search") == 1

    def test_metrics_disabled(self):
        """Test nothing is recorded when metrics are off."""
        collector = MetricsCollector()
        registry = IndexRegistry(RegistryConfig(metrics_enabled=False), metrics=collector)

        registry.create("a", 2)

        assert collector.export_prometheus() == ""


class TestDefaultRegistry:
    """Process-wide instance construction."""

    def test_singleton(self):
        """Test the default registry is one instance."""
        assert get_default_registry() is get_default_registry()
        assert get_default_registry() is IndexRegistry.get_instance()

    def test_reset(self):
        """Test reset gives a fresh empty registry."""
        first = get_default_registry()
        first.create("a", 2)

        reset_default_registry()

        assert get_default_registry() is not first
        assert len(get_default_registry()) == 0

    def test_reads_environment(self, monkeypatch):
        """Test the default registry reads the environment."""
        monkeypatch.setenv("ANN_REGISTRY_LOCK_MODE", "per_index")
        monkeypatch.setenv("ANN_REGISTRY_SEED", "5")

        config = get_default_registry().config

        assert config.lock_mode == "per_index"
        assert config.hnsw.seed == 5

    def test_invalid_environment_falls_back(self, monkeypatch):
        """Test a bad environment falls back to defaults."""
        monkeypatch.setenv("ANN_REGISTRY_LOCK_MODE", "bogus")
        assert get_default_registry().config == RegistryConfig()
