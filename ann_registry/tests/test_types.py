"""
Unit Tests: Core Types

Tests:
    - Metric name and code mapping
    - Item copy-on-create semantics
    - Stats serialization
"""

import numpy as np
import pytest

from ann_registry.core.types import (
    IndexItem,
    IndexState,
    IndexStats,
    MetricType,
    SearchHit,
)


class TestMetricType:
    """Tests for metric parsing."""

    @pytest.mark.parametrize("name,expected", [
        ("euclidean", MetricType.EUCLIDEAN),
        ("EUCLIDEAN", MetricType.EUCLIDEAN),
        ("Euclidean", MetricType.EUCLIDEAN),
        (" manhattan ", MetricType.MANHATTAN),
        ("dot_product", MetricType.DOT_PRODUCT),
        ("cosine_similarity", MetricType.COSINE_SIMILARITY),
        ("angular", MetricType.ANGULAR),
        ("hamming", MetricType.UNKNOWN),
        ("cosine", MetricType.UNKNOWN),
        ("dot-product", MetricType.UNKNOWN),
        ("", MetricType.UNKNOWN),
    ])
    def test_from_name(self, name, expected):
        """Case and outer whitespace are ignored; other variants are UNKNOWN."""
        assert MetricType.from_name(name) is expected

    def test_codes_round_trip(self):
        """Every metric has a distinct code that maps back to it."""
        codes = {metric.code for metric in MetricType}
        assert len(codes) == len(MetricType)
        for metric in MetricType:
            assert MetricType.from_code(metric.code) is metric

    def test_unknown_code(self):
        """Test an unknown code maps to None."""
        assert MetricType.from_code(99) is None

    def test_only_unknown_is_unsupported(self):
        """Test only UNKNOWN is unsupported."""
        unsupported = [m for m in MetricType if not m.is_supported()]
        assert unsupported == [MetricType.UNKNOWN]


class TestIndexItem:
    """Tests for stored items."""

    def test_create_copies(self):
        """Mutating the source never reaches the stored vector."""
        source = np.array([1.0, 2.0, 3.0])
        item = IndexItem.create(source, "a")
        source[0] = 99.0

        np.testing.assert_array_equal(item.vector, [1.0, 2.0, 3.0])
        assert item.dimension == 3

    def test_vector_is_read_only(self):
        """Test stored vectors are read-only."""
        item = IndexItem.create([1, 2], "a")

        assert item.vector.dtype == np.float64
        with pytest.raises(ValueError):
            item.vector[0] = 5.0


class TestStats:
    """Tests for stats and hits serialization."""

    def test_pending_items(self):
        """Test pending items are items not in the graph."""
        stats = IndexStats(dimension=4, item_count=10, graph_size=7, state=IndexState.BUILT)
        assert stats.pending_items == 3

    def test_to_dict(self):
        """Test stats serialize to a dict."""
        stats = IndexStats(
            dimension=4,
            item_count=2,
            graph_size=2,
            state=IndexState.BUILT,
            metric=MetricType.ANGULAR,
            layer_sizes=(2, 1),
        )
        data = stats.to_dict()

        assert data["state"] == "BUILT"
        assert data["metric"] == "angular"
        assert data["layer_sizes"] == [2, 1]

    def test_unbuilt_metric_is_none(self):
        """Test an unbuilt index reports no metric."""
        stats = IndexStats(dimension=4, item_count=0, graph_size=0, state=IndexState.UNBUILT)
        assert stats.to_dict()["metric"] is None

    def test_hit_to_dict(self):
        """Test hits serialize to a dict."""
        hit = SearchHit(label="x", distance=0.5, rank=1, position=3)
        assert hit.to_dict() == {"label": "x", "distance": 0.5, "rank": 1, "position": 3}
