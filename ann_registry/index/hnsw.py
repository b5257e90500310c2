"""
HNSW (Hierarchical Navigable Small World) Index

A named index stores (vector, label) items in insertion order and builds a
multi-layer proximity graph over them on demand:

    add()    stages items; never touches the graph
    build()  constructs a fresh graph from the current items under a metric
    search() greedy descent through the upper layers, beam search on layer 0
    dump()   / load() binary persistence (see ann_registry.index.persistence)

Algorithm Details:
    - Node level: floor(-ln(U) * ml), ml = 1 / ln(M), capped at max_level
    - Neighbor selection via the Select-Neighbors-Heuristic, back-filled with
      the closest pruned candidates so nodes keep their full quota
    - Adjacency capped at M on upper layers and M_max0 (2M) on layer 0
    - Pruning prefers moving a node's last incoming link on a layer over
      dropping it, so repeated vectors stay reachable
    - Entry point moves to any node drawn at a strictly higher level

Thread Safety:
    - add/build take the index write lock
    - search reads the current graph reference, which build swaps wholesale,
      so a search never sees a half-built graph
"""

from __future__ import annotations

import heapq
import logging
import math
import random
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import numpy as np

from ann_registry.core.config import HNSWConfig
from ann_registry.core.errors import (
    AnnIndexError,
    CorruptDataError,
    DimensionMismatchError,
    EmptyIndexError,
    Err,
    Ok,
    Result,
    StorageError,
    UnsupportedMetricError,
)
from ann_registry.core.types import (
    IndexItem,
    IndexState,
    IndexStats,
    MetricType,
    SearchHit,
)
from ann_registry.index.distance import get_batch_distance_fn
from ann_registry.index.persistence import (
    IndexSnapshot,
    decode_index,
    encode_index,
    read_index_file,
    write_index_file,
)

logger = logging.getLogger(__name__)


# =============================================================================
# HNSW NODE
# =============================================================================
@dataclass(slots=True)
class HNSWNode:
    """
    Graph node for one item.

    position is the item's insertion index, which is also its row in the
    graph matrix. neighbors[layer] holds positions of adjacent nodes.
    """
    position: int
    level: int
    neighbors: list[list[int]]


# =============================================================================
# HNSW GRAPH
# =============================================================================
class HNSWGraph:
    """
    Immutable-once-built layered graph over a fixed vector matrix.

    Built by HNSWIndex.build() (via insert) or restored by the persistence
    codec; searched read-only afterwards.
    """

    __slots__ = (
        "_matrix",
        "_metric",
        "_nodes",
        "_in_degree",
        "_entry_point",
        "_max_level",
        "_config",
        "_distance_batch",
    )

    def __init__(
        self,
        matrix: np.ndarray,
        metric: MetricType,
        config: HNSWConfig,
    ) -> None:
        self._matrix = matrix
        self._metric = metric
        self._config = config
        self._nodes: list[HNSWNode] = []
        # _in_degree[position][layer]: number of nodes linking to position
        self._in_degree: list[list[int]] = []
        self._entry_point: Optional[int] = None
        self._max_level: int = -1
        self._distance_batch = get_batch_distance_fn(metric)

    @classmethod
    def restore(
        cls,
        matrix: np.ndarray,
        metric: MetricType,
        config: HNSWConfig,
        levels: Sequence[int],
        neighbors: Sequence[list[list[int]]],
        entry_point: int,
        max_level: int,
    ) -> "HNSWGraph":
        """Rebuild a graph from decoded adjacency without re-running construction."""
        graph = cls(matrix, metric, config)
        graph._nodes = [
            HNSWNode(position=pos, level=level, neighbors=[list(layer) for layer in links])
            for pos, (level, links) in enumerate(zip(levels, neighbors))
        ]
        graph._in_degree = [[0] * (node.level + 1) for node in graph._nodes]
        for node in graph._nodes:
            for layer, links in enumerate(node.neighbors):
                for neighbor in links:
                    graph._in_degree[neighbor][layer] += 1
        graph._entry_point = entry_point
        graph._max_level = max_level
        return graph

    # =========================================================================
    # PROPERTIES
    # =========================================================================
    @property
    def metric(self) -> MetricType:
        return self._metric

    @property
    def entry_point(self) -> Optional[int]:
        return self._entry_point

    @property
    def max_level(self) -> int:
        return self._max_level

    @property
    def nodes(self) -> list[HNSWNode]:
        return self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def edge_count(self) -> int:
        return sum(len(layer) for node in self._nodes for layer in node.neighbors)

    def layer_sizes(self) -> tuple[int, ...]:
        """Number of nodes present on each layer, layer 0 first."""
        sizes = [0] * (self._max_level + 1)
        for node in self._nodes:
            for layer in range(node.level + 1):
                sizes[layer] += 1
        return tuple(sizes)

    # =========================================================================
    # DISTANCE COMPUTATION
    # =========================================================================
    def _distances(self, query: np.ndarray, positions: list[int]) -> np.ndarray:
        if not positions:
            return np.empty(0, dtype=np.float64)
        return self._distance_batch(query, self._matrix[positions])

    # =========================================================================
    # SEARCH LAYER (BEAM SEARCH)
    # =========================================================================
    def search_layer(
        self,
        query: np.ndarray,
        entry_points: list[int],
        ef: int,
        layer: int,
    ) -> list[tuple[float, int]]:
        """
        Beam search on a single layer.

        Args:
            query: Query vector
            entry_points: Starting node positions
            ef: Beam width (number of results tracked)
            layer: Layer index

        Returns:
            Up to ef (distance, position) tuples, nearest first, ties broken
            by insertion order
        """
        visited: set[int] = set(entry_points)
        initial = [float(d) for d in self._distances(query, entry_points)]

        # Candidates: min-heap on distance, nearest unexpanded node first
        candidates: list[tuple[float, int]] = list(zip(initial, entry_points))
        heapq.heapify(candidates)

        # Results: max-heap via (-distance, -position); root is the current worst
        results: list[tuple[float, int]] = [(-d, -p) for d, p in zip(initial, entry_points)]
        heapq.heapify(results)
        while len(results) > ef:
            heapq.heappop(results)

        while candidates:
            current_dist, current = heapq.heappop(candidates)
            if len(results) >= ef and current_dist > -results[0][0]:
                break

            node = self._nodes[current]
            if layer >= len(node.neighbors):
                continue

            unvisited = [n for n in node.neighbors[layer] if n not in visited]
            if not unvisited:
                continue
            visited.update(unvisited)

            for dist, neighbor in zip(self._distances(query, unvisited), unvisited):
                dist = float(dist)
                if len(results) < ef or dist < -results[0][0]:
                    heapq.heappush(candidates, (dist, neighbor))
                    heapq.heappush(results, (-dist, -neighbor))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted((-neg_dist, -neg_pos) for neg_dist, neg_pos in results)

    # =========================================================================
    # SELECT NEIGHBORS (HEURISTIC)
    # =========================================================================
    def select_neighbors(
        self,
        candidates: list[tuple[float, int]],
        m: int,
    ) -> list[int]:
        """
        Pick up to m neighbors from candidates sorted nearest-first.

        A candidate is dropped when some neighbor already kept is strictly
        closer to it than the base element is, which spreads edges across
        directions instead of clustering them. Exact ties are kept so
        repeated vectors link to each other. Pruned candidates back-fill any
        slots left over, nearest first.
        """
        if len(candidates) <= m:
            return [pos for _, pos in candidates]

        selected: list[int] = []
        pruned: list[int] = []

        for dist, pos in candidates:
            if len(selected) >= m:
                break
            if selected:
                to_selected = self._distances(self._matrix[pos], selected)
                if np.any(to_selected < dist):
                    pruned.append(pos)
                    continue
            selected.append(pos)

        for pos in pruned:
            if len(selected) >= m:
                break
            selected.append(pos)

        return selected

    # =========================================================================
    # INSERT
    # =========================================================================
    def insert(self, position: int, level: int) -> None:
        """
        Link the item at `position` into the graph.

        Items must be inserted in position order.
        """
        assert position == len(self._nodes), "graph nodes must be inserted in order"

        node = HNSWNode(
            position=position,
            level=level,
            neighbors=[[] for _ in range(level + 1)],
        )
        self._nodes.append(node)
        self._in_degree.append([0] * (level + 1))

        if self._entry_point is None:
            self._entry_point = position
            self._max_level = level
            return

        query = self._matrix[position]
        current_ep = [self._entry_point]

        # Greedy descent through layers above the node's level
        for layer in range(self._max_level, level, -1):
            found = self.search_layer(query, current_ep, 1, layer)
            current_ep = [found[0][1]]

        for layer in range(min(level, self._max_level), -1, -1):
            candidates = self.search_layer(
                query, current_ep, self._config.ef_construction, layer
            )
            neighbors = self.select_neighbors(candidates, self._config.M)
            node.neighbors[layer] = list(neighbors)
            for neighbor in neighbors:
                self._in_degree[neighbor][layer] += 1

            cap = self._config.max_neighbors(layer)
            for neighbor in neighbors:
                neighbor_node = self._nodes[neighbor]
                assert layer <= neighbor_node.level
                neighbor_node.neighbors[layer].append(position)
                self._in_degree[position][layer] += 1
                if len(neighbor_node.neighbors[layer]) > cap:
                    self._shrink(neighbor, layer, position)

            if self._in_degree[position][layer] == 0:
                self._reattach(position, neighbors, layer)

            current_ep = [pos for _, pos in candidates]

        if level > self._max_level:
            self._max_level = level
            self._entry_point = position

    def _shrink(self, owner: int, layer: int, incoming: int) -> None:
        """
        Cut owner's adjacency on layer back to its cap after a back-link.

        Distance ties favor incoming. A link that is the only way into its
        target is never simply cut: it displaces the farthest kept link whose
        target has another way in, or else incoming takes the link over.
        """
        owner_node = self._nodes[owner]
        links = owner_node.neighbors[layer]
        cap = self._config.max_neighbors(layer)
        ordered = sorted(
            (float(d), n != incoming, n)
            for d, n in zip(self._distances(self._matrix[owner], links), links)
        )
        kept = self.select_neighbors([(d, n) for d, _, n in ordered], cap)
        kept_set = set(kept)

        for target in [n for _, _, n in ordered if n not in kept_set]:
            if self._in_degree[target][layer] == 1:
                victim = next(
                    (
                        n for _, _, n in reversed(ordered)
                        if n in kept_set and self._in_degree[n][layer] > 1
                    ),
                    None,
                )
                adopter = self._nodes[incoming].neighbors[layer]
                if victim is not None:
                    kept[kept.index(victim)] = target
                    kept_set.discard(victim)
                    kept_set.add(target)
                    target = victim
                elif target != incoming and len(adopter) < cap:
                    adopter.append(target)
                    self._in_degree[target][layer] += 1
            self._in_degree[target][layer] -= 1

        owner_node.neighbors[layer] = kept

    def _reattach(self, position: int, neighbors: list[int], layer: int) -> None:
        """Give position an incoming link on layer in place of a redundant one."""
        for owner in neighbors:
            links = self._nodes[owner].neighbors[layer]
            spare = [n for n in links if self._in_degree[n][layer] > 1]
            if not spare:
                continue
            distances = self._distances(self._matrix[owner], spare)
            victim = spare[int(np.argmax(distances))]
            links[links.index(victim)] = position
            self._in_degree[victim][layer] -= 1
            self._in_degree[position][layer] += 1
            return
        logger.debug("Node %d has no incoming link on layer %d", position, layer)

    # =========================================================================
    # K-NN
    # =========================================================================
    def knn(self, query: np.ndarray, k: int, ef: int) -> list[tuple[float, int]]:
        """Top-k (distance, position) pairs, nearest first."""
        if self._entry_point is None or k <= 0:
            return []

        current_ep = [self._entry_point]
        for layer in range(self._max_level, 0, -1):
            found = self.search_layer(query, current_ep, 1, layer)
            current_ep = [found[0][1]]

        return self.search_layer(query, current_ep, max(ef, k), 0)[:k]


# =============================================================================
# HNSW INDEX
# =============================================================================
class HNSWIndex:
    """
    Named-index payload: staged items plus the graph of the last build.

    Usage:
        index = HNSWIndex(dimension=8)
        index.add([1.0] * 8, "id")
        index.build(MetricType.EUCLIDEAN)
        labels = index.search([1.0] * 8, k=3).unwrap()
    """

    __slots__ = (
        "_config",
        "_dimension",
        "_items",
        "_graph",
        "_state",
        "_build_time_ms",
        "_write_lock",
    )

    def __init__(self, dimension: int, config: Optional[HNSWConfig] = None) -> None:
        """
        Initialize an empty, unbuilt index.

        Args:
            dimension: Vector length, a positive integer
            config: HNSW parameters (uses defaults if None)

        Raises:
            ValueError: if dimension is not a positive integer
        """
        if isinstance(dimension, bool) or not isinstance(dimension, int) or dimension < 1:
            raise ValueError(f"dimension must be a positive integer, got {dimension!r}")

        self._config = config or HNSWConfig()
        self._dimension = dimension
        self._items: list[IndexItem] = []
        self._graph: Optional[HNSWGraph] = None
        self._state = IndexState.UNBUILT
        self._build_time_ms = 0.0
        self._write_lock = threading.RLock()

    # =========================================================================
    # PROPERTIES
    # =========================================================================
    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def count(self) -> int:
        """Number of stored items, including ones not yet built."""
        return len(self._items)

    @property
    def graph_size(self) -> int:
        """Number of items covered by the current graph."""
        return len(self._graph) if self._graph is not None else 0

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def is_built(self) -> bool:
        return self._state is IndexState.BUILT

    @property
    def metric(self) -> Optional[MetricType]:
        """Metric of the last successful build."""
        return self._graph.metric if self._graph is not None else None

    @property
    def config(self) -> HNSWConfig:
        return self._config

    @property
    def graph(self) -> Optional[HNSWGraph]:
        return self._graph

    def __len__(self) -> int:
        return len(self._items)

    def labels(self) -> list[str]:
        """Labels in insertion order."""
        return [item.label for item in self._items]

    def get(self, position: int) -> IndexItem:
        """Item at an insertion position."""
        return self._items[position]

    # =========================================================================
    # ADD
    # =========================================================================
    def add(self, vector: Any, label: str) -> Result[None, DimensionMismatchError]:
        """
        Stage a (vector, label) item for the next build.

        The vector is copied; the caller's buffer is never retained.
        """
        item = IndexItem.create(vector, label)
        if item.dimension != self._dimension:
            return Err(DimensionMismatchError.create(self._dimension, item.dimension))

        with self._write_lock:
            self._items.append(item)
        return Ok(None)

    def add_batch(
        self,
        vectors: Any,
        labels: Sequence[str],
    ) -> Result[int, DimensionMismatchError]:
        """
        Stage many items at once.

        The whole batch is validated before anything is appended.

        Returns:
            Number of items added
        """
        matrix = np.array(vectors, dtype=np.float64, copy=True)
        if matrix.ndim == 1 and matrix.size == 0:
            matrix = matrix.reshape(0, self._dimension)
        if matrix.ndim != 2 or matrix.shape[1] != self._dimension:
            actual = matrix.shape[-1] if matrix.ndim >= 1 else 0
            return Err(DimensionMismatchError.create(self._dimension, int(actual)))
        if matrix.shape[0] != len(labels):
            raise ValueError(
                f"got {matrix.shape[0]} vectors but {len(labels)} labels"
            )

        items = [IndexItem.create(row, label) for row, label in zip(matrix, labels)]
        with self._write_lock:
            self._items.extend(items)
        return Ok(len(items))

    # =========================================================================
    # BUILD
    # =========================================================================
    def _random_level(self, rng: random.Random) -> int:
        """Draw floor(-ln(U) * ml), capped at max_level."""
        level = int(-math.log(1.0 - rng.random()) * self._config.ml)
        return min(level, self._config.max_level)

    def build(self, metric: Union[MetricType, str]) -> Result[None, AnnIndexError]:
        """
        Construct the graph from scratch over the current items.

        Algorithm:
            1. Snapshot items into a contiguous float64 matrix
            2. Draw a level per item (seeded from config.seed when set)
            3. Insert items in order; the first becomes the entry point
            4. Swap the finished graph in and mark the index BUILT

        Errors leave the index untouched:
            EmptyIndexError when there are no items
            UnsupportedMetricError for MetricType.UNKNOWN
        """
        if isinstance(metric, str):
            metric = MetricType.from_name(metric)

        with self._write_lock:
            if not self._items:
                return Err(EmptyIndexError.create())
            if not metric.is_supported():
                return Err(UnsupportedMetricError.create(metric.value))

            start = time.perf_counter()
            matrix = np.vstack([item.vector for item in self._items])
            matrix.flags.writeable = False

            rng = random.Random(self._config.seed)
            graph = HNSWGraph(matrix, metric, self._config)
            for position in range(matrix.shape[0]):
                graph.insert(position, self._random_level(rng))

            self._graph = graph
            self._state = IndexState.BUILT
            self._build_time_ms = (time.perf_counter() - start) * 1000

            logger.debug(
                "Built HNSW graph: %d nodes, metric=%s, max_level=%d, %.1fms",
                len(graph), metric.value, graph.max_level, self._build_time_ms,
            )
            return Ok(None)

    # =========================================================================
    # SEARCH
    # =========================================================================
    def search_with_distances(
        self,
        query: Any,
        k: int,
        ef: Optional[int] = None,
    ) -> Result[list[SearchHit], DimensionMismatchError]:
        """
        Search for the k nearest items, with distances.

        Complexity: O(log N * ef)

        Returns:
            Ok([]) when unbuilt or k <= 0; Err on a wrong-length query
        """
        query_vec = np.array(query, dtype=np.float64, copy=True).reshape(-1)
        if query_vec.shape[0] != self._dimension:
            return Err(DimensionMismatchError.create(self._dimension, query_vec.shape[0]))

        graph = self._graph
        if graph is None or k <= 0:
            return Ok([])

        ef_search = max(k, ef if ef is not None else self._config.ef_search)
        found = graph.knn(query_vec, k, ef_search)

        return Ok([
            SearchHit(
                label=self._items[position].label,
                distance=dist,
                rank=rank,
                position=position,
            )
            for rank, (dist, position) in enumerate(found)
        ])

    def search(self, query: Any, k: int) -> Result[list[str], DimensionMismatchError]:
        """Labels of the k nearest items, nearest first."""
        return self.search_with_distances(query, k).map(
            lambda hits: [hit.label for hit in hits]
        )

    # =========================================================================
    # PERSISTENCE
    # =========================================================================
    def snapshot(self) -> IndexSnapshot:
        """Capture items and graph for encoding."""
        with self._write_lock:
            if self._items:
                matrix = np.vstack([item.vector for item in self._items])
            else:
                matrix = np.empty((0, self._dimension), dtype=np.float64)

            graph = self._graph
            return IndexSnapshot(
                dimension=self._dimension,
                metric=graph.metric if graph is not None else None,
                state=self._state,
                labels=[item.label for item in self._items],
                vectors=matrix,
                levels=[node.level for node in graph.nodes] if graph else [],
                neighbors=[
                    [list(layer) for layer in node.neighbors] for node in graph.nodes
                ] if graph else [],
                entry_point=graph.entry_point if graph else None,
                max_level=graph.max_level if graph else -1,
            )

    @classmethod
    def from_snapshot(
        cls,
        snapshot: IndexSnapshot,
        config: Optional[HNSWConfig] = None,
    ) -> "HNSWIndex":
        """Rebuild an index from a decoded snapshot (no graph construction)."""
        index = cls(snapshot.dimension, config)
        index._items = [
            IndexItem.create(row, label)
            for row, label in zip(snapshot.vectors, snapshot.labels)
        ]

        if snapshot.state is IndexState.BUILT and snapshot.metric is not None:
            graph_size = len(snapshot.levels)
            matrix = np.array(snapshot.vectors[:graph_size], dtype=np.float64, copy=True)
            matrix.flags.writeable = False
            index._graph = HNSWGraph.restore(
                matrix,
                snapshot.metric,
                index._config,
                snapshot.levels,
                snapshot.neighbors,
                snapshot.entry_point if snapshot.entry_point is not None else 0,
                snapshot.max_level,
            )
            index._state = IndexState.BUILT
        return index

    def to_bytes(self) -> bytes:
        return encode_index(self.snapshot(), self._config.compression)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        config: Optional[HNSWConfig] = None,
    ) -> Result["HNSWIndex", CorruptDataError]:
        return decode_index(data).map(lambda snap: cls.from_snapshot(snap, config))

    def dump(self, path: Union[str, Path]) -> Result[int, StorageError]:
        """
        Serialize to a file; legal on unbuilt indexes.

        Returns:
            Bytes written
        """
        return write_index_file(path, self.to_bytes())

    @classmethod
    def load(
        cls,
        path: Union[str, Path],
        config: Optional[HNSWConfig] = None,
    ) -> Result["HNSWIndex", AnnIndexError]:
        """Inverse of dump."""
        return read_index_file(path).flat_map(lambda data: cls.from_bytes(data, config))

    # =========================================================================
    # STATS
    # =========================================================================
    def stats(self) -> IndexStats:
        graph = self._graph
        return IndexStats(
            dimension=self._dimension,
            item_count=len(self._items),
            graph_size=len(graph) if graph is not None else 0,
            state=self._state,
            metric=graph.metric if graph is not None else None,
            max_level=graph.max_level if graph is not None else -1,
            edge_count=graph.edge_count() if graph is not None else 0,
            build_time_ms=self._build_time_ms,
            layer_sizes=graph.layer_sizes() if graph is not None else (),
        )

    def __repr__(self) -> str:
        return (
            f"HNSWIndex(dimension={self._dimension}, items={len(self._items)}, "
            f"state={self._state.name})"
        )
