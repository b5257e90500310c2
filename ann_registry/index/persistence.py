"""
Index Persistence: Binary Dump Format

Layout (little-endian):

    header  MAGIC "HNSWIDX\\0" (8) | version u16 | flags u8 | body_len u64
            | sha256(stored body) (32)
    body    dimension u32 | metric u8 | state u8 | entry_point i64 (-1 = none)
            | max_level i32
            | item_count u64
            | item_count x [label_len u32][label utf-8]
            | float64[item_count * dimension]            vector matrix, row-major
            | graph_size u64
            | graph_size x [level u8, (level + 1) x [degree u32][i32 x degree]]

flags bit 0 marks an lz4-frame compressed body. The checksum covers the body
as stored, so corruption is caught before decompression.

Graph nodes cover item positions [0, graph_size); items added after the last
build follow them and are restored as pending.
"""

from __future__ import annotations

import hashlib
import io
import logging
import os
import struct
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import lz4.frame
import numpy as np

from ann_registry.core.errors import CorruptDataError, Err, Ok, Result, StorageError
from ann_registry.core.types import IndexState, MetricType

logger = logging.getLogger(__name__)

MAGIC = b"HNSWIDX\x00"
VERSION = 1

FLAG_LZ4 = 0x01

_HEADER = struct.Struct("<8sHBQ32s")
_BODY_PREFIX = struct.Struct("<IBBqi")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")
_U8 = struct.Struct("<B")

_LABEL_ENCODING = "utf-8"
_LABEL_ERRORS = "surrogatepass"


# =============================================================================
# SNAPSHOT
# =============================================================================
@dataclass(slots=True)
class IndexSnapshot:
    """
    Plain-data view of an index, the unit encoded and decoded here.

    levels / neighbors describe graph nodes in position order; both are empty
    for an unbuilt index.
    """
    dimension: int
    metric: Optional[MetricType]
    state: IndexState
    labels: list[str]
    vectors: np.ndarray
    levels: list[int] = field(default_factory=list)
    neighbors: list[list[list[int]]] = field(default_factory=list)
    entry_point: Optional[int] = None
    max_level: int = -1

    @property
    def item_count(self) -> int:
        return len(self.labels)

    @property
    def graph_size(self) -> int:
        return len(self.levels)


# =============================================================================
# ENCODE
# =============================================================================
def encode_index(snapshot: IndexSnapshot, compression: str = "lz4") -> bytes:
    """Serialize a snapshot to the dump format."""
    body = io.BytesIO()

    metric_code = snapshot.metric.code if snapshot.metric is not None else 0
    entry_point = snapshot.entry_point if snapshot.entry_point is not None else -1
    body.write(_BODY_PREFIX.pack(
        snapshot.dimension,
        metric_code,
        snapshot.state.value,
        entry_point,
        snapshot.max_level,
    ))

    body.write(_U64.pack(snapshot.item_count))
    for label in snapshot.labels:
        encoded = label.encode(_LABEL_ENCODING, _LABEL_ERRORS)
        body.write(_U32.pack(len(encoded)))
        body.write(encoded)

    vectors = np.ascontiguousarray(snapshot.vectors, dtype="<f8")
    body.write(vectors.tobytes())

    body.write(_U64.pack(snapshot.graph_size))
    for level, layers in zip(snapshot.levels, snapshot.neighbors):
        body.write(_U8.pack(level))
        for links in layers:
            body.write(_U32.pack(len(links)))
            body.write(np.asarray(links, dtype="<i4").tobytes())

    payload = body.getvalue()
    flags = 0
    if compression == "lz4":
        payload = lz4.frame.compress(payload)
        flags |= FLAG_LZ4

    digest = hashlib.sha256(payload).digest()
    return _HEADER.pack(MAGIC, VERSION, flags, len(payload), digest) + payload


# =============================================================================
# DECODE
# =============================================================================
class _Truncated(Exception):
    """Raised by _Reader when a section runs past the end of the body."""

    def __init__(self, section: str) -> None:
        super().__init__(section)
        self.section = section


class _Reader:
    """Bounds-checked cursor over the decoded body."""

    __slots__ = ("_data", "_offset")

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def take(self, size: int, section: str) -> bytes:
        if size < 0 or size > self.remaining:
            raise _Truncated(section)
        chunk = self._data[self._offset:self._offset + size]
        self._offset += size
        return chunk

    def unpack(self, fmt: struct.Struct, section: str) -> tuple:
        return fmt.unpack(self.take(fmt.size, section))


def decode_index(data: bytes) -> Result[IndexSnapshot, CorruptDataError]:
    """Parse and validate a dump; any structural problem is CorruptDataError."""
    if len(data) < _HEADER.size:
        if not MAGIC.startswith(data[:len(MAGIC)]):
            return Err(CorruptDataError.bad_magic(data[:len(MAGIC)]))
        return Err(CorruptDataError.truncated("header"))

    magic, version, flags, body_len, digest = _HEADER.unpack_from(data)
    if magic != MAGIC:
        return Err(CorruptDataError.bad_magic(magic))
    if version != VERSION:
        return Err(CorruptDataError.unsupported_version(version))

    payload = data[_HEADER.size:]
    if len(payload) < body_len:
        return Err(CorruptDataError.truncated("body"))
    if len(payload) > body_len:
        return Err(CorruptDataError.inconsistent(
            f"{len(payload) - body_len} trailing bytes after body"
        ))
    if hashlib.sha256(payload).digest() != digest:
        return Err(CorruptDataError.checksum_mismatch())

    if flags & FLAG_LZ4:
        try:
            payload = lz4.frame.decompress(payload)
        except RuntimeError as exc:
            return Err(CorruptDataError.inconsistent(f"lz4 decompression failed: {exc}"))

    try:
        decoded = _decode_body(_Reader(payload))
    except _Truncated as exc:
        return Err(CorruptDataError.truncated(exc.section))

    return decoded.flat_map(_validate)


def _decode_body(reader: _Reader) -> Result[IndexSnapshot, CorruptDataError]:
    dimension, metric_code, state_code, entry_point, max_level = reader.unpack(
        _BODY_PREFIX, "index header"
    )
    if dimension < 1:
        return Err(CorruptDataError.inconsistent("dimension must be positive"))
    metric = MetricType.from_code(metric_code)
    if metric is None:
        return Err(CorruptDataError.inconsistent(f"unknown metric code {metric_code}"))
    if state_code not in (IndexState.UNBUILT.value, IndexState.BUILT.value):
        return Err(CorruptDataError.inconsistent(f"unknown state code {state_code}"))

    (item_count,) = reader.unpack(_U64, "item count")
    labels: list[str] = []
    for _ in range(item_count):
        (label_len,) = reader.unpack(_U32, "labels")
        raw = reader.take(label_len, "labels")
        try:
            labels.append(raw.decode(_LABEL_ENCODING, _LABEL_ERRORS))
        except UnicodeDecodeError:
            return Err(CorruptDataError.inconsistent("label is not valid utf-8"))

    vector_bytes = reader.take(item_count * dimension * 8, "vectors")
    vectors = np.frombuffer(vector_bytes, dtype="<f8").astype(np.float64)
    vectors = vectors.reshape(item_count, dimension)

    (graph_size,) = reader.unpack(_U64, "graph size")
    levels: list[int] = []
    neighbors: list[list[list[int]]] = []
    for _ in range(graph_size):
        (level,) = reader.unpack(_U8, "graph")
        layers: list[list[int]] = []
        for _ in range(level + 1):
            (degree,) = reader.unpack(_U32, "graph")
            links = np.frombuffer(reader.take(degree * 4, "graph"), dtype="<i4")
            layers.append([int(n) for n in links])
        levels.append(level)
        neighbors.append(layers)

    if reader.remaining:
        return Err(CorruptDataError.inconsistent(
            f"{reader.remaining} unexpected bytes after graph"
        ))

    return Ok(IndexSnapshot(
        dimension=dimension,
        metric=metric,
        state=IndexState(state_code),
        labels=labels,
        vectors=vectors,
        levels=levels,
        neighbors=neighbors,
        entry_point=entry_point if entry_point >= 0 else None,
        max_level=max_level,
    ))


def _validate(snapshot: IndexSnapshot) -> Result[IndexSnapshot, CorruptDataError]:
    """Cross-section checks: graph shape against items, levels and entry point."""
    graph_size = snapshot.graph_size
    if graph_size > snapshot.item_count:
        return Err(CorruptDataError.inconsistent(
            f"graph has {graph_size} nodes but only {snapshot.item_count} items"
        ))

    if snapshot.state is IndexState.UNBUILT:
        if graph_size or snapshot.entry_point is not None:
            return Err(CorruptDataError.inconsistent("unbuilt index carries a graph"))
        snapshot.metric = None
        return Ok(snapshot)

    if graph_size == 0:
        return Err(CorruptDataError.inconsistent("built index has an empty graph"))
    if not snapshot.metric.is_supported():
        return Err(CorruptDataError.inconsistent("built index has no metric"))
    if snapshot.entry_point is None or snapshot.entry_point >= graph_size:
        return Err(CorruptDataError.inconsistent("entry point out of range"))
    if max(snapshot.levels) != snapshot.max_level:
        return Err(CorruptDataError.inconsistent("max level does not match node levels"))
    if snapshot.levels[snapshot.entry_point] != snapshot.max_level:
        return Err(CorruptDataError.inconsistent("entry point is not on the top layer"))

    for position, layers in enumerate(snapshot.neighbors):
        for layer, links in enumerate(layers):
            for neighbor in links:
                if neighbor < 0 or neighbor >= graph_size or neighbor == position:
                    return Err(CorruptDataError.inconsistent(
                        f"node {position} has invalid neighbor {neighbor}"
                    ))
                if snapshot.levels[neighbor] < layer:
                    return Err(CorruptDataError.inconsistent(
                        f"node {position} links to {neighbor} above its level"
                    ))

    return Ok(snapshot)


# =============================================================================
# FILE I/O
# =============================================================================
def write_index_file(path: Union[str, Path], data: bytes) -> Result[int, StorageError]:
    """
    Write a dump atomically: temp file in the target directory, then replace.

    A failed write never truncates an existing dump.
    """
    target = Path(path)
    tmp_path: Optional[str] = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
        tmp_path = None
    except OSError as exc:
        return Err(StorageError.write_error(str(target), str(exc)).with_cause(exc))
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)

    logger.debug("Wrote index dump: %s (%d bytes)", target, len(data))
    return Ok(len(data))


def read_index_file(path: Union[str, Path]) -> Result[bytes, StorageError]:
    target = Path(path)
    try:
        return Ok(target.read_bytes())
    except OSError as exc:
        return Err(StorageError.read_error(str(target), str(exc)).with_cause(exc))
