"""
Foreign-Call Boundary

Six flat functions with C-shaped parameters operating on the process-wide
registry:

    new_index(name, dimension)
    add(name, features, label, dimension=None)
    build(name, metric) -> str
    search(name, k, features, dimension=None) -> list[str]
    load(name, file_path)
    dump(name, file_path)

Marshaling:
    text     str, bytes/bytearray/memoryview (read up to the first NUL),
             ctypes.c_char_p or a ctypes char array; bytes decode as UTF-8
             with invalid sequences replaced
    vectors  any sequence, numpy array or buffer object; a
             ctypes.POINTER(c_double) needs an explicit dimension. Values
             are always copied, the caller's buffer is never retained
    paths    text as above or os.PathLike

Returned strings and lists are fresh Python objects; nothing needs freeing.
"""

from __future__ import annotations

import ctypes
import os
from typing import Any, Optional, Union

import numpy as np

from ann_registry.registry import IndexRegistry, get_default_registry
from ann_registry.observability.logging import StructuredLogger

logger = StructuredLogger(__name__)

TextLike = Union[str, bytes, bytearray, memoryview, ctypes.c_char_p]

_DOUBLE_PTR = ctypes.POINTER(ctypes.c_double)
_TEXT_ENCODING = "utf-8"


# =============================================================================
# MARSHALING
# =============================================================================
def _to_text(value: Any) -> str:
    """Decode a foreign text parameter."""
    if isinstance(value, str):
        return value
    if isinstance(value, ctypes.c_char_p):
        value = value.value or b""
    elif isinstance(value, ctypes.Array) and value._type_ is ctypes.c_char:
        value = value.value
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        end = raw.find(b"\x00")
        if end >= 0:
            raw = raw[:end]
        return raw.decode(_TEXT_ENCODING, errors="replace")
    raise TypeError(f"expected text, got {type(value).__name__}")


def _to_path(value: Any) -> str:
    if isinstance(value, os.PathLike):
        return os.fspath(value)
    return _to_text(value)


def _to_vector(features: Any, dimension: Optional[int] = None) -> np.ndarray:
    """
    Copy a foreign vector into a fresh float64 array.

    With dimension set only the first `dimension` values are read; a shorter
    input is returned whole and rejected later as a dimension mismatch.
    """
    if dimension is not None and dimension < 0:
        raise ValueError(f"dimension must be non-negative, got {dimension}")

    if isinstance(features, _DOUBLE_PTR):
        if dimension is None:
            raise ValueError("a c_double pointer requires an explicit dimension")
        if dimension == 0 or not features:
            return np.empty(0, dtype=np.float64)
        view = np.ctypeslib.as_array(features, shape=(dimension,))
        return np.array(view, dtype=np.float64, copy=True)

    vector = np.array(features, dtype=np.float64, copy=True).reshape(-1)
    if dimension is not None and vector.shape[0] > dimension:
        vector = vector[:dimension].copy()
    return vector


# =============================================================================
# BOUNDARY
# =============================================================================
class ForeignInterface:
    """
    Foreign-call surface bound to one registry.

    Usage:
        ffi = ForeignInterface(IndexRegistry())
        ffi.new_index(b"docs\\0", 3)
        ffi.add("docs", [1.0, 0.0, 0.0], "a")
        ffi.build("docs", "euclidean")        # "Ok"
        ffi.search("docs", 1, [1.0, 0.0, 0.0])  # ["a"]
    """

    __slots__ = ("_registry",)

    def __init__(self, registry: IndexRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> IndexRegistry:
        return self._registry

    def new_index(self, name: TextLike, dimension: int) -> None:
        self._registry.create(_to_text(name), int(dimension))

    def add(
        self,
        name: TextLike,
        features: Any,
        label: TextLike,
        dimension: Optional[int] = None,
    ) -> None:
        """Stage an item; missing names and wrong lengths are ignored."""
        self._registry.add(_to_text(name), _to_vector(features, dimension), _to_text(label))

    def build(self, name: TextLike, metric: TextLike) -> str:
        return self._registry.build(_to_text(name), _to_text(metric))

    def search(
        self,
        name: TextLike,
        k: int,
        features: Any,
        dimension: Optional[int] = None,
    ) -> list[str]:
        return self._registry.search(_to_text(name), int(k), _to_vector(features, dimension))

    def load(self, name: TextLike, file_path: Any) -> None:
        """
        Load a dump under name.

        Raises:
            StorageError: the file cannot be read
            CorruptDataError: the file is not a valid dump
        """
        result = self._registry.load(_to_text(name), _to_path(file_path))
        if result.is_err():
            raise result.error

    def dump(self, name: TextLike, file_path: Any) -> None:
        """
        Write the named index to file_path; a missing name writes nothing.

        Raises:
            StorageError: the file cannot be written
        """
        index_name = _to_text(name)
        result = self._registry.dump(index_name, _to_path(file_path))
        if result.is_err():
            raise result.error
        if not result.unwrap():
            logger.debug("Dump skipped, no such index", index=index_name)


def _default() -> ForeignInterface:
    return ForeignInterface(get_default_registry())


def new_index(name: TextLike, dimension: int) -> None:
    _default().new_index(name, dimension)


def add(name: TextLike, features: Any, label: TextLike, dimension: Optional[int] = None) -> None:
    _default().add(name, features, label, dimension)


def build(name: TextLike, metric: TextLike) -> str:
    return _default().build(name, metric)


def search(name: TextLike, k: int, features: Any, dimension: Optional[int] = None) -> list[str]:
    return _default().search(name, k, features, dimension)


def load(name: TextLike, file_path: Any) -> None:
    _default().load(name, file_path)


def dump(name: TextLike, file_path: Any) -> None:
    _default().dump(name, file_path)
