"""
Result Monad & Error Types

Index operations return Result[T, E] instead of raising for expected
failures (dimension mismatch, empty build, unreadable dump). The registry and
the foreign boundary decide how each Err surfaces: a status string, an empty
result, or a raised exception.

Error classes are Exception subclasses so the boundary can raise them
unchanged when a failure has to unwind the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    NoReturn,
    Optional,
    TypeVar,
    Union,
    final,
)


T = TypeVar("T")  # Success value type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: SUCCESS VARIANT
# =============================================================================
@final
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result.

    Example:
        result: Result[int, AnnIndexError] = Ok(42)
        if result.is_ok():
            value = result.unwrap()
    """
    _value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        return self._value

    def unwrap_or(self, default: T) -> T:
        return self._value

    def map(self, fn: Callable[[T], U]) -> "Ok[U]":
        """Apply fn to the success value: Ok(5).map(lambda x: x * 2) == Ok(10)."""
        return Ok(fn(self._value))

    def map_err(self, fn: Callable[[Any], Any]) -> "Ok[T]":
        return self

    def flat_map(self, fn: Callable[[T], "Result[U, Any]"]) -> "Result[U, Any]":
        """Chain a fallible operation on the success value."""
        return fn(self._value)

    @property
    def value(self) -> T:
        return self._value

    @property
    def error(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"Ok({self._value!r})"

    def __bool__(self) -> Literal[True]:
        return True


# =============================================================================
# RESULT MONAD: ERROR VARIANT
# =============================================================================
@final
@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Error variant of Result.

    unwrap() on an Err re-raises the carried error when it is an exception,
    so `index.load(path).unwrap()` fails with the typed error itself.
    """
    _error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> NoReturn:
        if isinstance(self._error, BaseException):
            raise self._error
        raise RuntimeError(f"Called unwrap() on Err: {self._error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, fn: Callable[[Any], U]) -> "Err[E]":
        return self

    def map_err(self, fn: Callable[[E], U]) -> "Err[U]":
        return Err(fn(self._error))

    def flat_map(self, fn: Callable[[Any], "Result[U, E]"]) -> "Err[E]":
        return self

    @property
    def value(self) -> None:
        return None

    @property
    def error(self) -> E:
        return self._error

    def __repr__(self) -> str:
        return f"Err({self._error!r})"

    def __bool__(self) -> Literal[False]:
        return False


Result = Union[Ok[T], Err[E]]


# =============================================================================
# ERROR TAXONOMY
# =============================================================================
class ErrorCode(Enum):
    """
    Canonical error codes.

    Ranges:
        1000-1999: Index errors
        2000-2999: Query errors
        4000-4999: Storage errors
        5000-5999: Configuration errors
        9000-9999: Internal errors
    """
    # Index errors (1000-1999)
    INDEX_NOT_FOUND = 1001
    INDEX_DIMENSION_MISMATCH = 1004
    INDEX_EMPTY = 1006
    INDEX_UNSUPPORTED_METRIC = 1007

    # Query errors (2000-2999)
    QUERY_INVALID_VECTOR = 2001

    # Storage errors (4000-4999)
    STORAGE_READ_ERROR = 4001
    STORAGE_WRITE_ERROR = 4002
    STORAGE_CORRUPTED = 4004

    # Configuration errors (5000-5999)
    CONFIG_INVALID = 5001

    # Internal errors (9000-9999)
    INTERNAL_ERROR = 9001


@dataclass(eq=False)
class AnnIndexError(Exception):
    """
    Base error for all index and registry operations.

    Carries:
        - code for programmatic handling
        - human-readable message (also the build status string)
        - machine-readable details
        - optional cause for chained failures
    """
    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    cause: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging."""
        cause: Any = None
        if isinstance(self.cause, AnnIndexError):
            cause = self.cause.to_dict()
        elif self.cause is not None:
            cause = repr(self.cause)
        return {
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
            "cause": cause,
            "timestamp": self.timestamp.isoformat(),
        }

    def with_cause(self, cause: BaseException) -> "AnnIndexError":
        """Return a copy of this error (same class) chained to cause."""
        return type(self)(
            code=self.code,
            message=self.message,
            details=self.details,
            cause=cause,
            timestamp=self.timestamp,
        )


class DimensionMismatchError(AnnIndexError):
    """Vector length differs from the index dimension."""

    @classmethod
    def create(cls, expected: int, actual: int) -> "DimensionMismatchError":
        return cls(
            code=ErrorCode.INDEX_DIMENSION_MISMATCH,
            message=f"Dimension mismatch: expected {expected}, got {actual}",
            details={"expected": expected, "actual": actual},
        )


class EmptyIndexError(AnnIndexError):
    """Build attempted with no items."""

    @classmethod
    def create(cls) -> "EmptyIndexError":
        return cls(
            code=ErrorCode.INDEX_EMPTY,
            message="Cannot build an index with no items",
        )


class IndexNotFoundError(AnnIndexError):
    """No index registered under the given name."""

    @classmethod
    def create(cls, name: str) -> "IndexNotFoundError":
        return cls(
            code=ErrorCode.INDEX_NOT_FOUND,
            message=f"Index '{name}' not found",
            details={"index_name": name},
        )


class UnsupportedMetricError(AnnIndexError):
    """Build requested with a metric that has no comparator."""

    @classmethod
    def create(cls, metric_name: str) -> "UnsupportedMetricError":
        return cls(
            code=ErrorCode.INDEX_UNSUPPORTED_METRIC,
            message=f"Unsupported metric '{metric_name}': results would be undefined",
            details={"metric": metric_name},
        )


class StorageError(AnnIndexError):
    """Filesystem failure while reading or writing a dump."""

    @classmethod
    def read_error(cls, path: str, reason: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_READ_ERROR,
            message=f"Failed to read '{path}': {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def write_error(cls, path: str, reason: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_WRITE_ERROR,
            message=f"Failed to write '{path}': {reason}",
            details={"path": path, "reason": reason},
        )


class CorruptDataError(AnnIndexError):
    """Persisted stream is structurally invalid."""

    @classmethod
    def _corrupt(cls, reason: str, **details: Any) -> "CorruptDataError":
        return cls(
            code=ErrorCode.STORAGE_CORRUPTED,
            message=f"Corrupt index data: {reason}",
            details={"reason": reason, **details},
        )

    @classmethod
    def bad_magic(cls, found: bytes) -> "CorruptDataError":
        return cls._corrupt("bad magic", found=found.hex())

    @classmethod
    def unsupported_version(cls, version: int) -> "CorruptDataError":
        return cls._corrupt(f"unsupported format version {version}", version=version)

    @classmethod
    def truncated(cls, section: str) -> "CorruptDataError":
        return cls._corrupt(f"truncated {section}", section=section)

    @classmethod
    def checksum_mismatch(cls) -> "CorruptDataError":
        return cls._corrupt("checksum mismatch")

    @classmethod
    def inconsistent(cls, reason: str) -> "CorruptDataError":
        return cls._corrupt(reason)


class ConfigError(AnnIndexError):
    """Invalid configuration value."""

    @classmethod
    def invalid(cls, param: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID,
            message=f"Invalid config '{param}': {reason}",
            details={"param": param, "value": value, "reason": reason},
        )
