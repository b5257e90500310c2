"""
Configuration Classes: HNSW Parameters and Registry Settings

Provides:
    - HNSWConfig: graph construction/search parameters shared by every index
    - RegistryConfig: lock mode, logging and metrics switches

Environment overrides are read by RegistryConfig.from_env(); parsing errors
come back as Err(ConfigError) rather than exceptions.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field, replace
from typing import Literal, Optional

from ann_registry.core.errors import ConfigError, Err, Ok, Result


ENV_PREFIX = "ANN_REGISTRY_"

LockMode = Literal["global", "per_index"]
Compression = Literal["lz4", "none"]

_LOCK_MODES = ("global", "per_index")
_COMPRESSIONS = ("lz4", "none")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# =============================================================================
# HNSW INDEX CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class HNSWConfig:
    """
    HNSW index configuration.

    Parameters:
        M: Neighbors kept per node on layers >= 1
        M_max0: Neighbors kept per node on layer 0 (None = 2 * M)
        ef_construction: Beam width while building
        ef_search: Minimum beam width while searching (raised to k)
        max_level: Cap on the randomly drawn node level
        seed: Level-assignment seed; None draws fresh entropy per build
        compression: Body compression used by dump ("lz4" or "none")
    """
    M: int = 16
    M_max0: Optional[int] = None
    ef_construction: int = 200
    ef_search: int = 64
    max_level: int = 16
    seed: Optional[int] = None
    compression: Compression = "lz4"

    def validate(self) -> Optional[str]:
        if self.M < 2 or self.M > 100:
            return f"M must be in [2, 100], got {self.M}"
        if self.M_max0 is not None and self.M_max0 < self.M:
            return f"M_max0 must be >= M ({self.M}), got {self.M_max0}"
        if self.ef_construction < 1:
            return f"ef_construction must be >= 1, got {self.ef_construction}"
        if self.ef_search < 1:
            return f"ef_search must be >= 1, got {self.ef_search}"
        if self.max_level < 0 or self.max_level > 255:
            return f"max_level must be in [0, 255], got {self.max_level}"
        if self.compression not in _COMPRESSIONS:
            return f"compression must be one of {_COMPRESSIONS}, got {self.compression!r}"
        return None

    @property
    def ml(self) -> float:
        """Level normalisation factor 1 / ln(M)."""
        return 1.0 / math.log(self.M)

    def max_neighbors(self, layer: int) -> int:
        """Adjacency cap for a layer (2M by default on layer 0)."""
        if layer == 0:
            return self.M_max0 if self.M_max0 is not None else 2 * self.M
        return self.M


# =============================================================================
# REGISTRY CONFIGURATION
# =============================================================================
@dataclass(frozen=True, slots=True)
class RegistryConfig:
    """
    Registry configuration.

    lock_mode:
        "global"    one lock held for every operation on every index
        "per_index" map lock for lookups, one lock per index for the work
    """
    hnsw: HNSWConfig = field(default_factory=HNSWConfig)
    lock_mode: LockMode = "global"
    log_level: str = "INFO"
    log_json: bool = True
    metrics_enabled: bool = True

    def validate(self) -> Result[None, ConfigError]:
        if error := self.hnsw.validate():
            return Err(ConfigError.invalid("hnsw", self.hnsw, error))
        if self.lock_mode not in _LOCK_MODES:
            return Err(ConfigError.invalid(
                "lock_mode", self.lock_mode, f"must be one of {_LOCK_MODES}"
            ))
        if self.log_level.upper() not in _LOG_LEVELS:
            return Err(ConfigError.invalid(
                "log_level", self.log_level, f"must be one of {_LOG_LEVELS}"
            ))
        return Ok(None)

    @classmethod
    def from_env(cls) -> Result["RegistryConfig", ConfigError]:
        """Build config from ANN_REGISTRY_* variables, then validate it."""
        hnsw = HNSWConfig()
        overrides: dict[str, object] = {}

        for key, attr in (
            ("M", "M"),
            ("EF_CONSTRUCTION", "ef_construction"),
            ("EF_SEARCH", "ef_search"),
            ("SEED", "seed"),
        ):
            parsed = _env_int(key)
            if parsed.is_err():
                return parsed
            if parsed.unwrap() is not None:
                overrides[attr] = parsed.unwrap()

        compression = os.getenv(f"{ENV_PREFIX}COMPRESSION")
        if compression is not None:
            overrides["compression"] = compression.strip().lower()

        if overrides:
            hnsw = replace(hnsw, **overrides)  # type: ignore[arg-type]

        config = cls(
            hnsw=hnsw,
            lock_mode=os.getenv(f"{ENV_PREFIX}LOCK_MODE", "global").strip().lower(),  # type: ignore[arg-type]
            log_level=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "INFO").strip().upper(),
            log_json=_env_bool("LOG_JSON", True),
            metrics_enabled=_env_bool("METRICS", True),
        )
        return config.validate().map(lambda _: config)


def _env_int(key: str) -> Result[Optional[int], ConfigError]:
    raw = os.getenv(f"{ENV_PREFIX}{key}")
    if raw is None or raw.strip() == "":
        return Ok(None)
    try:
        return Ok(int(raw))
    except ValueError:
        return Err(ConfigError.invalid(f"{ENV_PREFIX}{key}", raw, "not an integer"))


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(f"{ENV_PREFIX}{key}")
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
