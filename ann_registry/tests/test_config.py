"""
Unit Tests: Configuration

Tests:
    - HNSW parameter defaults and validation
    - Environment overrides
"""

import math

import pytest

from ann_registry.core.config import HNSWConfig, RegistryConfig
from ann_registry.core.errors import ConfigError


class TestHNSWConfig:
    """Tests for HNSW parameters."""

    def test_defaults(self):
        """Test default HNSW parameters."""
        config = HNSWConfig()

        assert config.M == 16
        assert config.max_neighbors(0) == 32
        assert config.max_neighbors(3) == 16
        assert config.validate() is None
        assert math.isclose(config.ml, 1.0 / math.log(16))

    def test_explicit_layer0_cap(self):
        """Test an explicit layer-0 cap overrides 2M."""
        assert HNSWConfig(M=8, M_max0=12).max_neighbors(0) == 12

    @pytest.mark.parametrize("kwargs", [
        {"M": 1},
        {"M": 8, "M_max0": 4},
        {"ef_construction": 0},
        {"ef_search": 0},
        {"max_level": -1},
        {"compression": "zstd"},
    ])
    def test_invalid(self, kwargs):
        """Test out-of-range parameters fail validation."""
        assert HNSWConfig(**kwargs).validate() is not None


class TestRegistryConfig:
    """Tests for registry settings and environment parsing."""

    def test_defaults_validate(self):
        """Test default registry settings are valid."""
        config = RegistryConfig()

        assert config.lock_mode == "global"
        assert config.validate().is_ok()

    def test_invalid_lock_mode(self):
        """Test an unknown lock mode is rejected."""
        result = RegistryConfig(lock_mode="sharded").validate()

        assert result.is_err()
        assert isinstance(result.error, ConfigError)

    def test_from_env_defaults(self):
        """Test an empty environment gives defaults."""
        config = RegistryConfig.from_env().unwrap()
        assert config == RegistryConfig()

    def test_from_env_overrides(self, monkeypatch):
        """Test environment variables override defaults."""
        monkeypatch.setenv("ANN_REGISTRY_M", "8")
        monkeypatch.setenv("ANN_REGISTRY_EF_SEARCH", "100")
        monkeypatch.setenv("ANN_REGISTRY_SEED", "42")
        monkeypatch.setenv("ANN_REGISTRY_COMPRESSION", "NONE")
        monkeypatch.setenv("ANN_REGISTRY_LOCK_MODE", "per_index")
        monkeypatch.setenv("ANN_REGISTRY_LOG_LEVEL", "debug")
        monkeypatch.setenv("ANN_REGISTRY_METRICS", "0")

        config = RegistryConfig.from_env().unwrap()

        assert config.hnsw.M == 8
        assert config.hnsw.ef_search == 100
        assert config.hnsw.seed == 42
        assert config.hnsw.compression == "none"
        assert config.lock_mode == "per_index"
        assert config.log_level == "DEBUG"
        assert config.metrics_enabled is False

    def test_from_env_bad_integer(self, monkeypatch):
        """Test a non-integer variable is a config error."""
        monkeypatch.setenv("ANN_REGISTRY_EF_CONSTRUCTION", "lots")

        result = RegistryConfig.from_env()

        assert result.is_err()
        assert result.error.details["param"] == "ANN_REGISTRY_EF_CONSTRUCTION"

    def test_from_env_out_of_range(self, monkeypatch):
        """Test an out-of-range variable is a config error."""
        monkeypatch.setenv("ANN_REGISTRY_M", "1")
        assert RegistryConfig.from_env().is_err()
