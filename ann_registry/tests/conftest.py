"""Shared fixtures: isolate environment, default registry and root logger."""

import logging
import os

import numpy as np
import pytest

from ann_registry.core.config import ENV_PREFIX, HNSWConfig, RegistryConfig
from ann_registry.observability.metrics import MetricsCollector
from ann_registry.registry import IndexRegistry


@pytest.fixture(autouse=True)
def _isolate(monkeypatch):
    """Clear ANN_REGISTRY_* variables and restore global state after each test."""
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key)

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    IndexRegistry.reset_instance()
    yield
    IndexRegistry.reset_instance()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def seeded_config():
    return HNSWConfig(seed=7)


@pytest.fixture
def registry(seeded_config):
    return IndexRegistry(
        RegistryConfig(hnsw=seeded_config),
        metrics=MetricsCollector(),
    )


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
