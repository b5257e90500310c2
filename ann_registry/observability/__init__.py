"""Observability: structured logging and Prometheus-style metrics."""

from ann_registry.observability.logging import (
    JsonFormatter,
    LogLevel,
    StructuredLogger,
    setup_logging,
)
from ann_registry.observability.metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsCollector,
)

__all__ = [
    "JsonFormatter",
    "LogLevel",
    "StructuredLogger",
    "setup_logging",
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsCollector",
]
