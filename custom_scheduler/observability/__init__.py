"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from custom_scheduler.observability.logging import bind_context, setup_logging
from custom_scheduler.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from custom_scheduler.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "bind_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
