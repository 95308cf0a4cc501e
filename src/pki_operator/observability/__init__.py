"""
Observability module for the PKI operator.

This module provides structured logging and Prometheus metrics for
PKI reconciliation passes.
"""

from .logging import OperatorLogger, setup_structured_logging
from .metrics import MetricsCollector, metrics_collector

__all__ = [
    "OperatorLogger",
    "setup_structured_logging",
    "MetricsCollector",
    "metrics_collector",
]
