"""
Prometheus metrics for the PKI operator.

This module provides metrics for reconciliation passes, the actions they
decide on, and the expiry of every managed certificate.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from ..constants import RESERVED_CERTIFICATE_NAME
from ..models.state import PersistedPKIState

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

RECONCILIATION_TOTAL = Counter(
    "pki_operator_reconciliation_total",
    "Total number of PKI reconciliation passes",
    ["cluster", "namespace", "result"],
    registry=None,  # Will be set during initialization
)

RECONCILIATION_DURATION = Histogram(
    "pki_operator_reconciliation_duration_seconds",
    "Time spent in PKI reconciliation passes",
    ["cluster", "namespace"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "pki_operator_reconciliation_errors_total",
    "Total number of PKI reconciliation errors",
    ["cluster", "namespace", "error_type", "retryable"],
    registry=None,
)

ACTIONS_TOTAL = Counter(
    "pki_operator_actions_total",
    "Actions decided by the PKI diff engine",
    ["cluster", "namespace", "action"],
    registry=None,
)

CERTIFICATE_EXPIRY_TIMESTAMP = Gauge(
    "pki_operator_certificate_expiry_timestamp",
    "Unix timestamp when a managed certificate expires",
    ["cluster", "namespace", "certificate"],
    registry=None,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()
        for metric in [
            RECONCILIATION_TOTAL,
            RECONCILIATION_DURATION,
            RECONCILIATION_ERRORS,
            ACTIONS_TOTAL,
            CERTIFICATE_EXPIRY_TIMESTAMP,
        ]:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the PKI operator."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(self, cluster: str, namespace: str):
        """
        Context manager to track a reconciliation pass.

        Args:
            cluster: Name of the owning cluster
            namespace: Namespace of the cluster
        """
        start_time = time.time()
        result = "unknown"

        try:
            yield
            result = "success"
        except Exception as e:
            result = "error"
            retryable = "true" if getattr(e, "retryable", False) else "false"
            RECONCILIATION_ERRORS.labels(
                cluster=cluster,
                namespace=namespace,
                error_type=type(e).__name__,
                retryable=retryable,
            ).inc()
            raise
        finally:
            duration = time.time() - start_time
            RECONCILIATION_TOTAL.labels(
                cluster=cluster, namespace=namespace, result=result
            ).inc()
            RECONCILIATION_DURATION.labels(
                cluster=cluster, namespace=namespace
            ).observe(duration)

    def record_action(self, cluster: str, namespace: str, action: str) -> None:
        ACTIONS_TOTAL.labels(cluster=cluster, namespace=namespace, action=action).inc()

    def record_certificate_expiry(
        self, cluster: str, namespace: str, certificate: str, not_after: datetime
    ) -> None:
        CERTIFICATE_EXPIRY_TIMESTAMP.labels(
            cluster=cluster, namespace=namespace, certificate=certificate
        ).set(not_after.timestamp())

    def record_state(
        self, cluster: str, namespace: str, state: PersistedPKIState
    ) -> None:
        """
        Publish expiry gauges for a persisted state.

        The root CA is reported under the reserved name ``ca``.
        """
        if state.ca is not None:
            self.record_certificate_expiry(
                cluster, namespace, RESERVED_CERTIFICATE_NAME, state.ca.not_after
            )
        for name in state.names:
            self.record_certificate_expiry(
                cluster, namespace, name, state.leaves[name].not_after
            )

    def forget_certificate(self, cluster: str, namespace: str, certificate: str):
        """Drop the expiry gauge of a removed certificate."""
        try:
            CERTIFICATE_EXPIRY_TIMESTAMP.remove(cluster, namespace, certificate)
        except KeyError:
            logger.debug(f"No expiry gauge recorded for certificate {certificate}")


# Global metrics collector instance
metrics_collector = MetricsCollector()
