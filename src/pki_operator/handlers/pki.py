"""
PKI handlers - Keeps the self-signed PKI of cluster resources up to date.

This module runs one PKI reconciliation pass:
- When a cluster resource is created or the operator resumes
- When the ``pki`` section of a cluster specification changes
- Periodically, so certificates are renewed before they expire

The outcome of every pass is written to ``status.pki`` of the cluster.
"""

import logging
from typing import Any

import kopf

from pki_operator.services import PkiReconciler
from pki_operator.settings import settings

logger = logging.getLogger(__name__)

_RESOURCE = (settings.resource_plural,)
_RESOURCE_KWARGS = {
    "group": settings.resource_group,
    "version": settings.resource_version,
}


def owner_reference(body: kopf.Body | dict[str, Any]) -> dict[str, Any] | None:
    """
    Build the owner of the PKI secret from the cluster resource.

    Returns:
        apiVersion, kind, name and uid of the cluster, None without a uid
    """
    metadata = body.get("metadata", {})
    if not metadata.get("uid"):
        return None
    return {
        "apiVersion": body.get("apiVersion", ""),
        "kind": body.get("kind", ""),
        "name": metadata.get("name", ""),
        "uid": metadata["uid"],
    }


async def run_pki_pass(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    status: dict[str, Any],
    patch: kopf.Patch,
    body: kopf.Body | dict[str, Any],
) -> None:
    """
    Reconcile the PKI of one cluster and record the outcome on its status.

    Raises:
        kopf.TemporaryError: For retryable failures
        kopf.PermanentError: For failures that need user action
    """
    reconciler = PkiReconciler()
    pki_status = dict(status.get("pki") or {})
    try:
        result = await reconciler.reconcile(
            cluster_name=name,
            namespace=namespace,
            spec=spec.get("pki"),
            status=pki_status,
            owner=owner_reference(body),
        )
    except (kopf.TemporaryError, kopf.PermanentError):
        patch.status["pki"] = pki_status
        raise
    patch.status["pki"] = result


@kopf.on.create(*_RESOURCE, **_RESOURCE_KWARGS)
@kopf.on.resume(*_RESOURCE, **_RESOURCE_KWARGS)
async def ensure_pki(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    status: dict[str, Any],
    patch: kopf.Patch,
    body: kopf.Body,
    **_: Any,
) -> None:
    """Ensure the PKI of a new or resumed cluster exists."""
    logger.info(f"Ensuring PKI for cluster {name} in namespace {namespace}")
    await run_pki_pass(spec, name, namespace, status, patch, body)


@kopf.on.update(*_RESOURCE, field="spec.pki", **_RESOURCE_KWARGS)
async def update_pki(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    status: dict[str, Any],
    patch: kopf.Patch,
    body: kopf.Body,
    **_: Any,
) -> None:
    """Apply a changed ``pki`` section of a cluster specification."""
    logger.info(f"PKI specification of cluster {name} in {namespace} changed")
    await run_pki_pass(spec, name, namespace, status, patch, body)


@kopf.timer(
    *_RESOURCE,
    interval=float(settings.renewal_check_interval_seconds),
    initial_delay=60.0,
    **_RESOURCE_KWARGS,
)
async def renew_pki(
    spec: dict[str, Any],
    name: str,
    namespace: str,
    status: dict[str, Any],
    patch: kopf.Patch,
    body: kopf.Body,
    **_: Any,
) -> None:
    """Periodic pass that renews certificates entering their renewal window."""
    await run_pki_pass(spec, name, namespace, status, patch, body)
