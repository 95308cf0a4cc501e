"""
Kubernetes Secret persistence for the PKI blob.

This module reads and writes the Secret that holds the root CA and the leaf
certificates. Writes carry the resourceVersion read at the start of the pass
so that a concurrent modification fails instead of being overwritten.
"""

import base64
import binascii
import logging
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import PKI_SECRET_SUFFIX
from ..errors import KubernetesAPIError, StateUnreadable, TemporaryError
from ..models.state import ObjectMetadata

logger = logging.getLogger(__name__)


def get_pki_secret_name(cluster_name: str) -> str:
    return f"{cluster_name}{PKI_SECRET_SUFFIX}"


def _owner_reference_to_dict(ref: Any) -> dict[str, Any]:
    if isinstance(ref, dict):
        return ref
    values = {
        "apiVersion": ref.api_version,
        "kind": ref.kind,
        "name": ref.name,
        "uid": ref.uid,
        "controller": ref.controller,
        "blockOwnerDeletion": ref.block_owner_deletion,
    }
    return {k: v for k, v in values.items() if v is not None}


def secret_metadata(secret: client.V1Secret) -> ObjectMetadata:
    """Extract the metadata the diff engine compares from a Secret."""
    meta = secret.metadata
    return ObjectMetadata(
        name=meta.name or "",
        namespace=meta.namespace or "",
        labels=dict(meta.labels or {}),
        annotations=dict(meta.annotations or {}),
        owner_references=[
            _owner_reference_to_dict(ref) for ref in meta.owner_references or []
        ],
        resource_version=meta.resource_version,
    )


def decode_secret_data(secret: client.V1Secret) -> dict[str, bytes]:
    """
    Decode the base64 data of a Secret into raw bytes.

    Raises:
        StateUnreadable: If a value is not valid base64
    """
    blob = {}
    for key, value in (secret.data or {}).items():
        try:
            blob[key] = base64.b64decode(value or "", validate=True)
        except (binascii.Error, ValueError) as e:
            raise StateUnreadable(
                "value is not valid base64", field=key, cause=e
            ) from e
    return blob


def encode_secret_data(blob: dict[str, bytes]) -> dict[str, str]:
    return {key: base64.b64encode(value).decode() for key, value in blob.items()}


class PkiSecretStore:
    """Reads and writes the PKI Secret of a cluster."""

    def __init__(
        self, k8s_client: client.ApiClient | None = None, conflict_delay: int = 5
    ):
        """
        Initialize the secret store.

        Args:
            k8s_client: Optional Kubernetes API client
            conflict_delay: Retry delay after a concurrent modification
        """
        self.k8s_client = k8s_client
        self.conflict_delay = conflict_delay
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    async def get_secret(self, name: str, namespace: str) -> client.V1Secret | None:
        """
        Retrieve a secret.

        Args:
            name: Secret name
            namespace: Secret namespace

        Returns:
            Secret object if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        try:
            return self.v1.read_namespaced_secret(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesAPIError(
                f"Failed to read secret {namespace}/{name}: {e.reason}",
                reason=e.reason,
                retryable=e.status is None or e.status >= 500,
            ) from e

    async def write(
        self,
        name: str,
        namespace: str,
        blob: dict[str, bytes],
        metadata: ObjectMetadata,
    ) -> client.V1Secret:
        """
        Persist the whole PKI blob.

        Creates the Secret when ``metadata`` carries no resourceVersion,
        replaces it otherwise.

        Args:
            name: Secret name
            namespace: Secret namespace
            blob: Field name to raw PEM bytes
            metadata: Labels, annotations, owner references and version

        Returns:
            Created or replaced secret

        Raises:
            TemporaryError: If the secret changed since it was read
            KubernetesAPIError: If the write fails
        """
        body_metadata: dict[str, Any] = {
            "name": name,
            "namespace": namespace,
            "labels": metadata.labels,
            "annotations": metadata.annotations,
        }
        if metadata.owner_references:
            body_metadata["ownerReferences"] = metadata.owner_references
        if metadata.exists:
            body_metadata["resourceVersion"] = metadata.resource_version

        body = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": body_metadata,
            "type": "Opaque",
            "data": encode_secret_data(blob),
        }

        try:
            if metadata.exists:
                secret = self.v1.replace_namespaced_secret(
                    name=name, namespace=namespace, body=body
                )
                logger.info(f"Replaced PKI secret {namespace}/{name}")
            else:
                secret = self.v1.create_namespaced_secret(
                    namespace=namespace, body=body
                )
                logger.info(f"Created PKI secret {namespace}/{name}")
            return secret
        except ApiException as e:
            raise self._write_error(name, namespace, e) from e

    async def patch_metadata(
        self, name: str, namespace: str, metadata: ObjectMetadata
    ) -> client.V1Secret:
        """
        Rewrite labels, annotations and owner references, leaving data alone.

        Raises:
            TemporaryError: If the secret changed since it was read
            KubernetesAPIError: If the patch fails
        """
        body: dict[str, Any] = {
            "metadata": {
                "labels": metadata.labels,
                "annotations": metadata.annotations,
                "ownerReferences": metadata.owner_references,
                "resourceVersion": metadata.resource_version,
            }
        }
        try:
            secret = self.v1.patch_namespaced_secret(
                name=name, namespace=namespace, body=body
            )
            logger.info(f"Updated metadata of PKI secret {namespace}/{name}")
            return secret
        except ApiException as e:
            raise self._write_error(name, namespace, e) from e

    def _write_error(self, name: str, namespace: str, e: ApiException):
        if e.status == 409:
            logger.warning(
                f"PKI secret {namespace}/{name} was modified concurrently, "
                "retrying on next pass"
            )
            return TemporaryError(
                f"PKI secret {namespace}/{name} changed during reconciliation",
                delay=self.conflict_delay,
            )
        return KubernetesAPIError(
            f"Failed to write secret {namespace}/{name}: {e.reason}",
            reason=e.reason,
            retryable=e.status is None or e.status >= 500,
        )
