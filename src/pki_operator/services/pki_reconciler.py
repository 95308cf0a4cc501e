"""
PKI reconciliation pass for one cluster.

This module wires the pure PKI services to Kubernetes: it reads the PKI
Secret of a cluster, asks the diff engine for one action, persists the
write that action describes, and returns the status payload of the pass.
"""

import time
from datetime import UTC, datetime
from typing import Any

from kubernetes import client

from ..constants import (
    CLUSTER_LABEL_KEY,
    COMPONENT_LABEL_KEY,
    COMPONENT_PKI,
    MANAGED_ANNOTATION_KEY,
    CONDITION_FALSE,
    CONDITION_TLS_READY,
    CONDITION_TRUE,
    OPERATOR_LABEL_KEY,
    OPERATOR_LABEL_VALUE,
    PHASE_DISABLED,
    PHASE_FAILED,
    PHASE_READY,
)
from ..crypto import CryptoProvider, CryptographyProvider
from ..errors import (
    DependencyNotReady,
    KubernetesAPIError,
    OperatorError,
    TemporaryError,
)
from ..models.pki import PkiSpec
from ..models.state import PersistedPKIState
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..settings import Settings, settings
from ..utils.secret_store import (
    PkiSecretStore,
    decode_secret_data,
    get_pki_secret_name,
    secret_metadata,
)
from .ca_manager import CertificateAuthorityManager
from .diff_engine import Action, ActionKind, DesiredMetadata, PkiDiffEngine, Write
from .leaf_issuer import LeafCertificateIssuer, diff_names
from .state_codec import PkiStateCodec


class PkiReconciler:
    """
    Reconciles the self-signed PKI of a cluster.

    One call to ``reconcile`` is one pass: at most one write to the PKI
    Secret, followed by the status payload describing the outcome.
    """

    def __init__(
        self,
        store: PkiSecretStore | None = None,
        provider: CryptoProvider | None = None,
        app_settings: Settings | None = None,
        k8s_client: client.ApiClient | None = None,
    ):
        """
        Initialize the PKI reconciler.

        Args:
            store: Secret store, built from ``k8s_client`` when omitted
            provider: Crypto backend, ``CryptographyProvider`` by default
            app_settings: Operator settings, the global instance by default
            k8s_client: Optional Kubernetes API client for the default store
        """
        self.settings = app_settings or settings
        self.provider = provider or CryptographyProvider()
        self.store = store or PkiSecretStore(
            k8s_client, conflict_delay=self.settings.conflict_delay_seconds
        )
        self.codec = PkiStateCodec(self.provider)
        self.logger = OperatorLogger(self.__class__.__name__)

    def build_engine(self, cluster_name: str) -> PkiDiffEngine:
        identity = self.settings.identity_template(cluster_name)
        return PkiDiffEngine(
            CertificateAuthorityManager(self.provider, identity),
            LeafCertificateIssuer(self.provider, identity),
            self.settings.default_policy(),
        )

    def desired_metadata(
        self,
        cluster_name: str,
        owner: dict[str, Any] | None = None,
        annotations: dict[str, str] | None = None,
    ) -> DesiredMetadata:
        """
        Compute the metadata the PKI Secret must carry.

        Args:
            cluster_name: Name of the owning cluster
            owner: Owning resource (apiVersion, kind, name, uid)
            annotations: Annotations propagated from the owning resource

        Returns:
            Desired labels, annotations and owner references
        """
        labels = {
            OPERATOR_LABEL_KEY: OPERATOR_LABEL_VALUE,
            CLUSTER_LABEL_KEY: cluster_name,
            COMPONENT_LABEL_KEY: COMPONENT_PKI,
        }
        owner_references = []
        if owner and owner.get("uid"):
            owner_references.append(
                {
                    "apiVersion": owner["apiVersion"],
                    "kind": owner["kind"],
                    "name": owner["name"],
                    "uid": owner["uid"],
                    "controller": True,
                    "blockOwnerDeletion": True,
                }
            )
        return DesiredMetadata(
            labels=labels,
            annotations={MANAGED_ANNOTATION_KEY: "true", **(annotations or {})},
            owner_references=owner_references,
        )

    async def reconcile(
        self,
        cluster_name: str,
        namespace: str,
        spec: dict[str, Any] | None,
        status: dict[str, Any] | None = None,
        owner: dict[str, Any] | None = None,
        annotations: dict[str, str] | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Run one reconciliation pass.

        Args:
            cluster_name: Name of the owning cluster
            namespace: Namespace of the cluster and its PKI Secret
            spec: Raw ``pki`` section of the cluster specification
            status: Status of the previous pass, updated in place on failure
            owner: Owning resource for the Secret owner reference
            annotations: Annotations propagated to the Secret
            now: Evaluation time, defaults to the current time

        Returns:
            Status payload of the pass

        Raises:
            kopf.TemporaryError: For retryable failures
            kopf.PermanentError: For failures that need user action
        """
        self.logger.log_reconciliation_start(cluster_name, namespace)
        start_time = time.time()
        status = status if status is not None else {}

        try:
            async with metrics_collector.track_reconciliation(cluster_name, namespace):
                try:
                    result = await self._reconcile(
                        cluster_name, namespace, spec, status, owner, annotations, now
                    )
                except OperatorError:
                    raise
                except Exception as e:
                    raise TemporaryError(
                        f"Unexpected error during PKI reconciliation: {e}"
                    ) from e
        except OperatorError as e:
            self.logger.log_reconciliation_error(
                cluster_name, namespace, e, time.time() - start_time
            )
            self.update_status_failed(status, e)
            raise e.as_kopf_error() from e

        self.logger.log_reconciliation_success(
            cluster_name,
            namespace,
            result.get("action", "noop"),
            result.get("changeReasons", []),
            time.time() - start_time,
        )
        return result

    async def _reconcile(
        self,
        cluster_name: str,
        namespace: str,
        spec: dict[str, Any] | None,
        status: dict[str, Any],
        owner: dict[str, Any] | None,
        annotations: dict[str, str] | None,
        now: datetime | None,
    ) -> dict[str, Any]:
        desired = PkiSpec.from_dict(spec)
        if not desired.enabled:
            self.logger.info(
                f"PKI disabled for {namespace}/{cluster_name}, nothing to do",
                cluster_name=cluster_name,
                namespace=namespace,
            )
            return {"phase": PHASE_DISABLED, "action": "noop"}

        now = now or datetime.now(UTC)
        secret_name = get_pki_secret_name(cluster_name)
        current = await self._load_state(secret_name, namespace)

        engine = self.build_engine(cluster_name)
        action = engine.compute(
            desired,
            current,
            now,
            metadata=self.desired_metadata(cluster_name, owner, annotations),
        )
        metrics_collector.record_action(cluster_name, namespace, action.kind.value)

        state = current or PersistedPKIState()
        if isinstance(action, Write):
            await self._apply(cluster_name, namespace, secret_name, action, current)
            state = action.state

        metrics_collector.record_state(cluster_name, namespace, state)
        return self._status_payload(action, state, now, status)

    async def _load_state(
        self, secret_name: str, namespace: str
    ) -> PersistedPKIState | None:
        """
        Read and decode the PKI Secret.

        Returns:
            Decoded state, None when the Secret does not exist

        Raises:
            DependencyNotReady: If the Secret cannot be read
            StateUnreadable: If the Secret holds malformed CA material
        """
        try:
            secret = await self.store.get_secret(secret_name, namespace)
        except KubernetesAPIError as e:
            raise DependencyNotReady(
                f"PKI secret {namespace}/{secret_name} cannot be read: {e}",
                delay=self.settings.not_ready_delay_seconds,
                cause=e,
            ) from e

        if secret is None:
            self.logger.debug(f"PKI secret {namespace}/{secret_name} does not exist")
            return None

        return self.codec.decode(decode_secret_data(secret), secret_metadata(secret))

    async def _apply(
        self,
        cluster_name: str,
        namespace: str,
        secret_name: str,
        action: Write,
        current: PersistedPKIState | None,
    ) -> None:
        if action.metadata_only:
            await self.store.patch_metadata(
                secret_name, namespace, action.state.metadata
            )
            return

        await self.store.write(
            secret_name,
            namespace,
            self.codec.encode(action.state),
            action.state.metadata,
        )

        previous: set[str] = set()
        if current is not None:
            previous = set(current.names) | current.unreadable_leaves
        added, removed = diff_names(action.state.names, previous)
        # Regeneration reissues every certificate, not only the added ones
        issued = (
            added
            if action.kind is ActionKind.INCREMENTAL_UPDATE
            else action.state.names
        )
        for name in issued:
            self.logger.log_certificate_event(
                "issue",
                cluster_name,
                namespace,
                name,
                f"Issued certificate {name} for {namespace}/{cluster_name}",
            )
        for name in removed:
            metrics_collector.forget_certificate(cluster_name, namespace, name)
            self.logger.log_certificate_event(
                "remove",
                cluster_name,
                namespace,
                name,
                f"Removed certificate {name} for {namespace}/{cluster_name}",
            )

    def _status_payload(
        self,
        action: Action,
        state: PersistedPKIState,
        now: datetime,
        previous: dict[str, Any],
    ) -> dict[str, Any]:
        reasons = list(action.change_reasons) if isinstance(action, Write) else []
        message = "; ".join(reasons) if reasons else "PKI is up to date"
        status: dict[str, Any] = {
            "phase": PHASE_READY,
            "message": message,
            "action": action.kind.value,
            "changeReasons": reasons,
            "caNotAfter": state.ca.not_after.isoformat() if state.ca else None,
            "certificates": {
                name: state.leaves[name].not_after.isoformat() for name in state.names
            },
            "lastReconcileTime": now.isoformat(),
            "conditions": list(previous.get("conditions") or []),
        }
        self._add_condition(
            status, CONDITION_TLS_READY, CONDITION_TRUE, "PkiReconciled", message
        )
        return status

    def update_status_failed(self, status: dict[str, Any], error: OperatorError):
        """Record a failed pass on the status, in place."""
        message = f"{type(error).__name__}: {error}"
        status["phase"] = PHASE_FAILED
        status["message"] = message
        status["lastReconcileTime"] = datetime.now(UTC).isoformat()
        self._add_condition(
            status, CONDITION_TLS_READY, CONDITION_FALSE, type(error).__name__, message
        )

    def _add_condition(
        self,
        status: dict[str, Any],
        condition_type: str,
        condition_status: str,
        reason: str,
        message: str,
    ) -> None:
        """Add or update a status condition."""
        existing = status.get("conditions")
        if not isinstance(existing, list):
            existing = []

        # Keep the transition time when the condition status is unchanged
        previous = next(
            (
                c
                for c in existing
                if isinstance(c, dict) and c.get("type") == condition_type
            ),
            None,
        )
        transition_time = datetime.now(UTC).isoformat()
        if previous and previous.get("status") == condition_status:
            transition_time = previous.get("lastTransitionTime", transition_time)

        conditions = [
            c
            for c in existing
            if isinstance(c, dict) and c.get("type") != condition_type
        ]
        conditions.append(
            {
                "type": condition_type,
                "status": condition_status,
                "reason": reason,
                "message": message,
                "lastTransitionTime": transition_time,
            }
        )
        status["conditions"] = conditions
