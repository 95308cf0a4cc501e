"""
Reconciliation diff engine for the self-signed PKI.

Given the desired certificate set and a snapshot of the persisted state, the
engine picks exactly one action, evaluated in this order:

1. PKI disabled: nothing to do, existing state is left alone
2. No usable CA: bootstrap a CA and issue every desired certificate
3. CA or any leaf expiring, or a leaf not signed by the live CA: full rotation
4. Names added or removed: incremental update against the existing CA
5. Labels, annotations or owner references stale: metadata-only update
6. Otherwise: no-op

The engine never performs I/O. It describes the write it wants and leaves
persistence to the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..constants import REASON_GENERATE, REASON_RENEW
from ..models.pki import PkiSpec, RenewalPolicy
from ..models.state import (
    CertificateAuthority,
    LeafCertificate,
    ObjectMetadata,
    PersistedPKIState,
)
from .ca_manager import CertificateAuthorityManager
from .leaf_issuer import LeafCertificateIssuer, diff_names

logger = logging.getLogger(__name__)


class ActionKind(Enum):
    """Outcome of one reconciliation pass."""

    NOOP = "noop"
    BOOTSTRAP = "bootstrap"
    FULL_ROTATE = "full_rotate"
    INCREMENTAL_UPDATE = "incremental_update"
    METADATA_ONLY_UPDATE = "metadata_only_update"


@dataclass(frozen=True)
class NoOp:
    """Persisted state already matches the desired state."""

    kind: ActionKind = ActionKind.NOOP


@dataclass(frozen=True)
class Write:
    """New state to persist, with the audit trail that explains it."""

    kind: ActionKind
    state: PersistedPKIState
    change_reasons: list[str] = field(default_factory=list)

    @property
    def metadata_only(self) -> bool:
        return self.kind is ActionKind.METADATA_ONLY_UPDATE


Action = NoOp | Write


@dataclass(frozen=True)
class DesiredMetadata:
    """Labels, annotations and owner references the backing object must carry."""

    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[dict[str, Any]] = field(default_factory=list)


def describe_map_diff(
    kind: str, expected: dict[str, str], current: dict[str, str]
) -> str | None:
    """
    Describe the expected entries that are missing or different.

    Entries present only in ``current`` are tolerated since other
    controllers may own them.
    """
    changed = sorted(k for k, v in expected.items() if current.get(k) != v)
    if not changed:
        return None
    return f"Update {kind}: {', '.join(changed)}"


def _owner_uids(owner_references: list[dict[str, Any]]) -> set[str]:
    return {ref.get("uid", "") for ref in owner_references}


class PkiDiffEngine:
    """
    Decides the PKI action for one pass.

    Instances hold no state between calls; build one per pass or share it.
    """

    def __init__(
        self,
        ca_manager: CertificateAuthorityManager,
        issuer: LeafCertificateIssuer,
        default_policy: RenewalPolicy,
    ):
        self.ca_manager = ca_manager
        self.issuer = issuer
        self.default_policy = default_policy

    def compute(
        self,
        desired: PkiSpec,
        current: PersistedPKIState | None,
        now: datetime,
        metadata: DesiredMetadata | None = None,
    ) -> Action:
        """
        Compute the action that brings the persisted state to the desired one.

        Args:
            desired: Desired certificate set
            current: Decoded snapshot, None when nothing is persisted yet
            now: Evaluation time (UTC)
            metadata: Metadata the backing object must carry

        Returns:
            NoOp or Write

        Raises:
            ConfigError: If the desired configuration is invalid
            CryptoError: If key generation or signing fails
        """
        if not desired.enabled:
            logger.debug("PKI is disabled, leaving persisted state untouched")
            return NoOp()

        policy = desired.policy(self.default_policy)
        snapshot = current or PersistedPKIState()
        target_metadata = self._merge_metadata(snapshot.metadata, metadata)
        ca = snapshot.ca

        if ca is None or self.ca_manager.needs_bootstrap(current):
            if snapshot.leaves or snapshot.unreadable_leaves:
                logger.info(
                    "Certificates exist without a usable CA, regenerating them all"
                )
                return self._regenerate(
                    desired, policy, now, target_metadata, ActionKind.FULL_ROTATE
                )
            logger.info("No CA found, generating new certificates")
            return self._regenerate(
                desired, policy, now, target_metadata, ActionKind.BOOTSTRAP
            )

        if self._needs_full_rotation(ca, snapshot, policy, now):
            return self._regenerate(
                desired, policy, now, target_metadata, ActionKind.FULL_ROTATE
            )

        incremental = self._incremental_update(
            desired, ca, snapshot, policy, now, target_metadata
        )
        if incremental is not None:
            return incremental

        if metadata is not None:
            reasons = self._metadata_reasons(snapshot.metadata, metadata)
            if reasons:
                return Write(
                    kind=ActionKind.METADATA_ONLY_UPDATE,
                    state=snapshot.with_changes(metadata=target_metadata),
                    change_reasons=reasons,
                )

        return NoOp()

    def _needs_full_rotation(
        self,
        ca: CertificateAuthority,
        state: PersistedPKIState,
        policy: RenewalPolicy,
        now: datetime,
    ) -> bool:
        if self.ca_manager.needs_rotation(ca, policy, now):
            return True

        # CA rotation already reissues every leaf, leaves are checked only here
        for name in state.names:
            leaf = state.leaves[name]
            if self.issuer.needs_renewal(leaf, policy, now):
                logger.info(
                    f"Certificate {name} expires at {leaf.not_after.isoformat()}, "
                    "renewing all certificates"
                )
                return True
            if self.issuer.is_orphaned(leaf, ca):
                logger.warning(
                    f"Certificate {name} is not signed by the current CA, "
                    "renewing all certificates"
                )
                return True
        return False

    def _regenerate(
        self,
        desired: PkiSpec,
        policy: RenewalPolicy,
        now: datetime,
        metadata: ObjectMetadata,
        kind: ActionKind,
    ) -> Write:
        ca = self.ca_manager.create(policy, now=now)
        leaves = {
            name: self.issuer.issue(ca, name, desired.tls[name], policy, now=now)
            for name in desired.names
        }
        reason = REASON_GENERATE if kind is ActionKind.BOOTSTRAP else REASON_RENEW
        return Write(
            kind=kind,
            state=PersistedPKIState(ca=ca, leaves=leaves, metadata=metadata),
            change_reasons=[reason],
        )

    def _incremental_update(
        self,
        desired: PkiSpec,
        ca: CertificateAuthority,
        state: PersistedPKIState,
        policy: RenewalPolicy,
        now: datetime,
        metadata: ObjectMetadata,
    ) -> Write | None:
        added, removed = diff_names(desired.names, state.names)
        # Unreadable entries are replaced when still wanted, dropped otherwise
        unreadable_removed = sorted(
            name for name in state.unreadable_leaves if name not in desired.tls
        )
        if not added and not removed and not unreadable_removed:
            return None

        leaves: dict[str, LeafCertificate] = dict(state.leaves)
        reasons = []
        for name in added:
            leaves[name] = self.issuer.issue(
                ca, name, desired.tls[name], policy, now=now
            )
            reasons.append(f"Add certificate for {name}")
        for name in sorted(set(removed) | set(unreadable_removed)):
            leaves.pop(name, None)
            reasons.append(f"Remove certificate for {name}")

        return Write(
            kind=ActionKind.INCREMENTAL_UPDATE,
            state=state.with_changes(
                leaves=leaves, metadata=metadata, unreadable_leaves=frozenset()
            ),
            change_reasons=reasons,
        )

    def _merge_metadata(
        self, current: ObjectMetadata, desired: DesiredMetadata | None
    ) -> ObjectMetadata:
        if desired is None:
            return current
        owner_references = list(current.owner_references)
        known = _owner_uids(owner_references)
        owner_references.extend(
            ref for ref in desired.owner_references if ref.get("uid", "") not in known
        )
        return ObjectMetadata(
            name=current.name,
            namespace=current.namespace,
            labels={**current.labels, **desired.labels},
            annotations={**current.annotations, **desired.annotations},
            owner_references=owner_references,
            resource_version=current.resource_version,
        )

    def _metadata_reasons(
        self, current: ObjectMetadata, desired: DesiredMetadata
    ) -> list[str]:
        reasons = []
        label_diff = describe_map_diff("labels", desired.labels, current.labels)
        if label_diff:
            reasons.append(label_diff)
        annotation_diff = describe_map_diff(
            "annotations", desired.annotations, current.annotations
        )
        if annotation_diff:
            reasons.append(annotation_diff)
        missing_owners = _owner_uids(desired.owner_references) - _owner_uids(
            current.owner_references
        )
        if missing_owners:
            reasons.append("Update owner references")
        return reasons
