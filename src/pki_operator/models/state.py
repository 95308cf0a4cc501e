"""
In-memory representation of the persisted PKI state.

These are plain value objects: the codec builds them from the stored blob,
the diff engine derives new ones from them, and nothing mutates them in
place.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CertificateAuthority:
    """Root CA material, always complete."""

    common_name: str
    private_key: bytes
    public_key: bytes
    certificate: bytes
    revocation_list: bytes
    not_before: datetime
    not_after: datetime

    def __repr__(self) -> str:
        # Private key material must never reach logs
        return (
            f"CertificateAuthority(common_name={self.common_name!r}, "
            f"not_after={self.not_after.isoformat()})"
        )


@dataclass(frozen=True)
class LeafCertificate:
    """One named end-entity certificate signed by the root CA."""

    name: str
    certificate: bytes
    private_key: bytes
    not_after: datetime
    subject_alt_names: tuple[str, ...] = ()
    subject_alt_ips: tuple[str, ...] = ()

    def __repr__(self) -> str:
        return (
            f"LeafCertificate(name={self.name!r}, "
            f"subject_alt_names={self.subject_alt_names!r}, "
            f"not_after={self.not_after.isoformat()})"
        )


@dataclass(frozen=True)
class ObjectMetadata:
    """Metadata of the object backing the persisted state."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[dict[str, Any]] = field(default_factory=list)
    # Optimistic concurrency token, None while the object does not exist
    resource_version: str | None = None

    @property
    def exists(self) -> bool:
        return self.resource_version is not None


@dataclass(frozen=True)
class PersistedPKIState:
    """
    Root CA plus the named leaf certificates of one cluster.

    ``ca_incomplete`` is set when the blob held some but not all CA fields,
    ``unreadable_leaves`` lists leaf entries the codec had to skip.
    """

    ca: CertificateAuthority | None = None
    leaves: dict[str, LeafCertificate] = field(default_factory=dict)
    metadata: ObjectMetadata = field(default_factory=ObjectMetadata)
    ca_incomplete: bool = False
    unreadable_leaves: frozenset[str] = frozenset()

    @property
    def names(self) -> list[str]:
        return sorted(self.leaves)

    def with_changes(self, **changes: Any) -> "PersistedPKIState":
        return replace(self, **changes)
