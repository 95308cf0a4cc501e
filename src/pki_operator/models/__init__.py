"""
Data models for the PKI operator.

This package contains pydantic models for the declarative configuration and
immutable value objects for the persisted PKI state.
"""

from .pki import IdentityTemplate, PkiSpec, RenewalPolicy, TlsCertificateSpec
from .state import (
    CertificateAuthority,
    LeafCertificate,
    ObjectMetadata,
    PersistedPKIState,
)

__all__ = [
    "PkiSpec",
    "TlsCertificateSpec",
    "RenewalPolicy",
    "IdentityTemplate",
    "CertificateAuthority",
    "LeafCertificate",
    "ObjectMetadata",
    "PersistedPKIState",
]
