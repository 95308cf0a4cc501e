"""
Services package - PKI business logic.

Contains the pure PKI services (codec, CA manager, leaf issuer, diff engine)
and the reconciler that applies their decisions to Kubernetes.
"""

from .ca_manager import CertificateAuthorityManager
from .diff_engine import (
    Action,
    ActionKind,
    DesiredMetadata,
    NoOp,
    PkiDiffEngine,
    Write,
)
from .leaf_issuer import LeafCertificateIssuer, diff_names
from .pki_reconciler import PkiReconciler
from .state_codec import PkiStateCodec

__all__ = [
    "Action",
    "ActionKind",
    "CertificateAuthorityManager",
    "DesiredMetadata",
    "LeafCertificateIssuer",
    "NoOp",
    "PkiDiffEngine",
    "PkiReconciler",
    "PkiStateCodec",
    "Write",
    "diff_names",
]
