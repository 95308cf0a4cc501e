"""
PKI Operator - self-signed certificate lifecycle management for Kubernetes.

This package keeps a root Certificate Authority and a set of named leaf
certificates in sync with a declarative specification:
- Root CA bootstrap and rotation before expiry
- Incremental add/remove of leaf certificates without touching the others
- Persistence of the key material in a Kubernetes Secret
"""

__version__ = "0.1.0"
