"""
Utils package - Utility modules for PKI operator functionality.

Contains helper modules for:
- Kubernetes Secret persistence of the PKI blob
"""

from pki_operator.utils.secret_store import PkiSecretStore, get_pki_secret_name

__all__ = [
    "PkiSecretStore",
    "get_pki_secret_name",
]
