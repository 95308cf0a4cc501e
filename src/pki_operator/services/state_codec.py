"""
Translation between the persisted PKI blob and ``PersistedPKIState``.

The blob is a flat mapping of field name to raw PEM bytes:
``ca.key``, ``ca.pub``, ``ca.crt`` and ``ca.crl`` for the root CA, then
``<name>.crt`` and ``<name>.key`` for every leaf certificate.
"""

import logging

from ..constants import (
    CA_CERTIFICATE_FIELD,
    CA_FIELDS,
    CA_PRIVATE_KEY_FIELD,
    CA_PUBLIC_KEY_FIELD,
    CA_REVOCATION_LIST_FIELD,
    CERTIFICATE_SUFFIX,
    PRIVATE_KEY_SUFFIX,
)
from ..crypto import CryptoProvider
from ..errors import CryptoError, StateUnreadable
from ..models.state import (
    CertificateAuthority,
    LeafCertificate,
    ObjectMetadata,
    PersistedPKIState,
)

logger = logging.getLogger(__name__)


def certificate_field(name: str) -> str:
    return f"{name}{CERTIFICATE_SUFFIX}"


def private_key_field(name: str) -> str:
    return f"{name}{PRIVATE_KEY_SUFFIX}"


class PkiStateCodec:
    """Pure encoder/decoder for the persisted PKI blob."""

    def __init__(self, provider: CryptoProvider):
        self.provider = provider

    def decode(
        self, blob: dict[str, bytes], metadata: ObjectMetadata | None = None
    ) -> PersistedPKIState:
        """
        Decode a persisted blob.

        A CA with missing fields is reported as absent and incomplete. Leaf
        entries that cannot be loaded are skipped and listed in
        ``unreadable_leaves``.

        Args:
            blob: Field name to raw PEM bytes
            metadata: Metadata of the backing object

        Returns:
            Decoded PKI state

        Raises:
            StateUnreadable: If present CA material is malformed
        """
        metadata = metadata or ObjectMetadata()
        ca = self._decode_ca(blob)
        present = [f for f in CA_FIELDS if blob.get(f)]
        ca_incomplete = ca is None and len(present) > 0
        if ca_incomplete:
            missing = sorted(set(CA_FIELDS) - set(present))
            logger.warning(
                f"PKI secret {metadata.namespace}/{metadata.name} holds an "
                f"incomplete CA, missing fields: {', '.join(missing)}"
            )

        leaves: dict[str, LeafCertificate] = {}
        unreadable: set[str] = set()
        for field in sorted(blob):
            if field == CA_CERTIFICATE_FIELD or not field.endswith(CERTIFICATE_SUFFIX):
                continue
            name = field[: -len(CERTIFICATE_SUFFIX)]
            if not name:
                logger.warning(f"Ignoring nameless certificate field '{field}'")
                continue
            leaf = self._decode_leaf(name, blob)
            if leaf is None:
                unreadable.add(name)
            else:
                leaves[name] = leaf

        return PersistedPKIState(
            ca=ca,
            leaves=leaves,
            metadata=metadata,
            ca_incomplete=ca_incomplete,
            unreadable_leaves=frozenset(unreadable),
        )

    def _decode_ca(self, blob: dict[str, bytes]) -> CertificateAuthority | None:
        certificate = blob.get(CA_CERTIFICATE_FIELD)
        if certificate:
            try:
                self.provider.parse_certificate_pem(certificate)
            except CryptoError as e:
                raise StateUnreadable(
                    str(e), field=CA_CERTIFICATE_FIELD, cause=e
                ) from e

        if not all(blob.get(f) for f in CA_FIELDS):
            return None

        try:
            return self.provider.load_ca(
                blob[CA_PRIVATE_KEY_FIELD],
                blob[CA_PUBLIC_KEY_FIELD],
                blob[CA_CERTIFICATE_FIELD],
                blob[CA_REVOCATION_LIST_FIELD],
            )
        except CryptoError as e:
            raise StateUnreadable(f"Root CA cannot be loaded: {e}", cause=e) from e

    def _decode_leaf(self, name: str, blob: dict[str, bytes]) -> LeafCertificate | None:
        private_key = blob.get(private_key_field(name))
        if not private_key:
            logger.warning(f"Certificate '{name}' has no private key, skipping it")
            return None
        try:
            cert = self.provider.parse_certificate_pem(blob[certificate_field(name)])
        except CryptoError as e:
            logger.warning(f"Certificate '{name}' cannot be parsed, skipping it: {e}")
            return None

        dns_names, ips = self.provider.subject_alt_names(cert)
        return LeafCertificate(
            name=name,
            certificate=blob[certificate_field(name)],
            private_key=private_key,
            not_after=self.provider.certificate_expiry(cert),
            subject_alt_names=dns_names,
            subject_alt_ips=ips,
        )

    def encode(self, state: PersistedPKIState) -> dict[str, bytes]:
        """
        Encode a state into its persisted blob.

        Args:
            state: PKI state to persist

        Returns:
            Field name to raw PEM bytes
        """
        blob: dict[str, bytes] = {}
        if state.ca is not None:
            blob[CA_PRIVATE_KEY_FIELD] = state.ca.private_key
            blob[CA_PUBLIC_KEY_FIELD] = state.ca.public_key
            blob[CA_CERTIFICATE_FIELD] = state.ca.certificate
            blob[CA_REVOCATION_LIST_FIELD] = state.ca.revocation_list

        for name in state.names:
            leaf = state.leaves[name]
            blob[certificate_field(name)] = leaf.certificate
            blob[private_key_field(name)] = leaf.private_key

        return blob
