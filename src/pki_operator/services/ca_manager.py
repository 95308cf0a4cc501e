"""
Root certificate authority lifecycle.

Decides whether the root CA must be bootstrapped or rotated and creates a
fresh one when asked. Creation either returns a complete CA or raises; a
partial CA is never handed back to the caller.
"""

import logging
from datetime import UTC, datetime, timedelta

from ..crypto import CryptoProvider
from ..errors import CryptoError
from ..models.pki import IdentityTemplate, RenewalPolicy
from ..models.state import CertificateAuthority, PersistedPKIState

logger = logging.getLogger(__name__)


def expires_within_window(
    not_after: datetime, renewal_window_days: int, now: datetime
) -> bool:
    """
    Check whether a certificate entered its renewal window.

    ``not_after - window < now`` triggers renewal, equality does not.
    """
    return not_after - timedelta(days=renewal_window_days) < now


class CertificateAuthorityManager:
    """Bootstrap, expiry evaluation and creation of the root CA."""

    def __init__(self, provider: CryptoProvider, identity: IdentityTemplate):
        """
        Initialize the CA manager.

        Args:
            provider: Crypto backend used to build the CA
            identity: Subject fields of the root certificate
        """
        self.provider = provider
        self.identity = identity

    def needs_bootstrap(self, state: PersistedPKIState | None) -> bool:
        return state is None or state.ca is None or state.ca_incomplete

    def needs_rotation(
        self, ca: CertificateAuthority, policy: RenewalPolicy, now: datetime
    ) -> bool:
        """
        Check whether the root CA must be replaced before it expires.

        Args:
            ca: Current root CA
            policy: Renewal policy in effect
            now: Evaluation time

        Returns:
            True if the CA expires within the renewal window
        """
        certificate = self.provider.parse_certificate_pem(ca.certificate)
        expiry = self.provider.certificate_expiry(certificate)
        if expires_within_window(expiry, policy.renewal_window_days, now):
            logger.info(
                f"Root CA {ca.common_name} expires at {expiry.isoformat()}, "
                f"within the {policy.renewal_window_days} days renewal window"
            )
            return True
        return False

    def create(
        self, policy: RenewalPolicy, now: datetime | None = None
    ) -> CertificateAuthority:
        """
        Create a new root CA.

        Args:
            policy: Validity and key size of the new CA
            now: Start of the validity window

        Returns:
            Complete certificate authority

        Raises:
            CryptoError: If the crypto backend fails
        """
        now = now or datetime.now(UTC)
        common_name = self.identity.root_common_name
        try:
            ca = self.provider.generate_ca(
                common_name,
                self.identity,
                policy.validity_days,
                policy.key_bit_size,
                now=now,
            )
        except CryptoError:
            logger.error(f"Failed to create root CA {common_name}")
            raise

        logger.info(
            f"Created root CA {common_name}, valid until {ca.not_after.isoformat()}"
        )
        return ca
