"""
Issuance of named leaf certificates.

Each leaf gets its own name as first DNS subject alternative name, followed
by the names and IP addresses requested in its specification.
"""

import ipaddress
import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from ..constants import RESERVED_CERTIFICATE_NAME
from ..crypto import CryptoProvider
from ..errors import ConfigError, CryptoError
from ..models.pki import IdentityTemplate, RenewalPolicy, TlsCertificateSpec
from ..models.state import CertificateAuthority, LeafCertificate
from .ca_manager import expires_within_window

logger = logging.getLogger(__name__)


def diff_names(
    desired: Iterable[str], current: Iterable[str]
) -> tuple[list[str], list[str]]:
    """
    Compute added and removed certificate names.

    Args:
        desired: Names requested by the specification
        current: Names present in the persisted state

    Returns:
        Tuple of (added, removed), both sorted
    """
    desired_set = set(desired)
    current_set = set(current)
    return sorted(desired_set - current_set), sorted(current_set - desired_set)


class LeafCertificateIssuer:
    """Issues and evaluates leaf certificates against the root CA."""

    def __init__(self, provider: CryptoProvider, identity: IdentityTemplate):
        self.provider = provider
        self.identity = identity

    def subject_alt_names(self, name: str, spec: TlsCertificateSpec) -> list[str]:
        """
        Build the ordered DNS names of a certificate.

        Raises:
            ConfigError: If a requested DNS name is empty or not ASCII
        """
        names = [name]
        for alt_name in spec.alt_names:
            if not alt_name or not alt_name.strip():
                raise ConfigError(
                    "DNS names must be non-empty", field=f"tls.{name}.altNames"
                )
            if not alt_name.isascii():
                raise ConfigError(
                    f"DNS name {alt_name} must be ASCII, "
                    "use the punycode (A-label) form",
                    field=f"tls.{name}.altNames",
                )
            if alt_name not in names:
                names.append(alt_name)
        return names

    def subject_alt_ips(self, name: str, spec: TlsCertificateSpec) -> list[str]:
        """
        Parse the requested IP addresses strictly.

        Raises:
            ConfigError: If an IP literal is not valid
        """
        ips = []
        for ip in spec.alt_ips:
            try:
                ips.append(str(ipaddress.ip_address(ip)))
            except ValueError as e:
                raise ConfigError(
                    f"IP {ip} is not valid", field=f"tls.{name}.altIPs"
                ) from e
        return ips

    def issue(
        self,
        ca: CertificateAuthority,
        name: str,
        spec: TlsCertificateSpec,
        policy: RenewalPolicy,
        now: datetime | None = None,
    ) -> LeafCertificate:
        """
        Issue one leaf certificate signed by the CA.

        Args:
            ca: Signing certificate authority
            name: Certificate name
            spec: Requested subject alternative names
            policy: Validity and key size
            now: Start of the validity window

        Returns:
            Newly issued leaf certificate

        Raises:
            ConfigError: If the name or a SAN is invalid
            CryptoError: If signing fails
        """
        if not name:
            raise ConfigError("certificate name must not be empty", field="tls")
        if name == RESERVED_CERTIFICATE_NAME:
            raise ConfigError(
                f"'{RESERVED_CERTIFICATE_NAME}' is reserved for the root CA",
                field="tls",
            )

        dns_names = self.subject_alt_names(name, spec)
        ips = self.subject_alt_ips(name, spec)

        try:
            leaf = self.provider.issue_certificate(
                ca,
                name,
                self.identity,
                policy.validity_days,
                policy.key_bit_size,
                dns_names=dns_names,
                ip_addresses=ips,
                now=now or datetime.now(UTC),
            )
        except CryptoError:
            logger.error(f"Failed to issue certificate {name}")
            raise

        logger.debug(f"Issued certificate {name} for {', '.join(dns_names + ips)}")
        return leaf

    def needs_renewal(
        self, leaf: LeafCertificate, policy: RenewalPolicy, now: datetime
    ) -> bool:
        return expires_within_window(leaf.not_after, policy.renewal_window_days, now)

    def is_orphaned(
        self, leaf: LeafCertificate, ca: CertificateAuthority | None
    ) -> bool:
        """A leaf is orphaned when no live CA has signed it."""
        return ca is None or not self.provider.is_issued_by(ca, leaf.certificate)
