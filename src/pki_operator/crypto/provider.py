"""
Cryptographic primitives used by the PKI services.

The services depend on the ``CryptoProvider`` protocol only. The default
``CryptographyProvider`` implements it on top of the ``cryptography``
package: RSA keys, a self-signed root certificate with its CRL, and leaf
certificates signed by that root.
"""

import ipaddress
import logging
from datetime import UTC, datetime, timedelta
from typing import Protocol

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..errors import CryptoError
from ..models.pki import IdentityTemplate
from ..models.state import CertificateAuthority, LeafCertificate

logger = logging.getLogger(__name__)

PUBLIC_EXPONENT = 65537

_CRYPTO_FAILURES = (ValueError, TypeError, OverflowError, UnsupportedAlgorithm)


class CryptoProvider(Protocol):
    """Capabilities the PKI services need from a crypto backend."""

    def generate_ca(
        self,
        common_name: str,
        identity: IdentityTemplate,
        validity_days: int,
        key_bit_size: int,
        now: datetime | None = None,
    ) -> CertificateAuthority: ...

    def load_ca(
        self,
        private_key: bytes,
        public_key: bytes,
        certificate: bytes,
        revocation_list: bytes,
    ) -> CertificateAuthority: ...

    def issue_certificate(
        self,
        ca: CertificateAuthority,
        name: str,
        identity: IdentityTemplate,
        validity_days: int,
        key_bit_size: int,
        dns_names: list[str] | None = None,
        ip_addresses: list[str] | None = None,
        now: datetime | None = None,
    ) -> LeafCertificate: ...

    def parse_certificate_pem(self, data: bytes) -> x509.Certificate: ...

    def certificate_expiry(self, certificate: x509.Certificate) -> datetime: ...

    def subject_alt_names(
        self, certificate: x509.Certificate
    ) -> tuple[tuple[str, ...], tuple[str, ...]]: ...

    def is_issued_by(self, ca: CertificateAuthority, certificate: bytes) -> bool: ...


def _build_subject(
    common_name: str, identity: IdentityTemplate, organization: str | None = None
) -> x509.Name:
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    attributes.append(
        x509.NameAttribute(
            NameOID.ORGANIZATION_NAME, organization or identity.organization
        )
    )
    attributes.append(
        x509.NameAttribute(
            NameOID.ORGANIZATIONAL_UNIT_NAME, identity.organizational_unit
        )
    )
    if identity.country:
        attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, identity.country))
    if identity.locality:
        attributes.append(x509.NameAttribute(NameOID.LOCALITY_NAME, identity.locality))
    if identity.province:
        attributes.append(
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, identity.province)
        )
    return x509.Name(attributes)


def _private_key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )


def _public_key_pem(key: rsa.RSAPublicKey) -> bytes:
    return key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _same_public_key(a, b) -> bool:
    return a.public_numbers() == b.public_numbers()


class CryptographyProvider:
    """CryptoProvider backed by the ``cryptography`` package."""

    def _generate_key(self, key_bit_size: int, operation: str, name: str | None):
        try:
            return rsa.generate_private_key(
                public_exponent=PUBLIC_EXPONENT, key_size=key_bit_size
            )
        except _CRYPTO_FAILURES as e:
            raise CryptoError(operation, str(e), name=name, cause=e) from e

    def generate_ca(
        self,
        common_name: str,
        identity: IdentityTemplate,
        validity_days: int,
        key_bit_size: int,
        now: datetime | None = None,
    ) -> CertificateAuthority:
        """
        Create a self-signed root CA and an empty revocation list.

        Args:
            common_name: Subject common name of the root
            identity: Remaining subject fields
            validity_days: Days until the root expires
            key_bit_size: RSA key size
            now: Start of the validity window, defaults to the current time

        Returns:
            Complete certificate authority

        Raises:
            CryptoError: If key generation or signing fails
        """
        now = now or datetime.now(UTC)
        key = self._generate_key(key_bit_size, "generate_ca", None)
        subject = _build_subject(common_name, identity)

        try:
            not_after = now + timedelta(days=validity_days)
            certificate = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(not_after)
                .add_extension(
                    x509.BasicConstraints(ca=True, path_length=None), critical=True
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=True,
                        crl_sign=True,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                    critical=False,
                )
                .sign(private_key=key, algorithm=hashes.SHA256())
            )
            revocation_list = (
                x509.CertificateRevocationListBuilder()
                .issuer_name(subject)
                .last_update(now)
                .next_update(not_after)
                .sign(private_key=key, algorithm=hashes.SHA256())
            )
        except _CRYPTO_FAILURES as e:
            raise CryptoError("generate_ca", str(e), cause=e) from e

        logger.debug(f"Generated root CA {common_name} valid until {not_after}")

        return CertificateAuthority(
            common_name=common_name,
            private_key=_private_key_pem(key),
            public_key=_public_key_pem(key.public_key()),
            certificate=certificate.public_bytes(serialization.Encoding.PEM),
            revocation_list=revocation_list.public_bytes(serialization.Encoding.PEM),
            not_before=certificate.not_valid_before_utc,
            not_after=certificate.not_valid_after_utc,
        )

    def load_ca(
        self,
        private_key: bytes,
        public_key: bytes,
        certificate: bytes,
        revocation_list: bytes,
    ) -> CertificateAuthority:
        """
        Load a persisted root CA and check that its parts belong together.

        Raises:
            CryptoError: If a part is empty, malformed, or does not match the key
        """
        parts = {
            "private key": private_key,
            "public key": public_key,
            "certificate": certificate,
            "revocation list": revocation_list,
        }
        for part, value in parts.items():
            if not value:
                raise CryptoError("load_ca", f"{part} is empty")

        try:
            key = serialization.load_pem_private_key(private_key, password=None)
            pub = serialization.load_pem_public_key(public_key)
            cert = x509.load_pem_x509_certificate(certificate)
            x509.load_pem_x509_crl(revocation_list)
        except _CRYPTO_FAILURES as e:
            raise CryptoError("load_ca", str(e), cause=e) from e

        if not isinstance(key, rsa.RSAPrivateKey):
            raise CryptoError("load_ca", "private key is not an RSA key")
        if not _same_public_key(key.public_key(), pub):
            raise CryptoError("load_ca", "public key does not match private key")
        if not _same_public_key(key.public_key(), cert.public_key()):
            raise CryptoError("load_ca", "certificate does not match private key")

        common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        return CertificateAuthority(
            common_name=str(common_names[0].value) if common_names else "",
            private_key=private_key,
            public_key=public_key,
            certificate=certificate,
            revocation_list=revocation_list,
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
        )

    def issue_certificate(
        self,
        ca: CertificateAuthority,
        name: str,
        identity: IdentityTemplate,
        validity_days: int,
        key_bit_size: int,
        dns_names: list[str] | None = None,
        ip_addresses: list[str] | None = None,
        now: datetime | None = None,
    ) -> LeafCertificate:
        """
        Issue a leaf certificate signed by the CA.

        Args:
            ca: Signing certificate authority
            name: Certificate name, used as common name and organization
            identity: Remaining subject fields
            validity_days: Days until the certificate expires
            key_bit_size: RSA key size
            dns_names: DNS subject alternative names, in order
            ip_addresses: IP subject alternative names, in order
            now: Start of the validity window, defaults to the current time

        Returns:
            Leaf certificate with its private key

        Raises:
            CryptoError: If the CA is missing, the name is empty, or signing fails
        """
        if ca is None:
            raise CryptoError("issue_certificate", "no CA to sign with", name=name)
        if not name:
            raise CryptoError("issue_certificate", "certificate name is empty")

        now = now or datetime.now(UTC)
        dns_names = list(dns_names or [])
        ip_addresses = list(ip_addresses or [])

        try:
            ca_key = serialization.load_pem_private_key(ca.private_key, password=None)
            ca_cert = x509.load_pem_x509_certificate(ca.certificate)
            ips = [ipaddress.ip_address(ip) for ip in ip_addresses]
        except _CRYPTO_FAILURES as e:
            raise CryptoError("issue_certificate", str(e), name=name, cause=e) from e

        key = self._generate_key(key_bit_size, "issue_certificate", name)

        try:
            alt_names: list[x509.GeneralName] = [x509.DNSName(dns) for dns in dns_names]
            alt_names.extend(x509.IPAddress(ip) for ip in ips)

            builder = (
                x509.CertificateBuilder()
                .subject_name(_build_subject(name, identity, organization=name))
                .issuer_name(ca_cert.subject)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(now + timedelta(days=validity_days))
                .add_extension(
                    x509.BasicConstraints(ca=False, path_length=None), critical=True
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=True,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=False,
                        crl_sign=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.ExtendedKeyUsage(
                        [
                            ExtendedKeyUsageOID.SERVER_AUTH,
                            ExtendedKeyUsageOID.CLIENT_AUTH,
                        ]
                    ),
                    critical=False,
                )
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(
                        ca_cert.public_key()
                    ),
                    critical=False,
                )
            )
            if alt_names:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName(alt_names), critical=False
                )
            certificate = builder.sign(private_key=ca_key, algorithm=hashes.SHA256())
        except _CRYPTO_FAILURES as e:
            raise CryptoError("issue_certificate", str(e), name=name, cause=e) from e

        return LeafCertificate(
            name=name,
            certificate=certificate.public_bytes(serialization.Encoding.PEM),
            private_key=_private_key_pem(key),
            not_after=certificate.not_valid_after_utc,
            subject_alt_names=tuple(dns_names),
            subject_alt_ips=tuple(str(ip) for ip in ips),
        )

    def parse_certificate_pem(self, data: bytes) -> x509.Certificate:
        """
        Parse a PEM encoded certificate.

        Raises:
            CryptoError: If the data is empty or not a PEM certificate
        """
        if not data:
            raise CryptoError("parse_certificate", "certificate is empty")
        try:
            return x509.load_pem_x509_certificate(data)
        except _CRYPTO_FAILURES as e:
            raise CryptoError("parse_certificate", str(e), cause=e) from e

    def certificate_expiry(self, certificate: x509.Certificate) -> datetime:
        return certificate.not_valid_after_utc

    def subject_alt_names(
        self, certificate: x509.Certificate
    ) -> tuple[tuple[str, ...], tuple[str, ...]]:
        """Return the DNS and IP subject alternative names of a certificate."""
        try:
            extension = certificate.extensions.get_extension_for_class(
                x509.SubjectAlternativeName
            )
        except x509.ExtensionNotFound:
            return (), ()
        dns_names = tuple(extension.value.get_values_for_type(x509.DNSName))
        ips = tuple(
            str(ip) for ip in extension.value.get_values_for_type(x509.IPAddress)
        )
        return dns_names, ips

    def is_issued_by(self, ca: CertificateAuthority, certificate: bytes) -> bool:
        """Check that the certificate carries a valid signature of the CA."""
        try:
            ca_cert = x509.load_pem_x509_certificate(ca.certificate)
            cert = x509.load_pem_x509_certificate(certificate)
            cert.verify_directly_issued_by(ca_cert)
        except (InvalidSignature, *_CRYPTO_FAILURES):
            return False
        return True
