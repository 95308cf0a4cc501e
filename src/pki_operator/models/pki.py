"""
Pydantic models for the declarative PKI configuration.

This module defines the desired certificate set as it appears in a cluster
resource specification, the renewal policy resolved from it, and the
identity template stamped into every certificate subject.
"""

import ipaddress
import re
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..constants import (
    MAXIMUM_VALIDITY_DAYS,
    MINIMUM_KEY_BIT_SIZE,
    RESERVED_CERTIFICATE_NAME,
)
from ..errors import ConfigError

# Kubernetes Secret data keys accept this alphabet only
_CERTIFICATE_NAME_PATTERN = re.compile(r"^[-._a-zA-Z0-9]+$")


class TlsCertificateSpec(BaseModel):
    """Subject alternative names requested for one leaf certificate."""

    model_config = {"populate_by_name": True}

    alt_names: list[str] = Field(
        default_factory=list,
        alias="altNames",
        description="Additional DNS names, the certificate name is always first",
    )
    alt_ips: list[str] = Field(
        default_factory=list,
        alias="altIPs",
        description="IP addresses embedded as IP subject alternative names",
    )

    @field_validator("alt_names")
    @classmethod
    def validate_alt_names(cls, v):
        names = []
        for name in v:
            if not isinstance(name, str) or not name.strip():
                raise ValueError("DNS names must be non-empty strings")
            if not name.isascii():
                raise ValueError(
                    f"DNS name {name} must be ASCII, use the punycode (A-label) form"
                )
            names.append(name.strip())
        return names

    @field_validator("alt_ips")
    @classmethod
    def validate_alt_ips(cls, v):
        for ip in v:
            try:
                ipaddress.ip_address(ip)
            except ValueError as e:
                raise ValueError(f"IP {ip} is not valid") from e
        return v


class RenewalPolicy(BaseModel):
    """Validity, renewal window and key size applied to every certificate."""

    model_config = {"frozen": True}

    validity_days: int = Field(
        ..., ge=1, le=MAXIMUM_VALIDITY_DAYS, description="Certificate validity in days"
    )
    renewal_window_days: int = Field(
        ..., ge=0, description="Renew certificates this many days before expiry"
    )
    key_bit_size: int = Field(
        ..., ge=MINIMUM_KEY_BIT_SIZE, description="RSA key size in bits"
    )

    @model_validator(mode="after")
    def validate_window(self):
        if self.renewal_window_days >= self.validity_days:
            raise ValueError(
                f"renewal window ({self.renewal_window_days} days) must be shorter "
                f"than validity ({self.validity_days} days)"
            )
        return self


class IdentityTemplate(BaseModel):
    """
    Subject fields shared by the root CA and the leaf certificates.

    The root common name is derived from the organization and unit only, so
    the PKI specification can never change the identity of the CA.
    """

    model_config = {"frozen": True}

    organization: str = Field(..., min_length=1)
    organizational_unit: str = Field(..., min_length=1)
    country: str | None = Field(None, min_length=2, max_length=2)
    locality: str | None = None
    province: str | None = None

    @property
    def root_common_name(self) -> str:
        return f"{self.organization}-{self.organizational_unit}"


class PkiSpec(BaseModel):
    """
    Desired certificate set for one cluster.

    Mirrors the ``pki`` section of a cluster specification.
    """

    model_config = {"populate_by_name": True}

    enabled: bool = Field(True, description="Manage the internal PKI")
    validity_days: int | None = Field(
        None, alias="validityDays", description="Certificate validity in days"
    )
    renewal_days: int | None = Field(
        None,
        alias="renewalDays",
        description="Days before expiry at which certificates are renewed",
    )
    key_size: int | None = Field(
        None, alias="keySize", description="RSA key size for generated keys"
    )
    tls: dict[str, TlsCertificateSpec] = Field(
        default_factory=dict, description="Leaf certificates to manage, by name"
    )

    @field_validator("tls")
    @classmethod
    def validate_certificate_names(cls, v):
        for name in v:
            if not name:
                raise ValueError("certificate names must not be empty")
            if name == RESERVED_CERTIFICATE_NAME:
                raise ValueError(
                    f"'{RESERVED_CERTIFICATE_NAME}' is reserved for the root CA"
                )
            if not _CERTIFICATE_NAME_PATTERN.match(name):
                raise ValueError(
                    f"certificate name '{name}' may only contain "
                    "alphanumerics, '-', '_' and '.'"
                )
        return v

    @classmethod
    def from_dict(cls, spec: dict[str, Any] | None) -> "PkiSpec":
        """
        Parse a raw ``pki`` specification.

        Args:
            spec: Raw specification, None means defaults

        Returns:
            Validated PKI specification

        Raises:
            ConfigError: If the specification is invalid
        """
        try:
            return cls.model_validate(spec or {})
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or None
            raise ConfigError(first["msg"], field=field) from e

    @property
    def names(self) -> list[str]:
        return sorted(self.tls)

    def policy(self, defaults: RenewalPolicy) -> RenewalPolicy:
        """
        Resolve the renewal policy, falling back to defaults per field.

        Raises:
            ConfigError: If the resolved values contradict each other
        """
        values = {
            "validity_days": self.validity_days
            if self.validity_days is not None
            else defaults.validity_days,
            "renewal_window_days": self.renewal_days
            if self.renewal_days is not None
            else defaults.renewal_window_days,
            "key_bit_size": self.key_size
            if self.key_size is not None
            else defaults.key_bit_size,
        }
        try:
            return RenewalPolicy(**values)
        except ValidationError as e:
            raise ConfigError(e.errors()[0]["msg"], field="pki") from e
