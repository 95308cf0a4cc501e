"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_KEY_BIT_SIZE,
    DEFAULT_LOCALITY,
    DEFAULT_ORGANIZATIONAL_UNIT,
    DEFAULT_PROVINCE,
    DEFAULT_RENEWAL_WINDOW_DAYS,
    DEFAULT_VALIDITY_DAYS,
)
from .models.pki import IdentityTemplate, RenewalPolicy


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Watched cluster resources carrying a ``pki`` section in their spec
    resource_group: str = Field(
        default="pki.operator.dev",
        validation_alias="PKI_RESOURCE_GROUP",
        description="API group of the cluster resources to manage",
    )
    resource_version: str = Field(
        default="v1",
        validation_alias="PKI_RESOURCE_VERSION",
        description="API version of the cluster resources to manage",
    )
    resource_plural: str = Field(
        default="clusters",
        validation_alias="PKI_RESOURCE_PLURAL",
        description="Plural name of the cluster resources to manage",
    )
    namespaces: str = Field(
        default="",
        validation_alias="PKI_OPERATOR_NAMESPACES",
        description="Comma-separated namespaces to watch (empty = all namespaces)",
    )
    renewal_check_interval_seconds: int = Field(
        default=3600,
        validation_alias="PKI_RENEWAL_CHECK_INTERVAL_SECONDS",
        description="Interval of the periodic pass that renews expiring certificates",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    # Certificate policy fallbacks
    default_validity_days: int = Field(
        default=DEFAULT_VALIDITY_DAYS,
        validation_alias="PKI_DEFAULT_VALIDITY_DAYS",
        description="Validity in days when the PKI spec does not set validityDays",
    )
    default_renewal_days: int = Field(
        default=DEFAULT_RENEWAL_WINDOW_DAYS,
        validation_alias="PKI_DEFAULT_RENEWAL_DAYS",
        description="Days before expiry at which certificates are renewed",
    )
    default_key_size: int = Field(
        default=DEFAULT_KEY_BIT_SIZE,
        validation_alias="PKI_DEFAULT_KEY_SIZE",
        description="RSA key size when the PKI spec does not set keySize",
    )

    # Certificate subject identity
    organizational_unit: str = Field(
        default=DEFAULT_ORGANIZATIONAL_UNIT,
        validation_alias="PKI_ORGANIZATIONAL_UNIT",
        description="Organizational unit written in every certificate subject",
    )
    country: str = Field(
        default="",
        validation_alias="PKI_COUNTRY",
        description="Two letter country code, omitted from subjects when empty",
    )
    locality: str = Field(
        default=DEFAULT_LOCALITY,
        validation_alias="PKI_LOCALITY",
        description="Locality written in every certificate subject",
    )
    province: str = Field(
        default=DEFAULT_PROVINCE,
        validation_alias="PKI_PROVINCE",
        description="State or province written in every certificate subject",
    )

    # Retry behavior
    not_ready_delay_seconds: int = Field(
        default=20,
        validation_alias="PKI_NOT_READY_DELAY_SECONDS",
        description="Backoff when a dependency of the pass is not available yet",
    )
    conflict_delay_seconds: int = Field(
        default=5,
        validation_alias="PKI_CONFLICT_DELAY_SECONDS",
        description="Backoff after a concurrent modification of the PKI secret",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None

    def default_policy(self) -> RenewalPolicy:
        """Renewal policy used when a spec carries no overrides."""
        return RenewalPolicy(
            validity_days=self.default_validity_days,
            renewal_window_days=self.default_renewal_days,
            key_bit_size=self.default_key_size,
        )

    def identity_template(self, cluster_name: str) -> IdentityTemplate:
        """
        Build the certificate identity for a cluster.

        Args:
            cluster_name: Name of the owning cluster resource

        Returns:
            Identity with the organization set to the cluster name
        """
        return IdentityTemplate(
            organization=cluster_name,
            organizational_unit=self.organizational_unit,
            country=self.country or None,
            locality=self.locality,
            province=self.province,
        )


# Global settings instance - initialized once at module import
settings = Settings()
