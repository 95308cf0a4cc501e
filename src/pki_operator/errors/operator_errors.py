"""
Operator error hierarchy with categorization and retry logic.

This module defines the error types used throughout the PKI operator,
providing clear categorization and integration with kopf's retry mechanisms.
"""

import kopf


class OperatorError(Exception):
    """
    Base error class for all operator-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = 30,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize operator error.

        Args:
            message: Human-readable error description
            category: Error category (configuration, crypto, state, dependency)
            retryable: Whether kopf should retry this operation
            delay: Suggested retry delay in seconds
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self):
        """Convert to appropriate kopf exception type."""
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ConfigError(OperatorError):
    """Desired PKI configuration is invalid or self-contradictory."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        if field:
            message = f"Invalid PKI configuration in field '{field}': {message}"
        super().__init__(
            message=message,
            category="configuration",
            retryable=False,
            user_action=user_action or "Fix the PKI specification",
        )
        self.field = field


class CryptoError(OperatorError):
    """Key generation, signing or parsing failure."""

    def __init__(
        self,
        operation: str,
        message: str,
        name: str | None = None,
        cause: Exception | None = None,
    ):
        subject = f" for certificate '{name}'" if name else ""
        super().__init__(
            message=f"Crypto operation '{operation}' failed{subject}: {message}",
            category="crypto",
            retryable=True,
            delay=30,
            user_action="Wait for automatic retry or inspect operator logs",
            cause=cause,
        )
        self.operation = operation
        self.name = name


class StateUnreadable(OperatorError):
    """Persisted PKI material exists but cannot be decoded."""

    def __init__(
        self, message: str, field: str | None = None, cause: Exception | None = None
    ):
        if field:
            message = f"Field '{field}' of the PKI secret is unreadable: {message}"
        super().__init__(
            message=message,
            category="state",
            retryable=False,
            user_action=(
                "Repair or delete the PKI secret; deleting it regenerates every "
                "certificate and breaks trust for existing consumers"
            ),
            cause=cause,
        )
        self.field = field


class DependencyNotReady(OperatorError):
    """A prerequisite of the reconciliation pass is not available yet."""

    def __init__(self, message: str, delay: int = 20, cause: Exception | None = None):
        super().__init__(
            message=message,
            category="dependency",
            retryable=True,
            delay=delay,
            user_action="Wait for automatic retry",
            cause=cause,
        )


class TemporaryError(OperatorError):
    """Temporary error that should be retried."""

    def __init__(self, message: str, delay: int = 30, user_action: str | None = None):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            delay=delay,
            user_action=user_action
            or "Wait for automatic retry or check system status",
        )


class KubernetesAPIError(OperatorError):
    """Error communicating with Kubernetes API."""

    def __init__(self, message: str, reason: str | None = None, retryable: bool = True):
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        super().__init__(
            message=f"Kubernetes API error: {message}",
            category="external",
            retryable=retryable,
            delay=60,
            user_action="Check RBAC permissions and cluster connectivity",
        )
        self.reason = reason
