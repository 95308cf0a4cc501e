"""
Error handling module for the PKI operator.

This module provides a closed error hierarchy that integrates with kopf
and lets callers decide on retries from the error class alone.
"""

from .operator_errors import (
    ConfigError,
    CryptoError,
    DependencyNotReady,
    KubernetesAPIError,
    OperatorError,
    StateUnreadable,
    TemporaryError,
)

__all__ = [
    "OperatorError",
    "ConfigError",
    "CryptoError",
    "StateUnreadable",
    "DependencyNotReady",
    "TemporaryError",
    "KubernetesAPIError",
]
