"""Cryptographic primitives for the PKI operator."""

from .provider import CryptographyProvider, CryptoProvider

__all__ = ["CryptoProvider", "CryptographyProvider"]
