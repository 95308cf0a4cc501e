"""Shared fixtures for PKI operator unit tests."""

from datetime import UTC, datetime

import pytest

from pki_operator.crypto import CryptographyProvider
from pki_operator.models import (
    IdentityTemplate,
    PersistedPKIState,
    RenewalPolicy,
    TlsCertificateSpec,
)
from pki_operator.services import (
    CertificateAuthorityManager,
    LeafCertificateIssuer,
    PkiDiffEngine,
)

# Smallest key size accepted by RenewalPolicy, keeps RSA generation fast
TEST_KEY_SIZE = 1024


@pytest.fixture
def t0() -> datetime:
    """Fixed evaluation time, whole seconds like X.509 validity fields."""
    return datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def provider() -> CryptographyProvider:
    return CryptographyProvider()


@pytest.fixture
def identity() -> IdentityTemplate:
    return IdentityTemplate(
        organization="test-cluster",
        organizational_unit="pki-operator",
        locality="internal",
        province="internal",
    )


@pytest.fixture
def policy() -> RenewalPolicy:
    return RenewalPolicy(
        validity_days=397, renewal_window_days=30, key_bit_size=TEST_KEY_SIZE
    )


@pytest.fixture
def ca_manager(provider, identity) -> CertificateAuthorityManager:
    return CertificateAuthorityManager(provider, identity)


@pytest.fixture
def issuer(provider, identity) -> LeafCertificateIssuer:
    return LeafCertificateIssuer(provider, identity)


@pytest.fixture
def engine(ca_manager, issuer, policy) -> PkiDiffEngine:
    return PkiDiffEngine(ca_manager, issuer, policy)


@pytest.fixture
def root_ca(ca_manager, policy, t0):
    """Root CA valid from t0 for 397 days."""
    return ca_manager.create(policy, now=t0)


@pytest.fixture
def other_ca(provider, identity, t0):
    """An unrelated root CA, for signature mismatch checks."""
    return provider.generate_ca("other-root", identity, 397, TEST_KEY_SIZE, now=t0)


@pytest.fixture
def make_state(issuer, root_ca, policy, t0):
    """Build a persisted state with leaves issued by ``root_ca``."""

    def _make(*names: str, **changes) -> PersistedPKIState:
        leaves = {
            name: issuer.issue(root_ca, name, TlsCertificateSpec(), policy, now=t0)
            for name in names
        }
        return PersistedPKIState(ca=root_ca, leaves=leaves, **changes)

    return _make
