"""Unit tests for the reconciliation diff engine."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from pki_operator.errors import ConfigError, CryptoError
from pki_operator.models import (
    ObjectMetadata,
    PersistedPKIState,
    PkiSpec,
    RenewalPolicy,
    TlsCertificateSpec,
)
from pki_operator.services import (
    ActionKind,
    CertificateAuthorityManager,
    DesiredMetadata,
    NoOp,
    PkiDiffEngine,
    Write,
)
from pki_operator.services.diff_engine import describe_map_diff


def desired(*names: str, **overrides) -> PkiSpec:
    return PkiSpec.from_dict({"tls": {name: {} for name in names}, **overrides})


LABELS = {"pki.operator.dev/managed-by": "pki-operator"}


class TestDisabled:
    """Test the disabled PKI."""

    def test_disabled_is_noop(self, engine, make_state, t0):
        """Should leave existing state untouched when disabled."""
        spec = PkiSpec.from_dict({"enabled": False, "tls": {"filebeat": {}}})
        assert isinstance(engine.compute(spec, make_state("filebeat"), t0), NoOp)

    def test_disabled_without_state(self, engine, t0):
        """Should not bootstrap when disabled."""
        action = engine.compute(PkiSpec.from_dict({"enabled": False}), None, t0)
        assert action.kind is ActionKind.NOOP


class TestBootstrap:
    """Test first-time generation."""

    def test_generates_ca_and_every_leaf(self, engine, provider, t0):
        """Should write a CA and one verifiable leaf per desired name."""
        action = engine.compute(desired("filebeat", "logstash"), None, t0)

        assert isinstance(action, Write)
        assert action.kind is ActionKind.BOOTSTRAP
        assert action.change_reasons == ["Generate new certificates"]
        state = action.state
        assert state.names == ["filebeat", "logstash"]
        for leaf in state.leaves.values():
            assert provider.is_issued_by(state.ca, leaf.certificate)

    def test_concrete_scenario(self, engine, t0):
        """Should match the documented filebeat example."""
        spec = PkiSpec.from_dict(
            {
                "enabled": True,
                "validityDays": 397,
                "renewalDays": 30,
                "tls": {"filebeat": {"altNames": ["*.domain.com"]}},
            }
        )
        action = engine.compute(spec, PersistedPKIState(), t0)

        assert action.kind is ActionKind.BOOTSTRAP
        assert action.state.ca.not_after == t0 + timedelta(days=397)
        leaf = action.state.leaves["filebeat"]
        assert list(leaf.subject_alt_names) == ["filebeat", "*.domain.com"]
        assert leaf.not_after == t0 + timedelta(days=397)

    def test_bootstrap_without_certificates(self, engine, t0):
        """Should still create the CA when no leaf is requested."""
        action = engine.compute(desired(), None, t0)
        assert action.kind is ActionKind.BOOTSTRAP
        assert action.state.ca is not None
        assert action.state.leaves == {}

    def test_incomplete_ca_without_leaves(self, engine, t0):
        """Should bootstrap when only part of a CA was persisted."""
        current = PersistedPKIState(ca_incomplete=True)
        assert engine.compute(desired("a"), current, t0).kind is ActionKind.BOOTSTRAP

    def test_leaves_without_ca_are_renewed(self, engine, make_state, t0):
        """Should regenerate everything when leaves exist without a CA."""
        current = make_state("filebeat").with_changes(ca=None, ca_incomplete=True)
        action = engine.compute(desired("filebeat"), current, t0)

        assert action.kind is ActionKind.FULL_ROTATE
        assert action.change_reasons == ["Renew all certificates"]
        assert (
            action.state.leaves["filebeat"].certificate
            != current.leaves["filebeat"].certificate
        )

    def test_applies_spec_policy(self, engine, t0):
        """Should issue with the validity requested for the cluster."""
        action = engine.compute(desired("a", validityDays=90, renewalDays=10), None, t0)
        assert action.state.leaves["a"].not_after == t0 + timedelta(days=90)
        assert action.state.ca.not_after == t0 + timedelta(days=90)


class TestIdempotence:
    """Test that a matching state yields no action."""

    def test_matching_state_is_noop(self, engine, t0):
        """Should not touch a state produced by a previous pass."""
        first = engine.compute(desired("filebeat"), None, t0)
        later = t0 + timedelta(days=1)
        action = engine.compute(desired("filebeat"), first.state, later)
        assert isinstance(action, NoOp)

    def test_matching_metadata_is_noop(self, engine, t0):
        """Should not rewrite metadata that already matches."""
        metadata = DesiredMetadata(labels=LABELS, annotations={"a": "b"})
        first = engine.compute(desired("filebeat"), None, t0, metadata=metadata)
        action = engine.compute(desired("filebeat"), first.state, t0, metadata=metadata)
        assert isinstance(action, NoOp)


class TestIncrementalUpdate:
    """Test adding and removing individual certificates."""

    def test_added_leaf_keeps_others_byte_identical(self, engine, provider, t0):
        """Should issue only the new leaf against the existing CA."""
        current = engine.compute(desired("a", "b"), None, t0).state
        action = engine.compute(desired("a", "b", "c"), current, t0)

        assert action.kind is ActionKind.INCREMENTAL_UPDATE
        assert action.change_reasons == ["Add certificate for c"]
        state = action.state
        assert state.ca is current.ca
        for name in ("a", "b"):
            assert state.leaves[name].certificate == current.leaves[name].certificate
            assert state.leaves[name].private_key == current.leaves[name].private_key
        assert provider.is_issued_by(current.ca, state.leaves["c"].certificate)

    def test_removed_leaf(self, engine, t0):
        """Should drop the removed leaf and keep the rest."""
        current = engine.compute(desired("a", "b"), None, t0).state
        action = engine.compute(desired("a"), current, t0)

        assert action.kind is ActionKind.INCREMENTAL_UPDATE
        assert action.change_reasons == ["Remove certificate for b"]
        assert action.state.names == ["a"]
        assert action.state.leaves["a"] is current.leaves["a"]

    def test_add_and_remove_in_one_pass(self, engine, t0):
        """Should report additions before removals."""
        current = engine.compute(desired("a", "b"), None, t0).state
        action = engine.compute(desired("a", "c"), current, t0)
        assert action.change_reasons == [
            "Add certificate for c",
            "Remove certificate for b",
        ]

    def test_unreadable_leaf_still_desired_is_reissued(self, engine, t0):
        """Should replace a skipped leaf that is still requested."""
        current = engine.compute(desired("a"), None, t0).state.with_changes(
            unreadable_leaves=frozenset({"b"})
        )
        action = engine.compute(desired("a", "b"), current, t0)

        assert action.kind is ActionKind.INCREMENTAL_UPDATE
        assert action.change_reasons == ["Add certificate for b"]
        assert action.state.unreadable_leaves == frozenset()

    def test_unreadable_leaf_no_longer_desired_is_removed(self, engine, t0):
        """Should drop a skipped leaf that is no longer requested."""
        current = engine.compute(desired("a"), None, t0).state.with_changes(
            unreadable_leaves=frozenset({"old"})
        )
        action = engine.compute(desired("a"), current, t0)
        assert action.change_reasons == ["Remove certificate for old"]


class TestFullRotation:
    """Test regeneration of the CA and every leaf."""

    def test_expiring_ca_reissues_everything(self, engine, t0):
        """Should rotate every leaf when the CA enters its window."""
        current = engine.compute(desired("a", "b"), None, t0).state
        now = t0 + timedelta(days=368)
        action = engine.compute(desired("a", "b"), current, now)

        assert action.kind is ActionKind.FULL_ROTATE
        assert action.change_reasons == ["Renew all certificates"]
        assert action.state.ca.certificate != current.ca.certificate
        assert action.state.ca.not_after == now + timedelta(days=397)
        for name in ("a", "b"):
            assert (
                action.state.leaves[name].certificate
                != current.leaves[name].certificate
            )

    def test_rotation_dominates_name_changes(self, engine, t0):
        """Should rotate instead of adding when the CA expires."""
        current = engine.compute(desired("a"), None, t0).state
        action = engine.compute(desired("a", "b"), current, t0 + timedelta(days=368))
        assert action.kind is ActionKind.FULL_ROTATE
        assert action.state.names == ["a", "b"]

    def test_single_expiring_leaf_rotates_everything(
        self, engine, issuer, root_ca, make_state, t0
    ):
        """Should rotate the whole PKI when one leaf is about to expire."""
        short = RenewalPolicy(
            validity_days=40, renewal_window_days=30, key_bit_size=1024
        )
        state = make_state("a")
        leaves = dict(state.leaves)
        leaves["b"] = issuer.issue(root_ca, "b", TlsCertificateSpec(), short, now=t0)
        current = state.with_changes(leaves=leaves)

        action = engine.compute(desired("a", "b"), current, t0 + timedelta(days=11))

        assert action.kind is ActionKind.FULL_ROTATE
        assert action.state.ca.certificate != root_ca.certificate

    def test_orphaned_leaf_rotates_everything(
        self, engine, provider, identity, other_ca, make_state, t0
    ):
        """Should rotate when a leaf was not signed by the live CA."""
        state = make_state("a")
        leaves = dict(state.leaves)
        leaves["b"] = provider.issue_certificate(
            other_ca, "b", identity, 397, 1024, dns_names=["b"], now=t0
        )
        current = state.with_changes(leaves=leaves)

        action = engine.compute(desired("a", "b"), current, t0)

        assert action.kind is ActionKind.FULL_ROTATE
        for leaf in action.state.leaves.values():
            assert provider.is_issued_by(action.state.ca, leaf.certificate)


class TestMetadataOnlyUpdate:
    """Test metadata reconciliation without touching PEM bytes."""

    def test_stale_labels(self, engine, t0):
        """Should rewrite stale labels and keep every PEM byte."""
        current = engine.compute(desired("a"), None, t0).state.with_changes(
            metadata=ObjectMetadata(name="c-pki", namespace="ns", resource_version="3")
        )
        metadata = DesiredMetadata(labels=LABELS)
        action = engine.compute(desired("a"), current, t0, metadata=metadata)

        assert action.kind is ActionKind.METADATA_ONLY_UPDATE
        assert action.metadata_only
        assert action.change_reasons == [
            "Update labels: pki.operator.dev/managed-by"
        ]
        assert action.state.ca is current.ca
        assert action.state.leaves == current.leaves
        assert action.state.metadata.labels == LABELS
        assert action.state.metadata.resource_version == "3"

    def test_extra_labels_are_tolerated(self, engine, t0):
        """Should ignore labels owned by someone else."""
        current = engine.compute(desired("a"), None, t0).state.with_changes(
            metadata=ObjectMetadata(labels={**LABELS, "team": "logs"})
        )
        action = engine.compute(
            desired("a"), current, t0, metadata=DesiredMetadata(labels=LABELS)
        )
        assert isinstance(action, NoOp)

    def test_missing_owner_reference(self, engine, t0):
        """Should add a missing owner reference."""
        current = engine.compute(desired("a"), None, t0).state
        owner = {"apiVersion": "v1", "kind": "Cluster", "name": "c", "uid": "u-1"}
        metadata = DesiredMetadata(owner_references=[owner])
        action = engine.compute(desired("a"), current, t0, metadata=metadata)

        assert action.change_reasons == ["Update owner references"]
        assert action.state.metadata.owner_references == [owner]

    def test_certificate_change_carries_metadata(self, engine, t0):
        """Should merge desired metadata into certificate writes."""
        current = engine.compute(desired("a"), None, t0).state
        action = engine.compute(
            desired("a", "b"), current, t0, metadata=DesiredMetadata(labels=LABELS)
        )
        assert action.kind is ActionKind.INCREMENTAL_UPDATE
        assert action.state.metadata.labels == LABELS

    def test_describe_map_diff(self):
        """Should list missing or different keys only."""
        assert describe_map_diff("labels", {"a": "1"}, {"a": "1", "b": "2"}) is None
        assert (
            describe_map_diff("labels", {"b": "2", "a": "1"}, {"a": "0"})
            == "Update labels: a, b"
        )


class TestErrors:
    """Test error propagation."""

    def test_invalid_policy(self, engine, t0):
        """Should raise ConfigError for a contradictory policy."""
        with pytest.raises(ConfigError):
            engine.compute(desired("a", validityDays=10, renewalDays=20), None, t0)

    def test_crypto_failure_propagates(self, issuer, identity, policy, t0):
        """Should surface CryptoError instead of writing partial state."""
        provider = MagicMock()
        provider.generate_ca.side_effect = CryptoError("generate_ca", "no entropy")
        engine = PkiDiffEngine(
            CertificateAuthorityManager(provider, identity), issuer, policy
        )
        with pytest.raises(CryptoError):
            engine.compute(desired("a"), None, t0)

    def test_non_ascii_alt_name_is_config_error(self, engine, t0):
        """Should reject an internationalized DNS name as invalid configuration."""
        spec = desired("filebeat")
        spec.tls["filebeat"] = TlsCertificateSpec.model_construct(
            alt_names=["b\u00fccher.example"], alt_ips=[]
        )
        with pytest.raises(ConfigError, match="A-label"):
            engine.compute(spec, None, t0)

    def test_unbounded_validity_is_config_error(self, engine, t0):
        """Should not retry a validity that overflows certificate dates."""
        with pytest.raises(ConfigError):
            engine.compute(desired("a", validityDays=10_000_000), None, t0)
