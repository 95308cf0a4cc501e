"""Unit tests for the PKI reconciliation pass."""

import base64
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import kopf
import pytest
from kubernetes import client

from pki_operator.errors import KubernetesAPIError, TemporaryError
from pki_operator.services import PkiReconciler
from pki_operator.settings import Settings
from pki_operator.utils.secret_store import encode_secret_data

from .conftest import TEST_KEY_SIZE

OWNER = {
    "apiVersion": "pki.operator.dev/v1",
    "kind": "Cluster",
    "name": "logs",
    "uid": "uid-1",
}

SPEC = {"tls": {"filebeat": {"altNames": ["*.domain.com"]}}}


@pytest.fixture
def app_settings(monkeypatch):
    monkeypatch.setenv("PKI_DEFAULT_KEY_SIZE", str(TEST_KEY_SIZE))
    monkeypatch.setenv("PKI_NOT_READY_DELAY_SECONDS", "7")
    return Settings()


@pytest.fixture
def store():
    store = MagicMock()
    store.get_secret = AsyncMock(return_value=None)
    store.write = AsyncMock()
    store.patch_metadata = AsyncMock()
    return store


@pytest.fixture
def reconciler(store, provider, app_settings):
    return PkiReconciler(store=store, provider=provider, app_settings=app_settings)


def secret_from_write(store: MagicMock, resource_version: str = "1"):
    """Build the Secret the API server would return after the last write."""
    name, namespace, blob, metadata = store.write.call_args.args
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=metadata.labels,
            annotations=metadata.annotations,
            owner_references=metadata.owner_references,
            resource_version=resource_version,
        ),
        data=encode_secret_data(blob),
    )


class TestDesiredMetadata:
    """Test the metadata required on the PKI secret."""

    def test_labels_and_owner(self, reconciler):
        """Should label the secret and make the cluster its controller."""
        metadata = reconciler.desired_metadata("logs", owner=OWNER)

        assert metadata.labels == {
            "pki.operator.dev/managed-by": "pki-operator",
            "pki.operator.dev/cluster": "logs",
            "pki.operator.dev/component": "pki",
        }
        assert metadata.annotations == {"pki.operator.dev/managed": "true"}
        assert metadata.owner_references == [
            {**OWNER, "controller": True, "blockOwnerDeletion": True}
        ]

    def test_without_owner(self, reconciler):
        """Should not invent an owner reference."""
        metadata = reconciler.desired_metadata("logs", annotations={"x": "y"})
        assert metadata.owner_references == []
        assert metadata.annotations["x"] == "y"


class TestReconcile:
    """Test complete reconciliation passes."""

    @pytest.mark.asyncio
    async def test_bootstrap_creates_secret(self, reconciler, store, t0):
        """Should create the PKI secret on the first pass."""
        result = await reconciler.reconcile(
            "logs", "ns", SPEC, status={}, owner=OWNER, now=t0
        )

        store.get_secret.assert_awaited_once_with("logs-pki", "ns")
        name, namespace, blob, metadata = store.write.call_args.args
        assert (name, namespace) == ("logs-pki", "ns")
        assert {"ca.key", "ca.pub", "ca.crt", "ca.crl"} <= set(blob)
        assert {"filebeat.crt", "filebeat.key"} <= set(blob)
        assert metadata.resource_version is None
        assert metadata.owner_references[0]["uid"] == "uid-1"

        assert result["phase"] == "Ready"
        assert result["action"] == "bootstrap"
        assert result["changeReasons"] == ["Generate new certificates"]
        assert result["caNotAfter"] == (t0 + timedelta(days=397)).isoformat()
        assert result["certificates"] == {
            "filebeat": (t0 + timedelta(days=397)).isoformat()
        }
        condition = result["conditions"][0]
        assert condition["type"] == "TlsReady"
        assert condition["status"] == "True"

    @pytest.mark.asyncio
    async def test_second_pass_is_noop(self, reconciler, store, t0):
        """Should not write when the secret already matches."""
        await reconciler.reconcile("logs", "ns", SPEC, owner=OWNER, now=t0)
        store.get_secret.return_value = secret_from_write(store)
        store.write.reset_mock()

        result = await reconciler.reconcile(
            "logs", "ns", SPEC, owner=OWNER, now=t0 + timedelta(hours=1)
        )

        store.write.assert_not_called()
        store.patch_metadata.assert_not_called()
        assert result["action"] == "noop"
        assert result["changeReasons"] == []
        assert result["message"] == "PKI is up to date"

    @pytest.mark.asyncio
    async def test_added_certificate_replaces_secret(self, reconciler, store, t0):
        """Should replace the secret with its resourceVersion on additions."""
        await reconciler.reconcile("logs", "ns", SPEC, owner=OWNER, now=t0)
        store.get_secret.return_value = secret_from_write(store, "5")
        first_blob = store.write.call_args.args[2]

        spec = {"tls": {**SPEC["tls"], "logstash": {}}}
        result = await reconciler.reconcile("logs", "ns", spec, owner=OWNER, now=t0)

        _, _, blob, metadata = store.write.call_args.args
        assert metadata.resource_version == "5"
        assert blob["filebeat.crt"] == first_blob["filebeat.crt"]
        assert blob["ca.crt"] == first_blob["ca.crt"]
        assert "logstash.crt" in blob
        assert result["action"] == "incremental_update"
        assert result["changeReasons"] == ["Add certificate for logstash"]

    @pytest.mark.asyncio
    async def test_stale_labels_patch_metadata(self, reconciler, store, t0):
        """Should patch metadata only when labels drifted."""
        await reconciler.reconcile("logs", "ns", SPEC, owner=OWNER, now=t0)
        secret = secret_from_write(store)
        secret.metadata.labels = {}
        store.get_secret.return_value = secret
        store.write.reset_mock()

        result = await reconciler.reconcile("logs", "ns", SPEC, owner=OWNER, now=t0)

        store.write.assert_not_called()
        name, namespace, metadata = store.patch_metadata.call_args.args
        assert name == "logs-pki"
        assert metadata.labels["pki.operator.dev/cluster"] == "logs"
        assert result["action"] == "metadata_only_update"

    @pytest.mark.asyncio
    async def test_disabled_does_not_read(self, reconciler, store):
        """Should not touch the secret when PKI is disabled."""
        result = await reconciler.reconcile("logs", "ns", {"enabled": False})

        store.get_secret.assert_not_called()
        assert result["phase"] == "Disabled"

    @pytest.mark.asyncio
    async def test_keeps_transition_time_while_ready(self, reconciler, store, t0):
        """Should keep lastTransitionTime when the condition does not change."""
        first = await reconciler.reconcile("logs", "ns", SPEC, now=t0)
        store.get_secret.return_value = secret_from_write(store)

        second = await reconciler.reconcile("logs", "ns", SPEC, status=first, now=t0)

        assert (
            second["conditions"][0]["lastTransitionTime"]
            == first["conditions"][0]["lastTransitionTime"]
        )


class TestReconcileFailures:
    """Test error handling of the pass."""

    @pytest.mark.asyncio
    async def test_invalid_spec_is_permanent(self, reconciler, store):
        """Should fail permanently on invalid configuration."""
        status: dict = {}
        with pytest.raises(kopf.PermanentError):
            await reconciler.reconcile("logs", "ns", {"tls": {"ca": {}}}, status)

        store.write.assert_not_called()
        assert status["phase"] == "Failed"
        assert status["message"].startswith("ConfigError")
        assert status["conditions"][0]["status"] == "False"
        assert status["conditions"][0]["reason"] == "ConfigError"

    @pytest.mark.asyncio
    async def test_non_ascii_dns_name_is_permanent(self, reconciler, store):
        """Should not retry an internationalized DNS name forever."""
        spec = {"tls": {"filebeat": {"altNames": ["b\u00fccher.example"]}}}
        with pytest.raises(kopf.PermanentError, match="A-label"):
            await reconciler.reconcile("logs", "ns", spec, {})

        store.get_secret.assert_not_called()

    @pytest.mark.asyncio
    async def test_unreadable_store_is_not_ready(self, reconciler, store):
        """Should back off instead of bootstrapping when the read fails."""
        store.get_secret.side_effect = KubernetesAPIError("boom", reason="Timeout")
        status: dict = {}

        with pytest.raises(kopf.TemporaryError) as exc_info:
            await reconciler.reconcile("logs", "ns", SPEC, status)

        assert exc_info.value.delay == 7
        store.write.assert_not_called()
        assert status["conditions"][0]["reason"] == "DependencyNotReady"

    @pytest.mark.asyncio
    async def test_malformed_ca_is_never_overwritten(self, reconciler, store):
        """Should refuse to bootstrap over a malformed ca.crt."""
        store.get_secret.return_value = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name="logs-pki", namespace="ns", resource_version="1"
            ),
            data={"ca.crt": base64.b64encode(b"garbage").decode()},
        )
        status: dict = {}

        with pytest.raises(kopf.PermanentError):
            await reconciler.reconcile("logs", "ns", SPEC, status)

        store.write.assert_not_called()
        assert status["message"].startswith("StateUnreadable")

    @pytest.mark.asyncio
    async def test_write_conflict_is_retried(self, reconciler, store, t0):
        """Should retry shortly after a concurrent modification."""
        store.write.side_effect = TemporaryError("changed", delay=5)

        with pytest.raises(kopf.TemporaryError) as exc_info:
            await reconciler.reconcile("logs", "ns", SPEC, now=t0)
        assert exc_info.value.delay == 5

    @pytest.mark.asyncio
    async def test_unexpected_error_is_temporary(self, reconciler, store):
        """Should wrap unexpected exceptions into a retryable error."""
        store.get_secret.side_effect = RuntimeError("surprise")

        with pytest.raises(kopf.TemporaryError, match="surprise"):
            await reconciler.reconcile("logs", "ns", SPEC)
