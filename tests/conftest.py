"""Shared test fixtures for vault-auto tests."""

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest

from vault_auto.cluster import Cluster
from vault_auto.exceptions import VaultAPIError
from vault_auto.models import BootstrapCredentials, ClusterStatus, PodRef


class FakeVault:
    """In-memory stand-in for a single Vault replica behind a VaultClient."""

    def __init__(self, *, initialized=True, sealed=True, threshold=3, shares=5):
        self.initialized = initialized
        self.sealed = sealed
        self.threshold = threshold
        self.shares = shares
        self.progress = 0
        self.submitted = []
        self.init_calls = []
        self.reject_keys = False

    def seal_status(self):
        return ClusterStatus(
            initialized=self.initialized,
            sealed=self.sealed,
            threshold=self.threshold,
            shares=self.shares,
            progress=self.progress,
            seal_type="shamir",
        )

    def submit_unseal_key(self, key):
        if self.reject_keys:
            raise VaultAPIError("Could not submit unseal key: invalid key")
        self.submitted.append(key)
        self.progress += 1
        if self.progress >= self.threshold:
            self.sealed = False
            self.progress = 0
        return self.seal_status()

    def initialize(self, shares, threshold, *, high_availability=False):
        self.init_calls.append((shares, threshold, high_availability))
        self.initialized = True
        self.threshold = threshold
        self.shares = shares
        return BootstrapCredentials(
            unseal_keys=[f"key-{i}" for i in range(shares)],
            unseal_keys_encoded=[f"a2V5LXtp{i}" for i in range(shares)],
            root_token="hvs.root",
        )


def make_pod(name, namespace="vault", phase="Running", port=8200, config_maps=()):
    """Build a mock kubernetes V1Pod."""
    pod = MagicMock()
    pod.metadata.name = name
    pod.metadata.namespace = namespace
    pod.metadata.labels = {"app.kubernetes.io/name": "vault"}
    pod.status.phase = phase
    container = MagicMock()
    container.ports = [MagicMock(container_port=port)] if port else []
    pod.spec.containers = [container]
    volumes = []
    for config_map in config_maps:
        volume = MagicMock()
        volume.config_map.name = config_map
        volumes.append(volume)
    pod.spec.volumes = volumes
    return pod


def pod_ref(name, namespace="vault", phase="Running", port=8200, config_maps=()):
    """Build a PodRef snapshot."""
    return PodRef(name=name, namespace=namespace, phase=phase, container_port=port, config_maps=tuple(config_maps))


@pytest.fixture
def mock_kube_contexts():
    """Mock kubernetes config contexts."""
    with patch("kubernetes.config.list_kube_config_contexts") as mock:
        mock.return_value = ([{"name": "test-context"}], {"name": "test-context"})
        yield mock


@pytest.fixture
def mock_kube_config():
    """Mock kubernetes config loading."""
    with patch("kubernetes.config.load_kube_config") as mock:
        yield mock


@pytest.fixture
def mock_core_v1_api():
    """Mock CoreV1Api for pod, service and config map lookups."""
    with patch("kubernetes.client.CoreV1Api") as mock:
        api_instance = MagicMock()
        mock.return_value = api_instance
        yield api_instance


@pytest.fixture
def cluster(mock_kube_contexts, mock_kube_config, mock_core_v1_api):
    """Cluster instance without cluster access."""
    return Cluster(select_context=False, pod_timeout=1.0)


@pytest.fixture
def replicas():
    """Three running Vault replicas."""
    return [pod_ref("vault-0"), pod_ref("vault-1"), pod_ref("vault-2")]


@pytest.fixture
def fake_cluster():
    """Cluster mock whose pods are already running and mount no configuration."""
    mock = MagicMock()
    mock.ensure_running.side_effect = lambda pod: pod
    mock.mounted_configs.return_value = []
    return mock


@pytest.fixture
def fake_tunnels():
    """TunnelManager mock that yields a tunnel per pod and records the order."""
    manager = MagicMock()
    manager.opened = []

    @contextmanager
    def open_tunnel(pod):
        tunnel = MagicMock()
        tunnel.target_pod = pod
        tunnel.address = "http://127.0.0.1:8200"
        manager.opened.append(pod.name)
        yield tunnel

    manager.open.side_effect = open_tunnel
    return manager


@pytest.fixture
def vaults():
    """One FakeVault per replica, sharing the initialization state of the cluster."""
    return {
        "vault-0": FakeVault(initialized=False),
        "vault-1": FakeVault(initialized=False),
        "vault-2": FakeVault(initialized=False),
    }


@pytest.fixture
def client_factory(vaults):
    """VaultClient factory routing each tunnel to its pod's FakeVault."""

    def factory(tunnel, token=None):
        return vaults[tunnel.target_pod.name]

    return factory
