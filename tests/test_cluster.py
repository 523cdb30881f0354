"""Tests for cluster.py module."""

import threading
from unittest.mock import MagicMock, patch

import click
import pytest
from conftest import make_pod, pod_ref
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError, NewConnectionError

from vault_auto.cluster import Cluster, ensure_single_namespace, leader_by_name
from vault_auto.exceptions import (
    ClusterConnectionError,
    LeaderAmbiguousError,
    LeaderNotFoundError,
    MultipleNamespacesError,
    OperationCancelledError,
    PodsNotFoundError,
    PodStartupTimeoutError,
)
from vault_auto.models import PodRef


class TestClusterContextSelection:
    """Tests for context selection functionality."""

    def test_set_context_without_selection(self, mock_kube_contexts, mock_kube_config):
        """Test using current context without selection."""
        cluster = Cluster(select_context=False)

        assert cluster.context == "test-context"
        mock_kube_config.assert_called_once_with(context="test-context")

    def test_set_context_with_selection(self, mock_kube_config):
        """Test prompting user for context selection."""
        with (
            patch("kubernetes.config.list_kube_config_contexts") as mock_contexts,
            patch("questionary.select") as mock_select,
        ):
            mock_contexts.return_value = (
                [{"name": "context1"}, {"name": "context2"}],
                {"name": "context1"},
            )
            mock_select.return_value.ask.return_value = "context2"

            cluster = Cluster(select_context=True)

            assert cluster.context == "context2"
            mock_select.assert_called_once()

    def test_set_context_selection_cancelled(self, mock_kube_config):
        """Test aborting when the context prompt is cancelled."""
        with (
            patch("kubernetes.config.list_kube_config_contexts") as mock_contexts,
            patch("questionary.select") as mock_select,
        ):
            mock_contexts.return_value = ([{"name": "context1"}], {"name": "context1"})
            mock_select.return_value.ask.return_value = None

            with pytest.raises(click.Abort):
                Cluster(select_context=True)

    def test_set_context_invalid_kubeconfig(self):
        """Test error when kubeconfig is invalid or missing."""
        with patch("kubernetes.config.list_kube_config_contexts") as mock_contexts:
            mock_contexts.side_effect = ConfigException("Invalid kube-config file. No configuration found.")

            with pytest.raises(ClusterConnectionError) as exc_info:
                Cluster(select_context=False)

            assert "Invalid or missing kubeconfig" in str(exc_info.value)


    def test_load_kube_config_failure(self, mock_kube_contexts, mock_kube_config):
        """Test an unloadable context is reported as a connection error."""
        mock_kube_config.side_effect = ConfigException("Invalid kube-config file. Expected key user")

        with pytest.raises(ClusterConnectionError) as exc_info:
            Cluster(select_context=False)

        assert "test-context" in str(exc_info.value)


class TestFindPods:
    """Tests for Vault pod discovery."""

    def test_find_pods_all_namespaces(self, cluster, mock_core_v1_api):
        """Test an empty namespace searches the whole cluster."""
        mock_core_v1_api.list_pod_for_all_namespaces.return_value.items = [make_pod("vault-0"), make_pod("vault-1")]

        pods = cluster.find_pods()

        assert [pod.name for pod in pods] == ["vault-0", "vault-1"]
        assert pods[0].container_port == 8200
        mock_core_v1_api.list_pod_for_all_namespaces.assert_called_once_with(
            label_selector="app.kubernetes.io/name=vault"
        )

    def test_find_pods_in_namespace(self, cluster, mock_core_v1_api):
        """Test an explicit namespace and label are passed through."""
        mock_core_v1_api.list_namespaced_pod.return_value.items = [make_pod("vault-0", namespace="secrets")]

        pods = cluster.find_pods("secrets", "app=vault")

        assert pods[0].namespace == "secrets"
        mock_core_v1_api.list_namespaced_pod.assert_called_once_with("secrets", label_selector="app=vault")

    def test_find_pods_none_found(self, cluster, mock_core_v1_api):
        """Test error naming the selector when nothing matches."""
        mock_core_v1_api.list_namespaced_pod.return_value.items = []

        with pytest.raises(PodsNotFoundError) as exc_info:
            cluster.find_pods("vault", "app=vault")

        assert "app=vault" in str(exc_info.value)
        assert "vault" in str(exc_info.value)

    def test_find_pods_connection_error(self, cluster, mock_core_v1_api):
        """Test error when cluster is unreachable."""
        connection_error = NewConnectionError(None, "Failed to establish a new connection: [Errno 111]")
        mock_core_v1_api.list_pod_for_all_namespaces.side_effect = MaxRetryError(
            pool=None, url="/api/v1/pods", reason=connection_error
        )

        with pytest.raises(ClusterConnectionError) as exc_info:
            cluster.find_pods()

        assert "Failed to connect" in str(exc_info.value)

    def test_find_pods_forbidden(self, cluster, mock_core_v1_api):
        """Test an RBAC refusal names the selector and scope."""
        mock_core_v1_api.list_pod_for_all_namespaces.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ClusterConnectionError) as exc_info:
            cluster.find_pods(label_selector="app=vault")

        message = str(exc_info.value)
        assert "403 Forbidden" in message
        assert "app=vault" in message
        assert "all namespaces" in message

    def test_pod_ref_reads_mounted_config_maps(self):
        """Test config map volumes are captured in the snapshot."""
        pod = make_pod("vault-0", config_maps=["vault-config"])

        snapshot = PodRef.from_pod(pod)

        assert snapshot.config_maps == ("vault-config",)
        assert str(snapshot) == "vault/vault-0"


class TestEnsureSingleNamespace:
    """Tests for namespace resolution."""

    def test_single_namespace(self):
        """Test pods in one namespace resolve to it."""
        assert ensure_single_namespace([pod_ref("vault-0"), pod_ref("vault-1")]) == "vault"

    def test_explicit_namespace_wins(self):
        """Test an explicit namespace is returned as is."""
        pods = [pod_ref("vault-0", namespace="a"), pod_ref("vault-0", namespace="b")]

        assert ensure_single_namespace(pods, "a") == "a"

    def test_multiple_namespaces(self):
        """Test pods spanning namespaces are rejected."""
        pods = [pod_ref("vault-0", namespace="b"), pod_ref("vault-0", namespace="a")]

        with pytest.raises(MultipleNamespacesError) as exc_info:
            ensure_single_namespace(pods)

        assert exc_info.value.namespaces == ["a", "b"]

    def test_no_pods_names_selector(self):
        """Test the error names the selector the pods were searched with."""
        with pytest.raises(PodsNotFoundError) as exc_info:
            ensure_single_namespace([], label_selector="app=vault")

        assert exc_info.value.label_selector == "app=vault"


class TestLeaderSelection:
    """Tests for leader election heuristics."""

    def test_single_pod_is_leader(self, cluster, mock_core_v1_api):
        """Test a lone replica is the leader without further lookups."""
        leader = cluster.select_leader([pod_ref("vault-5")], "vault")

        assert leader.name == "vault-5"
        mock_core_v1_api.list_namespaced_pod.assert_not_called()

    def test_active_label_wins(self, cluster, mock_core_v1_api, replicas):
        """Test the pod carrying the active label is chosen."""
        mock_core_v1_api.list_namespaced_pod.return_value.items = [make_pod("vault-2")]

        leader = cluster.select_leader(replicas, "vault")

        assert leader.name == "vault-2"
        mock_core_v1_api.list_namespaced_pod.assert_called_once_with(
            "vault", label_selector="app.kubernetes.io/name=vault,vault-active=true"
        )

    def test_ordinal_zero_fallback(self, cluster, mock_core_v1_api):
        """Test vault-0 leads when no pod is labelled active."""
        mock_core_v1_api.list_namespaced_pod.return_value.items = []
        pods = [pod_ref("vault-1"), pod_ref("vault-0"), pod_ref("vault-2")]

        leader = cluster.select_leader(pods, "vault")

        assert leader.name == "vault-0"

    def test_several_active_pods(self, cluster, mock_core_v1_api, replicas):
        """Test more than one active pod is ambiguous."""
        mock_core_v1_api.list_namespaced_pod.return_value.items = [make_pod("vault-0"), make_pod("vault-1")]

        with pytest.raises(LeaderAmbiguousError) as exc_info:
            cluster.select_leader(replicas, "vault")

        assert exc_info.value.pods == ["vault-0", "vault-1"]

    def test_no_pods(self, cluster):
        """Test an empty candidate list is rejected."""
        with pytest.raises(PodsNotFoundError):
            cluster.select_leader([], "vault")

    def test_leader_by_name_prefers_ordinal_suffix(self):
        """Test a -0 suffix beats a zero elsewhere in the name."""
        pods = [pod_ref("vault10-1"), pod_ref("vault10-0")]

        assert leader_by_name(pods).name == "vault10-0"

    def test_leader_by_name_any_zero(self):
        """Test falling back to any name containing a zero."""
        assert leader_by_name([pod_ref("vault-a"), pod_ref("vault-b0")]).name == "vault-b0"

    def test_leader_by_name_unfamiliar_naming(self):
        """Test error when no name contains a zero."""
        with pytest.raises(LeaderNotFoundError) as exc_info:
            leader_by_name([pod_ref("vault-a"), pod_ref("vault-b")])

        assert "vault-a" in str(exc_info.value)


class TestWaitUntilRunning:
    """Tests for waiting on pod startup."""

    def test_running_pod_returns_immediately(self, cluster, mock_core_v1_api):
        """Test no polling happens for a running pod."""
        elapsed = cluster.wait_until_running(pod_ref("vault-0"))

        assert elapsed < 1.0
        mock_core_v1_api.read_namespaced_pod.assert_not_called()

    def test_pending_pod_becomes_running(self, cluster, mock_core_v1_api):
        """Test polling until the pod reports Running."""
        pending = MagicMock()
        pending.status.phase = "Pending"
        running = MagicMock()
        running.status.phase = "Running"
        mock_core_v1_api.read_namespaced_pod.side_effect = [pending, running]

        cluster.wait_until_running(pod_ref("vault-0", phase="Pending"), interval=0.01)

        assert mock_core_v1_api.read_namespaced_pod.call_count == 2
        mock_core_v1_api.read_namespaced_pod.assert_called_with("vault-0", "vault")

    def test_timeout(self, cluster, mock_core_v1_api):
        """Test a pod that never starts times out."""
        mock_core_v1_api.read_namespaced_pod.return_value.status.phase = "Pending"

        with pytest.raises(PodStartupTimeoutError) as exc_info:
            cluster.wait_until_running(pod_ref("vault-0", phase="Pending"), timeout=0.05, interval=0.01)

        assert "Pending" in str(exc_info.value)

    def test_read_pod_failure(self, cluster, mock_core_v1_api):
        """Test a failed phase lookup is reported as a connection error."""
        mock_core_v1_api.read_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(ClusterConnectionError) as exc_info:
            cluster.wait_until_running(pod_ref("vault-0", phase="Pending"), timeout=10, interval=0.01)

        assert "vault/vault-0" in str(exc_info.value)

    def test_cancelled(self, mock_kube_contexts, mock_kube_config, mock_core_v1_api):
        """Test a cancelled run stops waiting."""
        cancel = threading.Event()
        cancel.set()
        cluster = Cluster(select_context=False, cancel=cancel)

        with pytest.raises(OperationCancelledError):
            cluster.wait_until_running(pod_ref("vault-0", phase="Pending"), timeout=10)

    def test_ensure_running_returns_running_snapshot(self, cluster, mock_core_v1_api):
        """Test the returned snapshot reports Running."""
        mock_core_v1_api.read_namespaced_pod.return_value.status.phase = "Running"

        pod = cluster.ensure_running(pod_ref("vault-0", phase="Pending"))

        assert pod.running


class TestClusterLookups:
    """Tests for config map and service lookups."""

    def test_mounted_configs(self, cluster, mock_core_v1_api):
        """Test config map data is collected and missing maps are skipped."""
        found = MagicMock()
        found.data = {"vault.hcl": 'seal "awskms" {}'}
        mock_core_v1_api.read_namespaced_config_map.side_effect = [ApiException(status=404), found]

        texts = cluster.mounted_configs(pod_ref("vault-0", config_maps=["gone", "vault-config"]))

        assert texts == ['seal "awskms" {}']

    def test_mounted_configs_other_errors_fail(self, cluster, mock_core_v1_api):
        """Test only missing config maps are skipped."""
        mock_core_v1_api.read_namespaced_config_map.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ClusterConnectionError) as exc_info:
            cluster.mounted_configs(pod_ref("vault-0", config_maps=["vault-config"]))

        assert "vault/vault-config" in str(exc_info.value)

    def test_kubernetes_api_host(self, cluster, mock_core_v1_api):
        """Test the API server address comes from the default/kubernetes service."""
        service = mock_core_v1_api.read_namespaced_service.return_value
        service.spec.cluster_ip = "10.96.0.1"
        service.spec.ports = [MagicMock(port=443)]

        assert cluster.kubernetes_api_host() == "https://10.96.0.1:443"
        mock_core_v1_api.read_namespaced_service.assert_called_once_with("kubernetes", "default")

    def test_kubernetes_api_host_forbidden(self, cluster, mock_core_v1_api):
        """Test a refused service lookup is reported as a connection error."""
        mock_core_v1_api.read_namespaced_service.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ClusterConnectionError):
            cluster.kubernetes_api_host()
