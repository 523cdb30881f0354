"""VaultAuto facade class.

This module provides the VaultAuto class which serves as the main entry
point for every command, wiring pod discovery, tunnels, the credential
store, bootstrapping and reconciliation together.
"""

import threading
from collections.abc import Callable
from contextlib import ExitStack
from pathlib import Path
from typing import NamedTuple

from icecream import ic

from vault_auto import catalog, console
from vault_auto.bootstrap import BootstrapStateMachine
from vault_auto.cluster import Cluster, ensure_single_namespace
from vault_auto.credentials import CredentialStore, RootTokenSink
from vault_auto.exceptions import CredentialsNotFoundError, MissingCredentialsError, VaultAPIError
from vault_auto.host import Host
from vault_auto.models import BootstrapResult, PodRef, ReconciliationTarget
from vault_auto.reconcile import ReconciliationEngine, ReconcileReport
from vault_auto.settings import DEFAULT_SHARES, DEFAULT_THRESHOLD, Settings
from vault_auto.tunnel import TunnelManager
from vault_auto.unseal import UnsealCoordinator
from vault_auto.vault import VaultClient


class Deployment(NamedTuple):
    """The Vault replicas found in the cluster."""

    pods: list[PodRef]
    namespace: str
    leader: PodRef


class VaultAuto:
    """Bootstraps and configures a Vault deployment on Kubernetes.

    Attributes:
        settings: Options shared by every command.
        cancel: Event set when the operator interrupts the run.
        host: Local cache and lock handling.
        store: Per-environment credential records.
        cluster: Kubernetes access.
        tunnels: Port-forwards to Vault pods.

    """

    def __init__(
        self,
        settings: Settings,
        *,
        cancel: threading.Event | None = None,
        client_factory: Callable[..., VaultClient] = VaultClient.through,
    ) -> None:
        self.settings = settings
        self.cancel = cancel or threading.Event()
        self.host = Host(settings.cache_dir)
        self.store = CredentialStore(self.host.cache_root)
        self.cluster = Cluster(
            select_context=settings.select_context,
            pod_timeout=settings.pod_timeout,
            cancel=self.cancel,
        )
        self.tunnels = TunnelManager(self.cluster, local_port=settings.local_port, cancel=self.cancel)
        self._client_factory = client_factory
        self._exit_stack = ExitStack()

    def __enter__(self) -> "VaultAuto":
        """Enter context manager, holding the instance lock.

        Returns:
            Self for use in with statement.

        """
        self._exit_stack.enter_context(self.host.instance_lock())
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager and release the instance lock."""
        self._exit_stack.close()

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"VaultAuto(environment={self.settings.environment.value!r}, context={self.cluster.context!r})"

    def discover(self) -> Deployment:
        """Locate the Vault pods and pick the leader.

        Raises:
            PodsNotFoundError: If no pod matches the label selector.
            MultipleNamespacesError: If the pods span several namespaces.
            LeaderAmbiguousError: If several pods claim to be active.
            LeaderNotFoundError: If no leader can be identified.

        """
        pods = self.cluster.find_pods(self.settings.namespace, self.settings.label)
        namespace = ensure_single_namespace(pods, self.settings.namespace, self.settings.label)
        pods = [pod for pod in pods if pod.namespace == namespace]
        leader = self.cluster.select_leader(pods, namespace, self.settings.label, self.settings.active_label)
        ic(namespace, leader)
        return Deployment(pods, namespace, leader)

    def initialize(
        self,
        shares: int = DEFAULT_SHARES,
        threshold: int = DEFAULT_THRESHOLD,
        *,
        high_availability: bool = False,
        secret_file: Path | None = None,
    ) -> BootstrapResult:
        """Initialize Vault if needed and unseal every replica.

        Args:
            shares: Number of key shares to issue.
            threshold: Number of key shares required to unseal.
            high_availability: Request recovery shares instead of secret shares.
            secret_file: YAML secrets file to copy the root token into.

        Returns:
            The outcome of the bootstrap run.

        """
        deployment = self.discover()
        unsealer = UnsealCoordinator(self.cluster, self.tunnels, self._client_factory)
        machine = BootstrapStateMachine(self.cluster, self.tunnels, self.store, unsealer, self._client_factory)
        result = machine.run(
            deployment.pods,
            deployment.leader,
            self.settings.environment,
            shares=shares,
            threshold=threshold,
            high_availability=high_availability,
            token_sink=RootTokenSink(secret_file) if secret_file else None,
        )

        console.newline()
        console.summary_panel(
            "Vault bootstrap",
            {
                "Environment": self.settings.environment.value,
                "Namespace": deployment.namespace,
                "Leader": deployment.leader.name,
                "Initialized now": "yes" if result.initialized else "no",
                "Unseal": "auto-unseal" if result.auto_unseal else f"{len(result.unsealed)} pod(s) unsealed",
                "Credentials": str(self.store.path(self.settings.environment)),
            },
        )
        return result

    def mounts(self, token: str | None = None, *, overwrite: bool = False) -> ReconcileReport:
        """Enable the auth methods and secrets engines."""
        kubernetes_host = self.cluster.kubernetes_api_host()
        targets = catalog.mount_targets(kubernetes_host)
        return self._reconcile("Auth methods and secrets engines", targets, token, overwrite)

    def configure(self, token: str | None = None, *, overwrite: bool = False) -> ReconcileReport:
        """Write the release, admin and password policies."""
        return self._reconcile("Policies", catalog.policy_targets(), token, overwrite)

    def prepare(self, application: str, token: str | None = None, *, overwrite: bool = False) -> ReconcileReport:
        """Configure Vault for an application.

        Args:
            application: One of the known application profiles.
            token: Vault token; defaults to the recorded root token.
            overwrite: Rewrite objects that already exist.

        """
        targets = catalog.application_targets(application)
        return self._reconcile(f"Application {application}", targets, token, overwrite)

    def _token(self, token: str | None) -> str:
        if token:
            return token
        try:
            return self.store.read(self.settings.environment).root_token
        except CredentialsNotFoundError as e:
            raise MissingCredentialsError(
                f"No token given and no credentials recorded for environment "
                f"{self.settings.environment.value!r}. Pass --token or run initialize first"
            ) from e

    def _reconcile(
        self, title: str, targets: list[ReconciliationTarget], token: str | None, overwrite: bool
    ) -> ReconcileReport:
        token = self._token(token)
        leader = self.cluster.ensure_running(self.discover().leader)

        with self.tunnels.open(leader) as tunnel:
            vault = self._client_factory(tunnel, token)
            status = vault.seal_status()
            if not status.initialized or status.sealed:
                raise VaultAPIError(f"Vault on {leader.name} is not initialized and unsealed, run initialize first")
            report = ReconciliationEngine(vault).reconcile_all(targets, overwrite=overwrite)

        console.newline()
        console.summary_panel(
            title,
            {
                "Environment": self.settings.environment.value,
                "Changed": str(len(report.changed)),
                "Already configured": str(len(report.skipped)),
            },
        )
        return report
