"""Vault initialization and unseal lifecycle.

This module provides the BootstrapStateMachine, which takes a Vault
cluster from whatever state it is in to initialized and unsealed. Every
step re-reads the cluster state, so a run against an already bootstrapped
cluster only performs what is missing.
"""

import re
from collections.abc import Callable

from icecream import ic

from vault_auto import console
from vault_auto.cluster import Cluster
from vault_auto.credentials import CredentialStore, RootTokenSink
from vault_auto.exceptions import CredentialsNotFoundError, MissingCredentialsError
from vault_auto.models import BootstrapCredentials, BootstrapResult, BootstrapState, Environment, PodRef
from vault_auto.tunnel import Tunnel, TunnelManager
from vault_auto.unseal import UnsealCoordinator
from vault_auto.vault import VaultClient

AUTO_UNSEAL_SEALS = ("awskms", "gcpckms", "azurekeyvault", "transit", "ocikms", "alicloudkms", "pkcs11", "kmip")

_SEAL_STANZA = re.compile(r'^\s*seal\s+"(?P<type>[\w-]+)"', re.MULTILINE)


def has_auto_unseal(config_text: str) -> bool:
    """Tell whether a Vault server configuration uses an auto-unseal seal.

    Args:
        config_text: HCL configuration text.

    Returns:
        True if a ``seal "<type>"`` stanza names an auto-unseal mechanism.

    """
    return any(match.group("type") in AUTO_UNSEAL_SEALS for match in _SEAL_STANZA.finditer(config_text))


def detect_auto_unseal(cluster: Cluster, pods: list[PodRef]) -> bool:
    """Inspect the configuration mounted into each pod for auto-unseal seals."""
    for pod in pods:
        for text in cluster.mounted_configs(pod):
            if has_auto_unseal(text):
                ic(pod.name)
                return True
    return False


class BootstrapStateMachine:
    """Drives a Vault cluster through initialization and unsealing.

    Attributes:
        state: The current lifecycle state.
        history: Every state entered during the run, in order.

    """

    def __init__(
        self,
        cluster: Cluster,
        tunnels: TunnelManager,
        store: CredentialStore,
        unsealer: UnsealCoordinator,
        client_factory: Callable[[Tunnel], VaultClient] = VaultClient.through,
    ) -> None:
        self._cluster = cluster
        self._tunnels = tunnels
        self._store = store
        self._unsealer = unsealer
        self._client_factory = client_factory
        self.state = BootstrapState.UNKNOWN
        self.history: list[BootstrapState] = [self.state]

    def _enter(self, state: BootstrapState) -> None:
        console.transition(self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def run(
        self,
        pods: list[PodRef],
        leader: PodRef,
        environment: Environment,
        *,
        shares: int,
        threshold: int,
        high_availability: bool = False,
        token_sink: RootTokenSink | None = None,
    ) -> BootstrapResult:
        """Bootstrap the cluster.

        Args:
            pods: All Vault replicas.
            leader: The replica that receives the initialization request.
            environment: Environment whose credential record to use.
            shares: Number of key shares to issue on initialization.
            threshold: Number of key shares required to unseal.
            high_availability: Request recovery shares instead of secret shares.
            token_sink: Optional secrets file to copy the root token into.

        Returns:
            The final state and the credentials in effect.

        Raises:
            MissingCredentialsError: If Vault is initialized but no credentials are on record.
            VaultAutoError: On any other failure; the machine ends in ``FAILED``.

        """
        try:
            return self._run(pods, leader, environment, shares, threshold, high_availability, token_sink)
        except BaseException:
            self._enter(BootstrapState.FAILED)
            raise

    def _run(
        self,
        pods: list[PodRef],
        leader: PodRef,
        environment: Environment,
        shares: int,
        threshold: int,
        high_availability: bool,
        token_sink: RootTokenSink | None,
    ) -> BootstrapResult:
        # decided on every run: an existing cluster may have gained auto-unseal since
        auto_unseal = detect_auto_unseal(self._cluster, pods)
        if auto_unseal:
            console.info("Auto-unseal configuration detected, using recovery key shares")
            high_availability = True

        leader = self._cluster.ensure_running(leader)
        with self._tunnels.open(leader) as tunnel:
            vault = self._client_factory(tunnel)
            status = vault.seal_status()

            if status.initialized:
                self._enter(BootstrapState.ALREADY_INITIALIZED)
                credentials = self._load(environment)
                initialized = False
            else:
                self._enter(BootstrapState.NEEDS_INITIALIZATION)
                self._enter(BootstrapState.INITIALIZING)
                credentials = vault.initialize(shares, threshold, high_availability=high_availability)
                path = self._store.write(environment, credentials)
                console.success(f"Initialized Vault, credentials stored at {console.highlight(str(path))}")
                if token_sink is not None:
                    token_sink.write(credentials.root_token)
                    console.step(f"Root token written to {console.highlight(str(token_sink.path))}")
                self._enter(BootstrapState.INITIALIZED)
                initialized = True
                status = vault.seal_status()

        unsealed: dict[str, int] = {}
        if auto_unseal:
            self._enter(BootstrapState.AUTO_UNSEAL_SKIPPED)
        else:
            self._enter(BootstrapState.NEEDS_UNSEAL)
            unsealed = self._unsealer.unseal(pods, status.threshold or threshold, credentials.unseal_keys)

        self._enter(BootstrapState.READY)
        return BootstrapResult(
            state=self.state,
            credentials=credentials,
            initialized=initialized,
            auto_unseal=auto_unseal,
            high_availability=high_availability,
            history=tuple(self.history),
            unsealed=unsealed,
        )

    def _load(self, environment: Environment) -> BootstrapCredentials:
        try:
            credentials = self._store.read(environment)
        except CredentialsNotFoundError as e:
            raise MissingCredentialsError(
                f"Vault is already initialized but no credentials are recorded for environment "
                f"{Environment(environment).value!r}. Vault must be (re-)initialized through vault-auto "
                "for its unseal keys to be available"
            ) from e
        console.step(f"Loaded credentials from {console.highlight(str(self._store.path(environment)))}")
        return credentials
