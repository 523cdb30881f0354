"""Threshold unsealing of every Vault replica.

Each replica holds its own seal, so the unseal keys are submitted to every
pod separately, through a tunnel of its own.
"""

from collections.abc import Callable

from icecream import ic

from vault_auto import console
from vault_auto.cluster import Cluster
from vault_auto.exceptions import UnsealError, VaultAPIError
from vault_auto.models import PodRef
from vault_auto.tunnel import Tunnel, TunnelManager
from vault_auto.vault import VaultClient


class UnsealCoordinator:
    """Submits unseal keys to all Vault replicas, one pod at a time.

    The first pod that fails stops the run; later pods are not attempted.
    """

    def __init__(
        self,
        cluster: Cluster,
        tunnels: TunnelManager,
        client_factory: Callable[[Tunnel], VaultClient] = VaultClient.through,
    ) -> None:
        self._cluster = cluster
        self._tunnels = tunnels
        self._client_factory = client_factory

    def unseal(self, pods: list[PodRef], threshold: int, keys: list[str]) -> dict[str, int]:
        """Unseal every pod.

        Args:
            pods: The Vault replicas.
            threshold: Number of keys needed to unseal.
            keys: Unseal keys in generation order.

        Returns:
            Number of keys submitted per pod name.

        Raises:
            UnsealError: If a pod rejects a key or stays sealed.

        """
        if threshold < 1:
            raise UnsealError("*", f"invalid unseal threshold {threshold}")
        if len(keys) < threshold:
            raise UnsealError("*", f"{len(keys)} unseal keys on record, {threshold} required")

        submitted: dict[str, int] = {}
        for pod in pods:
            submitted[pod.name] = self.unseal_pod(pod, threshold, keys)

        ic(submitted)
        return submitted

    def unseal_pod(self, pod: PodRef, threshold: int, keys: list[str]) -> int:
        """Unseal one replica, stopping as soon as it reports unsealed.

        Returns:
            The number of keys submitted.

        """
        running = self._cluster.ensure_running(pod)

        with self._tunnels.open(running) as tunnel:
            vault = self._client_factory(tunnel)
            try:
                status = vault.seal_status()
                count = 0
                for key in keys[:threshold]:
                    if not status.sealed:
                        break
                    vault.submit_unseal_key(key)
                    count += 1
                    status = vault.seal_status()
            except VaultAPIError as e:
                raise UnsealError(pod.name, str(e)) from e

        if status.sealed:
            raise UnsealError(pod.name, f"still sealed after {count} of {threshold} keys")

        if count:
            console.success(f"Unsealed {console.highlight(pod.name)} with {count} key(s)")
        else:
            console.step(f"{console.highlight(pod.name)} is already unsealed")
        return count
