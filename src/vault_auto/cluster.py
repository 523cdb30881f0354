"""Kubernetes cluster interaction utilities.

This module provides the Cluster class for interacting with Kubernetes
clusters: selecting the context, discovering the Vault pods, picking the
leader replica and waiting for pods to start.
"""

import re
import threading
import time
from dataclasses import replace
from typing import Any

import click
import questionary
from icecream import ic
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError

from vault_auto import console
from vault_auto.exceptions import (
    ClusterConnectionError,
    LeaderAmbiguousError,
    LeaderNotFoundError,
    MultipleNamespacesError,
    OperationCancelledError,
    PodsNotFoundError,
    PodStartupTimeoutError,
)
from vault_auto.models import RUNNING, PodRef
from vault_auto.settings import DEFAULT_ACTIVE_LABEL, DEFAULT_LABEL, DEFAULT_POD_TIMEOUT

# StatefulSet replicas are named <set>-<ordinal>
_ORDINAL_ZERO = re.compile(r"-0$")

_POLL_INTERVAL = 0.5


def _api_failure(action: str, e: ApiException | MaxRetryError) -> ClusterConnectionError:
    if isinstance(e, MaxRetryError):
        return ClusterConnectionError(f"Failed to connect to the Kubernetes cluster to {action}: {e.reason}")
    return ClusterConnectionError(f"Failed to {action}: {e.status} {e.reason}")


def ensure_single_namespace(pods: list[PodRef], namespace: str = "", label_selector: str = DEFAULT_LABEL) -> str:
    """Return the one namespace all Vault pods live in.

    Args:
        pods: The discovered pods.
        namespace: An explicitly requested namespace, which always wins.
        label_selector: The selector the pods were found with.

    Returns:
        The namespace to operate in.

    Raises:
        PodsNotFoundError: If no pods were given and no namespace is set.
        MultipleNamespacesError: If the pods span several namespaces.

    """
    if namespace:
        return namespace

    namespaces = sorted({pod.namespace for pod in pods})
    ic(namespaces)
    if not namespaces:
        raise PodsNotFoundError(label_selector or DEFAULT_LABEL)
    if len(namespaces) > 1:
        raise MultipleNamespacesError(namespaces)

    return namespaces[0]


def leader_by_name(pods: list[PodRef]) -> PodRef:
    """Pick the replica whose name encodes ordinal zero.

    Args:
        pods: Candidate pods.

    Returns:
        The pod named ``*-0``, or failing that the first name containing a zero.

    Raises:
        LeaderNotFoundError: If no pod name contains a zero.

    """
    for pod in pods:
        if _ORDINAL_ZERO.search(pod.name):
            return pod
    for pod in pods:
        if "0" in pod.name:
            return pod

    raise LeaderNotFoundError(
        "Could not determine the Vault leader pod: unfamiliar naming scheme, "
        f"none of the pod names contain a zero ({', '.join(p.name for p in pods)})"
    )


class Cluster:
    """Manages Kubernetes cluster interactions for Vault operations.

    Attributes:
        context: The active Kubernetes context name.
        pod_timeout: Seconds to wait for a pod to become Running.
        cancel: Event set when the operator interrupts the run.

    """

    def __init__(
        self,
        *,
        select_context: bool,
        pod_timeout: float = DEFAULT_POD_TIMEOUT,
        cancel: threading.Event | None = None,
    ) -> None:
        """Initialize Cluster with context selection.

        Args:
            select_context: If True, prompt user to select a context.
                           If False, use the current context.
            pod_timeout: Seconds to wait for a pod to become Running.
            cancel: Event signalling that the run was interrupted.

        """
        self.context: str = self._set_context(select_context=select_context)
        try:
            config.load_kube_config(context=self.context)
        except ConfigException as e:
            raise ClusterConnectionError(f"Could not load context {self.context!r}: {e}") from e
        self.pod_timeout = pod_timeout
        self.cancel = cancel or threading.Event()

    @staticmethod
    def _set_context(*, select_context: bool) -> str:
        """Set the Kubernetes context to use.

        Args:
            select_context: If True, prompt user to select a context.

        Returns:
            The selected or current context name.

        Raises:
            ClusterConnectionError: If kubeconfig is invalid or missing.
            click.Abort: If user cancels context selection.

        """
        try:
            contexts, current_context = config.list_kube_config_contexts()
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e
        if select_context:
            context: str | None = questionary.select(
                "Select context to work with",
                choices=[context["name"] for context in contexts],
                style=console.PROMPT_STYLE,
                pointer=console.POINTER,
                qmark=console.QMARK,
            ).ask()
            if context is None:
                console.warning("Context selection cancelled.")
                raise click.Abort()
        else:
            context = str(current_context["name"])
        console.action(f"Working with {console.highlight(context)} cluster")
        return context

    @property
    def core_api(self) -> client.CoreV1Api:
        return client.CoreV1Api()

    def _list_pods(self, namespace: str, label_selector: str) -> list[Any]:
        try:
            if namespace:
                return self.core_api.list_namespaced_pod(namespace, label_selector=label_selector).items
            return self.core_api.list_pod_for_all_namespaces(label_selector=label_selector).items
        except (ApiException, MaxRetryError) as e:
            scope = f"namespace {namespace!r}" if namespace else "all namespaces"
            raise _api_failure(f"list pods with label {label_selector!r} in {scope}", e) from e

    def find_pods(self, namespace: str = "", label_selector: str = "") -> list[PodRef]:
        """Find the Vault pods.

        Args:
            namespace: Namespace to search. Empty searches the whole cluster.
            label_selector: Label selector for the Vault pods. Defaults to
                            ``app.kubernetes.io/name=vault``.

        Returns:
            Snapshots of the matching pods.

        Raises:
            ClusterConnectionError: If the cluster is unreachable or refuses the listing.
            PodsNotFoundError: If no pod matches.

        """
        if not label_selector:
            ic(DEFAULT_LABEL)
            label_selector = DEFAULT_LABEL

        with console.spinner("Searching for Vault pods..."):
            pods = [PodRef.from_pod(pod) for pod in self._list_pods(namespace, label_selector)]
        ic(pods)

        if not pods:
            console.error("No Vault pods found")
            raise PodsNotFoundError(label_selector, namespace)

        for pod in pods:
            console.step(f"Discovered pod {console.highlight(str(pod))} ({pod.phase})")
        return pods

    def select_leader(
        self,
        pods: list[PodRef],
        namespace: str,
        pod_label: str = DEFAULT_LABEL,
        active_label: str = DEFAULT_ACTIVE_LABEL,
    ) -> PodRef:
        """Pick the replica that receives initialization and configuration calls.

        Args:
            pods: Candidate pods, all in ``namespace``.
            namespace: The namespace of the Vault deployment.
            pod_label: Label selector identifying the Vault pods.
            active_label: Label marking the active replica.

        Returns:
            The leader pod.

        Raises:
            PodsNotFoundError: If there are no candidates.
            LeaderAmbiguousError: If several pods carry the active label.
            LeaderNotFoundError: If no pod can be identified as the leader.

        """
        if not pods:
            raise PodsNotFoundError(pod_label, namespace)
        if len(pods) == 1:
            return pods[0]

        selector = f"{pod_label},{active_label}"
        active = [PodRef.from_pod(pod) for pod in self._list_pods(namespace, selector)]
        ic(selector, active)

        if len(active) > 1:
            raise LeaderAmbiguousError(selector, [pod.name for pod in active])
        if len(active) == 1:
            leader = active[0]
        else:
            leader = leader_by_name(pods)

        console.info(f"Using {console.highlight(leader.name)} as leader pod")
        return leader

    def _sleep(self, seconds: float) -> None:
        if self.cancel.wait(seconds):
            raise OperationCancelledError("Interrupted while waiting for a pod")

    def wait_until_running(self, pod: PodRef, timeout: float | None = None, interval: float = _POLL_INTERVAL) -> float:
        """Block until a pod reaches the Running phase.

        Args:
            pod: The pod to wait for.
            timeout: Seconds before giving up; defaults to ``pod_timeout``.
            interval: Seconds between phase checks.

        Returns:
            Seconds spent waiting.

        Raises:
            PodStartupTimeoutError: If the pod isn't running in time.
            OperationCancelledError: If the run is interrupted.

        """
        timeout = self.pod_timeout if timeout is None else timeout
        started = time.monotonic()
        phase = pod.phase

        while phase != RUNNING:
            elapsed = time.monotonic() - started
            if elapsed >= timeout:
                raise PodStartupTimeoutError(
                    f"Pod {pod} did not reach phase {RUNNING} within {timeout:.0f}s (last phase: {phase})"
                )
            console.step(f"Pod {console.highlight(pod.name)} is {phase}, waiting for it to start")
            self._sleep(interval)
            try:
                phase = self.core_api.read_namespaced_pod(pod.name, pod.namespace).status.phase
            except (ApiException, MaxRetryError) as e:
                raise _api_failure(f"read pod {pod}", e) from e

        elapsed = time.monotonic() - started
        ic(pod.name, elapsed)
        return elapsed

    def ensure_running(self, pod: PodRef) -> PodRef:
        """Wait for a pod and return a Running snapshot of it."""
        self.wait_until_running(pod)
        return pod if pod.running else replace(pod, phase=RUNNING)

    def mounted_configs(self, pod: PodRef) -> list[str]:
        """Return the text of every config map mounted into a pod.

        Config maps that no longer exist are skipped.

        Args:
            pod: The pod whose configuration to read.

        Returns:
            All data values of the mounted config maps.

        """
        texts: list[str] = []
        for name in pod.config_maps:
            try:
                config_map = self.core_api.read_namespaced_config_map(name, pod.namespace)
            except ApiException as e:
                if e.status == 404:
                    console.warning(f"Config map {name} mounted by {pod.name} not found")
                    continue
                raise _api_failure(f"read config map {pod.namespace}/{name}", e) from e
            except MaxRetryError as e:
                raise _api_failure(f"read config map {pod.namespace}/{name}", e) from e
            texts.extend((config_map.data or {}).values())
        return texts

    def kubernetes_api_host(self) -> str:
        """Return the in-cluster address of the Kubernetes API server.

        Returns:
            ``https://<cluster-ip>:<port>`` of the ``default/kubernetes`` service.

        """
        try:
            service = self.core_api.read_namespaced_service("kubernetes", "default")
        except (ApiException, MaxRetryError) as e:
            raise _api_failure("read service default/kubernetes", e) from e
        host = f"https://{service.spec.cluster_ip}:{service.spec.ports[0].port}"
        ic(host)
        return host

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Cluster(context={self.context!r})"
