"""Port-forward tunnels to Vault pods.

This module provides the TunnelManager, which opens a short-lived local
tunnel to a pod's Vault API port for the duration of a single operation.
The native websocket port-forward of the Kubernetes API is tried first;
clusters that refuse the websocket upgrade fall back to ``kubectl
port-forward``.
"""

import re
import select
import socket
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any, Protocol

from icecream import ic
from kubernetes.client.rest import ApiException
from kubernetes.stream import portforward
from websocket import WebSocketBadStatusException

from vault_auto import console
from vault_auto.exceptions import OperationCancelledError, PodNotRunningError, TunnelError
from vault_auto.host import Host
from vault_auto.models import PodRef
from vault_auto.settings import DEFAULT_LOCAL_PORT

LOCALHOST = "127.0.0.1"

_ACCEPT_TIMEOUT = 0.5
_POLL_INTERVAL = 0.1
_CHUNK_SIZE = 65536
_KUBECTL_FORWARDING = re.compile(r"Forwarding from 127\.0\.0\.1:(\d+)")
_KUBECTL_TAIL = 20
_HANDSHAKE_STATUS = re.compile(r"Handshake status (\d{3})")
# Authorization and lookup failures that kubectl would hit just the same
_NOT_A_TRANSPORT_FAILURE = frozenset({401, 403, 404})


class TransportUpgradeError(TunnelError):
    """Raised by a forwarder whose streaming protocol the API server refused."""


def _handshake_status(e: ApiException) -> int | None:
    """Return the HTTP status of a refused websocket handshake, if that is what failed."""
    # portforward wraps every failure in ApiException(status=0)
    if isinstance(e.__context__, WebSocketBadStatusException):
        return e.__context__.status_code
    match = _HANDSHAKE_STATUS.search(str(e.reason or ""))
    return int(match.group(1)) if match else None


class Tunnel:
    """A running port-forward to one pod.

    Attributes:
        target_pod: The pod the tunnel forwards to.
        local_port: The bound local port (resolved once the tunnel is ready).
        remote_port: The pod's container port.
        ready: Set once the local port accepts connections.
        stopped: Set once the tunnel was closed.
        error: First failure raised by the background forwarding loop.

    """

    def __init__(self, target_pod: PodRef, local_port: int, remote_port: int) -> None:
        self.target_pod = target_pod
        self.local_port = local_port
        self.remote_port = remote_port
        self.ready = threading.Event()
        self.stopped = threading.Event()
        self.error: BaseException | None = None
        self._stop_forwarder: Callable[[], None] | None = None
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        """The local URL of the forwarded Vault API."""
        return f"http://{LOCALHOST}:{self.local_port}"

    def attach(self, stop: Callable[[], None]) -> None:
        self._stop_forwarder = stop

    def fail(self, error: BaseException) -> None:
        """Record a background forwarding failure for the owner to observe."""
        with self._lock:
            if self.stopped.is_set() or self.error is not None:
                return
            self.error = error
        ic(self.target_pod.name, error)

    def check(self) -> None:
        """Raise the recorded forwarding failure, if any.

        Raises:
            TunnelError: If the forwarding loop failed.

        """
        if self.error is not None:
            raise TunnelError(f"Tunnel to {self.target_pod} failed: {self.error}") from self.error

    def close(self) -> None:
        """Stop forwarding. Safe to call any number of times."""
        with self._lock:
            if self.stopped.is_set():
                return
            self.stopped.set()
        if self._stop_forwarder is not None:
            self._stop_forwarder()

    def __enter__(self) -> "Tunnel":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return (
            f"Tunnel(pod={str(self.target_pod)!r}, local_port={self.local_port}, "
            f"remote_port={self.remote_port}, ready={self.ready.is_set()}, stopped={self.stopped.is_set()})"
        )


class Forwarder(Protocol):
    """A transport able to carry a tunnel."""

    name: str

    def start(self, tunnel: Tunnel) -> Callable[[], None]:
        """Start forwarding and return a function that stops it."""
        ...


def _splice(local: socket.socket, remote: Any, stopped: threading.Event) -> None:
    """Copy bytes both ways until either side closes or the tunnel stops."""
    peers = {local: remote, remote: local}
    while not stopped.is_set():
        readable, _, _ = select.select(list(peers), [], [], _ACCEPT_TIMEOUT)
        for sock in readable:
            data = sock.recv(_CHUNK_SIZE)
            if not data:
                return
            peers[sock].sendall(data)


class WebSocketForwarder:
    """Forward through the Kubernetes API's websocket port-forward subresource.

    Every accepted local connection gets its own port-forward stream, the
    same way ``kubectl`` multiplexes connections.
    """

    name = "websocket"

    def __init__(self, core_api: Callable[[], Any]) -> None:
        self._core_api = core_api

    def _connect(self, tunnel: Tunnel) -> Any:
        pod = tunnel.target_pod
        return portforward(
            self._core_api().connect_get_namespaced_pod_portforward,
            pod.name,
            pod.namespace,
            ports=str(tunnel.remote_port),
        )

    def start(self, tunnel: Tunnel) -> Callable[[], None]:
        try:
            probe = self._connect(tunnel)
        except ApiException as e:
            if isinstance(e.__context__, (KeyboardInterrupt, SystemExit)):
                raise e.__context__ from None
            status = _handshake_status(e)
            if status is not None and status not in _NOT_A_TRANSPORT_FAILURE:
                raise TransportUpgradeError(e.reason or str(e)) from e
            raise TunnelError(f"Websocket port-forward to {tunnel.target_pod} failed: {e.reason or e}") from e
        probe.socket(tunnel.remote_port).close()

        try:
            server = socket.create_server((LOCALHOST, tunnel.local_port))
        except OSError as e:
            raise TunnelError(f"Could not bind local port {tunnel.local_port}: {e}") from e
        server.settimeout(_ACCEPT_TIMEOUT)
        tunnel.local_port = server.getsockname()[1]

        threading.Thread(
            target=self._serve,
            args=(tunnel, server),
            name=f"port-forward {tunnel.target_pod}",
            daemon=True,
        ).start()
        tunnel.ready.set()
        return server.close

    def _serve(self, tunnel: Tunnel, server: socket.socket) -> None:
        try:
            while not tunnel.stopped.is_set():
                try:
                    conn, _ = server.accept()
                except TimeoutError:
                    continue
                threading.Thread(target=self._pump, args=(tunnel, conn), daemon=True).start()
        except OSError as e:
            tunnel.fail(e)
        finally:
            server.close()

    def _pump(self, tunnel: Tunnel, conn: socket.socket) -> None:
        try:
            forward = self._connect(tunnel)
            remote = forward.socket(tunnel.remote_port)
            remote.setblocking(True)
            try:
                _splice(conn, remote, tunnel.stopped)
            finally:
                remote.close()
            error = forward.error(tunnel.remote_port)
            if error:
                tunnel.fail(TunnelError(error))
        except (ApiException, OSError) as e:
            tunnel.fail(e)
        finally:
            conn.close()


class KubectlForwarder:
    """Forward through a ``kubectl port-forward`` child process (SPDY)."""

    name = "kubectl"

    def __init__(self, context: str) -> None:
        self._context = context

    def start(self, tunnel: Tunnel) -> Callable[[], None]:
        pod = tunnel.target_pod
        local = str(tunnel.local_port) if tunnel.local_port else ""
        cmd = [
            Host.find_binary("kubectl"),
            "port-forward",
            f"--context={self._context}",
            f"--namespace={pod.namespace}",
            f"--address={LOCALHOST}",
            f"pod/{pod.name}",
            f"{local}:{tunnel.remote_port}",
        ]
        ic(cmd)

        process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
        threading.Thread(
            target=self._watch,
            args=(tunnel, process),
            name=f"kubectl port-forward {pod}",
            daemon=True,
        ).start()

        def stop() -> None:
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()

        return stop

    @staticmethod
    def _watch(tunnel: Tunnel, process: subprocess.Popen) -> None:
        # stderr is merged into stdout; reading everything keeps the pipe from filling up
        tail: deque[str] = deque(maxlen=_KUBECTL_TAIL)
        for line in process.stdout:
            match = _KUBECTL_FORWARDING.search(line)
            if match:
                if not tunnel.ready.is_set():
                    tunnel.local_port = int(match.group(1))
                    tunnel.ready.set()
            elif line.strip():
                tail.append(line.strip())
                ic(tunnel.target_pod.name, line)

        code = process.wait()
        if not tunnel.stopped.is_set():
            output = "; ".join(tail) or "no output"
            tunnel.fail(TunnelError(f"kubectl port-forward exited with code {code}: {output}"))


class TunnelManager:
    """Opens and tears down tunnels to Vault pods.

    Tunnels are never shared between operations: every ``open`` starts a
    fresh forward and closes it when the block exits.

    Attributes:
        local_port: Local port to bind; 0 picks a free ephemeral port.
        ready_timeout: Seconds to wait for a tunnel to become ready.
        cancel: Event set when the operator interrupts the run.

    """

    def __init__(
        self,
        cluster: Any,
        *,
        local_port: int = DEFAULT_LOCAL_PORT,
        ready_timeout: float = 15.0,
        cancel: threading.Event | None = None,
        forwarders: list[Forwarder] | None = None,
    ) -> None:
        self.local_port = local_port
        self.ready_timeout = ready_timeout
        self.cancel = cancel or threading.Event()
        self._forwarders: list[Forwarder] = forwarders or [
            WebSocketForwarder(lambda: cluster.core_api),
            KubectlForwarder(cluster.context),
        ]

    @contextmanager
    def open(self, pod: PodRef) -> Generator[Tunnel, None, None]:
        """Open a tunnel to a running pod for the duration of a block.

        Args:
            pod: The pod to forward to.

        Yields:
            The ready tunnel.

        Raises:
            PodNotRunningError: If the pod isn't running.
            TunnelError: If no transport could establish the tunnel.
            OperationCancelledError: If the run is interrupted.

        """
        tunnel = self._start(pod)
        try:
            yield tunnel
        finally:
            tunnel.close()
            console.step(f"Closed tunnel to {console.highlight(pod.name)}")

    def _start(self, pod: PodRef) -> Tunnel:
        if not pod.running:
            raise PodNotRunningError(
                f"Unable to forward ports to pod {pod} that isn't running. Current status: {pod.phase}"
            )
        if pod.container_port is None:
            raise TunnelError(f"Pod {pod} declares no container port to forward to")

        last_error: TunnelError | None = None
        for forwarder in self._forwarders:
            if self.cancel.is_set():
                raise OperationCancelledError("Interrupted while opening a tunnel")
            tunnel = Tunnel(pod, self.local_port, pod.container_port)
            try:
                tunnel.attach(forwarder.start(tunnel))
            except TransportUpgradeError as e:
                console.warning(f"{forwarder.name} port-forward unavailable ({e}), trying the next transport")
                last_error = e
                continue

            try:
                self._wait_ready(tunnel)
            except BaseException:
                tunnel.close()
                raise

            self._watch_cancel(tunnel)
            console.step(
                f"Forwarding {console.highlight(f'{tunnel.address}')} → {pod.name}:{tunnel.remote_port} "
                f"via {forwarder.name}"
            )
            return tunnel

        raise TunnelError(f"Could not open a tunnel to {pod}: {last_error}") from last_error

    def _wait_ready(self, tunnel: Tunnel) -> None:
        deadline = time.monotonic() + self.ready_timeout
        while not tunnel.ready.wait(_POLL_INTERVAL):
            tunnel.check()
            if self.cancel.is_set():
                raise OperationCancelledError("Interrupted while waiting for the tunnel")
            if time.monotonic() >= deadline:
                raise TunnelError(f"Tunnel to {tunnel.target_pod} not ready after {self.ready_timeout:.0f}s")
        tunnel.check()

    def _watch_cancel(self, tunnel: Tunnel) -> None:
        def watch() -> None:
            while not tunnel.stopped.wait(_POLL_INTERVAL):
                if self.cancel.is_set():
                    tunnel.close()
                    return

        threading.Thread(target=watch, name=f"tunnel watch {tunnel.target_pod}", daemon=True).start()
