"""Data models for vault-auto.

This module provides type-safe data structures for the application,
replacing the loosely-typed Kubernetes and Vault API payloads with proper
Python data classes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

RUNNING = "Running"


class Environment(str, Enum):
    """Execution environments credentials are kept apart for.

    Inherits from str to allow direct use in paths and CLI choices.
    """

    DEV = "dev"
    STAGE = "stage"
    PROD = "prod"


class BootstrapState(str, Enum):
    """States of the initialize/unseal lifecycle."""

    UNKNOWN = "unknown"
    ALREADY_INITIALIZED = "already-initialized"
    NEEDS_INITIALIZATION = "needs-initialization"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    AUTO_UNSEAL_SKIPPED = "auto-unseal-skipped"
    NEEDS_UNSEAL = "needs-unseal"
    READY = "ready"
    FAILED = "failed"


class TargetKind(str, Enum):
    """Kinds of Vault configuration objects the reconciler manages."""

    AUTH_METHOD = "auth method"
    SECRETS_ENGINE = "secrets engine"
    ACL_POLICY = "ACL policy"
    PASSWORD_POLICY = "password policy"
    TRANSIT_KEY = "transit key"
    ROLE = "role"
    KV_SECRET = "KV secret"


@dataclass(frozen=True, slots=True)
class PodRef:
    """Snapshot of a Vault pod.

    Attributes:
        name: The pod name.
        namespace: The namespace the pod runs in.
        phase: The pod phase at the time of the snapshot.
        container_port: First declared port of the first container, if any.
        labels: The pod labels.
        config_maps: Names of config maps mounted into the pod as volumes.

    """

    name: str
    namespace: str
    phase: str
    container_port: int | None = None
    labels: dict[str, str] = field(default_factory=dict, compare=False)
    config_maps: tuple[str, ...] = ()

    @classmethod
    def from_pod(cls, pod: Any) -> "PodRef":
        """Build a snapshot from a kubernetes ``V1Pod``."""
        port = None
        containers = pod.spec.containers or []
        if containers and containers[0].ports:
            port = int(containers[0].ports[0].container_port)

        config_maps = tuple(
            volume.config_map.name
            for volume in pod.spec.volumes or []
            if volume.config_map is not None
        )

        return cls(
            name=pod.metadata.name,
            namespace=pod.metadata.namespace,
            phase=pod.status.phase,
            container_port=port,
            labels=dict(pod.metadata.labels or {}),
            config_maps=config_maps,
        )

    @property
    def running(self) -> bool:
        return self.phase == RUNNING

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ClusterStatus(NamedTuple):
    """Seal status of a single Vault replica.

    Attributes:
        initialized: Whether the cluster has been initialized.
        sealed: Whether this replica is sealed.
        threshold: Number of key shares required to unseal.
        shares: Total number of key shares.
        progress: Key shares submitted towards the current unseal.
        seal_type: The seal mechanism reported by Vault (shamir, awskms, ...).

    """

    initialized: bool
    sealed: bool
    threshold: int = 0
    shares: int = 0
    progress: int = 0
    seal_type: str = ""

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "ClusterStatus":
        return cls(
            initialized=bool(data.get("initialized", False)),
            sealed=bool(data.get("sealed", True)),
            threshold=int(data.get("t") or 0),
            shares=int(data.get("n") or 0),
            progress=int(data.get("progress") or 0),
            seal_type=str(data.get("type") or ""),
        )


@dataclass(frozen=True)
class BootstrapCredentials:
    """Key material returned by Vault's initialization.

    Attributes:
        unseal_keys: Unseal (or recovery) key shares in generation order.
        unseal_keys_encoded: The same shares, base64-encoded.
        root_token: The initial root token.
        created: When the credentials were issued; informational only.

    """

    unseal_keys: list[str]
    unseal_keys_encoded: list[str]
    root_token: str
    created: datetime | None = field(default=None, compare=False)

    def __repr__(self) -> str:
        # never leak key material into tracebacks or debug output
        return f"BootstrapCredentials(keys={len(self.unseal_keys)}, root_token='***')"


@dataclass(frozen=True, slots=True)
class ReconciliationTarget:
    """A desired Vault configuration object.

    Attributes:
        kind: What kind of object this is.
        name: The object's name (mount path, policy name, role name, secret path).
        spec: The desired definition, interpreted per kind.

    """

    kind: TargetKind
    name: str
    spec: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class BootstrapResult:
    """Outcome of a bootstrap run."""

    state: BootstrapState
    credentials: BootstrapCredentials
    initialized: bool
    auto_unseal: bool
    high_availability: bool
    history: tuple[BootstrapState, ...] = ()
    unsealed: dict[str, int] = field(default_factory=dict)
