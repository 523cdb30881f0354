"""Custom exceptions for vault-auto.

This module defines the exception hierarchy used throughout the application.
Errors fall into four groups: discovery, transport, state and
reconciliation. All of them are fatal to the current run; the CLI reports
them and exits with a non-zero status.
"""


class VaultAutoError(Exception):
    """Base exception for all vault-auto errors.

    All custom exceptions in this package inherit from this class,
    allowing callers to catch all vault-auto errors with a single
    except clause if desired.
    """


# Discovery


class ClusterConnectionError(VaultAutoError):
    """Raised when connection to the Kubernetes cluster fails.

    This can occur when:
    - The kubeconfig is invalid or missing
    - The cluster is unreachable
    - Authentication fails
    """


class PodsNotFoundError(VaultAutoError):
    """Raised when no pod matches the Vault label selector."""

    def __init__(self, label_selector: str, namespace: str = "") -> None:
        self.label_selector = label_selector
        self.namespace = namespace
        scope = f"namespace {namespace!r}" if namespace else "any namespace"
        super().__init__(f"No Vault pods found for label {label_selector!r} in {scope}")


class MultipleNamespacesError(VaultAutoError):
    """Raised when discovered Vault pods span more than one namespace.

    The operator has to pass an explicit namespace; the tool never guesses.
    """

    def __init__(self, namespaces: list[str]) -> None:
        self.namespaces = namespaces
        super().__init__(
            f"Discovered Vault pods in multiple namespaces: {', '.join(namespaces)}. "
            "Please set the namespace option"
        )


class LeaderAmbiguousError(VaultAutoError):
    """Raised when more than one pod carries the active (leader) label."""

    def __init__(self, label_selector: str, pods: list[str]) -> None:
        self.label_selector = label_selector
        self.pods = pods
        super().__init__(
            f"Could not determine the Vault leader pod: label {label_selector!r} "
            f"matched more than one pod ({', '.join(pods)})"
        )


class LeaderNotFoundError(VaultAutoError):
    """Raised when no pod is labelled active and none follows the ordinal naming scheme."""


class PodStartupTimeoutError(VaultAutoError):
    """Raised when a pod does not reach the Running phase in time."""


class OperationCancelledError(VaultAutoError):
    """Raised when the run was interrupted by the operator."""


# Transport


class TunnelError(VaultAutoError):
    """Raised when a port-forward tunnel cannot be opened or breaks while in use."""


class PodNotRunningError(TunnelError):
    """Raised when a tunnel is requested for a pod that isn't running."""


class BinaryNotFoundError(VaultAutoError):
    """Raised when a required binary (kubectl) is not found.

    This can occur when:
    - The binary is not installed
    - The binary is not in the system PATH
    """


# State


class VaultAPIError(VaultAutoError):
    """Raised when a call to the Vault HTTP API fails."""


class InitializationError(VaultAutoError):
    """Raised when Vault rejects or garbles an initialization request."""


class UnsealError(VaultAutoError):
    """Raised when a Vault replica could not be unsealed."""

    def __init__(self, pod: str, message: str) -> None:
        self.pod = pod
        super().__init__(f"Failed to unseal {pod}: {message}")


class CredentialStoreError(VaultAutoError):
    """Raised when the credential record cannot be written or read."""


class CredentialsNotFoundError(CredentialStoreError):
    """Raised when no credential record exists yet for an environment.

    This is the normal state before the first initialization.
    """


class CorruptRecordError(CredentialStoreError):
    """Raised when a credential record exists but cannot be decoded.

    Corrupt records are never repaired automatically.
    """


class MissingCredentialsError(VaultAutoError):
    """Raised when Vault is initialized but no credentials are on record.

    The credentials of an initialized Vault can only come from the run
    that initialized it, so the operator has to supply a token or
    re-initialize through this tool.
    """


# Reconciliation


class ReconciliationError(VaultAutoError):
    """Raised when a reconciliation target could not be written."""

    def __init__(self, kind: str, name: str, reason: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"Could not reconcile {kind} {name!r}: {reason}")
