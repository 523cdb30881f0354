"""vault-auto: Bootstrap and configure HashiCorp Vault on Kubernetes.

This package finds the Vault pods of a cluster, tunnels to them,
initializes and unseals Vault, and keeps its auth methods, engines,
policies and roles in the desired state.

Example usage:
    from vault_auto import Settings, VaultAuto

    with VaultAuto(Settings()) as vault_auto:
        vault_auto.initialize(shares=5, threshold=3)
        vault_auto.mounts()
"""

__version__ = "0.1.0"

from vault_auto.cli import cli
from vault_auto.exceptions import (
    ClusterConnectionError,
    MissingCredentialsError,
    PodsNotFoundError,
    ReconciliationError,
    TunnelError,
    UnsealError,
    VaultAPIError,
    VaultAutoError,
)
from vault_auto.settings import Settings
from vault_auto.toolkit import VaultAuto

__all__ = [
    # Version
    "__version__",
    # Main CLI
    "cli",
    # Classes
    "Settings",
    "VaultAuto",
    # Exceptions
    "VaultAutoError",
    "ClusterConnectionError",
    "MissingCredentialsError",
    "PodsNotFoundError",
    "ReconciliationError",
    "TunnelError",
    "UnsealError",
    "VaultAPIError",
]
