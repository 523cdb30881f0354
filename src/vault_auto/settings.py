"""Run configuration for vault-auto.

Settings are assembled once by the CLI (from options and ``VAULT_AUTO_*``
environment variables) and passed down explicitly; nothing reads
configuration from module state.
"""

from dataclasses import dataclass
from pathlib import Path

from vault_auto.models import Environment

APP_NAME = "vault-auto"

DEFAULT_LABEL = "app.kubernetes.io/name=vault"
DEFAULT_ACTIVE_LABEL = "vault-active=true"
DEFAULT_LOCAL_PORT = 8200
DEFAULT_POD_TIMEOUT = 300.0
DEFAULT_SHARES = 5
DEFAULT_THRESHOLD = 3


@dataclass(frozen=True, slots=True)
class Settings:
    """Options shared by every command.

    Attributes:
        environment: Which environment's credential record to use.
        label: Label selector identifying the Vault pods.
        namespace: Namespace to search; empty searches the whole cluster.
        active_label: Label marking the active (leader) replica.
        local_port: Local tunnel port; 0 picks an ephemeral port.
        cache_dir: Override for the cache root holding credential records.
        pod_timeout: Seconds to wait for a pod to become Running.
        select_context: Prompt for the kubeconfig context to use.

    """

    environment: Environment = Environment.DEV
    label: str = DEFAULT_LABEL
    namespace: str = ""
    active_label: str = DEFAULT_ACTIVE_LABEL
    local_port: int = DEFAULT_LOCAL_PORT
    cache_dir: Path | None = None
    pod_timeout: float = DEFAULT_POD_TIMEOUT
    select_context: bool = False
