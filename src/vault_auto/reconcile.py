"""Idempotent reconciliation of Vault configuration.

Every target kind follows the same shape: list what exists, skip the
target if it is already there (unless overwriting), otherwise write it.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from icecream import ic

from vault_auto import console
from vault_auto.exceptions import ReconciliationError, VaultAPIError
from vault_auto.models import ReconciliationTarget, TargetKind
from vault_auto.vault import VaultClient

# Mounts first, policies before the roles that reference them, secrets last
# because their values come from password policies.
KIND_ORDER = (
    TargetKind.AUTH_METHOD,
    TargetKind.SECRETS_ENGINE,
    TargetKind.PASSWORD_POLICY,
    TargetKind.ACL_POLICY,
    TargetKind.TRANSIT_KEY,
    TargetKind.ROLE,
    TargetKind.KV_SECRET,
)


class Generated(NamedTuple):
    """Placeholder for a secret value generated from a Vault password policy."""

    policy: str


@dataclass
class ReconcileReport:
    """What a reconciliation pass changed."""

    changed: list[ReconciliationTarget] = field(default_factory=list)
    skipped: list[ReconciliationTarget] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.changed) + len(self.skipped)


def _split_secret_path(path: str) -> tuple[str, str]:
    directory, _, leaf = path.rpartition("/")
    return directory, leaf


class ReconciliationEngine:
    """Ensures Vault configuration objects exist."""

    def __init__(self, vault: VaultClient) -> None:
        self._vault = vault
        self._listers: dict[TargetKind, Callable[[ReconciliationTarget], list[str]]] = {
            TargetKind.AUTH_METHOD: lambda target: self._vault.list_auth_methods(),
            TargetKind.SECRETS_ENGINE: lambda target: self._vault.list_secrets_engines(),
            TargetKind.ACL_POLICY: lambda target: self._vault.list_acl_policies(),
            TargetKind.PASSWORD_POLICY: lambda target: self._vault.list_password_policies(),
            TargetKind.ROLE: lambda target: self._vault.list_roles(target.spec["mount"]),
            TargetKind.TRANSIT_KEY: lambda target: self._vault.list_transit_keys(target.spec["mount"]),
            TargetKind.KV_SECRET: self._list_kv_secrets,
        }
        self._writers: dict[TargetKind, Callable[[ReconciliationTarget, bool], None]] = {
            TargetKind.AUTH_METHOD: self._write_auth_method,
            TargetKind.SECRETS_ENGINE: self._write_secrets_engine,
            TargetKind.ACL_POLICY: lambda target, exists: self._vault.write_acl_policy(
                target.name, target.spec["policy"]
            ),
            TargetKind.PASSWORD_POLICY: lambda target, exists: self._vault.write_password_policy(
                target.name, target.spec["policy"]
            ),
            TargetKind.ROLE: lambda target, exists: self._vault.write_role(
                target.spec["mount"], target.name, target.spec["params"]
            ),
            TargetKind.TRANSIT_KEY: lambda target, exists: self._vault.create_transit_key(
                target.spec["mount"], target.name, target.spec.get("params")
            ),
            TargetKind.KV_SECRET: self._write_kv_secret,
        }

    def reconcile(self, target: ReconciliationTarget, overwrite: bool = False) -> bool:
        """Ensure a single target exists.

        Args:
            target: The desired object.
            overwrite: Write the target even if it already exists.

        Returns:
            True if the target was written, False if it was skipped.

        Raises:
            ReconciliationError: If listing or writing the target fails.

        """
        try:
            existing = self._listers[target.kind](target)
            ic(target.kind, existing)
            exists = target.name in existing

            if exists and not overwrite:
                console.step(f"Skipped {target.kind.value} {console.highlight(target.name)}, already configured")
                return False

            self._writers[target.kind](target, exists)
        except VaultAPIError as e:
            raise ReconciliationError(target.kind.value, target.name, str(e)) from e

        verb = "Updated" if exists else "Configured"
        console.success(f"{verb} {target.kind.value} {console.highlight(target.name)}")
        return True

    def reconcile_all(self, targets: list[ReconciliationTarget], overwrite: bool = False) -> ReconcileReport:
        """Reconcile targets in dependency order, stopping at the first failure.

        Args:
            targets: The desired objects.
            overwrite: Write targets even if they already exist.

        Returns:
            Which targets changed and which were skipped.

        """
        report = ReconcileReport()
        for target in sorted(targets, key=lambda t: KIND_ORDER.index(t.kind)):
            if self.reconcile(target, overwrite=overwrite):
                report.changed.append(target)
            else:
                report.skipped.append(target)
        return report

    # Kind-specific listing and writing

    def _list_kv_secrets(self, target: ReconciliationTarget) -> list[str]:
        directory, _ = _split_secret_path(target.name)
        names = self._vault.list_kv_secrets(target.spec["mount"], directory)
        return [f"{directory}/{name}" if directory else name for name in names]

    def _write_auth_method(self, target: ReconciliationTarget, exists: bool) -> None:
        description = target.spec.get("description", "")
        if exists:
            self._vault.tune_auth_method(target.name, description=description)
        else:
            self._vault.enable_auth_method(target.name, target.spec["type"], description=description)

        config = target.spec.get("config")
        if config:
            self._vault.configure_auth_method(target.name, config)

    def _write_secrets_engine(self, target: ReconciliationTarget, exists: bool) -> None:
        description = target.spec.get("description", "")
        options = target.spec.get("options")
        if exists:
            self._vault.tune_secrets_engine(target.name, description=description, options=options)
        else:
            self._vault.enable_secrets_engine(
                target.name, target.spec["type"], description=description, options=options
            )

    def _write_kv_secret(self, target: ReconciliationTarget, exists: bool) -> None:
        data: dict[str, Any] = {}
        for key, value in target.spec["data"].items():
            data[key] = self._vault.generate_password(value.policy) if isinstance(value, Generated) else value
        self._vault.write_kv_secret(target.spec["mount"], target.name, data)
