"""Durable storage of Vault bootstrap credentials.

This module provides the CredentialStore, which keeps the unseal keys and
root token issued at initialization in a per-environment JSON record, and
the RootTokenSink, which copies only the root token into an operator
supplied YAML secrets file.
"""

import contextlib
import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from icecream import ic

from vault_auto.exceptions import CorruptRecordError, CredentialsNotFoundError, CredentialStoreError
from vault_auto.models import BootstrapCredentials, Environment

_RECORD_NAME = "vault-credentials.json"
_RECORD_MODE = 0o600


def _atomic_write(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` without exposing a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(temp_name, _RECORD_MODE)
        os.replace(temp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(temp_name)
        raise


class CredentialStore:
    """Stores bootstrap credentials below a cache root, one record per environment.

    Attributes:
        cache_root: Directory holding ``<environment>/vault-credentials.json``.

    """

    def __init__(self, cache_root: Path) -> None:
        self.cache_root = Path(cache_root)

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"CredentialStore(cache_root={self.cache_root!r})"

    def path(self, environment: Environment) -> Path:
        """Return the record location for an environment."""
        return self.cache_root / Environment(environment).value / _RECORD_NAME

    def exists(self, environment: Environment) -> bool:
        return self.path(environment).is_file()

    def write(self, environment: Environment, credentials: BootstrapCredentials) -> Path:
        """Persist credentials for an environment.

        Args:
            environment: The environment the credentials belong to.
            credentials: The credentials to store.

        Returns:
            The path of the written record.

        Raises:
            CredentialStoreError: If the record cannot be written.

        """
        path = self.path(environment)
        record: dict[str, Any] = {
            "keys": list(credentials.unseal_keys),
            "keys_base64": list(credentials.unseal_keys_encoded),
            "token": credentials.root_token,
        }
        if credentials.created is not None:
            record["created"] = credentials.created.isoformat()

        try:
            _atomic_write(path, json.dumps(record, indent=2) + "\n")
        except OSError as e:
            raise CredentialStoreError(f"Could not write credentials to {path}: {e}") from e

        ic(path)
        return path

    def read(self, environment: Environment) -> BootstrapCredentials:
        """Load the credentials of an environment.

        Args:
            environment: The environment to load.

        Returns:
            The stored credentials.

        Raises:
            CredentialsNotFoundError: If there is no record yet.
            CorruptRecordError: If the record cannot be decoded.
            CredentialStoreError: If the record cannot be read.

        """
        path = self.path(environment)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise CredentialsNotFoundError(f"No Vault credentials recorded at {path}") from e
        except OSError as e:
            raise CredentialStoreError(f"Could not read credentials from {path}: {e}") from e

        try:
            record = json.loads(raw)
            credentials = BootstrapCredentials(
                unseal_keys=self._strings(record["keys"]),
                unseal_keys_encoded=self._strings(record.get("keys_base64", [])),
                root_token=record["token"],
                created=datetime.fromisoformat(record["created"]) if record.get("created") else None,
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CorruptRecordError(f"Credential record {path} is corrupt: {e}") from e

        if not isinstance(credentials.root_token, str) or not credentials.root_token:
            raise CorruptRecordError(f"Credential record {path} holds no root token")
        return credentials

    @staticmethod
    def _strings(value: Any) -> list[str]:
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise TypeError("expected a list of strings")
        return value


class RootTokenSink:
    """Copies the root token into a YAML secrets file.

    The token is merged under ``vault.rootToken``; everything else in the
    file is preserved.

    Attributes:
        path: The YAML file to update.

    """

    key = ("vault", "rootToken")

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"RootTokenSink(path={self.path!r})"

    def write(self, token: str) -> None:
        """Merge the token into the secrets file.

        Raises:
            CredentialStoreError: If the file cannot be parsed or written.

        """
        try:
            document = yaml.safe_load(self.path.read_text(encoding="utf-8")) if self.path.exists() else None
        except (OSError, yaml.YAMLError) as e:
            raise CredentialStoreError(f"Could not read secrets file {self.path}: {e}") from e

        document = document or {}
        if not isinstance(document, dict):
            raise CredentialStoreError(f"Secrets file {self.path} is not a YAML mapping")

        section = document.setdefault(self.key[0], {})
        if not isinstance(section, dict):
            raise CredentialStoreError(f"Key {self.key[0]!r} in {self.path} is not a mapping")
        section[self.key[1]] = token

        try:
            _atomic_write(self.path, yaml.safe_dump(document, default_flow_style=False, sort_keys=False))
        except OSError as e:
            raise CredentialStoreError(f"Could not write secrets file {self.path}: {e}") from e
