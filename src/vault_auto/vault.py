"""Vault HTTP API client.

This module wraps ``hvac`` with the handful of calls vault-auto needs and
translates client errors into vault-auto exceptions. The client always
talks to Vault through a local tunnel, so it checks the tunnel's health
around every call.
"""

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

import hvac
import requests
import urllib3
from hvac.exceptions import InvalidPath, VaultError
from icecream import ic

from vault_auto.exceptions import InitializationError, VaultAPIError
from vault_auto.models import BootstrapCredentials, ClusterStatus
from vault_auto.tunnel import Tunnel

# The tunnel terminates on loopback; Vault's certificate never matches it.
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

_REQUEST_TIMEOUT = 60


class VaultClient:
    """Client for a single Vault replica reached through a tunnel.

    Attributes:
        address: The base URL of the Vault API.

    """

    def __init__(self, address: str, token: str | None = None, *, tunnel: Tunnel | None = None) -> None:
        """Initialize the client.

        Args:
            address: The base URL of the Vault API, usually ``tunnel.address``.
            token: Vault token to authenticate with.
            tunnel: Tunnel the requests travel through, checked for failures.

        """
        self.address = address
        self._tunnel = tunnel
        session = requests.Session()
        session.verify = False
        self._client = hvac.Client(url=address, token=token, verify=False, timeout=_REQUEST_TIMEOUT, session=session)

    @classmethod
    def through(cls, tunnel: Tunnel, token: str | None = None) -> "VaultClient":
        return cls(tunnel.address, token, tunnel=tunnel)

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"VaultClient(address={self.address!r})"

    @contextmanager
    def _call(self, operation: str) -> Generator[None, None, None]:
        if self._tunnel is not None:
            self._tunnel.check()
        try:
            yield
        except VaultError as e:
            raise VaultAPIError(f"Could not {operation}: {e}") from e
        except requests.exceptions.RequestException as e:
            if self._tunnel is not None:
                self._tunnel.check()
            raise VaultAPIError(f"Could not {operation}: {e}") from e

    def set_token(self, token: str) -> None:
        self._client.token = token

    # Lookups

    def get_or_empty(self, path: str, *, list_keys: bool = False) -> dict[str, Any]:
        """Read a Vault path, treating a 404 as an empty result.

        hvac raises ``InvalidPath`` for HTTP 404 and only for 404, so no
        other failure is masked.

        Args:
            path: API path below ``/v1/``.
            list_keys: Issue a LIST request instead of a GET.

        Returns:
            The decoded response body, or an empty dict if nothing exists.

        """
        url = f"/v1/{path}"
        with self._call(f"read {path}"):
            try:
                response = self._client.adapter.list(url) if list_keys else self._client.adapter.get(url)
            except InvalidPath:
                ic(path, "not found")
                return {}
        return response if isinstance(response, dict) else {}

    def list_keys(self, path: str) -> list[str]:
        """Return the keys listed under a path, or an empty list if there are none."""
        return list(self.get_or_empty(path, list_keys=True).get("data", {}).get("keys", []))

    # Seal lifecycle

    def seal_status(self) -> ClusterStatus:
        with self._call("read seal status"):
            status = ClusterStatus.from_response(self._client.sys.read_seal_status())
        ic(status)
        return status

    def initialize(self, shares: int, threshold: int, *, high_availability: bool = False) -> BootstrapCredentials:
        """Initialize Vault and return the issued key material.

        Plain Shamir seals take secret shares; auto-unseal (HA) seals only
        accept recovery shares, so exactly one of the two shapes is sent.

        Args:
            shares: Number of key shares to issue.
            threshold: Number of shares required to reconstruct the key.
            high_availability: Request recovery shares instead of secret shares.

        Returns:
            The issued keys and root token.

        Raises:
            InitializationError: If the request is invalid or the response incomplete.
            VaultAPIError: If Vault rejects the request.

        """
        if threshold < 1 or threshold > shares:
            raise InitializationError(f"Threshold must be between 1 and the number of shares ({shares}), got {threshold}")

        prefix = "recovery" if high_availability else "secret"
        payload = {f"{prefix}_shares": shares, f"{prefix}_threshold": threshold}
        ic(payload)

        with self._call("initialize Vault"):
            response = self._client.adapter.put("/v1/sys/init", json=payload)

        keys_field = "recovery_keys" if high_availability else "keys"
        try:
            return BootstrapCredentials(
                unseal_keys=list(response[keys_field]),
                unseal_keys_encoded=list(response.get(f"{keys_field}_base64", [])),
                root_token=str(response["root_token"]),
                created=datetime.now(timezone.utc),
            )
        except (KeyError, TypeError) as e:
            raise InitializationError(f"Unexpected initialization response, missing {e}") from e

    def submit_unseal_key(self, key: str) -> ClusterStatus:
        with self._call("submit unseal key"):
            return ClusterStatus.from_response(self._client.sys.submit_unseal_key(key=key))

    # Auth methods and secrets engines

    @staticmethod
    def _mount_names(response: dict[str, Any]) -> list[str]:
        mounts = response.get("data", response)
        return [path.rstrip("/") for path, value in mounts.items() if isinstance(value, dict)]

    def list_auth_methods(self) -> list[str]:
        with self._call("list authentication methods"):
            return self._mount_names(self._client.sys.list_auth_methods())

    def enable_auth_method(self, path: str, method_type: str, description: str = "") -> None:
        with self._call(f"enable authentication method {path}"):
            self._client.sys.enable_auth_method(method_type=method_type, path=path, description=description)

    def tune_auth_method(self, path: str, description: str = "") -> None:
        with self._call(f"tune authentication method {path}"):
            self._client.sys.tune_auth_method(path=path, description=description)

    def configure_auth_method(self, path: str, config: dict[str, Any]) -> None:
        with self._call(f"configure authentication method {path}"):
            self._client.adapter.post(f"/v1/auth/{path}/config", json=config)

    def list_secrets_engines(self) -> list[str]:
        with self._call("list secrets engines"):
            return self._mount_names(self._client.sys.list_mounted_secrets_engines())

    def enable_secrets_engine(
        self, path: str, engine_type: str, description: str = "", options: dict[str, Any] | None = None
    ) -> None:
        with self._call(f"enable secrets engine {path}"):
            self._client.sys.enable_secrets_engine(
                backend_type=engine_type, path=path, description=description, options=options
            )

    def tune_secrets_engine(self, path: str, description: str = "", options: dict[str, Any] | None = None) -> None:
        with self._call(f"tune secrets engine {path}"):
            self._client.sys.tune_mount_configuration(path=path, description=description, options=options)

    # Policies

    def list_acl_policies(self) -> list[str]:
        return self.list_keys("sys/policies/acl")

    def write_acl_policy(self, name: str, policy: str) -> None:
        with self._call(f"write ACL policy {name}"):
            self._client.sys.create_or_update_acl_policy(name=name, policy=policy)

    def list_password_policies(self) -> list[str]:
        return self.list_keys("sys/policies/password")

    def write_password_policy(self, name: str, policy: str) -> None:
        with self._call(f"write password policy {name}"):
            self._client.adapter.put(f"/v1/sys/policies/password/{name}", json={"policy": policy})

    def generate_password(self, policy: str) -> str:
        with self._call(f"generate password from policy {policy}"):
            response = self._client.adapter.get(f"/v1/sys/policies/password/{policy}/generate")
        return str(response["data"]["password"])

    # Roles, keys and secrets

    def list_roles(self, mount: str) -> list[str]:
        return self.list_keys(f"auth/{mount}/role")

    def write_role(self, mount: str, name: str, params: dict[str, Any]) -> None:
        with self._call(f"write role {mount}/{name}"):
            self._client.adapter.post(f"/v1/auth/{mount}/role/{name}", json=params)

    def list_transit_keys(self, mount: str) -> list[str]:
        return self.list_keys(f"{mount}/keys")

    def create_transit_key(self, mount: str, name: str, params: dict[str, Any] | None = None) -> None:
        with self._call(f"create transit key {mount}/{name}"):
            self._client.adapter.post(f"/v1/{mount}/keys/{name}", json=params or {})

    def list_kv_secrets(self, mount: str, directory: str) -> list[str]:
        """List the secret names directly below a KV v2 directory."""
        return self.list_keys(f"{mount}/metadata/{directory}".rstrip("/"))

    def write_kv_secret(self, mount: str, path: str, data: dict[str, Any]) -> None:
        with self._call(f"write secret {mount}/{path}"):
            self._client.secrets.kv.v2.create_or_update_secret(path=path, secret=data, mount_point=mount)
