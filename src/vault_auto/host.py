"""Host system utilities for vault-auto.

This module provides the Host class for resolving the local cache
location, serializing concurrent runs, and locating external binaries.
"""

import fcntl
import os
import shutil
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from icecream import ic

from vault_auto import console
from vault_auto.exceptions import BinaryNotFoundError, VaultAutoError
from vault_auto.settings import APP_NAME

_LOCK_FILE = "vault-auto.lock"


class Host:
    """Manages host system state for vault-auto.

    Attributes:
        cache_root: Directory holding per-environment credential records.

    """

    def __init__(self, cache_dir: Path | None = None) -> None:
        """Initialize Host and resolve the cache root.

        Args:
            cache_dir: Explicit cache root. Defaults to the XDG cache
                       directory for the application.

        """
        if cache_dir is None:
            xdg_cache_home = os.environ.get("XDG_CACHE_HOME")
            base_path = Path(xdg_cache_home) if xdg_cache_home else Path.home() / ".cache"
            cache_dir = base_path / APP_NAME
        self.cache_root: Path = Path(cache_dir)

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Host(cache_root={self.cache_root!r})"

    @contextmanager
    def instance_lock(self) -> Generator[Path, None, None]:
        """Hold an exclusive lock for the duration of a run.

        Tunnels bind a fixed local port by default, so two runs on one
        machine must not overlap.

        Yields:
            The path of the lock file.

        Raises:
            VaultAutoError: If another run already holds the lock.

        """
        self.cache_root.mkdir(parents=True, exist_ok=True)
        lock_path = self.cache_root / _LOCK_FILE
        ic(lock_path)

        with lock_path.open("a") as handle:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                raise VaultAutoError(
                    f"Another vault-auto run is in progress (lock held on {lock_path})"
                ) from e
            try:
                yield lock_path
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    @staticmethod
    def find_binary(name: str) -> str:
        """Locate an executable on the PATH.

        Args:
            name: The binary name, e.g. ``kubectl``.

        Returns:
            The full path to the binary.

        Raises:
            BinaryNotFoundError: If the binary is not installed.

        """
        binary = shutil.which(name)
        if binary is None:
            console.warning(f"{console.highlight(name)} not found in PATH")
            raise BinaryNotFoundError(f"{name} binary not found. Please install {name} or ensure it's in your PATH.")
        return binary
