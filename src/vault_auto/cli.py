#!/usr/bin/env python
"""Command-line interface for vault-auto.

This module provides the main CLI entry point for the vault-auto tool,
handling command-line argument parsing and running the bootstrap and
configuration commands against the Vault deployment.
"""

import signal
import sys
import threading
from collections.abc import Callable
from pathlib import Path

import click
from icecream import ic

from vault_auto import __version__, console
from vault_auto.catalog import APPLICATIONS
from vault_auto.exceptions import VaultAutoError
from vault_auto.models import Environment
from vault_auto.settings import (
    DEFAULT_ACTIVE_LABEL,
    DEFAULT_LABEL,
    DEFAULT_LOCAL_PORT,
    DEFAULT_POD_TIMEOUT,
    DEFAULT_SHARES,
    DEFAULT_THRESHOLD,
    Settings,
)
from vault_auto.toolkit import VaultAuto


class AliasedGroup(click.Group):
    """Command group that also accepts short command aliases."""

    aliases = {"init": "initialize", "methods": "mounts"}

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        return super().get_command(ctx, self.aliases.get(cmd_name, cmd_name))


def run(settings: Settings, operation: Callable[[VaultAuto], object]) -> None:
    """Run one operation, turning failures into a non-zero exit.

    SIGTERM and Ctrl-C set the cancellation event so pod waits and open
    tunnels stop promptly.

    Args:
        settings: Options shared by every command.
        operation: Callable receiving the VaultAuto instance.

    """
    cancel = threading.Event()
    previous = signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())
    try:
        with VaultAuto(settings, cancel=cancel) as vault_auto:
            ic(vault_auto)
            operation(vault_auto)
    except VaultAutoError as e:
        console.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        cancel.set()
        raise
    finally:
        signal.signal(signal.SIGTERM, previous)


def token_options(func: Callable) -> Callable:
    """Options shared by the configuration commands."""
    func = click.option(
        "--overwrite", is_flag=True, default=False, help="rewrite objects that already exist"
    )(func)
    func = click.option(
        "--token",
        "-t",
        envvar="VAULT_AUTO_TOKEN",
        help="Vault token, defaults to the recorded root token",
    )(func)
    return func


@click.group(cls=AliasedGroup, invoke_without_command=True, help="Bootstrap and configure Vault on Kubernetes")
@click.option("--version", "-v", required=False, is_flag=True, help="print version")
@click.option("--debug", required=False, is_flag=True, help="print debug information")
@click.option("--select", required=False, is_flag=True, default=False, help="prompt for context select")
@click.option(
    "--environment",
    "-e",
    type=click.Choice([environment.value for environment in Environment]),
    default=Environment.DEV.value,
    show_default=True,
    envvar="VAULT_AUTO_ENVIRONMENT",
    help="environment whose credentials to use",
)
@click.option(
    "--label", "-l", default=DEFAULT_LABEL, show_default=True, envvar="VAULT_AUTO_LABEL", help="Vault pod label"
)
@click.option(
    "--namespace", "-n", default="", envvar="VAULT_AUTO_NAMESPACE", help="Vault namespace, searches all if empty"
)
@click.option(
    "--active-label",
    default=DEFAULT_ACTIVE_LABEL,
    show_default=True,
    envvar="VAULT_AUTO_ACTIVE_LABEL",
    help="label marking the active Vault pod",
)
@click.option(
    "--local-port",
    type=click.IntRange(0, 65535),
    default=DEFAULT_LOCAL_PORT,
    show_default=True,
    envvar="VAULT_AUTO_LOCAL_PORT",
    help="local tunnel port, 0 for any free port",
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="VAULT_AUTO_CACHE_DIR",
    help="directory holding credential records",
)
@click.option(
    "--pod-timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=DEFAULT_POD_TIMEOUT,
    show_default=True,
    envvar="VAULT_AUTO_POD_TIMEOUT",
    help="seconds to wait for a pod to be running",
)
@click.pass_context
def cli(
    ctx: click.Context,
    version: bool,
    debug: bool,
    select: bool,
    environment: str,
    label: str,
    namespace: str,
    active_label: str,
    local_port: int,
    cache_dir: Path | None,
    pod_timeout: float,
) -> None:
    """Process global options shared by every command.

    Args:
        ctx: Click context; receives the Settings object.
        version: Print version and exit.
        debug: Enable debug output.
        select: Prompt for Kubernetes context selection.
        environment: Environment whose credential record to use.
        label: Label selector identifying the Vault pods.
        namespace: Namespace to search.
        active_label: Label marking the active replica.
        local_port: Local tunnel port.
        cache_dir: Cache root override.
        pod_timeout: Seconds to wait for pods to be running.

    """
    if not debug:
        ic.disable()

    if version:
        click.echo(__version__)
        ctx.exit()

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit()

    ctx.obj = Settings(
        environment=Environment(environment),
        label=label,
        namespace=namespace,
        active_label=active_label,
        local_port=local_port,
        cache_dir=cache_dir,
        pod_timeout=pod_timeout,
        select_context=select,
    )
    ic(ctx.obj)


@cli.command(help="Initialize Vault if needed and unseal every replica")
@click.option("--shares", type=click.IntRange(min=1), default=DEFAULT_SHARES, show_default=True, help="key shares")
@click.option(
    "--threshold",
    type=click.IntRange(min=1),
    default=DEFAULT_THRESHOLD,
    show_default=True,
    help="key shares required to unseal",
)
@click.option("--high-availability", is_flag=True, default=False, help="issue recovery shares for auto-unseal")
@click.option(
    "--secret-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="YAML secrets file to write the root token to",
)
@click.pass_obj
def initialize(
    settings: Settings, shares: int, threshold: int, high_availability: bool, secret_file: Path | None
) -> None:
    if threshold > shares:
        raise click.BadParameter(f"threshold {threshold} exceeds shares {shares}", param_hint="--threshold")

    run(
        settings,
        lambda vault_auto: vault_auto.initialize(
            shares, threshold, high_availability=high_availability, secret_file=secret_file
        ),
    )


@cli.command(help="Enable auth methods and secrets engines")
@token_options
@click.pass_obj
def mounts(settings: Settings, token: str | None, overwrite: bool) -> None:
    run(settings, lambda vault_auto: vault_auto.mounts(token, overwrite=overwrite))


@cli.command(help="Write release, admin and password policies")
@token_options
@click.pass_obj
def configure(settings: Settings, token: str | None, overwrite: bool) -> None:
    run(settings, lambda vault_auto: vault_auto.configure(token, overwrite=overwrite))


@cli.command(help="Configure Vault for an application")
@click.argument("application", type=click.Choice(sorted(APPLICATIONS)))
@token_options
@click.pass_obj
def prepare(settings: Settings, application: str, token: str | None, overwrite: bool) -> None:
    run(settings, lambda vault_auto: vault_auto.prepare(application, token, overwrite=overwrite))


if __name__ == "__main__":
    cli()
