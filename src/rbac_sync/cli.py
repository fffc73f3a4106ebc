"""rbac-sync command line interface.

Usage:
    rbac-sync run                 # Run the operator until SIGTERM
    rbac-sync run --once          # Run a single reconciliation cycle
    rbac-sync plan                # Show what the next cycle would change
    rbac-sync members GROUP       # Show the resolved members of a group

Configuration comes from the environment (see Config.from_env); options
given on the command line override it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import sys
from pathlib import Path
from typing import Any

import click

from .cluster import ClusterReadError
from .config import Config, ConfigurationError
from .credentials import CredentialsError
from .directory import ResolutionError
from .main import build_reconciler, build_resolver, run_operator, setup_logging
from .metrics import PrometheusMetrics

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1


def load_config(**overrides: Any) -> Config:
    """Load configuration from the environment and apply CLI overrides.

    Raises:
        click.ClickException: If the resulting configuration is invalid.
    """
    try:
        config = Config.from_env()
        changes = {key: value for key, value in overrides.items() if value is not None}
        if changes:
            config = dataclasses.replace(config, **changes)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    return config


@click.group()
@click.version_option(version="0.1.0", prog_name="rbac-sync")
def cli() -> None:
    """Synchronize namespace RoleBindings with directory group membership.

    \b
    Namespaces opt in with annotations:
        rbac-sync.nais.io/group-name          group to resolve (required)
        rbac-sync.nais.io/roles               comma-separated roles
        rbac-sync.nais.io/rolebinding-prefix  binding name prefix
    """
    pass


@cli.command()
@click.option("--once", is_flag=True, help="Run a single cycle and exit")
@click.option("--dry-run", is_flag=True, help="Compute changes without applying")
@click.option("--interval", type=int, help="Seconds between cycles")
@click.option(
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Kubeconfig path (default: in-cluster)",
)
def run(once: bool, dry_run: bool, interval: int | None, kubeconfig: Path | None) -> None:
    """Run the operator."""
    config = load_config(
        dry_run=True if dry_run else None,
        reconcile_interval_seconds=interval,
        kubeconfig=kubeconfig,
    )
    setup_logging(config.log_level)

    if not once:
        sys.exit(asyncio.run(run_operator(config)))

    try:
        reconciler = build_reconciler(config, PrometheusMetrics())
    except (CredentialsError, ResolutionError) as e:
        raise click.ClickException(str(e)) from e

    result = reconciler.reconcile_once()
    reconciler.log_result(result)
    sys.exit(EXIT_OK if result.success else EXIT_FAILURE)


@cli.command()
@click.option(
    "--kubeconfig",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Kubeconfig path (default: in-cluster)",
)
def plan(kubeconfig: Path | None) -> None:
    """Show the changes the next cycle would make, without applying them."""
    config = load_config(kubeconfig=kubeconfig, dry_run=True)
    setup_logging("WARNING")

    try:
        reconciler = build_reconciler(config, PrometheusMetrics())
        reconcile_plan, failed = reconciler.compute_plan()
    except (CredentialsError, ResolutionError, ClusterReadError) as e:
        raise click.ClickException(str(e)) from e

    for label, colour, bindings in (
        ("delete", "red", reconcile_plan.orphans),
        ("create", "green", reconcile_plan.additions),
        ("update", "yellow", reconcile_plan.updates),
    ):
        for binding in bindings:
            subjects = ", ".join(sorted(binding.subject_names))
            click.secho(f"{label:<7}{binding} -> {binding.role_ref.name} [{subjects}]", fg=colour)

    for namespace, reason in sorted(failed.items()):
        click.secho(f"skip   {namespace}: {reason}", fg="magenta", err=True)

    if reconcile_plan.is_empty:
        click.echo("No changes.")


@cli.command()
@click.argument("group")
def members(group: str) -> None:
    """Resolve GROUP to its members, expanding nested groups."""
    config = load_config()
    setup_logging("WARNING")

    try:
        resolver = build_resolver(config)
        resolved = resolver.resolve_members(group)
    except (CredentialsError, ResolutionError) as e:
        raise click.ClickException(str(e)) from e

    for member in resolved:
        click.echo(member)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
