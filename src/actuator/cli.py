"""GCE machine actuator CLI (gce-actuator).

Runs one lifecycle operation against a Cluster and a Machine manifest.

Usage:
    gce-actuator exists cluster.yaml machine.yaml
    gce-actuator create --persist cluster.yaml machine.yaml
    gce-actuator update --persist cluster.yaml machine.yaml
    gce-actuator delete --persist cluster.yaml machine.yaml
    gce-actuator get-ip cluster.yaml machine.yaml
    gce-actuator kubeconfig cluster.yaml master.yaml

Without --persist the actuator runs in bootstrap mode and nothing is
written back to the Machine manifest.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click
from google.api_core.exceptions import GoogleAPIError

from .actuator import GCEMachineActuator
from .config import ActuatorConfig, ConfigurationError
from .errors import ActuatorError
from .main import build_actuator, setup_logging
from .manifests import FileMachineClient, ManifestLoadError, load_cluster, load_machine
from .models import Cluster, Machine

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

_manifest_path = click.Path(exists=True, dir_okay=False, path_type=Path)


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Turn actuator failures into a non-zero exit with a readable message."""
    try:
        yield
    except (ActuatorError, ManifestLoadError, ConfigurationError, GoogleAPIError) as e:
        raise click.ClickException(str(e)) from e


def _manifest_arguments(func: Callable[..., Any]) -> Callable[..., Any]:
    func = click.argument("machine_path", type=_manifest_path)(func)
    func = click.argument("cluster_path", type=_manifest_path)(func)
    return func


def _persist_option(func: Callable[..., Any]) -> Callable[..., Any]:
    return click.option(
        "--persist",
        is_flag=True,
        help="Write annotations, finalizers and status back to the Machine manifest",
    )(func)


def _prepare(
    cluster_path: Path, machine_path: Path, persist: bool
) -> tuple[GCEMachineActuator, Cluster, Machine]:
    config = ActuatorConfig.from_env()
    cluster = load_cluster(cluster_path)
    machine = load_machine(machine_path)
    machine_client = FileMachineClient(machine_path) if persist else None
    return build_actuator(config, machine_client), cluster, machine


@click.group()
@click.version_option(version="0.1.0", prog_name="gce-actuator")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Log level for JSON logs on stdout",
)
def cli(log_level: str) -> None:
    """GCE machine actuator.

    Provisions, updates and deletes the Compute Engine instance backing a
    cluster Machine.
    """
    setup_logging(log_level.upper())


@cli.command()
@_manifest_arguments
def exists(cluster_path: Path, machine_path: Path) -> None:
    """Print whether the machine's instance exists."""
    with _reported_errors():
        actuator, cluster, machine = _prepare(cluster_path, machine_path, persist=False)
        found = actuator.exists(cluster, machine)
    click.echo("true" if found else "false")


@cli.command()
@_persist_option
@_manifest_arguments
def create(cluster_path: Path, machine_path: Path, persist: bool) -> None:
    """Create the machine's instance."""
    with _reported_errors():
        actuator, cluster, machine = _prepare(cluster_path, machine_path, persist)
        actuator.create(cluster, machine)
    click.secho(f"✓ Machine {machine.name} created", fg="green")


@cli.command()
@_persist_option
@_manifest_arguments
def delete(cluster_path: Path, machine_path: Path, persist: bool) -> None:
    """Delete the machine's instance."""
    with _reported_errors():
        actuator, cluster, machine = _prepare(cluster_path, machine_path, persist)
        actuator.delete(cluster, machine)
    click.secho(f"✓ Machine {machine.name} deleted", fg="green")


@cli.command()
@_persist_option
@_manifest_arguments
def update(cluster_path: Path, machine_path: Path, persist: bool) -> None:
    """Reconcile the machine's instance with its manifest."""
    with _reported_errors():
        actuator, cluster, machine = _prepare(cluster_path, machine_path, persist)
        actuator.update(cluster, machine)
    click.secho(f"✓ Machine {machine.name} up to date", fg="green")


@cli.command("get-ip")
@_manifest_arguments
def get_ip(cluster_path: Path, machine_path: Path) -> None:
    """Print the machine's public IP address."""
    with _reported_errors():
        actuator, cluster, machine = _prepare(cluster_path, machine_path, persist=False)
        address = actuator.get_ip(cluster, machine)
    click.echo(address)


@cli.command()
@_manifest_arguments
def kubeconfig(cluster_path: Path, machine_path: Path) -> None:
    """Print the admin kubeconfig of a master machine."""
    with _reported_errors():
        actuator, cluster, machine = _prepare(cluster_path, machine_path, persist=False)
        content = actuator.get_kubeconfig(cluster, machine)
    click.echo(content)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
