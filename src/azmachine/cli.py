"""Command line interface for azmachine.

Exposes the driver boundary for operators and scripts:

    azmachine create --spec class.yaml --secret secret.yaml --name worker-1
    azmachine delete --spec class.yaml --secret secret.yaml --name worker-1
    azmachine status --spec class.yaml --secret secret.yaml --name worker-1
    azmachine list --spec class.yaml --secret secret.yaml
    azmachine volume-ids --volumes pvs.yaml

Spec, secret and volume files are YAML (JSON is valid YAML). Exit codes
follow the error kind: 2 configuration, 3 not found, 4 conflict,
5 resource exhausted, 1 anything else.
"""

import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
import yaml
from rich.console import Console
from rich.table import Table

from azmachine import __version__
from azmachine.config import ConfigError, ConfigManager
from azmachine.driver import Driver
from azmachine.errors import DriverError, ErrorKind
from azmachine.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)

EXIT_CODES = {
    ErrorKind.CONFIGURATION: 2,
    ErrorKind.NOT_FOUND: 3,
    ErrorKind.CONFLICT: 4,
    ErrorKind.RESOURCE_EXHAUSTED: 5,
    ErrorKind.UNKNOWN: 1,
}

console = Console()


def load_document(path: str) -> Any:
    """Read a YAML or JSON document.

    Raises:
        click.BadParameter: If the file is not valid YAML
    """
    try:
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise click.BadParameter(f"{path} is not valid YAML/JSON: {e}") from e


def _provider_spec_document(path: str) -> dict[str, Any]:
    data = load_document(path) or {}
    # Accept a whole machine class as well as a bare provider spec
    if isinstance(data, dict) and isinstance(data.get("providerSpec"), dict):
        return data["providerSpec"]
    return data


def _fail(error: DriverError) -> NoReturn:
    message = LogSanitizer.sanitize(str(error))
    for note in getattr(error, "__notes__", []):
        message += "\n" + LogSanitizer.sanitize(note)
    click.echo(f"Error ({error.kind}): {message}", err=True)
    sys.exit(EXIT_CODES.get(error.kind, 1))


def _driver(ctx: click.Context) -> Driver:
    return ctx.obj["driver"]


spec_option = click.option(
    "--spec",
    "spec_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Provider spec (or machine class) YAML/JSON file",
)
secret_option = click.option(
    "--secret",
    "secret_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Provider secret YAML/JSON file",
)
name_option = click.option("--name", "machine_name", required=True, help="Machine name")


@click.group()
@click.option("--config", "config_path", type=click.Path(), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """azmachine - Azure compute-unit lifecycle driver.

    Creates and deletes a VM together with its NIC, OS disk and data disks.

    \b
    CONFIGURATION:
        Config file: ~/.azmachine/config.toml
        Environment: AZMACHINE_POLL_INTERVAL_SECONDS, AZMACHINE_LOG_LEVEL, ...
    """
    try:
        config = ConfigManager.load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_CODES[ErrorKind.CONFIGURATION])

    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    if not verbose:
        logging.getLogger("azure").setLevel(logging.WARNING)

    ctx.ensure_object(dict)
    ctx.obj.setdefault("config", config)
    if "driver" not in ctx.obj:
        ctx.obj["driver"] = Driver(config=config)


@main.command()
@spec_option
@secret_option
@name_option
@click.pass_context
def create(ctx: click.Context, spec_path: str, secret_path: str, machine_name: str) -> None:
    """Create the VM, NIC and disks of a machine."""
    try:
        result = _driver(ctx).create_machine(
            _provider_spec_document(spec_path), load_document(secret_path) or {}, machine_name
        )
    except DriverError as e:
        _fail(e)
    console.print(f"[green]Created[/green] {result.node_name} ({result.provider_id})")


@main.command()
@spec_option
@secret_option
@name_option
@click.pass_context
def delete(ctx: click.Context, spec_path: str, secret_path: str, machine_name: str) -> None:
    """Delete the VM, NIC and disks of a machine."""
    try:
        report = _driver(ctx).delete_machine(
            _provider_spec_document(spec_path), load_document(secret_path) or {}, machine_name
        )
    except DriverError as e:
        _fail(e)

    if report is None:
        console.print("Resource group does not exist, nothing to delete")
        return
    table = Table(title=f"Deleted {report.vm_name}", show_header=True, header_style="bold")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Result")
    for outcome in report.outcomes:
        table.add_row(outcome.resource_kind, outcome.name, str(outcome.state))
    console.print(table)


@main.command()
@spec_option
@secret_option
@name_option
@click.pass_context
def status(ctx: click.Context, spec_path: str, secret_path: str, machine_name: str) -> None:
    """Show whether a machine's VM exists."""
    try:
        machine = _driver(ctx).get_machine_status(
            _provider_spec_document(spec_path), load_document(secret_path) or {}, machine_name
        )
    except DriverError as e:
        _fail(e)
    console.print(f"{machine.node_name} ({machine.provider_id})")


@main.command(name="list")
@spec_option
@secret_option
@click.pass_context
def list_machines(ctx: click.Context, spec_path: str, secret_path: str) -> None:
    """List machines of the provider spec's cluster and role."""
    try:
        machines = _driver(ctx).list_machines(
            _provider_spec_document(spec_path), load_document(secret_path) or {}
        )
    except DriverError as e:
        _fail(e)

    if not machines:
        console.print("No machines found")
        return
    table = Table(title="Machines", show_header=True, header_style="bold")
    table.add_column("Provider ID")
    table.add_column("Name")
    for provider_id, name in machines.items():
        table.add_row(provider_id, name)
    console.print(table)


@main.command(name="volume-ids")
@click.option(
    "--volumes",
    "volumes_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="YAML/JSON list of persistent-volume specs",
)
@click.pass_context
def volume_ids(ctx: click.Context, volumes_path: str) -> None:
    """Print the Azure disk names referenced by volume specs."""
    volumes = load_document(volumes_path) or []
    if not isinstance(volumes, list):
        raise click.BadParameter("volumes file must contain a list", param_hint="--volumes")
    for volume_id in _driver(ctx).get_volume_ids(volumes):
        click.echo(volume_id)


__all__ = ["EXIT_CODES", "main"]

if __name__ == "__main__":
    main()
