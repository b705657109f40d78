import functools
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from cidrforge import __version__
from cidrforge.config import ConfigError
from cidrforge.controller import FORMATS, AllocationController
from cidrforge.digitalocean import DigitalOceanError
from cidrforge.inventory import InventoryError
from cidrforge.network import MAX_PREFIX, MIN_PREFIX, NetworkError

console = Console()
controller = AllocationController(console)


def setup_logging(verbose: bool = False) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def handle_errors(fn):
    """Decorator to catch and display common errors."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (ConfigError, NetworkError, InventoryError, DigitalOceanError) as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise SystemExit(1)

    return wrapper


def inventory_options(fn):
    """Options shared by every command that reads the blocks in use."""
    fn = click.option(
        "-c", "--config", "config_path", default=None,
        help="Path to a cidrforge YAML config (default: ./cidrforge.yml if present)",
    )(fn)
    fn = click.option(
        "-e", "--existing", multiple=True,
        help="Block already in use; skips the configured inventory provider",
    )(fn)
    fn = click.option(
        "-i", "--inventory-file", default=None,
        help="YAML snapshot of blocks in use; skips the configured inventory provider",
    )(fn)
    return fn


@click.group()
@click.version_option(version=__version__, prog_name="cidrforge")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """Cidrforge - Find free CIDR blocks for Terraform deployments."""
    setup_logging(verbose)


@cli.command()
@click.option("-b", "--base-network", default=None, help="Base IPv4 address to search from")
@click.option(
    "-p", "--prefix-length", type=int, default=None,
    help=f"Prefix length of the block ({MIN_PREFIX}-{MAX_PREFIX})",
)
@inventory_options
@handle_errors
def allocate(base_network, prefix_length, config_path, existing, inventory_file):
    """Print the first free block of the requested size."""
    cidr = controller.allocate(
        base_network=base_network,
        prefix_length=prefix_length,
        config_path=config_path,
        existing=existing,
        inventory_file=inventory_file,
    )
    click.echo(cidr)


@cli.command()
@click.option(
    "-f", "--format", "fmt", type=click.Choice(FORMATS), default="table",
    help="Output format",
)
@click.option("-o", "--output-dir", default=None, type=click.Path(file_okay=False), help="Write a tfvars file here")
@inventory_options
@handle_errors
def assign(fmt, output_dir, config_path, existing, inventory_file):
    """Assign a block to each role (VPC, cluster, service)."""
    controller.assign(
        config_path=config_path,
        existing=existing,
        inventory_file=inventory_file,
        fmt=fmt,
        output_dir=output_dir,
    )


@cli.command()
@inventory_options
@handle_errors
def used(config_path, existing, inventory_file):
    """List blocks currently in use."""
    controller.used(config_path=config_path, existing=existing, inventory_file=inventory_file)


@cli.command()
@click.argument("cidr")
@inventory_options
@handle_errors
def check(cidr, config_path, existing, inventory_file):
    """Check whether CIDR overlaps a block in use (exit 1 if it does)."""
    conflicts = controller.check(
        cidr, config_path=config_path, existing=existing, inventory_file=inventory_file
    )
    if conflicts:
        raise SystemExit(1)


@cli.command()
@click.argument("path")
@handle_errors
def init(path):
    """Scaffold a cidrforge YAML configuration."""
    controller.scaffold(path)
