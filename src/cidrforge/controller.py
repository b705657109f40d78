import json
import logging
from pathlib import Path

import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cidrforge.assigner import CidrAssigner
from cidrforge.config import (
    ConfigError,
    build_inventory,
    build_roles,
    resolve_config,
    scaffold_config,
)
from cidrforge.inventory import CompositeInventory, FileInventory, StaticInventory
from cidrforge.network import (
    CidrAllocator,
    InvalidInputError,
    describe_block,
    networks_overlap,
    parse_block,
)
from cidrforge.tfvars import TfvarsGenerator

console = Console()
logger = logging.getLogger(__name__)

FORMATS = ("table", "hcl", "json", "args")


class AllocationController:
    """Orchestrates config, inventory and allocation for the CLI."""

    def __init__(self, output: Console | None = None):
        self.console = output or console

    def inventory(
        self,
        config: dict,
        existing: tuple[str, ...] = (),
        inventory_file: str | None = None,
    ):
        """Use blocks given on the command line, or the configured provider."""
        if existing or inventory_file:
            sources = [StaticInventory(list(existing))]
            if inventory_file:
                sources.append(FileInventory(inventory_file))
            return CompositeInventory(*sources)
        return build_inventory(config)

    def _emit(self, text: str, end: str = "\n") -> None:
        # machine-readable output: no markup, highlighting or wrapping
        self.console.print(text, end=end, markup=False, highlight=False, soft_wrap=True)

    @staticmethod
    def _close(inventory) -> None:
        if hasattr(inventory, "close"):
            inventory.close()

    def allocate(
        self,
        base_network: str | None = None,
        prefix_length: int | None = None,
        config_path: str | None = None,
        existing: tuple[str, ...] = (),
        inventory_file: str | None = None,
    ) -> str:
        """Allocate one block. Returns the CIDR."""
        config = resolve_config(config_path)
        if base_network is None:
            base_network = config["base_network"]
        if prefix_length is None:
            prefix_length = config["prefix_length"]

        inventory = self.inventory(config, existing, inventory_file)
        try:
            return CidrAllocator(inventory).allocate(base_network, prefix_length)
        finally:
            self._close(inventory)

    def assign(
        self,
        config_path: str | None = None,
        existing: tuple[str, ...] = (),
        inventory_file: str | None = None,
        fmt: str = "table",
        output_dir: Path | None = None,
    ) -> dict[str, str]:
        """Assign a block to every configured role and print the result."""
        if fmt not in FORMATS:
            raise ConfigError(f"Unknown format '{fmt}'. Expected one of: {', '.join(FORMATS)}")

        config = resolve_config(config_path)
        roles = build_roles(config)
        inventory = self.inventory(config, existing, inventory_file)
        try:
            assignment = CidrAssigner(inventory, roles).assign()
        finally:
            self._close(inventory)

        generator = TfvarsGenerator(roles)
        variables = generator.generate(assignment)

        if fmt == "hcl":
            self._emit(generator.render_hcl(variables), end="")
        elif fmt == "json":
            self._emit(json.dumps(variables, indent=2))
        elif fmt == "args":
            self._emit(" ".join(generator.render_var_args(variables)))
        else:
            table = Table(title="CIDR Assignment")
            table.add_column("Role", style="cyan")
            table.add_column("Block", style="green")
            table.add_column("Variable", style="dim")
            for role in roles:
                table.add_row(role.name, assignment[role.name], role.tfvar)
            self.console.print(table)

        if output_dir is not None:
            path = generator.write(variables, Path(output_dir))
            self.console.print(f"[bold green]Wrote tfvars:[/bold green] {path}")

        return assignment

    def used(
        self,
        config_path: str | None = None,
        existing: tuple[str, ...] = (),
        inventory_file: str | None = None,
    ) -> list[str]:
        """List blocks currently in use."""
        config = resolve_config(config_path)
        inventory = self.inventory(config, existing, inventory_file)
        try:
            cidrs = inventory.list_used_blocks()
        finally:
            self._close(inventory)

        if not cidrs:
            self.console.print("No blocks in use.")
            return cidrs

        table = Table(title="Blocks In Use")
        table.add_column("Block", style="cyan")
        table.add_column("First")
        table.add_column("Last")
        table.add_column("Addresses", justify="right")

        for cidr in cidrs:
            try:
                info = describe_block(cidr)
            except InvalidInputError:
                table.add_row(f"[red]{escape(str(cidr))}[/red]", "-", "-", "[dim]ignored[/dim]")
                continue
            table.add_row(info["cidr"], info["network"], info["broadcast"], str(info["size"]))

        self.console.print(table)
        return cidrs

    def check(
        self,
        cidr: str,
        config_path: str | None = None,
        existing: tuple[str, ...] = (),
        inventory_file: str | None = None,
    ) -> list[str]:
        """Report blocks in use that overlap ``cidr``. Returns the conflicts."""
        info = describe_block(cidr)
        candidate = parse_block(info["cidr"])

        config = resolve_config(config_path)
        inventory = self.inventory(config, existing, inventory_file)
        try:
            cidrs = inventory.list_used_blocks()
        finally:
            self._close(inventory)

        conflicts = []
        for used in cidrs:
            try:
                network = parse_block(used)
            except ValueError:
                logger.debug("Ignoring malformed block %r", used)
                continue
            if networks_overlap(candidate, network):
                conflicts.append(str(network))

        if not conflicts:
            self.console.print(f"[bold green]{info['cidr']} is free[/bold green]")
            return conflicts

        table = Table(title=f"Conflicts - {info['cidr']}")
        table.add_column("Block In Use", style="red")
        for conflict in conflicts:
            table.add_row(conflict)
        self.console.print(table)
        return conflicts

    def scaffold(self, path: str) -> Path:
        """Write a starter config file."""
        target = Path(path)
        if target.exists():
            raise ConfigError(f"File already exists: {target}")

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w") as f:
            yaml.dump(scaffold_config(), f, default_flow_style=False, sort_keys=False)

        self.console.print(f"[bold green]Created config:[/bold green] {target}")
        self.console.print(f"Edit the file, then run: [bold]cidrforge assign -c {path}[/bold]")
        return target
