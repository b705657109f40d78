import json
from pathlib import Path

from cidrforge.assigner import DEFAULT_ROLES


TFVARS_FILENAME = "cidrforge.auto.tfvars.json"


class TfvarsGenerator:
    """Turns a role assignment into Terraform variables."""

    def __init__(self, roles=DEFAULT_ROLES):
        self.roles = tuple(roles)

    def generate(self, assignment: dict[str, str]) -> dict[str, str]:
        """Map each assigned role to its Terraform variable name."""
        variables = {}
        for role in self.roles:
            if role.name in assignment:
                variables[role.tfvar] = assignment[role.name]
        return variables

    @staticmethod
    def render_hcl(variables: dict[str, str]) -> str:
        """Render variables as ``name = "value"`` lines."""
        if not variables:
            return ""
        width = max(len(name) for name in variables)
        lines = [f'{name.ljust(width)} = "{value}"' for name, value in variables.items()]
        return "\n".join(lines) + "\n"

    @staticmethod
    def render_var_args(variables: dict[str, str]) -> list[str]:
        """Render variables as ``-var`` arguments for the terraform CLI."""
        args = []
        for name, value in variables.items():
            args.extend(["-var", f"{name}={value}"])
        return args

    def write(self, variables: dict[str, str], output_dir: Path, filename: str = TFVARS_FILENAME) -> Path:
        """Write variables as a JSON tfvars file in the given directory."""
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / filename
        with open(path, "w") as f:
            json.dump(variables, f, indent=2)
            f.write("\n")
        return path
