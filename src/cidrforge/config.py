import os
import re
from pathlib import Path

import yaml

from cidrforge.assigner import DEFAULT_ROLES, RoleSpec
from cidrforge.digitalocean import DigitalOceanInventory, create_client
from cidrforge.inventory import FileInventory, StaticInventory


DEFAULT_CONFIG = Path("cidrforge.yml")
PROVIDERS = ("digitalocean", "file", "static")

DEFAULTS = {
    "base_network": "10.0.0.0",
    "prefix_length": 24,
    "inventory": {"provider": "digitalocean"},
}


class ConfigError(Exception):
    pass


def load_config(path: Path) -> dict:
    """Load and parse a cidrforge YAML config file."""
    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigError(f"Invalid config file: {path}")
    return config


def validate_config(config: dict) -> None:
    """Validate the fields of a config; values themselves are checked at allocation time."""
    if "prefix_length" in config and not isinstance(config["prefix_length"], int):
        raise ConfigError("'prefix_length' must be an integer")
    if "base_network" in config and not isinstance(config["base_network"], str):
        raise ConfigError("'base_network' must be a string")

    inventory = config.get("inventory", {})
    if not isinstance(inventory, dict):
        raise ConfigError("'inventory' must be a mapping")
    provider = inventory.get("provider", "digitalocean")
    if provider not in PROVIDERS:
        raise ConfigError(
            f"Unknown inventory provider '{provider}'. Expected one of: {', '.join(PROVIDERS)}"
        )
    if provider == "file" and not inventory.get("path"):
        raise ConfigError("Inventory provider 'file' requires 'path'")
    if provider == "static" and not isinstance(inventory.get("blocks", []), list):
        raise ConfigError("Inventory 'blocks' must be a list")

    roles = config.get("roles", [])
    if not isinstance(roles, list):
        raise ConfigError("'roles' must be a list")
    for i, role in enumerate(roles):
        if not isinstance(role, dict):
            raise ConfigError(f"Role {i} must be a mapping")
        for field in ("name", "base_network", "prefix_length"):
            if field not in role:
                raise ConfigError(f"Role '{role.get('name', i)}' missing required field: '{field}'")
        if not isinstance(role["prefix_length"], int):
            raise ConfigError(f"Role '{role['name']}' prefix_length must be an integer")


def interpolate_variables(config: dict) -> dict:
    """Interpolate ${var} references using config['settings'], then the environment."""
    lookup = {**config.get("settings", {})}

    def _replace(obj):
        if isinstance(obj, str):
            def _sub(m):
                key = m.group(1)
                if key in lookup:
                    return str(lookup[key])
                env_val = os.environ.get(key)
                if env_val is not None:
                    return env_val
                return m.group(0)  # leave unresolved
            return re.sub(r"\$\{(\w+)\}", _sub, obj)
        elif isinstance(obj, dict):
            return {k: _replace(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [_replace(item) for item in obj]
        return obj

    return _replace(config)


def resolve_config(path: Path | str | None = None) -> dict:
    """Load, validate and interpolate a config, falling back to defaults.

    An explicit ``path`` must exist. Without one, ``cidrforge.yml`` in the
    current directory is used when present.
    """
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file '{path}' not found")
    elif DEFAULT_CONFIG.exists():
        path = DEFAULT_CONFIG

    config = {**DEFAULTS}
    if path is not None:
        config.update(load_config(path))
        config["_path"] = str(path)
    validate_config(config)
    return interpolate_variables(config)


def build_inventory(config: dict):
    """Create the block inventory selected by config['inventory']."""
    inventory = config.get("inventory", {})
    provider = inventory.get("provider", "digitalocean")

    if provider == "static":
        return StaticInventory(inventory.get("blocks", []))
    if provider == "file":
        path = Path(inventory["path"])
        if not path.is_absolute() and config.get("_path"):
            path = Path(config["_path"]).parent / path
        return FileInventory(path)

    token = inventory.get("token")
    if token and token.startswith("${"):
        token = None
    kwargs = {}
    if "api_url" in inventory:
        kwargs["base_url"] = inventory["api_url"]
    return DigitalOceanInventory(create_client(token, **kwargs))


def build_roles(config: dict) -> tuple[RoleSpec, ...]:
    roles = config.get("roles")
    if not roles:
        return DEFAULT_ROLES
    return tuple(
        RoleSpec(
            name=role["name"],
            base_network=role["base_network"],
            prefix_length=role["prefix_length"],
            tfvar=role.get("tfvar", f"{role['name']}_cidr"),
        )
        for role in roles
    )


def scaffold_config() -> dict:
    return {
        "base_network": DEFAULTS["base_network"],
        "prefix_length": DEFAULTS["prefix_length"],
        "inventory": {
            "provider": "digitalocean",
            "token": "${DIGITALOCEAN_ACCESS_TOKEN}",
        },
        "roles": [
            {
                "name": role.name,
                "base_network": role.base_network,
                "prefix_length": role.prefix_length,
                "tfvar": role.tfvar,
            }
            for role in DEFAULT_ROLES
        ],
    }
