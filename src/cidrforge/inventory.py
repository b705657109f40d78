import logging
from pathlib import Path
from typing import Protocol

import yaml


logger = logging.getLogger(__name__)


class InventoryError(Exception):
    pass


class BlockInventory(Protocol):
    """Anything that can report the CIDR blocks currently in use."""

    def list_used_blocks(self) -> list[str]:
        ...


class StaticInventory:
    """Fixed list of used blocks, extended with add()."""

    def __init__(self, blocks: list[str] | None = None):
        self.blocks = list(blocks or [])

    def add(self, cidr: str) -> None:
        self.blocks.append(cidr)

    def list_used_blocks(self) -> list[str]:
        return list(self.blocks)


class FileInventory:
    """Used blocks recorded in a YAML snapshot file.

    The file is either a plain list of CIDR strings or a mapping with any of
    ``vpcs`` (CIDR strings), ``clusters`` (mappings with ``cluster_subnet``
    and ``service_subnet``) and ``reserved`` (CIDR strings).
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self):
        if not self.path.exists():
            raise InventoryError(f"Inventory file not found: {self.path}")
        try:
            with open(self.path) as f:
                return yaml.safe_load(f)
        except (OSError, UnicodeDecodeError) as e:
            raise InventoryError(f"Cannot read inventory file {self.path}: {e}") from e
        except yaml.YAMLError as e:
            raise InventoryError(f"Invalid inventory file {self.path}: {e}") from e

    def _entries(self, data: dict, key: str) -> list:
        value = data.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise InventoryError(f"'{key}' in {self.path} must be a list")
        return value

    def list_used_blocks(self) -> list[str]:
        data = self.load()
        if data is None:
            return []
        if isinstance(data, list):
            return [str(item) for item in data]
        if not isinstance(data, dict):
            raise InventoryError(f"Invalid inventory file: {self.path}")

        cidrs = [str(c) for c in self._entries(data, "vpcs")]
        for cluster in self._entries(data, "clusters"):
            if not isinstance(cluster, dict):
                logger.debug("Skipping cluster entry %r in %s", cluster, self.path)
                continue
            for key in ("cluster_subnet", "service_subnet"):
                if cluster.get(key):
                    cidrs.append(str(cluster[key]))
        cidrs.extend(str(c) for c in self._entries(data, "reserved"))
        return cidrs


class CompositeInventory:
    """Concatenation of several inventories, queried in order."""

    def __init__(self, *sources):
        self.sources = sources

    def list_used_blocks(self) -> list[str]:
        cidrs = []
        for source in self.sources:
            cidrs.extend(source.list_used_blocks())
        return cidrs

    def close(self) -> None:
        for source in self.sources:
            if hasattr(source, "close"):
                source.close()
