import logging
from dataclasses import dataclass

from cidrforge.inventory import StaticInventory
from cidrforge.network import PROBE_LIMIT, CidrAllocator, InvalidInputError, fetch_used_blocks


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleSpec:
    name: str
    base_network: str
    prefix_length: int
    tfvar: str


DEFAULT_ROLES = (
    RoleSpec("vpc", "10.0.0.0", 24, "vpc_cidr"),
    RoleSpec("cluster", "172.16.0.0", 20, "doks_cluster_subnet"),
    RoleSpec("service", "192.168.0.0", 22, "doks_service_subnet"),
)


class CidrAssigner:
    """Assigns one block per role for a single deployment.

    The inventory is read once. Each assigned block is added to that snapshot
    so that later roles never overlap earlier ones.
    """

    def __init__(self, inventory, roles=DEFAULT_ROLES, probe_limit: int = PROBE_LIMIT):
        if inventory is None:
            raise InvalidInputError("Block inventory cannot be None")
        names = [role.name for role in roles]
        if len(set(names)) != len(names):
            raise InvalidInputError(f"Duplicate role names: {', '.join(names)}")
        self.inventory = inventory
        self.roles = tuple(roles)
        self.probe_limit = probe_limit
        self._snapshot: StaticInventory | None = None
        self._assigned: dict[str, str] = {}

    def _allocator(self) -> CidrAllocator:
        if self._snapshot is None:
            self._snapshot = StaticInventory(fetch_used_blocks(self.inventory))
        return CidrAllocator(self._snapshot, probe_limit=self.probe_limit)

    def role(self, name: str) -> RoleSpec:
        for role in self.roles:
            if role.name == name:
                return role
        raise InvalidInputError(f"Unknown role '{name}'")

    def get(self, name: str) -> str:
        """Return the block for a role, assigning it on first use."""
        if name in self._assigned:
            return self._assigned[name]

        role = self.role(name)
        cidr = self._allocator().allocate(role.base_network, role.prefix_length)
        self._snapshot.add(cidr)
        self._assigned[name] = cidr
        logger.info("Assigned %s to %s", cidr, name)
        return cidr

    def assign(self) -> dict[str, str]:
        return {role.name: self.get(role.name) for role in self.roles}

    def get_vpc_cidr(self) -> str:
        return self.get("vpc")

    def get_doks_cluster_cidr(self) -> str:
        return self.get("cluster")

    def get_doks_service_cidr(self) -> str:
        return self.get("service")
