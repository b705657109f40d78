import ipaddress
import logging

from cidrforge.inventory import InventoryError


MIN_PREFIX = 8
MAX_PREFIX = 30
PROBE_LIMIT = 256
MAX_ADDRESS = 2**32 - 1

logger = logging.getLogger(__name__)


class NetworkError(Exception):
    pass


class AllocationError(NetworkError):
    pass


class InvalidInputError(AllocationError):
    pass


class NoAvailableBlockError(AllocationError):
    pass


def ip_to_int(address: str) -> int:
    """Convert a dotted-decimal IPv4 address to its 32-bit integer value."""
    try:
        return int(ipaddress.IPv4Address(address))
    except (ipaddress.AddressValueError, ValueError) as e:
        raise InvalidInputError(f"Invalid IPv4 address: {address!r}") from e


def int_to_ip(value: int) -> str:
    """Convert a 32-bit integer to dotted-decimal IPv4 form."""
    if not 0 <= value <= MAX_ADDRESS:
        raise InvalidInputError(f"Address value {value} is outside the IPv4 range")
    return str(ipaddress.IPv4Address(value))


def parse_block(cidr: str) -> ipaddress.IPv4Network:
    """Parse a CIDR string, normalising host bits to the network address."""
    if not isinstance(cidr, str):
        raise ValueError(f"CIDR block must be a string, got {cidr!r}")
    return ipaddress.IPv4Network(cidr.strip(), strict=False)


def block_range(network: ipaddress.IPv4Network) -> tuple[int, int]:
    """Return the first and last address of a block as integers."""
    start = int(network.network_address)
    return start, start + network.num_addresses - 1


def networks_overlap(n1: ipaddress.IPv4Network, n2: ipaddress.IPv4Network) -> bool:
    """Check whether two blocks share at least one address."""
    start1, end1 = block_range(n1)
    start2, end2 = block_range(n2)
    return start1 <= end2 and start2 <= end1


def overlaps_with_any(candidate: ipaddress.IPv4Network, existing: list[ipaddress.IPv4Network]) -> bool:
    return any(networks_overlap(candidate, network) for network in existing)


def parse_blocks(cidrs) -> list[ipaddress.IPv4Network]:
    """Parse CIDR strings, skipping entries that are not valid IPv4 blocks."""
    networks = []
    for cidr in cidrs:
        if not isinstance(cidr, str):
            logger.debug("Skipping non-string block entry %r", cidr)
            continue
        try:
            networks.append(parse_block(cidr))
        except ValueError:
            logger.debug("Skipping malformed block entry %r", cidr)
    return networks


def validate_request(base_network: str, prefix_length: int) -> int:
    """Validate allocation inputs and return the base address as an integer."""
    if isinstance(prefix_length, bool) or not isinstance(prefix_length, int):
        raise InvalidInputError(f"Prefix length must be an integer, got {prefix_length!r}")
    if prefix_length < MIN_PREFIX or prefix_length > MAX_PREFIX:
        raise InvalidInputError(
            f"Prefix length must be between {MIN_PREFIX} and {MAX_PREFIX}, got {prefix_length}"
        )
    if not isinstance(base_network, str) or not base_network.strip():
        raise InvalidInputError("Base network must be a non-empty IPv4 address")
    return ip_to_int(base_network.strip())


def fetch_used_blocks(inventory) -> list:
    """Read the blocks in use, adding context to inventory failures."""
    try:
        cidrs = inventory.list_used_blocks()
    except InventoryError as e:
        raise InventoryError(f"failed to get existing CIDR blocks: {e}") from e
    return list(cidrs or [])


class CidrAllocator:
    """Finds the first block of a given size that is free across an inventory.

    Candidates are probed in subnet-sized steps from the base network, up to
    ``probe_limit`` of them. The allocator keeps no state between calls and
    reserves nothing: the returned block is only free as of the inventory
    snapshot taken during the call.
    """

    def __init__(self, inventory, probe_limit: int = PROBE_LIMIT):
        if inventory is None:
            raise InvalidInputError("Block inventory cannot be None")
        if probe_limit < 1:
            raise InvalidInputError(f"Probe limit must be positive, got {probe_limit}")
        self.inventory = inventory
        self.probe_limit = probe_limit

    def allocate(self, base_network: str, prefix_length: int) -> str:
        """Return the lowest free block of ``prefix_length`` from ``base_network``."""
        base = validate_request(base_network, prefix_length)
        subnet_size = 1 << (32 - prefix_length)

        aligned = base & ~(subnet_size - 1) & MAX_ADDRESS
        if aligned != base:
            logger.warning(
                "Base network %s is not aligned to /%d, using %s",
                base_network, prefix_length, int_to_ip(aligned),
            )
            base = aligned

        existing = self.existing_blocks()
        logger.debug("Checking candidates against %d existing blocks", len(existing))

        for i in range(self.probe_limit):
            start = base + i * subnet_size
            if start + subnet_size - 1 > MAX_ADDRESS:
                logger.debug("Candidate %d would run past 255.255.255.255, stopping", i)
                break
            candidate = ipaddress.IPv4Network((start, prefix_length))
            if not overlaps_with_any(candidate, existing):
                logger.debug("Allocated %s after %d probes", candidate, i + 1)
                return str(candidate)

        raise NoAvailableBlockError(
            f"No available /{prefix_length} block found within {self.probe_limit} "
            f"candidates from {int_to_ip(base)}"
        )

    def existing_blocks(self) -> list[ipaddress.IPv4Network]:
        return parse_blocks(fetch_used_blocks(self.inventory))


def get_cidr_block(inventory, base_network: str, prefix_length: int) -> str:
    """Allocate a non-overlapping block using the default probe budget."""
    return CidrAllocator(inventory).allocate(base_network, prefix_length)


def describe_block(cidr: str) -> dict:
    """Summarise a block: network, gateway, broadcast and size."""
    try:
        net = parse_block(cidr)
    except ValueError as e:
        raise InvalidInputError(f"Invalid CIDR block: {cidr!r}") from e
    first, last = block_range(net)
    return {
        "cidr": str(net),
        "network": int_to_ip(first),
        "gateway": int_to_ip(first + 1) if net.num_addresses > 2 else "-",
        "broadcast": int_to_ip(last),
        "size": net.num_addresses,
    }
