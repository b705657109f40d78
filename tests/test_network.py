import ipaddress

import pytest

from cidrforge.inventory import InventoryError, StaticInventory
from cidrforge.network import (
    PROBE_LIMIT,
    CidrAllocator,
    InvalidInputError,
    NoAvailableBlockError,
    describe_block,
    get_cidr_block,
    int_to_ip,
    ip_to_int,
    networks_overlap,
    overlaps_with_any,
    parse_block,
    parse_blocks,
)


class FailingInventory:
    def list_used_blocks(self):
        raise InventoryError("failed to get VPC CIDRs: boom")


class CountingInventory(StaticInventory):
    calls = 0

    def list_used_blocks(self):
        self.calls += 1
        return super().list_used_blocks()


def net(cidr):
    return ipaddress.IPv4Network(cidr)


@pytest.mark.parametrize(
    "base, prefix, existing, expected",
    [
        ("10.0.0.0", 24, [], "10.0.0.0/24"),
        ("10.0.0.0", 24, ["10.0.0.0/24"], "10.0.1.0/24"),
        ("10.0.0.0", 16, ["10.0.0.0/24", "10.1.1.0/24", "10.2.0.0/16"], "10.3.0.0/16"),
        ("172.16.0.0", 16, ["172.16.0.0/16", "172.17.1.0/24", "172.18.0.0/17"], "172.19.0.0/16"),
        ("192.168.0.0", 16, ["192.168.0.0/16", "192.169.1.0/24", "192.170.0.0/17"], "192.171.0.0/16"),
        ("10.0.0.0", 24, ["10.0.0.0/24", "10.0.1.0/24", "10.0.2.0/24"], "10.0.3.0/24"),
    ],
)
def test_allocate_returns_first_free_block(base, prefix, existing, expected):
    assert get_cidr_block(StaticInventory(existing), base, prefix) == expected


@pytest.mark.parametrize(
    "base, prefix",
    [
        ("invalid-ip", 24),
        ("10.300.0.0", 24),
        ("", 24),
        ("::1", 24),
        ("10.0.0.0", 33),
        ("10.0.0.0", 7),
        ("10.0.0.0", 31),
        ("10.0.0.0", "24"),
    ],
)
def test_allocate_rejects_invalid_input(base, prefix):
    with pytest.raises(InvalidInputError):
        get_cidr_block(StaticInventory(), base, prefix)


@pytest.mark.parametrize("prefix", [8, 30])
def test_allocate_accepts_boundary_prefixes(prefix):
    cidr = get_cidr_block(StaticInventory(), "10.0.0.0", prefix)
    assert cidr == f"10.0.0.0/{prefix}"


def test_validation_happens_before_inventory_fetch():
    inventory = CountingInventory(["10.0.0.0/24"])
    with pytest.raises(InvalidInputError):
        CidrAllocator(inventory).allocate("10.0.0.0", 31)
    assert inventory.calls == 0


def test_none_inventory_is_invalid():
    with pytest.raises(InvalidInputError):
        CidrAllocator(None)


def test_malformed_existing_entries_are_ignored():
    inventory = StaticInventory(["not-a-cidr", "10.0.0.0/24", "10.0.1.0/99", "", None, "fd00::/8"])
    assert get_cidr_block(inventory, "10.0.0.0", 24) == "10.0.1.0/24"


def test_duplicate_existing_entries_are_tolerated():
    inventory = StaticInventory(["10.0.0.0/24", "10.0.0.0/24", "10.0.1.0/24"])
    assert get_cidr_block(inventory, "10.0.0.0", 24) == "10.0.2.0/24"


def test_existing_entries_with_host_bits_are_normalised():
    assert get_cidr_block(StaticInventory(["10.0.0.77/24"]), "10.0.0.0", 24) == "10.0.1.0/24"


def test_allocation_is_deterministic():
    existing = ["10.0.1.0/24", "10.0.0.0/24", "10.0.5.0/24"]
    results = {get_cidr_block(StaticInventory(existing), "10.0.0.0", 24) for _ in range(5)}
    assert results == {"10.0.2.0/24"}


def test_lowest_free_candidate_wins():
    # 10.0.1.0/24 and 10.0.3.0/24 are both free, the lower one is returned
    existing = ["10.0.0.0/24", "10.0.2.0/24"]
    assert get_cidr_block(StaticInventory(existing), "10.0.0.0", 24) == "10.0.1.0/24"


def test_returned_block_never_overlaps_existing():
    existing = ["10.0.0.0/23", "10.0.2.128/25", "10.0.4.0/22", "10.0.9.0/24"]
    cidr = get_cidr_block(StaticInventory(existing), "10.0.0.0", 24)
    assert cidr == "10.0.3.0/24"
    for block in existing:
        assert not networks_overlap(net(cidr), net(block))


def test_candidate_budget_can_run_out_inside_a_large_existing_block():
    # 4096 /28s fit in the /16, only the first 256 are tried
    with pytest.raises(NoAvailableBlockError):
        get_cidr_block(StaticInventory(["10.0.0.0/16"]), "10.0.0.0", 28)
    assert get_cidr_block(StaticInventory(["10.0.0.0/21"]), "10.0.0.0", 28) == "10.0.8.0/28"


def test_exhausted_candidate_budget_raises():
    existing = [f"10.{i}.0.0/16" for i in range(PROBE_LIMIT)]
    with pytest.raises(NoAvailableBlockError):
        get_cidr_block(StaticInventory(existing), "10.0.0.0", 16)


def test_candidate_budget_is_exactly_256():
    # A /16 carved into /24s: the 256th candidate is the last one tried
    existing = [f"10.0.{i}.0/24" for i in range(255)]
    assert get_cidr_block(StaticInventory(existing), "10.0.0.0", 24) == "10.0.255.0/24"

    existing.append("10.0.255.0/24")
    with pytest.raises(NoAvailableBlockError):
        get_cidr_block(StaticInventory(existing), "10.0.0.0", 24)


def test_custom_probe_limit():
    allocator = CidrAllocator(StaticInventory(["10.0.0.0/24", "10.0.1.0/24"]), probe_limit=2)
    with pytest.raises(NoAvailableBlockError):
        allocator.allocate("10.0.0.0", 24)


def test_search_stops_at_end_of_address_space():
    with pytest.raises(NoAvailableBlockError):
        get_cidr_block(StaticInventory(["255.255.255.0/24"]), "255.255.255.0", 24)


def test_search_near_end_of_address_space_finds_last_block():
    cidr = get_cidr_block(StaticInventory(["255.255.254.0/24"]), "255.255.254.0", 24)
    assert cidr == "255.255.255.0/24"


def test_unaligned_base_is_masked_to_block_boundary():
    assert get_cidr_block(StaticInventory(), "10.0.0.5", 24) == "10.0.0.0/24"


def test_inventory_failure_is_wrapped_with_context():
    with pytest.raises(InventoryError) as excinfo:
        get_cidr_block(FailingInventory(), "10.0.0.0", 24)
    message = str(excinfo.value)
    assert "failed to get existing CIDR blocks" in message
    assert "failed to get VPC CIDRs" in message
    assert isinstance(excinfo.value.__cause__, InventoryError)


def test_allocator_keeps_no_state_between_calls():
    inventory = StaticInventory(["10.0.0.0/24"])
    allocator = CidrAllocator(inventory)
    assert allocator.allocate("10.0.0.0", 24) == "10.0.1.0/24"
    inventory.add("10.0.1.0/24")
    assert allocator.allocate("10.0.0.0", 24) == "10.0.2.0/24"


@pytest.mark.parametrize(
    "address, value",
    [
        ("0.0.0.0", 0),
        ("10.0.0.0", 167772160),
        ("192.168.1.1", 3232235777),
        ("255.255.255.255", 2**32 - 1),
    ],
)
def test_address_conversion_is_big_endian(address, value):
    assert ip_to_int(address) == value
    assert int_to_ip(value) == address


def test_int_to_ip_rejects_out_of_range():
    with pytest.raises(InvalidInputError):
        int_to_ip(2**32)


@pytest.mark.parametrize(
    "n1, n2, expected",
    [
        ("10.0.0.0/24", "10.0.1.0/24", False),
        ("10.0.1.0/24", "10.0.1.0/24", True),
        ("10.0.0.0/16", "10.0.1.0/24", True),
        ("10.0.1.0/28", "10.0.1.0/24", True),
        ("10.0.1.240/28", "10.0.1.0/24", True),
        ("10.0.0.0/8", "11.0.0.0/8", False),
    ],
)
def test_networks_overlap(n1, n2, expected):
    assert networks_overlap(net(n1), net(n2)) is expected
    assert networks_overlap(net(n2), net(n1)) is expected


@pytest.mark.parametrize(
    "candidate, expected",
    [
        ("10.0.0.0/24", False),
        ("10.0.1.0/24", True),
        ("10.0.0.0/16", True),
        ("10.0.1.0/28", True),
    ],
)
def test_overlaps_with_any(candidate, expected):
    existing = [net("10.0.1.0/24"), net("10.0.2.0/24")]
    assert overlaps_with_any(net(candidate), existing) is expected


def test_parse_blocks_skips_garbage():
    assert parse_blocks(["10.0.0.0/24", "bogus", 42, "10.1.0.0/16"]) == [
        net("10.0.0.0/24"),
        net("10.1.0.0/16"),
    ]


def test_describe_block():
    info = describe_block("10.0.1.0/24")
    assert info == {
        "cidr": "10.0.1.0/24",
        "network": "10.0.1.0",
        "gateway": "10.0.1.1",
        "broadcast": "10.0.1.255",
        "size": 256,
    }


def test_describe_block_rejects_garbage():
    with pytest.raises(InvalidInputError):
        describe_block("10.0.1.0/40")


@pytest.mark.parametrize("value", [42, None, ["10.0.0.0/24"]])
def test_parse_block_rejects_non_strings(value):
    with pytest.raises(ValueError):
        parse_block(value)
    with pytest.raises(InvalidInputError):
        describe_block(value)
