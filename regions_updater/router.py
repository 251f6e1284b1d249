import functools
from enum import Enum
from typing import Callable, Iterable

from .errors import ConfigurationError
from .regions import Region, Server

ORDER_BY_NAME = "name"
ORDER_BY_LATENCY = "latency"
ASCENDING = "asc"
DESCENDING = "desc"


def _compare(a, b) -> int:
    return (a > b) - (a < b)


def by_lower_latency(a: Region, b: Region) -> int:
    # Unmeasured regions keep their relative position.
    if a.latency_ms is None or b.latency_ms is None:
        return 0
    return _compare(a.latency_ms, b.latency_ms)


def by_higher_latency(a: Region, b: Region) -> int:
    return by_lower_latency(b, a)


def by_name(a: Region, b: Region) -> int:
    return _compare(a.name, b.name) or by_higher_latency(a, b)


def by_name_descending(a: Region, b: Region) -> int:
    return _compare(b.name, a.name) or by_higher_latency(a, b)


def _server_by_lower_latency(a: Server, b: Server) -> int:
    if a.latency_ms is None or b.latency_ms is None:
        return 0
    return _compare(a.latency_ms, b.latency_ms)


class SortOrder(Enum):
    LATENCY_ASC = (ORDER_BY_LATENCY, ASCENDING)
    LATENCY_DESC = (ORDER_BY_LATENCY, DESCENDING)
    NAME_ASC = (ORDER_BY_NAME, ASCENDING)
    NAME_DESC = (ORDER_BY_NAME, DESCENDING)

    @classmethod
    def from_options(cls, order_by: str, direction: str) -> "SortOrder":
        """Resolve the --order-by and --order-direction flags, ignoring case."""
        order_by = order_by.strip().lower()
        direction = direction.strip().lower()
        if order_by not in (ORDER_BY_NAME, ORDER_BY_LATENCY):
            raise ConfigurationError(f"unknown order type: {order_by!r}")
        if direction not in (ASCENDING, DESCENDING):
            raise ConfigurationError(f"unknown order direction: {direction!r}")
        return cls((order_by, direction))

    @property
    def comparator(self) -> Callable[[Region, Region], int]:
        return _COMPARATORS[self]


_COMPARATORS = {
    SortOrder.LATENCY_ASC: by_lower_latency,
    SortOrder.LATENCY_DESC: by_higher_latency,
    SortOrder.NAME_ASC: by_name,
    SortOrder.NAME_DESC: by_name_descending,
}


def rank(regions: Iterable[Region], order: SortOrder) -> list[Region]:
    """Sort regions by the given order, fastest servers first inside each one."""
    ordered = [
        r.with_wireguard(sorted(r.servers.wireguard, key=functools.cmp_to_key(_server_by_lower_latency)))
        for r in regions
    ]
    ordered.sort(key=functools.cmp_to_key(order.comparator))
    return ordered


def select(regions: Iterable[Region], order: SortOrder, max_regions: int = 0) -> list[Region]:
    """Rank regions and keep the first max_regions of them (0 keeps all)."""
    ranked = rank(regions, order)
    if max_regions > 0:
        ranked = ranked[:max_regions]
    return ranked


def fastest(regions: Iterable[Region]) -> Region | None:
    # Find regions with valid latency data
    measured = [r for r in regions if r.latency_ms is not None]
    if not measured:
        return None
    return min(measured, key=lambda r: r.latency_ms)
