import logging
import re
from dataclasses import dataclass
from urllib.parse import urlparse

from .client import DEFAULT_FETCH_TIMEOUT, DEFAULT_SERVERS_LIST_URL
from .errors import ConfigurationError
from .latency import WIREGUARD_PORT
from .logging_config import LOG_LEVELS
from .router import ASCENDING, ORDER_BY_NAME, SortOrder
from .storage import DEFAULT_CONFIGMAP_NAME, DEFAULT_WRITE_TIMEOUT

log = logging.getLogger(__name__)

NAMESPACE_ENV = "NAMESPACE"

DEFAULT_MAX_LATENCY = "50ms"
DEFAULT_WORKERS = 5
DEFAULT_MAX_REGIONS = 25
DEFAULT_ORDER_BY = ORDER_BY_NAME
DEFAULT_ORDER_DIRECTION = ASCENDING
DEFAULT_VERBOSITY = 1
DEFAULT_FREQUENCY = "1h"
DEFAULT_WRITE_FREQUENCY = "5m"
DEFAULT_INITIAL_DELAY = 5.0

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


@dataclass(frozen=True)
class Options:
    """Validated settings of the updater. Durations are in seconds."""

    max_latency: float = 0.05
    workers: int = DEFAULT_WORKERS
    max_regions: int = DEFAULT_MAX_REGIONS
    servers_list_url: str = DEFAULT_SERVERS_LIST_URL
    sort_order: SortOrder = SortOrder.NAME_ASC
    verbosity: int = DEFAULT_VERBOSITY
    frequency: float = 3600.0
    write_frequency: float = 300.0
    namespace: str = ""
    configmap_name: str = DEFAULT_CONFIGMAP_NAME
    max_consecutive_failures: int = 0
    initial_delay: float = DEFAULT_INITIAL_DELAY
    port: int = WIREGUARD_PORT
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    write_timeout: float = DEFAULT_WRITE_TIMEOUT


def parse_duration(value: str | float | int) -> float:
    """Parse a duration such as "50ms" or "1h30m" into seconds.

    Numbers are taken as seconds already.
    """
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    if text in ("0", "+0", "-0"):
        return 0.0

    sign = -1.0 if text.startswith("-") else 1.0
    text = text.lstrip("+-")
    if not text:
        raise ConfigurationError(f"invalid duration: {value!r}")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise ConfigurationError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def load_options(
    max_latency: str | float = DEFAULT_MAX_LATENCY,
    workers: int = DEFAULT_WORKERS,
    max_regions: int = DEFAULT_MAX_REGIONS,
    servers_list_url: str = DEFAULT_SERVERS_LIST_URL,
    order_by: str = DEFAULT_ORDER_BY,
    order_direction: str = DEFAULT_ORDER_DIRECTION,
    verbosity: int = DEFAULT_VERBOSITY,
    frequency: str | float = DEFAULT_FREQUENCY,
    write_frequency: str | float = DEFAULT_WRITE_FREQUENCY,
    namespace: str = "",
    configmap_name: str = DEFAULT_CONFIGMAP_NAME,
    max_consecutive_failures: int = 0,
    require_namespace: bool = False,
) -> Options:
    """
    Validate raw command line values and build the options from them.

    Raises:
        ConfigurationError: If any of the values is not acceptable
    """
    if verbosity < 0 or verbosity > len(LOG_LEVELS) - 1:
        raise ConfigurationError(f"invalid verbosity level: {verbosity}")

    latency = parse_duration(max_latency)
    if latency <= 0:
        raise ConfigurationError(f"invalid max latency provided: {max_latency}")

    if workers < 0:
        raise ConfigurationError(f"invalid number of workers: {workers}")
    if workers == 0:
        log.debug(
            "invalid workers flag provided: using default value...",
            extra={"workers": workers, "default_workers_number": DEFAULT_WORKERS},
        )
        workers = DEFAULT_WORKERS

    if max_regions < 0:
        raise ConfigurationError(f"invalid maximum number of regions: {max_regions}")
    if max_regions == 0:
        log.debug("using no limits for maximum regions to list")

    parsed = urlparse(servers_list_url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigurationError(f"invalid servers list url provided: {servers_list_url!r}")

    sort_order = SortOrder.from_options(order_by, order_direction)

    refresh = parse_duration(frequency)
    if refresh <= 0:
        raise ConfigurationError(f"invalid frequency provided: {frequency}")
    write_every = parse_duration(write_frequency)
    if write_every <= 0:
        raise ConfigurationError(f"invalid write frequency provided: {write_frequency}")

    if max_consecutive_failures < 0:
        raise ConfigurationError(f"invalid maximum consecutive failures: {max_consecutive_failures}")

    if require_namespace and not namespace:
        raise ConfigurationError(f"could not get namespace from the {NAMESPACE_ENV} environment variable")

    return Options(
        max_latency=latency,
        workers=workers,
        max_regions=max_regions,
        servers_list_url=servers_list_url,
        sort_order=sort_order,
        verbosity=verbosity,
        frequency=refresh,
        write_frequency=write_every,
        namespace=namespace,
        configmap_name=configmap_name,
        max_consecutive_failures=max_consecutive_failures,
    )
