import asyncio
import logging
import os
import signal

import typer

from . import config as cfg
from .client import CatalogClient
from .errors import ClusterUnavailableError, ConfigurationError, FetchError
from .logging_config import setup_logging
from .router import ORDER_BY_LATENCY, fastest
from .storage import SnapshotWriter, load_core_v1_api
from .updater import RegionsUpdater, measure_once
from .workers import WorkerPool

log = logging.getLogger(__name__)

app = typer.Typer(help="Keep a ConfigMap with the fastest VPN regions up to date")

EXIT_INVALID_OPTIONS = 1
EXIT_NO_CLUSTER = 2
EXIT_FETCH_FAILED = 4


def _load_options(**values) -> cfg.Options:
    try:
        return cfg.load_options(**values)
    except ConfigurationError as e:
        setup_logging(cfg.DEFAULT_VERBOSITY)
        log.critical("invalid options provided: %s", e)
        raise typer.Exit(code=EXIT_INVALID_OPTIONS)


def run(
    max_latency: str = typer.Option(cfg.DEFAULT_MAX_LATENCY, help="Maximum latency tolerated for a server to be kept."),
    workers: int = typer.Option(cfg.DEFAULT_WORKERS, help="Number of concurrent workers to use for checking latency."),
    max_regions: int = typer.Option(cfg.DEFAULT_MAX_REGIONS, help="Maximum number of regions to keep, 0 for no limit."),
    servers_list_url: str = typer.Option(cfg.DEFAULT_SERVERS_LIST_URL, help="The URL where to get the list of servers."),
    order_by: str = typer.Option(cfg.DEFAULT_ORDER_BY, help="How to order the regions: name|latency"),
    order_direction: str = typer.Option(cfg.DEFAULT_ORDER_DIRECTION, help="The order direction: asc|desc"),
    verbosity: int = typer.Option(cfg.DEFAULT_VERBOSITY, help="The log verbosity level, from 0 (verbose) to 3 (silent)."),
    frequency: str = typer.Option(cfg.DEFAULT_FREQUENCY, help="The frequency of updating the list of regions."),
    write_frequency: str = typer.Option(cfg.DEFAULT_WRITE_FREQUENCY, help="The frequency of writing the regions to the ConfigMap."),
    max_consecutive_failures: int = typer.Option(0, help="Exit after this many failed fetches or writes in a row, 0 to never exit."),
    configmap_name: str = typer.Option(cfg.DEFAULT_CONFIGMAP_NAME, help="Name of the ConfigMap to write."),
):
    """Measure the latency of all regions periodically and store the best ones in a ConfigMap."""
    options = _load_options(
        max_latency=max_latency,
        workers=workers,
        max_regions=max_regions,
        servers_list_url=servers_list_url,
        order_by=order_by,
        order_direction=order_direction,
        verbosity=verbosity,
        frequency=frequency,
        write_frequency=write_frequency,
        namespace=os.getenv(cfg.NAMESPACE_ENV, ""),
        configmap_name=configmap_name,
        max_consecutive_failures=max_consecutive_failures,
        require_namespace=True,
    )
    setup_logging(options.verbosity)

    try:
        api = load_core_v1_api()
    except ClusterUnavailableError as e:
        log.critical("could not get Kubernetes clientset: %s", e)
        raise typer.Exit(code=EXIT_NO_CLUSTER)

    async def serve() -> int:
        updater = RegionsUpdater(
            options,
            CatalogClient(options.servers_list_url, timeout=options.fetch_timeout),
            WorkerPool(options.workers, options.max_latency, port=options.port),
            SnapshotWriter(api, options.namespace, options.configmap_name, timeout=options.write_timeout),
        )
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, updater.stop)
        return await updater.run()

    raise typer.Exit(code=asyncio.run(serve()))


def list_regions(
    max_latency: str = typer.Option(cfg.DEFAULT_MAX_LATENCY, help="Maximum latency tolerated for a server to be kept."),
    workers: int = typer.Option(cfg.DEFAULT_WORKERS, help="Number of concurrent workers to use for checking latency."),
    max_regions: int = typer.Option(0, help="Maximum number of regions to show, 0 for no limit."),
    servers_list_url: str = typer.Option(cfg.DEFAULT_SERVERS_LIST_URL, help="The URL where to get the list of servers."),
    order_by: str = typer.Option(ORDER_BY_LATENCY, help="How to order the regions: name|latency"),
    order_direction: str = typer.Option(cfg.DEFAULT_ORDER_DIRECTION, help="The order direction: asc|desc"),
    verbosity: int = typer.Option(2, help="The log verbosity level, from 0 (verbose) to 3 (silent)."),
):
    """Measure the latency of all regions once and highlight the fastest."""
    options = _load_options(
        max_latency=max_latency,
        workers=workers,
        max_regions=max_regions,
        servers_list_url=servers_list_url,
        order_by=order_by,
        order_direction=order_direction,
        verbosity=verbosity,
    )
    setup_logging(options.verbosity)

    catalog = CatalogClient(options.servers_list_url, timeout=options.fetch_timeout)
    try:
        regions = asyncio.run(measure_once(options, catalog))
    except FetchError as e:
        log.critical("could not load regions: %s", e)
        raise typer.Exit(code=EXIT_FETCH_FAILED)

    best = fastest(regions)
    for region in regions:
        mark = "★" if best is not None and region.id == best.id else " "
        servers = len(region.servers.wireguard)
        print(f"{mark} {region.id:24}  {region.latency_ms:8.1f} ms  servers={servers}  {region.name}")


app.command()(run)
app.command()(list_regions)

if __name__ == "__main__":
    app()
