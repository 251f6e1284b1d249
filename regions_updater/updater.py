import asyncio
import logging
from typing import Callable, Coroutine

from .client import CatalogClient
from .config import Options
from .errors import FetchError, PersistError
from .regions import Region
from .router import select
from .storage import SnapshotWriter
from .workers import WorkerPool

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TOO_MANY_FAILURES = 3


def _keep(region: Region | None) -> bool:
    return region is not None and len(region.servers.wireguard) > 0


class RegionsUpdater:
    """
    Periodically measures the latency of all regions and writes the best ones
    to a ConfigMap.

    Everything runs on one event loop: timers start refresh cycles and writes
    as separate tasks, while run() collects the results coming out of the
    worker pool. The snapshot of ranked regions is only ever replaced, never
    modified, and only by this class.

    A refresh cycle is complete when every region it submitted has produced a
    result, counting the None results of regions without WireGuard servers.
    """

    def __init__(self, options: Options, catalog: CatalogClient, pool: WorkerPool, writer: SnapshotWriter):
        self.options = options
        self.catalog = catalog
        self.pool = pool
        self.writer = writer

        self._snapshot: list[Region] | None = None
        self._collected: list[Region] = []
        self._pending = 0
        self._dispatching = False
        self._cycle_active = False

        self._fetch_failures = 0
        self._write_failures = 0
        self._exit_code = EXIT_OK

        self._stop = asyncio.Event()
        self._refresh_timer: asyncio.Task | None = None
        self._write_timer: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def snapshot(self) -> list[Region]:
        """The latest ranked regions, empty until the first cycle completes."""
        return list(self._snapshot or [])

    def stop(self, exit_code: int = EXIT_OK) -> None:
        if self._stop.is_set():
            return
        self._exit_code = exit_code
        self._stop.set()

    async def run(self) -> int:
        """Run until stop() is called and return the exit code."""
        log.info("starting...")
        self.pool.start()
        self._refresh_timer = asyncio.create_task(
            self._tick(self.options.initial_delay, self.options.frequency, self._start_cycle)
        )
        self._rearm_write_timer()

        stop_waiter = asyncio.create_task(self._stop.wait())
        try:
            while True:
                getter = asyncio.create_task(self.pool.results.get())
                done, _ = await asyncio.wait({getter, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
                if stop_waiter in done:
                    getter.cancel()
                    break
                self._on_result(getter.result())
        finally:
            stop_waiter.cancel()
            await self._shutdown()

        return self._exit_code

    async def _tick(self, first: float, every: float, callback: Callable[[], None]) -> None:
        await asyncio.sleep(first)
        while True:
            callback()
            await asyncio.sleep(every)

    def _rearm_write_timer(self) -> None:
        if self._write_timer is not None:
            self._write_timer.cancel()
        every = self.options.write_frequency
        self._write_timer = asyncio.create_task(self._tick(every, every, self._start_write))

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    def _start_cycle(self) -> None:
        if self._cycle_active:
            log.info("previous refresh still in progress, skipping...", extra={"pending": self._pending})
            return
        self._cycle_active = True
        self._collected = []
        self._spawn(self._refresh())
        # The results of this cycle need some time before being written.
        self._rearm_write_timer()

    async def _refresh(self) -> None:
        try:
            regions = await self.catalog.fetch()
        except Exception as e:
            if isinstance(e, FetchError):
                log.error("could not load regions, skipping: %s", e)
            else:
                log.exception("unexpected error while loading regions, skipping")
            self._cycle_active = False
            self._fetch_failures += 1
            self._check_failures("fetch", self._fetch_failures)
            return
        self._fetch_failures = 0

        log.info("calculating latencies...", extra={"regions": len(regions)})
        self._dispatching = True
        try:
            for region in regions:
                await self.pool.submit(region)
                # Counted once queued: a result can only be read after the next suspension.
                self._pending += 1
        except Exception:
            log.exception("could not dispatch all regions, keeping the ones already sent")
        finally:
            self._dispatching = False
        self._finish_cycle_if_done()

    def _on_result(self, region: Region | None) -> None:
        self._pending -= 1
        if _keep(region):
            self._collected.append(region)
        self._finish_cycle_if_done()

    def _finish_cycle_if_done(self) -> None:
        if not self._cycle_active or self._dispatching or self._pending > 0:
            return
        self._snapshot = select(self._collected, self.options.sort_order, self.options.max_regions)
        self._collected = []
        self._cycle_active = False
        log.info("latencies calculated", extra={"regions": len(self._snapshot)})

    def _start_write(self) -> None:
        if self._snapshot is None:
            log.debug("no latencies calculated yet, skipping write...")
            return
        self._spawn(self._write(self._snapshot))

    async def _write(self, regions: list[Region]) -> None:
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.writer.write, regions),
                timeout=self.options.write_timeout,
            )
        except asyncio.TimeoutError:
            self._write_failed("timed out")
            return
        except PersistError as e:
            self._write_failed(e)
            return
        self._write_failures = 0
        log.info("configmap updated", extra={"regions": len(regions)})

    def _write_failed(self, reason) -> None:
        log.error("could not update configmap, skipping: %s", reason)
        self._write_failures += 1
        self._check_failures("write", self._write_failures)

    def _check_failures(self, what: str, failures: int) -> None:
        limit = self.options.max_consecutive_failures
        if limit and failures >= limit:
            log.critical("%s failed too many times in a row, exiting...", what, extra={"failures": failures})
            self.stop(EXIT_TOO_MANY_FAILURES)

    async def _shutdown(self) -> None:
        log.info("shutting down...")
        timers = [t for t in (self._refresh_timer, self._write_timer) if t is not None]
        for task in timers:
            task.cancel()
        inflight = list(self._inflight)
        for task in inflight:
            task.cancel()
        await self.pool.abort()

        log.info("waiting for all tasks to exit...")
        await asyncio.gather(*timers, *inflight, return_exceptions=True)
        log.info("goodbye!")


async def measure_once(options: Options, catalog: CatalogClient) -> list[Region]:
    """Fetch the regions, measure their latency once and rank them.

    Raises:
        FetchError: If the list of regions could not be retrieved
    """
    regions = await catalog.fetch()
    pool = WorkerPool(options.workers, options.max_latency, port=options.port)
    pool.start()

    async def dispatch():
        for region in regions:
            await pool.submit(region)

    dispatcher = asyncio.create_task(dispatch())
    probed = []
    try:
        for _ in regions:
            region = await pool.results.get()
            if _keep(region):
                probed.append(region)
        await dispatcher
    except BaseException:
        dispatcher.cancel()
        await pool.abort()
        raise

    await pool.close()
    return select(probed, options.sort_order, options.max_regions)
