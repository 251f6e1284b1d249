import asyncio
import logging
from dataclasses import replace

from .errors import ProbeError, ProbeTimeoutError
from .latency import WIREGUARD_PORT, tcp_ping
from .regions import Region

log = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

_STOP = object()


class WorkerPool:
    """A fixed number of workers measuring the latency of the regions they receive.

    Regions are sent through the ``requests`` queue. For each of them exactly
    one item comes out of ``results``: a copy of the region holding only the
    WireGuard servers that answered in time, or None if the region has no
    WireGuard server at all. Results come in completion order, not in the
    order regions were submitted.
    """

    def __init__(
        self,
        workers: int,
        max_latency: float,
        port: int = WIREGUARD_PORT,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        self.workers = workers
        self.max_latency = max_latency
        self.port = port
        self.requests: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.results: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        for wid in range(1, self.workers + 1):
            self._tasks.append(asyncio.create_task(self._work(wid), name=f"worker-{wid}"))

    async def submit(self, region: Region) -> None:
        """Queue a region to be probed, waiting if the queue is full."""
        if self._closed:
            raise RuntimeError("worker pool is closed")
        await self.requests.put(region)

    async def close(self) -> None:
        """Let the workers finish what is queued, then wait for them to exit."""
        for _ in self._tasks:
            await self.requests.put(_STOP)
        await asyncio.gather(*self._tasks)
        self._closed = True

    async def abort(self) -> None:
        """Stop all workers right away, dropping whatever is still queued."""
        self._closed = True
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _work(self, wid: int) -> None:
        log.info("worker starting...", extra={"worker": wid})
        try:
            while True:
                region = await self.requests.get()
                if region is _STOP:
                    break
                try:
                    result = await self.probe_region(region)
                except Exception:
                    # Every region must still produce exactly one result.
                    log.exception("unexpected error while probing region", extra={"worker": wid, "region": region.id})
                    result = None
                if self._closed:
                    break
                await self.results.put(result)
        finally:
            log.info("worker exited", extra={"worker": wid})

    async def probe_region(self, region: Region) -> Region | None:
        """Probe the WireGuard servers of a region one after the other."""
        if not region.servers.wireguard:
            # Only WireGuard servers are checked for now.
            log.debug("region has no wireguard servers, skipping...", extra={"region": region.id})
            return None

        reachable = []
        for server in region.servers.wireguard:
            fields = {"region": region.id, "cn": server.cn, "ip": server.ip}
            try:
                latency = await asyncio.to_thread(tcp_ping, server.ip, self.port, self.max_latency)
            except ProbeTimeoutError:
                log.debug("ignoring, as latency is too high", extra=fields)
                continue
            except ProbeError as e:
                log.error("error while connecting to server, skipping: %s", e, extra=fields)
                continue

            log.debug("connected and retrieved latency", extra={**fields, "latency_ms": round(latency, 3)})
            reachable.append(replace(server, latency_ms=latency))

        return region.with_wireguard(reachable)
