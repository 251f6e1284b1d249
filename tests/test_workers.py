import pytest
import asyncio
import time
from unittest.mock import patch

from regions_updater.errors import ProbeError, ProbeTimeoutError
from regions_updater.workers import WorkerPool
from conftest import make_region

REACHABLE_IP = "10.0.0.1"


def fake_ping(host, port, max_latency):
    if host == REACHABLE_IP:
        return 20.0
    if host == "10.0.0.9":
        raise ProbeTimeoutError(f"{host}:{port} did not answer in time")
    raise ProbeError(f"could not connect to {host}:{port}: connection refused")


async def collect(pool, count, timeout=2.0):
    return [await asyncio.wait_for(pool.results.get(), timeout) for _ in range(count)]


class TestWorkerPool:

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_keeps_only_reachable_servers(self):
        """Test a reachable and an unreachable region going through the pool."""
        region_a = make_region("a", name="A", wireguard=[(REACHABLE_IP, None)])
        region_b = make_region("b", name="B", wireguard=[("10.0.0.2", None)])
        pool = WorkerPool(workers=2, max_latency=0.05)

        with patch("regions_updater.workers.tcp_ping", side_effect=fake_ping):
            pool.start()
            await pool.submit(region_a)
            await pool.submit(region_b)
            results = await collect(pool, 2)
            await pool.close()

        by_id = {r.id: r for r in results}
        assert [s.latency_ms for s in by_id["a"].servers.wireguard] == [20.0]
        assert by_id["b"].servers.wireguard == ()

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_too_slow_and_failing_servers_are_dropped(self):
        region = make_region("a", wireguard=[("10.0.0.9", None), (REACHABLE_IP, None), ("10.0.0.3", None)])
        pool = WorkerPool(workers=1, max_latency=0.05)

        with patch("regions_updater.workers.tcp_ping", side_effect=fake_ping) as mock_ping:
            pool.start()
            await pool.submit(region)
            [result] = await collect(pool, 1)
            await pool.close()

        assert [s.ip for s in result.servers.wireguard] == [REACHABLE_IP]
        assert mock_ping.call_count == 3
        mock_ping.assert_any_call("10.0.0.9", 443, 0.05)

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_region_without_wireguard(self):
        """Test that regions with no WireGuard servers produce a None result."""
        region = make_region("a")
        pool = WorkerPool(workers=1, max_latency=0.05)

        with patch("regions_updater.workers.tcp_ping", side_effect=fake_ping) as mock_ping:
            pool.start()
            await pool.submit(region)
            results = await collect(pool, 1)
            await pool.close()

        assert results == [None]
        mock_ping.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_submitted_region_is_not_modified(self):
        region = make_region("a", wireguard=[(REACHABLE_IP, None), ("10.0.0.2", None)])
        pool = WorkerPool(workers=1, max_latency=0.05)

        with patch("regions_updater.workers.tcp_ping", side_effect=fake_ping):
            pool.start()
            await pool.submit(region)
            [result] = await collect(pool, 1)
            await pool.close()

        assert result is not region
        assert len(region.servers.wireguard) == 2
        assert all(s.latency_ms is None for s in region.servers.wireguard)

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_one_result_per_region(self):
        regions = [make_region(f"r{i}", wireguard=[(REACHABLE_IP, None)]) for i in range(20)]
        regions += [make_region(f"empty{i}") for i in range(5)]
        pool = WorkerPool(workers=4, max_latency=0.05)

        with patch("regions_updater.workers.tcp_ping", side_effect=fake_ping):
            pool.start()
            for region in regions:
                await pool.submit(region)
            results = await collect(pool, len(regions))
            await pool.close()

        assert sorted(r.id for r in results if r is not None) == sorted(f"r{i}" for i in range(20))
        assert results.count(None) == 5
        assert pool.results.empty()

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_queues_are_bounded(self):
        pool = WorkerPool(workers=1, max_latency=0.05, queue_size=2)
        assert pool.requests.maxsize == 2
        assert pool.results.maxsize == 2

    @pytest.mark.asyncio
    @pytest.mark.error
    async def test_abort_during_probe(self):
        """Test that aborting stops workers in the middle of a probe without results."""
        def slow_ping(host, port, max_latency):
            time.sleep(0.3)
            return 1.0

        pool = WorkerPool(workers=2, max_latency=0.5)
        with patch("regions_updater.workers.tcp_ping", side_effect=slow_ping):
            pool.start()
            await pool.submit(make_region("a", wireguard=[(REACHABLE_IP, None)]))
            await pool.submit(make_region("b", wireguard=[(REACHABLE_IP, None)]))
            await asyncio.sleep(0.05)

            started = time.monotonic()
            await pool.abort()
            elapsed = time.monotonic() - started

            # Give the probe threads time to finish
            await asyncio.sleep(0.4)

        assert elapsed < 0.25
        assert pool.closed
        assert pool.results.empty()

    @pytest.mark.asyncio
    @pytest.mark.error
    async def test_submit_after_close(self):
        pool = WorkerPool(workers=1, max_latency=0.05)
        pool.start()
        await pool.abort()

        with pytest.raises(RuntimeError, match="closed"):
            await pool.submit(make_region("a"))

    @pytest.mark.asyncio
    @pytest.mark.error
    async def test_unexpected_error_still_yields_a_result(self):
        """Test that a crashing probe gives a None result and keeps the worker alive."""
        def broken_ping(host, port, max_latency):
            if host == "10.0.0.66":
                raise RuntimeError("resolver exploded")
            return fake_ping(host, port, max_latency)

        pool = WorkerPool(workers=1, max_latency=0.05)
        with patch("regions_updater.workers.tcp_ping", side_effect=broken_ping):
            pool.start()
            await pool.submit(make_region("bad", wireguard=[("10.0.0.66", None)]))
            await pool.submit(make_region("good", wireguard=[(REACHABLE_IP, None)]))
            results = await collect(pool, 2)
            await pool.close()

        assert results[0] is None
        assert results[1].id == "good"

    @pytest.mark.asyncio
    @pytest.mark.error
    async def test_invalid_hostname_is_dropped(self):
        region = make_region("a", wireguard=[("a" * 64 + ".example", None)])
        pool = WorkerPool(workers=1, max_latency=0.05)

        pool.start()
        await pool.submit(region)
        [result] = await collect(pool, 1)
        await pool.close()

        assert result.servers.wireguard == ()
