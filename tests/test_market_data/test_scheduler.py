"""Tests for PeriodicJob and RefreshScheduler."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from solwatch.market_data.price_cache import PriceCache
from solwatch.market_data.resolver import FallbackChainResolver
from solwatch.market_data.scheduler import PeriodicJob, RefreshScheduler


def make_cache(source) -> PriceCache:
    resolver = FallbackChainResolver(
        {source.name: source}, native_chain=[source.name], token_chain=[source.name]
    )
    return PriceCache(resolver)


# ---------------------------------------------------------------------------
# PeriodicJob
# ---------------------------------------------------------------------------


class TestPeriodicJob:
    @pytest.mark.asyncio
    async def test_fires_repeatedly_until_stopped(self) -> None:
        job = AsyncMock(return_value=None)
        periodic = PeriodicJob("test", 0.01, job)

        await periodic.start()
        await asyncio.sleep(0.06)
        await periodic.stop()
        fired = job.await_count

        assert fired >= 2
        assert periodic.running is False
        await asyncio.sleep(0.03)
        assert job.await_count == fired

    @pytest.mark.asyncio
    async def test_errors_are_logged_and_loop_continues(self) -> None:
        job = AsyncMock(side_effect=[RuntimeError("boom"), None, None, None, None, None, None])
        periodic = PeriodicJob("flaky", 0.01, job)

        await periodic.start()
        await asyncio.sleep(0.05)
        await periodic.stop()

        assert job.await_count >= 2

    @pytest.mark.asyncio
    async def test_does_not_wait_for_previous_run(self) -> None:
        started = 0
        release = asyncio.Event()

        async def slow_job() -> None:
            nonlocal started
            started += 1
            await release.wait()

        periodic = PeriodicJob("slow", 0.01, slow_job)
        await periodic.start()
        await asyncio.sleep(0.05)
        await periodic.stop()

        assert started >= 2

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self) -> None:
        periodic = PeriodicJob("once", 10, AsyncMock())
        await periodic.start()
        await periodic.start()
        await periodic.stop()


# ---------------------------------------------------------------------------
# RefreshScheduler
# ---------------------------------------------------------------------------


class TestRefreshScheduler:
    @pytest.mark.asyncio
    async def test_tick_refreshes_only_its_cadence(self, scripted_source) -> None:
        source = scripted_source("a", "5")
        cache = make_cache(source)
        cache.track("FAST1", "fast")
        cache.track("SLOW1", "slow")

        listener = AsyncMock()
        scheduler = RefreshScheduler(
            cache, cadences={"fast": 15, "slow": 60}, on_refresh=listener
        )
        report = await scheduler.tick("fast")

        assert set(report.updated) == {"FAST1"}
        assert source.calls == ["FAST1"]
        assert cache.current_price("FAST1") == Decimal("5")
        listener.assert_awaited_once_with("fast", report)

    @pytest.mark.asyncio
    async def test_tick_without_tracked_instruments_is_noop(self, scripted_source) -> None:
        listener = AsyncMock()
        scheduler = RefreshScheduler(
            make_cache(scripted_source("a", "1")), cadences={"fast": 15}, on_refresh=listener
        )
        report = await scheduler.tick("fast")
        assert report.updated == {} and report.errors == {}
        listener.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tick_reports_failures(self, scripted_source) -> None:
        cache = make_cache(scripted_source("a"))
        cache.track("X", "medium")
        scheduler = RefreshScheduler(cache, cadences={"medium": 30})
        report = await scheduler.tick("medium")
        assert set(report.errors) == {"X"}

    @pytest.mark.asyncio
    async def test_jobs_per_cadence_plus_extra(self, scripted_source) -> None:
        scheduler = RefreshScheduler(
            make_cache(scripted_source("a", "1")),
            cadences={"fast": 15, "medium": 30, "slow": 60},
        )
        scheduler.add_job("wallets", 30, AsyncMock())

        names = [job.name for job in scheduler.jobs]
        assert names == ["prices_fast", "prices_medium", "prices_slow", "wallets"]
        assert [job.interval for job in scheduler.jobs[:3]] == [15, 30, 60]

    @pytest.mark.asyncio
    async def test_start_runs_first_tick_immediately(self, scripted_source) -> None:
        source = scripted_source("a", "7")
        cache = make_cache(source)
        cache.track("SOL", "fast")
        scheduler = RefreshScheduler(cache, cadences={"fast": 60})
        listener = AsyncMock()
        scheduler.set_listener(listener)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert cache.current_price("SOL") == Decimal("7")
        listener.assert_awaited()
