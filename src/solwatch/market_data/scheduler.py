"""Timer-driven refresh loops.

Each PeriodicJob fires its job every ``interval`` seconds without waiting
for the previous run to finish, like a wall-clock timer. Overlapping runs
are made harmless by the PriceCache, which skips instruments that still
have a refresh in flight.
"""

import asyncio
from collections.abc import Awaitable, Callable

from solwatch.config import Cadence
from solwatch.logging import get_logger
from solwatch.market_data.price_cache import PriceCache
from solwatch.models import RefreshReport

logger = get_logger(__name__)

RefreshListener = Callable[[Cadence, RefreshReport], Awaitable[None]]


class PeriodicJob:
    """Runs an async job on a fixed interval until stopped."""

    def __init__(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[object]],
    ) -> None:
        self.name = name
        self.interval = interval
        self._job = job
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._runs: set[asyncio.Task] = set()  # type: ignore[type-arg]

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Begin firing the job in the background."""
        if self._running:
            logger.warning("periodic_job_already_running", job=self.name)
            return
        self._running = True
        self._task = asyncio.create_task(self._timer_loop(), name=f"timer:{self.name}")
        logger.info("periodic_job_started", job=self.name, interval=self.interval)

    async def stop(self) -> None:
        """Stop the timer and cancel runs that are still outstanding."""
        self._running = False
        pending = [t for t in (self._task, *self._runs) if t is not None]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._task = None
        self._runs.clear()
        logger.info("periodic_job_stopped", job=self.name)

    async def _timer_loop(self) -> None:
        while self._running:
            run = asyncio.create_task(self._run_once(), name=f"run:{self.name}")
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)
            await asyncio.sleep(self.interval)

    async def _run_once(self) -> None:
        try:
            await self._job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("periodic_job_error", job=self.name, exc_info=True)


class RefreshScheduler:
    """Drives PriceCache refreshes per cadence plus any extra periodic jobs.

    Args:
        price_cache: Cache whose tracked instruments are refreshed.
        cadences: Refresh period in seconds per cadence name.
        on_refresh: Optional listener awaited after every cadence tick.
    """

    def __init__(
        self,
        price_cache: PriceCache,
        cadences: dict[Cadence, float],
        on_refresh: RefreshListener | None = None,
    ) -> None:
        self._price_cache = price_cache
        self._cadences = cadences
        self._on_refresh = on_refresh
        self._jobs: list[PeriodicJob] = [
            PeriodicJob(f"prices_{cadence}", interval, self._tick_job(cadence))
            for cadence, interval in cadences.items()
        ]

    def _tick_job(self, cadence: Cadence) -> Callable[[], Awaitable[RefreshReport]]:
        async def job() -> RefreshReport:
            return await self.tick(cadence)

        return job

    def set_listener(self, on_refresh: RefreshListener | None) -> None:
        self._on_refresh = on_refresh

    def add_job(self, name: str, interval: float, job: Callable[[], Awaitable[object]]) -> None:
        """Register another periodic job (e.g. watched-wallet refresh)."""
        self._jobs.append(PeriodicJob(name, interval, job))

    @property
    def jobs(self) -> list[PeriodicJob]:
        return list(self._jobs)

    async def tick(self, cadence: Cadence) -> RefreshReport:
        """Refresh every instrument tracked at ``cadence`` once."""
        instrument_ids = self._price_cache.tracked(cadence)
        if not instrument_ids:
            return RefreshReport()

        report = await self._price_cache.refresh(instrument_ids)
        if report.errors:
            logger.info(
                "price_refresh_partial_failure",
                cadence=cadence,
                failed=sorted(report.errors),
                updated=len(report.updated),
            )
        if self._on_refresh is not None:
            await self._on_refresh(cadence, report)
        return report

    async def start(self) -> None:
        for job in self._jobs:
            await job.start()

    async def stop(self) -> None:
        for job in self._jobs:
            await job.stop()
