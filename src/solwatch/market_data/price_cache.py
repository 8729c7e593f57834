"""Shared in-memory price cache and refresh aggregator.

The PriceCache is the single writer of the current-value map and of every
per-instrument RollingHistoryBuffer. Only tracked instruments own a current
value and a history: the buffer is created on the first write after
``track()`` and dropped by ``untrack()``. Quotes for untracked instruments
are returned to the caller without being stored.

Refreshes for distinct instruments run concurrently (bounded by a
semaphore); refreshes for the same instrument never overlap: a refresh
requested while one is already in flight is skipped, and on-demand quotes
join the in-flight task instead of issuing a second upstream call sequence.
"""

import asyncio
from collections.abc import Iterable
from decimal import Decimal

from solwatch.config import Cadence
from solwatch.exceptions import AllSourcesFailedError
from solwatch.logging import get_logger, log_context
from solwatch.market_data.history import DEFAULT_CAPACITY, RollingHistoryBuffer
from solwatch.market_data.resolver import FallbackChainResolver
from solwatch.models import PricePoint, PriceRecord, RefreshReport

logger = get_logger(__name__)


def _retrieve_exception(task: asyncio.Task[PriceRecord]) -> None:
    # Every caller of a shared refresh may have been cancelled
    if not task.cancelled():
        task.exception()


class PriceCache:
    """Current prices plus bounded history for every tracked instrument.

    Args:
        resolver: Resolves one instrument through its source chain.
        history_capacity: Samples kept per instrument.
        max_concurrency: Upper bound on simultaneous instrument resolutions.
    """

    def __init__(
        self,
        resolver: FallbackChainResolver,
        history_capacity: int = DEFAULT_CAPACITY,
        max_concurrency: int = 8,
    ) -> None:
        self._resolver = resolver
        self._history_capacity = history_capacity
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._current: dict[str, PriceRecord] = {}
        self._histories: dict[str, RollingHistoryBuffer] = {}
        self._tracked: dict[str, Cadence] = {}
        self._in_flight: dict[str, asyncio.Task[PriceRecord]] = {}

    # ──────────────────────────────────────────────
    # Refresh
    # ──────────────────────────────────────────────

    async def refresh(self, instrument_ids: Iterable[str]) -> RefreshReport:
        """Resolve every instrument concurrently and fold results into the cache.

        One instrument failing never aborts the others; its error is
        reported in ``RefreshReport.errors``. Instruments with a refresh
        already in flight are skipped, not queued.
        """
        report = RefreshReport()
        started: dict[str, asyncio.Task[PriceRecord]] = {}

        for instrument_id in dict.fromkeys(instrument_ids):
            if instrument_id in self._in_flight:
                report.skipped.append(instrument_id)
                logger.debug("refresh_skipped_in_flight", instrument_id=instrument_id)
                continue
            started[instrument_id] = self._start(instrument_id)

        if not started:
            return report

        results = await asyncio.gather(*started.values(), return_exceptions=True)
        for instrument_id, result in zip(started, results):
            if isinstance(result, AllSourcesFailedError):
                report.errors[instrument_id] = str(result)
            elif isinstance(result, BaseException):
                report.errors[instrument_id] = f"{type(result).__name__}: {result}"
            elif self._current.get(instrument_id) is result:
                report.updated[instrument_id] = result
            elif instrument_id not in self._tracked:
                report.untracked.append(instrument_id)
            else:
                report.discarded.append(instrument_id)

        logger.debug(
            "price_refresh_complete",
            updated=len(report.updated),
            errors=len(report.errors),
            skipped=len(report.skipped),
        )
        return report

    async def quote(self, instrument_id: str) -> PriceRecord:
        """Return a fresh record, joining an in-flight refresh when there is one.

        Raises:
            AllSourcesFailedError: every source in the chain failed.
        """
        task = self._in_flight.get(instrument_id) or self._start(instrument_id)
        # Shielded: a cancelled caller must not cancel a refresh others share
        record = await asyncio.shield(task)
        current = self._current.get(instrument_id)
        if current is not None and current.observed_at > record.observed_at:
            return current
        return record

    def _start(self, instrument_id: str) -> asyncio.Task[PriceRecord]:
        task = asyncio.create_task(
            self._refresh_one(instrument_id), name=f"price-refresh:{instrument_id}"
        )
        self._in_flight[instrument_id] = task
        task.add_done_callback(_retrieve_exception)
        return task

    async def _refresh_one(self, instrument_id: str) -> PriceRecord:
        try:
            with log_context(instrument_id=instrument_id):
                async with self._semaphore:
                    record = await self._resolver.resolve(instrument_id)
                self._apply(record)
                return record
        finally:
            if self._in_flight.get(instrument_id) is asyncio.current_task():
                del self._in_flight[instrument_id]

    def _apply(self, record: PriceRecord) -> bool:
        """Write a record for a tracked instrument unless a newer one already landed."""
        if record.instrument_id not in self._tracked:
            logger.debug("price_record_not_tracked")
            return False

        current = self._current.get(record.instrument_id)
        if current is not None and record.observed_at <= current.observed_at:
            logger.debug(
                "price_record_discarded_stale",
                observed_at=record.observed_at,
                current_observed_at=current.observed_at,
            )
            return False

        self._current[record.instrument_id] = record
        buffer = self._histories.get(record.instrument_id)
        if buffer is None:
            buffer = RollingHistoryBuffer(self._history_capacity)
            self._histories[record.instrument_id] = buffer
        buffer.append(record.price, record.observed_at)
        return True

    def in_flight(self, instrument_id: str) -> bool:
        return instrument_id in self._in_flight

    # ──────────────────────────────────────────────
    # Read-only views
    # ──────────────────────────────────────────────

    def current(self, instrument_id: str) -> PriceRecord | None:
        """Latest accepted record for an instrument (records are immutable)."""
        return self._current.get(instrument_id)

    def current_price(self, instrument_id: str) -> Decimal | None:
        record = self._current.get(instrument_id)
        return record.price if record is not None else None

    def snapshot(self) -> dict[str, PriceRecord]:
        """Copy of the current-value map."""
        return dict(self._current)

    def history(self, instrument_id: str) -> tuple[PricePoint, ...]:
        buffer = self._histories.get(instrument_id)
        return buffer.snapshot() if buffer is not None else ()

    # ──────────────────────────────────────────────
    # Tracking lifecycle
    # ──────────────────────────────────────────────

    def track(self, instrument_id: str, cadence: Cadence = "fast") -> None:
        """Schedule an instrument for periodic refresh at ``cadence``."""
        previous = self._tracked.get(instrument_id)
        self._tracked[instrument_id] = cadence
        if previous != cadence:
            logger.info("instrument_tracked", instrument_id=instrument_id, cadence=cadence)

    def untrack(self, instrument_id: str) -> None:
        """Stop refreshing an instrument and drop its cached value and history."""
        self._tracked.pop(instrument_id, None)
        self._current.pop(instrument_id, None)
        buffer = self._histories.pop(instrument_id, None)
        if buffer is not None:
            buffer.clear()
        logger.info("instrument_untracked", instrument_id=instrument_id)

    def tracked(self, cadence: Cadence | None = None) -> list[str]:
        """Tracked instrument ids, optionally filtered by cadence."""
        return [i for i, c in self._tracked.items() if cadence is None or c == cadence]
