"""Shared test fixtures for solwatch."""

import asyncio
import itertools
from decimal import Decimal

import pytest

from solwatch.config import AppSettings, PriceSettings, StoreSettings
from solwatch.market_data.sources.base import PriceSource
from solwatch.models import PriceRecord

# Strictly increasing observation times so consecutive records never tie
_CLOCK = itertools.count(1_700_000_000)


class ScriptedSource(PriceSource):
    """Price source with a fixed answer that records every call.

    ``price=None`` makes the source fail (as "no data" when ``no_data`` is
    set). ``gate`` blocks the fetch until the event is set, which lets tests
    hold a refresh in flight.
    """

    def __init__(
        self,
        name: str,
        price: Decimal | str | None = None,
        *,
        no_data: bool = False,
        error: Exception | None = None,
        change_24h: Decimal = Decimal("0"),
        gate: asyncio.Event | None = None,
        delay: float = 0.0,
        timeout_seconds: float = 1.0,
    ) -> None:
        super().__init__(timeout_seconds)
        self.name = name
        self.price = Decimal(price) if isinstance(price, str) else price
        self.no_data = no_data
        self.error = error
        self.change_24h = change_24h
        self.gate = gate
        self.delay = delay
        self.observed_at: float | None = None
        self.calls: list[str] = []

    async def _fetch(self, instrument_id: str) -> PriceRecord:
        self.calls.append(instrument_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.price is None:
            if self.no_data:
                raise self._no_data(f"nothing for {instrument_id}")
            raise self._failure("upstream down")
        return PriceRecord(
            instrument_id=instrument_id,
            price=self.price,
            change_24h=self.change_24h,
            observed_at=self.observed_at if self.observed_at is not None else next(_CLOCK),
            source=self.name,
        )


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (in-memory store, short timeouts)."""
    return AppSettings(
        log_level="DEBUG",
        price=PriceSettings(source_timeout_seconds=1.0),
        store=StoreSettings(db_path=":memory:"),
    )


@pytest.fixture
def scripted_source():
    """Factory fixture for ScriptedSource instances."""
    return ScriptedSource

