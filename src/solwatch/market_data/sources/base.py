"""Price source contract.

A PriceSource wraps exactly one upstream API. ``fetch`` never raises:
every transport, timeout or parse problem becomes ``SourceResult.failed``
so the resolver can move on to the next source.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any

from solwatch.exceptions import AdapterFailure, TransportFailure
from solwatch.logging import get_logger
from solwatch.models import PriceRecord, SourceResult

logger = get_logger(__name__)

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"


def looks_like_mint(instrument_id: str) -> bool:
    """Solana addresses are 32-44 base58 chars; tickers are short."""
    return len(instrument_id) >= 32


def to_decimal(source: str, value: Any, field_name: str) -> Decimal:
    """Parse an upstream numeric field (number or string) into Decimal."""
    if value is None:
        raise AdapterFailure(source, f"missing field {field_name}")
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise AdapterFailure(source, f"invalid {field_name}: {value!r}") from exc
    if not parsed.is_finite():
        raise AdapterFailure(source, f"invalid {field_name}: {value!r}")
    return parsed


class PriceSource(ABC):
    """Base class for one upstream price oracle."""

    name: str = "source"

    def __init__(self, timeout_seconds: float = 8.0) -> None:
        self._timeout = timeout_seconds

    async def fetch(self, instrument_id: str) -> SourceResult:
        """Fetch and normalize a price record, bounded by the source timeout."""
        try:
            record = await asyncio.wait_for(
                self._fetch(instrument_id), timeout=self._timeout
            )
        except AdapterFailure as exc:
            return SourceResult.failed(exc.reason, no_data=exc.no_data)
        except TransportFailure as exc:
            return SourceResult.failed(exc.reason)
        except asyncio.TimeoutError:
            return SourceResult.failed(f"timeout after {self._timeout}s")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "price_source_unexpected_error",
                source=self.name,
                instrument_id=instrument_id,
                exc_info=True,
            )
            return SourceResult.failed(f"{type(exc).__name__}: {exc}")
        return SourceResult.ok(record)

    @abstractmethod
    async def _fetch(self, instrument_id: str) -> PriceRecord:
        """Return a record or raise AdapterFailure/TransportFailure."""
        ...

    async def close(self) -> None:
        """Release source-specific resources (shared HTTP session is not owned)."""

    def _record(self, instrument_id: str, price: Decimal, **fields: Any) -> PriceRecord:
        """Build a record stamped with this source and the current time."""
        try:
            return PriceRecord(
                instrument_id=instrument_id,
                price=price,
                observed_at=time.time(),
                source=self.name,
                **fields,
            )
        except ValueError as exc:
            raise self._failure(str(exc)) from exc

    def _no_data(self, reason: str) -> AdapterFailure:
        return AdapterFailure(self.name, reason, no_data=True)

    def _failure(self, reason: str) -> AdapterFailure:
        return AdapterFailure(self.name, reason)
