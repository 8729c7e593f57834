"""Fallback chain resolver: first successful price source wins.

Sources are tried strictly in the configured priority order and the chain
stops at the first success, so degraded or expensive sources (the
bonding-curve approximation) are only hit when everything above them
failed. The order is static configuration, never reordered at runtime.
"""

from collections.abc import Mapping, Sequence

from solwatch.exceptions import AdapterFailure
from solwatch.fallback import FallbackOutcome, first_success
from solwatch.logging import get_logger
from solwatch.market_data.sources.base import PriceSource
from solwatch.models import PriceRecord

logger = get_logger(__name__)


class FallbackChainResolver:
    """Resolves one instrument against an ordered list of price sources.

    Args:
        sources: All available sources keyed by name.
        native_chain: Source names for the native token (SOL), in priority order.
        token_chain: Source names for SPL token mints, in priority order.
        native_symbol: Instrument id routed to the native chain.
    """

    def __init__(
        self,
        sources: Mapping[str, PriceSource],
        native_chain: Sequence[str],
        token_chain: Sequence[str],
        native_symbol: str = "SOL",
    ) -> None:
        unknown = [n for n in (*native_chain, *token_chain) if n not in sources]
        if unknown:
            raise ValueError(f"Unknown price sources in chain config: {unknown}")
        self._native_chain = [sources[n] for n in native_chain]
        self._token_chain = [sources[n] for n in token_chain]
        self._native_symbol = native_symbol.upper()

    def chain_for(self, instrument_id: str) -> list[PriceSource]:
        """Return the configured source order for an instrument."""
        if instrument_id.upper() == self._native_symbol:
            return list(self._native_chain)
        return list(self._token_chain)

    async def resolve(
        self,
        instrument_id: str,
        sources: Sequence[PriceSource] | None = None,
    ) -> PriceRecord:
        """Return the first successful record, or raise AllSourcesFailedError."""
        outcome = await self.resolve_with_diagnostics(instrument_id, sources)
        return outcome.value

    async def resolve_with_diagnostics(
        self,
        instrument_id: str,
        sources: Sequence[PriceSource] | None = None,
    ) -> FallbackOutcome[PriceRecord]:
        """Like resolve(), but also return the failures of skipped-over sources."""
        chain = list(sources) if sources is not None else self.chain_for(instrument_id)

        async def attempt(source: PriceSource) -> PriceRecord:
            result = await source.fetch(instrument_id)
            if result.record is None:
                raise AdapterFailure(source.name, result.reason or "unknown", result.no_data)
            return result.record

        outcome = await first_success(f"price:{instrument_id}", chain, attempt)
        logger.debug(
            "price_resolved",
            instrument_id=instrument_id,
            source=outcome.value.source,
            fallbacks=len(outcome.failures),
        )
        return outcome
