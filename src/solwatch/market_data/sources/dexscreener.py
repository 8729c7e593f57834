"""DexScreener on-chain liquidity aggregator.

A token usually trades in several pools. The price is taken from the pool
with the highest reported USD liquidity; on equal liquidity the pool seen
first in the response wins.
"""

from decimal import Decimal
from typing import Any

from solwatch.exceptions import AdapterFailure
from solwatch.http import JsonHttpClient
from solwatch.market_data.sources.base import PriceSource, to_decimal
from solwatch.models import PriceRecord

_TOKENS_URL = "https://api.dexscreener.com/latest/dex/tokens/{mint}"


def _liquidity_usd(pair: dict[str, Any]) -> Decimal:
    raw = (pair.get("liquidity") or {}).get("usd")
    try:
        return to_decimal("dexscreener", raw, "liquidity.usd")
    except AdapterFailure:
        return Decimal("0")


def select_best_pair(pairs: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Return the highest-liquidity pair; ties keep the first-seen pair."""
    best: dict[str, Any] | None = None
    best_liquidity = Decimal("-1")
    for pair in pairs:
        liquidity = _liquidity_usd(pair)
        if liquidity > best_liquidity:
            best, best_liquidity = pair, liquidity
    return best


class DexScreenerSource(PriceSource):
    """Price from the deepest DEX pool for a mint."""

    name = "dexscreener"

    def __init__(self, http: JsonHttpClient, timeout_seconds: float = 8.0) -> None:
        super().__init__(timeout_seconds)
        self._http = http

    async def fetch_pairs(self, mint: str) -> list[dict[str, Any]]:
        """Return every pair DexScreener knows for ``mint`` (may be empty)."""
        data = await self._http.get_json(_TOKENS_URL.format(mint=mint))
        if not isinstance(data, dict):
            raise self._failure("unexpected response shape")
        return list(data.get("pairs") or [])

    async def _fetch(self, instrument_id: str) -> PriceRecord:
        best = select_best_pair(await self.fetch_pairs(instrument_id))
        if best is None:
            raise self._no_data(f"no pairs for {instrument_id}")
        price = to_decimal(self.name, best.get("priceUsd"), "priceUsd")
        if price <= 0:
            raise self._no_data(f"no usd price for {instrument_id}")
        return self._record(instrument_id, price)
