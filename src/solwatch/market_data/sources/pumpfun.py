"""Pump.fun bonding-curve source.

Tokens still on the bonding curve have no DEX pool yet; their price is the
ratio of the curve's virtual reserves. The ratio is in SOL per token, so it
is converted to USD with the live SOL price when one is cached, or with the
configured reference rate otherwise. Either way the result is an
approximation and is flagged low-confidence.
"""

from collections.abc import Callable
from decimal import Decimal

from solwatch.http import JsonHttpClient
from solwatch.market_data.sources.base import PriceSource, looks_like_mint, to_decimal
from solwatch.models import Confidence, PriceRecord

_COIN_URL = "https://frontend-api.pump.fun/coins/{mint}"

LAMPORTS_PER_SOL = Decimal(10) ** 9
PUMPFUN_TOKEN_UNITS = Decimal(10) ** 6  # pump.fun mints use 6 decimals


def bonding_curve_price(
    virtual_sol_reserves: Decimal,
    virtual_token_reserves: Decimal,
    quote_rate: Decimal,
) -> Decimal:
    """USD price implied by raw virtual reserves and a SOL/USD rate."""
    sol = virtual_sol_reserves / LAMPORTS_PER_SOL
    tokens = virtual_token_reserves / PUMPFUN_TOKEN_UNITS
    return sol / tokens * quote_rate


class BondingCurveSource(PriceSource):
    """Reserve-ratio price for tokens that still trade on the pump.fun curve."""

    name = "pumpfun"

    def __init__(
        self,
        http: JsonHttpClient,
        reference_rate: Decimal,
        quote_price: Callable[[], Decimal | None] | None = None,
        timeout_seconds: float = 8.0,
    ) -> None:
        super().__init__(timeout_seconds)
        self._http = http
        self._reference_rate = reference_rate
        self._quote_price = quote_price

    def quote_rate(self) -> Decimal:
        """Live SOL/USD when available, else the configured reference rate."""
        if self._quote_price is not None:
            live = self._quote_price()
            if live is not None and live > 0:
                return live
        return self._reference_rate

    async def _fetch(self, instrument_id: str) -> PriceRecord:
        if not looks_like_mint(instrument_id):
            raise self._no_data(f"{instrument_id} is not a mint address")

        data = await self._http.get_json(_COIN_URL.format(mint=instrument_id))
        if not isinstance(data, dict):
            raise self._failure("unexpected response shape")
        if not data.get("virtual_sol_reserves") or not data.get("virtual_token_reserves"):
            raise self._no_data(f"no bonding curve for {instrument_id}")

        sol_reserves = to_decimal(self.name, data["virtual_sol_reserves"], "virtual_sol_reserves")
        token_reserves = to_decimal(self.name, data["virtual_token_reserves"], "virtual_token_reserves")
        if token_reserves <= 0 or sol_reserves < 0:
            raise self._failure("invalid reserves")

        return self._record(
            instrument_id,
            bonding_curve_price(sol_reserves, token_reserves, self.quote_rate()),
            confidence=Confidence.LOW,
        )
