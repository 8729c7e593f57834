"""Jupiter price API source: spot price only, keyed by mint address."""

from solwatch.http import JsonHttpClient
from solwatch.market_data.sources.base import (
    WRAPPED_SOL_MINT,
    PriceSource,
    looks_like_mint,
    to_decimal,
)
from solwatch.models import PriceRecord

_PRICE_URL = "https://api.jup.ag/price/v2"


class JupiterSource(PriceSource):
    """Aggregated swap price for SPL mints (SOL via the wrapped-SOL mint)."""

    name = "jupiter"

    def __init__(
        self,
        http: JsonHttpClient,
        native_symbol: str = "SOL",
        timeout_seconds: float = 8.0,
    ) -> None:
        super().__init__(timeout_seconds)
        self._http = http
        self._native_symbol = native_symbol.upper()

    def _mint_for(self, instrument_id: str) -> str:
        if instrument_id.upper() == self._native_symbol:
            return WRAPPED_SOL_MINT
        if not looks_like_mint(instrument_id):
            raise self._no_data(f"{instrument_id} is not a mint address")
        return instrument_id

    async def _fetch(self, instrument_id: str) -> PriceRecord:
        mint = self._mint_for(instrument_id)
        data = await self._http.get_json(_PRICE_URL, params={"ids": mint})
        entry = (data.get("data") or {}).get(mint) if isinstance(data, dict) else None
        if not entry or not entry.get("price"):
            raise self._no_data(f"no price for {mint}")
        return self._record(instrument_id, to_decimal(self.name, entry["price"], "price"))
