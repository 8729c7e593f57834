"""CoinGecko general market oracle.

Aggregated index price with 24h change, volume and market cap in one call.
Only instruments with a known CoinGecko id are supported; anything else is
reported as "no data" so the resolver falls through quickly.
"""

from solwatch.http import JsonHttpClient
from solwatch.market_data.sources.base import PriceSource, to_decimal
from solwatch.models import PriceRecord

_SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"

# Static mapping from ticker symbols to CoinGecko coin ids
SYMBOL_TO_COINGECKO: dict[str, str] = {
    "SOL": "solana",
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDC": "usd-coin",
    "USDT": "tether",
    "JUP": "jupiter-exchange-solana",
    "BONK": "bonk",
    "WIF": "dogwifcoin",
    "PYTH": "pyth-network",
    "RAY": "raydium",
    "JTO": "jito-governance-token",
}


class CoinGeckoSource(PriceSource):
    """General market oracle backed by CoinGecko's simple/price endpoint."""

    name = "coingecko"

    def __init__(
        self,
        http: JsonHttpClient,
        api_key: str = "",
        timeout_seconds: float = 8.0,
    ) -> None:
        super().__init__(timeout_seconds)
        self._http = http
        self._api_key = api_key

    async def _fetch(self, instrument_id: str) -> PriceRecord:
        coin_id = SYMBOL_TO_COINGECKO.get(instrument_id.upper())
        if coin_id is None:
            raise self._no_data(f"no coingecko id for {instrument_id}")

        params = {
            "ids": coin_id,
            "vs_currencies": "usd",
            "include_24hr_change": "true",
            "include_24hr_vol": "true",
            "include_market_cap": "true",
        }
        if self._api_key:
            params["x_cg_demo_api_key"] = self._api_key

        data = await self._http.get_json(_SIMPLE_PRICE_URL, params=params)
        entry = data.get(coin_id) if isinstance(data, dict) else None
        if not entry or entry.get("usd") is None:
            raise self._no_data(f"no usd quote for {coin_id}")

        return self._record(
            instrument_id,
            to_decimal(self.name, entry["usd"], "usd"),
            change_24h=to_decimal(self.name, entry.get("usd_24h_change") or 0, "usd_24h_change"),
            volume_24h=to_decimal(self.name, entry.get("usd_24h_vol") or 0, "usd_24h_vol"),
            market_cap=to_decimal(self.name, entry.get("usd_market_cap") or 0, "usd_market_cap"),
        )
