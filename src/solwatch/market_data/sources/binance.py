"""Exchange ticker source backed by ccxt (Binance spot by default).

Gives last price, 24h percent change and 24h quote volume. Exchanges do
not publish market cap, so it is always reported as 0.
"""

import ccxt.async_support as ccxt_async

from solwatch.exceptions import TransportFailure
from solwatch.logging import get_logger
from solwatch.market_data.sources.base import PriceSource, looks_like_mint, to_decimal
from solwatch.models import PriceRecord

logger = get_logger(__name__)


class ExchangeTickerSource(PriceSource):
    """24h ticker from a centralized exchange via ccxt async."""

    name = "binance"

    def __init__(
        self,
        exchange: ccxt_async.Exchange | None = None,
        quote: str = "USDT",
        timeout_seconds: float = 8.0,
    ) -> None:
        super().__init__(timeout_seconds)
        self._exchange = exchange or ccxt_async.binance({"enableRateLimit": True})
        self._quote = quote

    def symbol_for(self, instrument_id: str) -> str:
        """Map an instrument ticker to the exchange's unified symbol."""
        return f"{instrument_id.upper()}/{self._quote}"

    async def _fetch(self, instrument_id: str) -> PriceRecord:
        if looks_like_mint(instrument_id):
            raise self._no_data("token mints are not listed on the exchange")

        symbol = self.symbol_for(instrument_id)
        try:
            ticker = await self._exchange.fetch_ticker(symbol)
        except ccxt_async.BadSymbol as exc:
            raise self._no_data(f"{symbol} not listed") from exc
        except ccxt_async.NetworkError as exc:
            raise TransportFailure(self.name, f"{type(exc).__name__}: {exc}") from exc
        except ccxt_async.ExchangeError as exc:
            raise self._failure(f"{type(exc).__name__}: {exc}") from exc

        return self._record(
            instrument_id,
            to_decimal(self.name, ticker.get("last"), "last"),
            change_24h=to_decimal(self.name, ticker.get("percentage") or 0, "percentage"),
            volume_24h=to_decimal(self.name, ticker.get("quoteVolume") or 0, "quoteVolume"),
        )

    async def close(self) -> None:
        """Clean up ccxt async resources (must be called to avoid leaks)."""
        await self._exchange.close()
        logger.info("exchange_ticker_closed", source=self.name)
