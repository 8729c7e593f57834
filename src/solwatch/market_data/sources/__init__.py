"""Upstream price sources, one adapter per oracle."""

from collections.abc import Callable
from decimal import Decimal

from solwatch.config import PriceSettings
from solwatch.http import JsonHttpClient
from solwatch.market_data.sources.base import PriceSource
from solwatch.market_data.sources.binance import ExchangeTickerSource
from solwatch.market_data.sources.coingecko import CoinGeckoSource
from solwatch.market_data.sources.dexscreener import DexScreenerSource, select_best_pair
from solwatch.market_data.sources.jupiter import JupiterSource
from solwatch.market_data.sources.pumpfun import BondingCurveSource


def build_sources(
    settings: PriceSettings,
    http: JsonHttpClient,
    quote_price: Callable[[], Decimal | None] | None = None,
) -> dict[str, PriceSource]:
    """Instantiate every known source, keyed by the name used in chain settings."""
    timeout = settings.source_timeout_seconds
    sources: list[PriceSource] = [
        CoinGeckoSource(
            http,
            api_key=settings.coingecko_api_key.get_secret_value(),
            timeout_seconds=timeout,
        ),
        ExchangeTickerSource(quote=settings.exchange_quote, timeout_seconds=timeout),
        JupiterSource(http, native_symbol=settings.native_symbol, timeout_seconds=timeout),
        DexScreenerSource(http, timeout_seconds=timeout),
        BondingCurveSource(
            http,
            reference_rate=settings.bonding_curve_reference_rate,
            quote_price=quote_price,
            timeout_seconds=timeout,
        ),
    ]
    return {source.name: source for source in sources}


__all__ = [
    "BondingCurveSource",
    "CoinGeckoSource",
    "DexScreenerSource",
    "ExchangeTickerSource",
    "JupiterSource",
    "PriceSource",
    "build_sources",
    "select_best_pair",
]
