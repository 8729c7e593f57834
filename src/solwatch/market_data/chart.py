"""Approximate OHLCV series for tokens without a candle feed.

DexScreener only exposes the current price, the 24h change and the 24h
volume of each pool. The series is reconstructed from those: it starts at
the price implied by the 24h change, drifts towards the current price and
adds bounded noise. Candles are always internally consistent
(high >= max(open, close), low <= min(open, close), low >= 0).
"""

import random
import time
from decimal import Decimal

from solwatch.exceptions import AdapterFailure, TransportFailure
from solwatch.logging import get_logger
from solwatch.market_data.sources.base import to_decimal
from solwatch.market_data.sources.dexscreener import DexScreenerSource, select_best_pair
from solwatch.models import OHLCVPoint

logger = get_logger(__name__)

INTERVAL_MS: dict[str, int] = {
    "1h": 3_600_000,
    "15m": 900_000,
}
DEFAULT_INTERVAL_MS = 300_000  # 5m for anything else

_MIN_PRICE = Decimal("0.00000001")
_HUNDRED = Decimal("100")


def interval_to_ms(interval: str) -> int:
    return INTERVAL_MS.get(interval, DEFAULT_INTERVAL_MS)


def _rand(rng: random.Random) -> Decimal:
    return Decimal(repr(rng.random()))


def generate_series(
    current_price: Decimal,
    change_24h: Decimal,
    volume_24h: Decimal,
    interval: str,
    points: int = 50,
    now_ms: int | None = None,
    rng: random.Random | None = None,
) -> list[OHLCVPoint]:
    """Build ``points`` candles ending just before ``now_ms``."""
    if current_price <= 0 or points <= 0:
        return []

    rng = rng or random.Random()
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    step_ms = interval_to_ms(interval)

    divisor = 1 + change_24h / _HUNDRED
    price = current_price / divisor if divisor > 0 else current_price
    volatility = abs(change_24h) / _HUNDRED / points
    trend = change_24h / _HUNDRED / points
    volume_per_point = volume_24h / points

    series: list[OHLCVPoint] = []
    for i in range(points):
        noise = (_rand(rng) - Decimal("0.5")) * 2 * volatility * price
        open_ = price
        price = max(_MIN_PRICE, price + noise + trend * price)
        close = price
        high = max(open_, close) * (1 + _rand(rng) * volatility)
        low = min(open_, close) * max(Decimal("0"), 1 - _rand(rng) * volatility)
        series.append(
            OHLCVPoint(
                time=now_ms - (points - i) * step_ms,
                open=open_,
                high=high,
                low=low,
                close=close,
                volume=volume_per_point * (Decimal("0.5") + _rand(rng)),
            )
        )
    return series


class ChartService:
    """Builds chart data for a mint from its deepest DexScreener pool."""

    def __init__(
        self,
        dexscreener: DexScreenerSource,
        points: int = 50,
        rng: random.Random | None = None,
    ) -> None:
        self._dexscreener = dexscreener
        self._points = points
        self._rng = rng or random.Random()

    async def chart(self, mint: str, interval: str = "15m") -> list[OHLCVPoint]:
        """Return candles, or an empty list when no liquidity data exists."""
        try:
            pairs = await self._dexscreener.fetch_pairs(mint)
        except (AdapterFailure, TransportFailure) as exc:
            logger.warning("chart_pairs_unavailable", mint=mint, reason=str(exc))
            return []

        best = select_best_pair(pairs)
        if best is None:
            logger.debug("chart_no_pairs", mint=mint)
            return []

        try:
            price = to_decimal("dexscreener", best.get("priceUsd") or 0, "priceUsd")
            change = to_decimal("dexscreener", (best.get("priceChange") or {}).get("h24") or 0, "priceChange.h24")
            volume = to_decimal("dexscreener", (best.get("volume") or {}).get("h24") or 0, "volume.h24")
        except AdapterFailure as exc:
            logger.warning("chart_pair_malformed", mint=mint, reason=str(exc))
            return []

        return generate_series(
            price,
            change,
            max(volume, Decimal("0")),
            interval,
            points=self._points,
            rng=self._rng,
        )
