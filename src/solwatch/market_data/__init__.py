"""Market data layer -- price sources, fallback resolution, caching and charts."""

from solwatch.market_data.chart import ChartService
from solwatch.market_data.history import RollingHistoryBuffer
from solwatch.market_data.price_cache import PriceCache
from solwatch.market_data.resolver import FallbackChainResolver
from solwatch.market_data.scheduler import PeriodicJob, RefreshScheduler

__all__ = [
    "ChartService",
    "FallbackChainResolver",
    "PeriodicJob",
    "PriceCache",
    "RefreshScheduler",
    "RollingHistoryBuffer",
]
