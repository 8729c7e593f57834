"""Entry point for the solwatch price and sync service.

Wires all components together and serves the FastAPI app. Background
refresh loops and the HTTP server share a single asyncio event loop via
uvicorn's programmatic API and FastAPI's lifespan context manager;
uvicorn handles SIGINT/SIGTERM and drives the lifespan shutdown.

Component wiring order (in _build_components):
1. JsonHttpClient (shared aiohttp session)
2. Price sources (CoinGecko, exchange ticker, Jupiter, DexScreener, bonding curve)
3. FallbackChainResolver (native and token chains)
4. PriceCache (current values, histories, in-flight coalescing)
5. SolanaRpcClient + WalletService + WalletScanner (endpoint fallback)
6. ChartService (approximate OHLCV)
7. ChangeFeed + RowStore + RealtimeRegistry (row sync)
8. RefreshScheduler (per-cadence price jobs, watched-wallet job)
"""

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any

import uvicorn
from fastapi import FastAPI

from solwatch.config import AppSettings, Cadence
from solwatch.http import JsonHttpClient
from solwatch.logging import get_logger, setup_logging
from solwatch.market_data.chart import ChartService
from solwatch.market_data.price_cache import PriceCache
from solwatch.market_data.resolver import FallbackChainResolver
from solwatch.market_data.scheduler import RefreshScheduler
from solwatch.market_data.sources import DexScreenerSource, build_sources
from solwatch.models import RefreshReport
from solwatch.realtime.feed import ChangeFeed
from solwatch.realtime.store import RowStore
from solwatch.realtime.sync import RealtimeRegistry
from solwatch.wallet.rpc import SolanaRpcClient
from solwatch.wallet.scanner import WalletScanner
from solwatch.wallet.service import WalletService

CADENCES: tuple[Cadence, ...] = ("fast", "medium", "slow")


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all service components from settings.

    Note: Does NOT open network sessions or the database -- that happens in
    the lifespan.

    Args:
        settings: Application-wide settings.

    Returns:
        Dict mapping component names to instances.
    """
    # 1. Shared HTTP session
    http = JsonHttpClient(timeout_seconds=settings.price.source_timeout_seconds)

    # 2-4. Prices. The bonding-curve source quotes against the cached SOL price,
    # so the cache is created first and read lazily.
    price_cache: PriceCache | None = None

    def native_price() -> Decimal | None:
        if price_cache is None:
            return None
        return price_cache.current_price(settings.price.native_symbol)

    sources = build_sources(settings.price, http, quote_price=native_price)
    resolver = FallbackChainResolver(
        sources,
        native_chain=settings.price.native_chain,
        token_chain=settings.price.token_chain,
        native_symbol=settings.price.native_symbol,
    )
    price_cache = PriceCache(
        resolver,
        history_capacity=settings.price.history_capacity,
        max_concurrency=settings.price.max_concurrency,
    )

    # 5. Wallets
    rpc_http = JsonHttpClient(timeout_seconds=settings.rpc.timeout_seconds)
    rpc = SolanaRpcClient(rpc_http, settings.rpc.endpoints)
    wallet_service = WalletService(rpc, token_program_id=settings.rpc.token_program_id)
    wallet_scanner = WalletScanner(
        rpc,
        batch_size=settings.rpc.scan_batch_size,
        batch_delay=settings.rpc.scan_batch_delay,
    )

    # 6. Charts
    dexscreener = sources["dexscreener"]
    assert isinstance(dexscreener, DexScreenerSource)
    chart_service = ChartService(dexscreener, points=settings.chart.points)

    # 7. Row sync
    feed = ChangeFeed()
    store = RowStore(settings.store.db_path, feed=feed)
    realtime = RealtimeRegistry(store, feed, trades_limit=settings.store.trades_limit)

    # 8. Scheduler (listener attached in the lifespan, once the hub exists)
    scheduler = RefreshScheduler(
        price_cache,
        cadences={c: settings.cadence_seconds(c) for c in CADENCES},
    )
    scheduler.add_job(
        "wallets", settings.rpc.wallet_refresh_interval, wallet_service.refresh_watched
    )

    return {
        "http": http,
        "rpc_http": rpc_http,
        "sources": sources,
        "resolver": resolver,
        "price_cache": price_cache,
        "wallet_service": wallet_service,
        "wallet_scanner": wallet_scanner,
        "chart_service": chart_service,
        "feed": feed,
        "store": store,
        "realtime": realtime,
        "scheduler": scheduler,
    }


def _broadcast_listener(app: FastAPI):  # type: ignore[no-untyped-def]
    """Push a price snapshot to WebSocket clients after each cadence tick."""
    from solwatch.server.routes.ws import price_snapshot_message

    async def on_refresh(cadence: Cadence, report: RefreshReport) -> None:
        hub = app.state.hub
        if not hub.connections:
            return
        await hub.broadcast(price_snapshot_message(app.state.price_cache, cadence, report))

    return on_refresh


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage component lifecycle within the FastAPI application.

    On startup: stores components on app.state, opens HTTP sessions and the
    row store, tracks the native token and starts the refresh scheduler.

    On shutdown: stops the scheduler and realtime syncs, closes the store,
    the price sources and the HTTP sessions.
    """
    logger = get_logger("solwatch.main")
    settings: AppSettings = app.state.settings
    components = app.state.components

    # Store components on app.state for route handler access
    app.state.price_cache = components["price_cache"]
    app.state.resolver = components["resolver"]
    app.state.wallet_service = components["wallet_service"]
    app.state.wallet_scanner = components["wallet_scanner"]
    app.state.chart_service = components["chart_service"]
    app.state.feed = components["feed"]
    app.state.store = components["store"]
    app.state.realtime = components["realtime"]
    app.state.scheduler = components["scheduler"]

    scheduler: RefreshScheduler = components["scheduler"]
    if settings.server.broadcast_prices:
        scheduler.set_listener(_broadcast_listener(app))

    await components["http"].start()
    await components["rpc_http"].start()
    await components["store"].connect()

    components["price_cache"].track(settings.price.native_symbol, "fast")
    await scheduler.start()

    logger.info(
        "lifespan_started",
        native_chain=settings.price.native_chain,
        token_chain=settings.price.token_chain,
        rpc_endpoints=len(settings.rpc.endpoints),
    )

    yield

    await scheduler.stop()
    await components["realtime"].stop_all()
    await components["store"].close()
    for source in components["sources"].values():
        await source.close()
    await components["http"].close()
    await components["rpc_http"].close()

    logger.info("solwatch_stopped")


async def run() -> None:
    """Run the price API and background refresh loops in one event loop."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("solwatch.main")

    components = _build_components(settings)

    from solwatch.server.app import create_app

    app = create_app(lifespan=lifespan)
    app.state.settings = settings
    app.state.components = components

    logger.info(
        "starting_server",
        host=settings.server.host,
        port=settings.server.port,
    )

    config = uvicorn.Config(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level="warning",  # Suppress uvicorn access logs
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
