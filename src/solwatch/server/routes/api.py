"""JSON API endpoints: prices, batch prices, wallets, wallet swaps, charts and per-user sync data.

Status policy:
- 400 for malformed requests (missing/invalid fields), before any upstream call.
- 200 with ``price: null`` / empty ``data`` when data is simply unavailable.
- 502 when every upstream in a fallback chain failed for other reasons.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from solwatch.exceptions import AllSourcesFailedError, ValidationFailure
from solwatch.models import (
    DashboardStats,
    OHLCVPoint,
    ParsedSwap,
    PriceRecord,
    SwapSummary,
    WalletSnapshot,
)
from solwatch.realtime.events import WATCHED_TABLES, ChangeEvent
from solwatch.wallet.scanner import import_swaps

log = structlog.get_logger(__name__)

router = APIRouter()

CADENCES = ("fast", "medium", "slow")
MAX_SCAN_LIMIT = 1000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _jsonable(obj: Any) -> Any:
    """Recursively convert Decimal values to JSON numbers."""
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(item) for item in obj]
    return obj


def _error(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse(content={"error": message, **extra}, status_code=status_code)


async def _read_params(request: Request) -> dict[str, Any]:
    """Merge query parameters with a JSON object body (body wins).

    Raises:
        ValidationFailure: the body is present but not a JSON object.
    """
    params: dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        raw = await request.body()
        if raw.strip():
            try:
                body = await request.json()
            except ValueError as exc:
                raise ValidationFailure("Request body must be valid JSON") from exc
            if not isinstance(body, dict):
                raise ValidationFailure("Request body must be a JSON object")
            params.update(body)
    return params


def _required(params: dict[str, Any], *names: str) -> str:
    for name in names:
        value = params.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise ValidationFailure(f"Missing {names[0]} parameter")


def _price_payload(record: PriceRecord) -> dict[str, Any]:
    return {
        "instrumentId": record.instrument_id,
        "price": float(record.price),
        "change24h": float(record.change_24h),
        "volume24h": float(record.volume_24h),
        "marketCap": float(record.market_cap),
        "timestamp": int(record.observed_at * 1000),
        "source": record.source,
        "confidence": record.confidence.value,
    }


def _wallet_payload(snapshot: WalletSnapshot) -> dict[str, Any]:
    return {
        "address": snapshot.address,
        "balanceNative": float(snapshot.balance_native),
        "tokens": [
            {
                "mint": h.mint,
                "symbol": h.symbol,
                "balance": h.raw_amount,
                "decimals": h.decimals,
                "uiAmount": float(h.ui_amount),
            }
            for h in snapshot.token_holdings
        ],
    }


def _candle_payload(point: OHLCVPoint) -> dict[str, Any]:
    return {
        "time": point.time,
        "open": float(point.open),
        "high": float(point.high),
        "low": float(point.low),
        "close": float(point.close),
        "volume": float(point.volume),
    }


def _stats_payload(stats: DashboardStats) -> dict[str, Any]:
    return {
        "totalPnl": float(stats.total_pnl),
        "totalTrades": stats.total_trades,
        "tradesToday": stats.trades_today,
        "winRate": float(stats.win_rate),
        "activeWallets": stats.active_wallets,
        "openPositions": stats.open_positions,
    }


async def _quote_response(request: Request, instrument_id: str, interval: Any) -> JSONResponse:
    price_cache = request.app.state.price_cache

    if interval is not None:
        if interval not in CADENCES:
            return _error(f"Invalid interval: {interval!r}", 400, price=None)
        price_cache.track(instrument_id, interval)

    try:
        record = await price_cache.quote(instrument_id)
    except AllSourcesFailedError as exc:
        if exc.only_missing_data:
            log.info("price_unavailable", instrument_id=instrument_id)
            return JSONResponse(content={"error": "No price data available", "price": None})
        log.warning("price_all_sources_failed", instrument_id=instrument_id, reasons=exc.reasons)
        return _error(str(exc), 502, price=None)

    return JSONResponse(content=_price_payload(record))


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


@router.api_route("/price", methods=["GET", "POST"])
async def get_price(request: Request) -> JSONResponse:
    """Current price for one instrument; ``interval`` also schedules refreshes."""
    try:
        params = await _read_params(request)
        instrument_id = _required(params, "instrumentId", "mint")
    except ValidationFailure as exc:
        return _error(str(exc), 400, price=None)
    return await _quote_response(request, instrument_id, params.get("interval"))


@router.get("/sol-price")
async def get_sol_price(request: Request) -> JSONResponse:
    """Current price of the native token."""
    settings = request.app.state.settings
    return await _quote_response(request, settings.price.native_symbol, None)


@router.get("/price/{instrument_id}/history")
async def get_price_history(request: Request, instrument_id: str) -> JSONResponse:
    """Rolling history (oldest first) for an instrument."""
    points = request.app.state.price_cache.history(instrument_id)
    return JSONResponse(content={
        "instrumentId": instrument_id,
        "data": [
            {"price": float(p.price), "time": int(p.observed_at * 1000)} for p in points
        ],
    })


@router.delete("/price/{instrument_id}")
async def untrack_price(request: Request, instrument_id: str) -> JSONResponse:
    """Stop periodic refresh of an instrument and drop its cached history."""
    request.app.state.price_cache.untrack(instrument_id)
    return JSONResponse(content={"ok": True, "instrumentId": instrument_id})


@router.api_route("/token-prices", methods=["GET", "POST"])
async def get_token_prices(request: Request) -> JSONResponse:
    """Batch prices for a comma-joined id list; failed ids are omitted."""
    try:
        params = await _read_params(request)
        for name in ("ids", "mints"):
            if isinstance(params.get(name), list):
                params[name] = ",".join(str(i) for i in params[name])
        raw_ids = _required(params, "ids", "mints")
    except ValidationFailure as exc:
        return _error(str(exc), 400)

    ids = list(dict.fromkeys(i.strip() for i in raw_ids.split(",") if i.strip()))
    if not ids:
        return _error("Missing ids parameter", 400)

    price_cache = request.app.state.price_cache
    results = await asyncio.gather(
        *(price_cache.quote(i) for i in ids), return_exceptions=True
    )

    data: dict[str, dict[str, float]] = {}
    for instrument_id, result in zip(ids, results):
        if isinstance(result, PriceRecord):
            data[instrument_id] = {"price": float(result.price)}
        elif not isinstance(result, AllSourcesFailedError):
            log.warning("token_price_error", instrument_id=instrument_id, error=str(result))

    return JSONResponse(content={"data": data})


# ---------------------------------------------------------------------------
# Wallets and charts
# ---------------------------------------------------------------------------


@router.api_route("/wallet", methods=["GET", "POST"])
async def get_wallet(request: Request) -> JSONResponse:
    """Native balance plus non-empty token holdings for an address."""
    try:
        params = await _read_params(request)
        address = _required(params, "address")
    except ValidationFailure as exc:
        return _error(str(exc), 400)

    wallet_service = request.app.state.wallet_service
    # Portfolio views opt in to the periodic wallet refresh and snapshot cache
    if str(params.get("watch", "")).lower() in ("1", "true", "yes"):
        wallet_service.watch([address])

    try:
        snapshot = await wallet_service.snapshot(address)
    except AllSourcesFailedError as exc:
        log.warning("wallet_rpc_failed", address=address, reasons=exc.reasons)
        return _error(str(exc), 502)

    return JSONResponse(content=_wallet_payload(snapshot))




def _swap_payload(swap: ParsedSwap) -> dict[str, Any]:
    return {
        "signature": swap.signature,
        "blockTime": swap.block_time,
        "type": swap.trade_type,
        "tokenMint": swap.token_mint,
        "tokenSymbol": swap.token_symbol,
        "tokenAmount": float(swap.token_amount),
        "solAmount": float(swap.sol_amount),
        "platform": swap.platform,
    }


def _summary_payload(summary: SwapSummary) -> dict[str, Any]:
    return {
        "totalTrades": summary.total_trades,
        "totalBuys": summary.total_buys,
        "totalSells": summary.total_sells,
        "totalPnlSol": float(summary.total_pnl_sol),
        "winningTokens": summary.winning_tokens,
        "losingTokens": summary.losing_tokens,
        "winRate": float(summary.win_rate),
    }


def _limit(params: dict[str, Any], default: int) -> int:
    raw = params.get("limit")
    if raw is None or raw == "":
        return default
    try:
        limit = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationFailure(f"Invalid limit: {raw!r}") from exc
    if not 1 <= limit <= MAX_SCAN_LIMIT:
        raise ValidationFailure(f"limit must be between 1 and {MAX_SCAN_LIMIT}")
    return limit


@router.api_route("/wallet/transactions", methods=["GET", "POST"])
async def get_wallet_transactions(request: Request) -> JSONResponse:
    """Swaps found in an address's recent transactions plus a realized-PnL summary.

    With ``userId`` the swaps are also recorded as completed trades on that
    user's wallet row for the address, skipping signatures already stored.
    """
    try:
        params = await _read_params(request)
        address = _required(params, "address", "walletAddress")
        limit = _limit(params, request.app.state.settings.rpc.scan_default_limit)
    except ValidationFailure as exc:
        return _error(str(exc), 400, trades=[])

    try:
        scan = await request.app.state.wallet_scanner.scan(address, limit)
    except AllSourcesFailedError as exc:
        log.warning("wallet_scan_failed", address=address, reasons=exc.reasons)
        return _error(str(exc), 502, trades=[])

    content: dict[str, Any] = {
        "trades": [_swap_payload(s) for s in scan.swaps],
        "summary": _summary_payload(scan.summary),
        "failed": len(scan.failed_signatures),
    }

    user_id = params.get("userId")
    if isinstance(user_id, str) and user_id.strip():
        inserted = await import_swaps(request.app.state.store, user_id.strip(), address, scan.swaps)
        content["imported"] = len(inserted)

    return JSONResponse(content=content)


@router.api_route("/token-chart", methods=["GET", "POST"])
async def get_token_chart(request: Request) -> JSONResponse:
    """Approximate OHLCV candles; empty list when no liquidity data exists."""
    try:
        params = await _read_params(request)
        mint = _required(params, "mint")
    except ValidationFailure as exc:
        return _error(str(exc), 400, data=[])

    interval = params.get("interval") or request.app.state.settings.chart.default_interval
    candles = await request.app.state.chart_service.chart(mint, str(interval))
    return JSONResponse(content={"data": [_candle_payload(c) for c in candles]})


# ---------------------------------------------------------------------------
# Realtime sync
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/stats")
async def get_user_stats(request: Request, user_id: str) -> JSONResponse:
    """Dashboard aggregate, re-fetched whenever a watched table changed."""
    sync = await request.app.state.realtime.for_user(user_id)
    return JSONResponse(content=_stats_payload(await sync.stats()))


@router.get("/users/{user_id}/{table}")
async def get_user_collection(request: Request, user_id: str, table: str) -> JSONResponse:
    """Cached trades/positions/wallets for a user, newest first."""
    if table not in WATCHED_TABLES:
        return _error(f"Unknown collection: {table}", 404, data=[])
    sync = await request.app.state.realtime.for_user(user_id)
    return JSONResponse(content={"data": _jsonable(list(sync.collection(table)))})


@router.post("/realtime/events")
async def post_change_event(request: Request) -> JSONResponse:
    """Ingest one row-change payload from the upstream subscription transport."""
    try:
        params = await _read_params(request)
        event = ChangeEvent.from_payload(params)
        applied = await request.app.state.store.mirror(event)
    except (ValidationFailure, ValueError) as exc:
        return _error(str(exc), 400)

    # Stale replays are acknowledged but not applied
    return JSONResponse(
        content={"ok": True, "table": event.table, "id": event.row_key, "applied": applied}
    )
