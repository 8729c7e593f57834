"""WebSocket hub broadcasting JSON price snapshots to connected clients."""

from __future__ import annotations

import json
import time
from typing import Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from solwatch.market_data.price_cache import PriceCache
from solwatch.models import RefreshReport

log = structlog.get_logger(__name__)

router = APIRouter()


class PriceHub:
    """Manages WebSocket connections and broadcasts JSON messages to all clients."""

    def __init__(self) -> None:
        self.connections: list[WebSocket] = []

    async def connect(self, ws: WebSocket) -> None:
        """Accept a WebSocket connection and add it to the active connections list."""
        await ws.accept()
        self.connections.append(ws)
        log.info("price_ws_connected", total=len(self.connections))

    def disconnect(self, ws: WebSocket) -> None:
        """Remove a WebSocket connection from the active connections list."""
        if ws in self.connections:
            self.connections.remove(ws)
        log.info("price_ws_disconnected", total=len(self.connections))

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send a JSON message to all connected clients, removing broken connections."""
        text = json.dumps(message)
        for ws in self.connections.copy():
            try:
                await ws.send_text(text)
            except Exception:
                self.connections.remove(ws)
                log.warning("price_ws_broadcast_error", remaining=len(self.connections))


def price_snapshot_message(
    price_cache: PriceCache, cadence: str, report: RefreshReport
) -> dict[str, Any]:
    """Build the ``prices`` message pushed after a cadence tick."""
    return {
        "type": "prices",
        "cadence": cadence,
        "timestamp": int(time.time() * 1000),
        "prices": {
            instrument_id: {
                "price": float(record.price),
                "change24h": float(record.change_24h),
                "source": record.source,
            }
            for instrument_id, record in price_cache.snapshot().items()
        },
        "errors": report.errors,
    }


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for realtime price updates."""
    ws_hub: PriceHub = websocket.app.state.hub
    await ws_hub.connect(websocket)
    try:
        price_cache: PriceCache = websocket.app.state.price_cache
        await websocket.send_text(json.dumps(
            price_snapshot_message(price_cache, "initial", RefreshReport())
        ))
        while True:
            # Consume messages to keep connection alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        ws_hub.disconnect(websocket)
