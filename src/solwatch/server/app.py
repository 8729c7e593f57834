"""FastAPI application factory with permissive CORS and JSON error bodies."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from solwatch.server.routes import api, ws
from solwatch.server.routes.ws import PriceHub

log = structlog.get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
}


async def _cors_middleware(request: Request, call_next: Any) -> Response:
    """Answer preflight requests and stamp CORS headers on every response.

    Unhandled route errors become a JSON 500 here so the body and headers
    stay consistent with every other response.
    """
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)

    try:
        response = await call_next(request)
    except Exception as exc:
        log.error("unhandled_request_error", path=request.url.path, exc_info=True)
        response = JSONResponse(
            content={"error": f"Internal error: {type(exc).__name__}"}, status_code=500
        )

    response.headers.update(CORS_HEADERS)
    return response


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        Configured FastAPI application with the WebSocket hub and routes.
        Services (price_cache, wallet_service, chart_service, realtime, store,
        settings) are attached to ``app.state`` by the caller.
    """
    app = FastAPI(
        title="Solwatch Price API",
        lifespan=lifespan,
    )

    app.middleware("http")(_cors_middleware)

    # Store WebSocket hub on app state for access from route handlers
    app.state.hub = PriceHub()

    # Register routers
    app.include_router(api.router, prefix="/api")
    app.include_router(ws.router)

    return app
