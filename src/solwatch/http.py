"""Thin async JSON-over-HTTP client shared by price sources and the RPC client.

Wraps a single aiohttp.ClientSession. Every transport-level problem
(connection error, timeout, non-2xx status, non-JSON body) is converted
into TransportFailure so callers only deal with one failure type.
"""

import asyncio
from typing import Any

import aiohttp

from solwatch.exceptions import TransportFailure, UpstreamHTTPError
from solwatch.logging import get_logger

logger = get_logger(__name__)

_DEFAULT_HEADERS = {"Accept": "application/json", "User-Agent": "solwatch/0.1"}


class JsonHttpClient:
    """Shared aiohttp session with per-request timeouts.

    Usage:
        async with JsonHttpClient(timeout_seconds=8.0) as http:
            data = await http.get_json("https://...", params={"ids": "solana"})
    """

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout, headers=_DEFAULT_HEADERS
            )

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "JsonHttpClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    async def get_json(self, url: str, params: dict[str, str] | None = None) -> Any:
        """GET ``url`` and decode the JSON body."""
        return await self._request("GET", url, params=params)

    async def post_json(self, url: str, payload: Any) -> Any:
        """POST ``payload`` as JSON to ``url`` and decode the JSON body."""
        return await self._request("POST", url, json=payload)

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        await self.start()
        assert self._session is not None
        try:
            async with self._session.request(method, url, **kwargs) as resp:
                if resp.status >= 400:
                    raise UpstreamHTTPError(url, resp.status)
                return await resp.json(content_type=None)
        except TransportFailure:
            raise
        except asyncio.TimeoutError as exc:
            raise TransportFailure(url, "timeout") from exc
        except (aiohttp.ClientError, ValueError) as exc:
            raise TransportFailure(url, f"{type(exc).__name__}: {exc}") from exc
