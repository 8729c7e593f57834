"""Solana JSON-RPC client with ordered endpoint fallback.

Public RPC endpoints are rate-limited and flaky. Each logical call walks the
configured endpoint list in order and returns the first clean answer; a
JSON-RPC ``error`` member counts as a failed endpoint, the same as a
connection error or a non-2xx status.
"""

from collections.abc import Sequence
from typing import Any

from solwatch.exceptions import TransportFailure
from solwatch.fallback import first_success
from solwatch.http import JsonHttpClient
from solwatch.logging import get_logger

logger = get_logger(__name__)


class SolanaRpcClient:
    """Minimal JSON-RPC caller over a prioritized endpoint list."""

    def __init__(self, http: JsonHttpClient, endpoints: Sequence[str]) -> None:
        if not endpoints:
            raise ValueError("At least one RPC endpoint is required")
        self._http = http
        self._endpoints = list(endpoints)
        self._request_id = 0

    @property
    def endpoints(self) -> list[str]:
        return list(self._endpoints)

    async def call(self, method: str, params: list[Any]) -> Any:
        """Invoke ``method`` and return its ``result``.

        Raises:
            AllSourcesFailedError: every endpoint failed for this call.
        """
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        async def attempt(endpoint: str) -> Any:
            data = await self._http.post_json(endpoint, payload)
            if not isinstance(data, dict):
                raise TransportFailure(endpoint, "malformed JSON-RPC response")
            if data.get("error"):
                raise TransportFailure(endpoint, f"rpc error: {data['error']}")
            if "result" not in data:
                raise TransportFailure(endpoint, "missing result")
            return data["result"]

        outcome = await first_success(f"rpc:{method}", self._endpoints, attempt)
        return outcome.value

    async def get_balance(self, address: str) -> int:
        """Native balance in lamports."""
        result = await self.call("getBalance", [address])
        value = result.get("value") if isinstance(result, dict) else result
        return int(value or 0)

    async def get_token_accounts_by_owner(
        self, owner: str, program_id: str
    ) -> list[dict[str, Any]]:
        """jsonParsed token accounts owned by ``owner`` under ``program_id``."""
        result = await self.call(
            "getTokenAccountsByOwner",
            [owner, {"programId": program_id}, {"encoding": "jsonParsed"}],
        )
        if not isinstance(result, dict):
            return []
        return list(result.get("value") or [])
