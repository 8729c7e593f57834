"""Wallet snapshots: native balance plus SPL token holdings.

Balance and token accounts are fetched concurrently and both calls are
always attempted, so one failing endpoint chain does not hide whether the
other one works. Only watched wallets are cached; they are refreshed on
the slower portfolio cadence.
"""

import asyncio
from collections.abc import Iterable

from solwatch.logging import get_logger, log_context
from solwatch.models import WalletSnapshot
from solwatch.wallet.normalizer import normalize
from solwatch.wallet.rpc import SolanaRpcClient

logger = get_logger(__name__)


class WalletService:
    """Fetches and caches normalized wallet snapshots."""

    def __init__(
        self,
        rpc: SolanaRpcClient,
        token_program_id: str = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
    ) -> None:
        self._rpc = rpc
        self._token_program_id = token_program_id
        self._snapshots: dict[str, WalletSnapshot] = {}
        self._watched: set[str] = set()

    async def snapshot(self, address: str) -> WalletSnapshot:
        """Fetch a fresh snapshot for ``address``.

        Raises:
            AllSourcesFailedError: every RPC endpoint failed for either call.
        """
        # Child tasks copy the context, so RPC fallback logs carry the address
        with log_context(address=address):
            balance, accounts = await asyncio.gather(
                self._rpc.get_balance(address),
                self._rpc.get_token_accounts_by_owner(address, self._token_program_id),
                return_exceptions=True,
            )
        for result in (balance, accounts):
            if isinstance(result, BaseException):
                raise result

        snapshot = normalize(address, balance, accounts)  # type: ignore[arg-type]
        if address in self._watched:
            self._snapshots[address] = snapshot
        logger.debug(
            "wallet_snapshot",
            address=address,
            balance_native=str(snapshot.balance_native),
            tokens=len(snapshot.token_holdings),
        )
        return snapshot

    def cached(self, address: str) -> WalletSnapshot | None:
        """Last snapshot of a watched wallet."""
        return self._snapshots.get(address)

    def watch(self, addresses: Iterable[str]) -> None:
        self._watched.update(addresses)

    def unwatch(self, address: str) -> None:
        self._watched.discard(address)
        self._snapshots.pop(address, None)

    @property
    def watched(self) -> list[str]:
        return sorted(self._watched)

    async def refresh_watched(self) -> dict[str, str]:
        """Refresh every watched wallet; returns per-address errors."""
        addresses = self.watched
        results = await asyncio.gather(
            *(self.snapshot(a) for a in addresses), return_exceptions=True
        )
        errors = {
            address: str(result)
            for address, result in zip(addresses, results)
            if isinstance(result, Exception)
        }
        if errors:
            logger.info("wallet_refresh_partial_failure", failed=sorted(errors))
        return errors
