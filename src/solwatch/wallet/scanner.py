"""Wallet transaction scanner: recent swaps detected from parsed transactions.

Signatures come from ``getSignaturesForAddress``; each transaction is
fetched with ``getTransaction`` (jsonParsed) and classified as a buy or a
sell from the wallet's native and token balance deltas. Every RPC call
walks the endpoint list, and a transaction the node cannot return at one
commitment level is retried at the next through the same ordered-fallback
combinator.
"""

import asyncio
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from solwatch.exceptions import AdapterFailure, AllSourcesFailedError
from solwatch.fallback import first_success
from solwatch.logging import get_logger, log_context
from solwatch.models import ParsedSwap, SwapSummary, WalletScan
from solwatch.realtime.events import Row
from solwatch.realtime.store import RowStore
from solwatch.wallet.normalizer import LAMPORTS_PER_SOL, placeholder_symbol, ui_amount
from solwatch.wallet.rpc import SolanaRpcClient

logger = get_logger(__name__)

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

DEX_PROGRAMS: dict[str, str] = {
    "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4": "jupiter",
    "JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB": "jupiter",
    "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8": "raydium",
    "CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C": "raydium",
    "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P": "pumpfun",
}

# Checked in order against program log lines when no known program is listed
LOG_MARKERS: tuple[tuple[str, str], ...] = (
    ("JUP", "jupiter"),
    ("Raydium", "raydium"),
    ("675kPX", "raydium"),
    ("pump", "pumpfun"),
    ("6EF8", "pumpfun"),
)

MIN_TOKEN_CHANGE = Decimal("0.0001")
COMMITMENTS: tuple[str, ...] = ("finalized", "confirmed")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _account_keys(tx: Mapping[str, Any]) -> list[str]:
    message = (tx.get("transaction") or {}).get("message") or {}
    keys = []
    for key in message.get("accountKeys") or []:
        keys.append(str(key.get("pubkey") if isinstance(key, Mapping) else key))
    return keys


def detect_platform(tx: Mapping[str, Any]) -> str:
    """Name the swap venue from invoked programs, then from log markers."""
    keys = set(_account_keys(tx))
    for program_id, platform in DEX_PROGRAMS.items():
        if program_id in keys:
            return platform

    for line in (tx.get("meta") or {}).get("logMessages") or []:
        for marker, platform in LOG_MARKERS:
            if marker in line:
                return platform
    return "unknown"


def _balance_amount(balance: Mapping[str, Any]) -> Decimal:
    token_amount = balance.get("uiTokenAmount") or {}
    try:
        return ui_amount(int(token_amount["amount"]), int(token_amount["decimals"]))
    except (KeyError, TypeError, ValueError):
        pass
    try:
        return Decimal(str(token_amount.get("uiAmountString") or "0"))
    except InvalidOperation:
        return Decimal("0")


def token_deltas(meta: Mapping[str, Any], owner: str) -> dict[str, Decimal]:
    """Per-mint change of ``owner``'s token balances, in first-seen mint order."""
    deltas: dict[str, Decimal] = {}
    for sign, balances in ((-1, meta.get("preTokenBalances")), (1, meta.get("postTokenBalances"))):
        for balance in balances or []:
            if balance.get("owner") != owner or not balance.get("mint"):
                continue
            mint = str(balance["mint"])
            deltas[mint] = deltas.get(mint, Decimal("0")) + sign * _balance_amount(balance)
    return deltas


def parse_swap(tx: Any, wallet_address: str) -> ParsedSwap | None:
    """Classify one jsonParsed transaction, or return None if it is not a swap.

    A buy spends SOL and receives a token; a sell does the opposite. Failed
    transactions, unknown venues and changes below MIN_TOKEN_CHANGE are
    ignored.
    """
    if not isinstance(tx, Mapping):
        return None
    meta = tx.get("meta")
    if not isinstance(meta, Mapping) or meta.get("err") is not None:
        return None

    platform = detect_platform(tx)
    if platform == "unknown":
        return None

    keys = _account_keys(tx)
    if wallet_address not in keys:
        return None
    index = keys.index(wallet_address)
    try:
        pre_lamports = int((meta.get("preBalances") or [])[index])
        post_lamports = int((meta.get("postBalances") or [])[index])
    except (IndexError, TypeError, ValueError):
        return None
    sol_change = Decimal(post_lamports - pre_lamports) / LAMPORTS_PER_SOL

    mint, change = None, Decimal("0")
    for candidate, delta in token_deltas(meta, wallet_address).items():
        if candidate != WRAPPED_SOL_MINT and delta != 0:
            mint, change = candidate, delta
            break
    if mint is None or abs(change) < MIN_TOKEN_CHANGE:
        return None

    if change > 0 and sol_change < 0:
        trade_type = "buy"
    elif change < 0 and sol_change > 0:
        trade_type = "sell"
    else:
        return None

    signatures = (tx.get("transaction") or {}).get("signatures") or [""]
    return ParsedSwap(
        signature=str(signatures[0]),
        block_time=int(tx.get("blockTime") or 0),
        trade_type=trade_type,
        token_mint=mint,
        token_symbol=placeholder_symbol(mint),
        token_amount=abs(change),
        sol_amount=abs(sol_change),
        platform=platform,
    )


def summarize(swaps: Iterable[ParsedSwap]) -> SwapSummary:
    """Realized PnL per token: SOL received from sells minus SOL spent on buys.

    Tokens never sold have no realized result and count towards neither
    winners nor losers.
    """
    swaps = list(swaps)
    spent: dict[str, Decimal] = {}
    received: dict[str, Decimal] = {}
    sold: set[str] = set()
    for swap in swaps:
        if swap.trade_type == "buy":
            spent[swap.token_mint] = spent.get(swap.token_mint, Decimal("0")) + swap.sol_amount
        else:
            received[swap.token_mint] = received.get(swap.token_mint, Decimal("0")) + swap.sol_amount
            sold.add(swap.token_mint)

    total_pnl = Decimal("0")
    winning = losing = 0
    for mint in sold:
        pnl = received.get(mint, Decimal("0")) - spent.get(mint, Decimal("0"))
        total_pnl += pnl
        if pnl > 0:
            winning += 1
        elif pnl < 0:
            losing += 1

    completed = winning + losing
    buys = sum(1 for s in swaps if s.trade_type == "buy")
    return SwapSummary(
        total_trades=len(swaps),
        total_buys=buys,
        total_sells=len(swaps) - buys,
        total_pnl_sol=total_pnl,
        winning_tokens=winning,
        losing_tokens=losing,
        win_rate=Decimal(winning * 100) / completed if completed else Decimal("0"),
    )


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class WalletScanner:
    """Fetches a wallet's recent transactions and extracts swaps.

    Args:
        rpc: JSON-RPC client with endpoint fallback.
        batch_size: Transactions fetched concurrently per batch.
        batch_delay: Seconds to pause between batches (public RPC rate limits).
        commitments: Commitment levels tried in order for each transaction.
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        batch_size: int = 10,
        batch_delay: float = 0.1,
        commitments: Sequence[str] = COMMITMENTS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._rpc = rpc
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._commitments = list(commitments)

    async def signatures(self, address: str, limit: int = 100) -> list[str]:
        """Newest-first transaction signatures for ``address``."""
        result = await self._rpc.call("getSignaturesForAddress", [address, {"limit": limit}])
        return [
            str(entry["signature"])
            for entry in result or []
            if isinstance(entry, Mapping) and entry.get("signature")
        ]

    async def transaction(self, signature: str) -> Mapping[str, Any]:
        """jsonParsed transaction, trying each commitment level in order.

        Raises:
            AllSourcesFailedError: no endpoint returned it at any level.
        """

        async def attempt(commitment: str) -> Mapping[str, Any]:
            try:
                result = await self._rpc.call(
                    "getTransaction",
                    [
                        signature,
                        {
                            "encoding": "jsonParsed",
                            "maxSupportedTransactionVersion": 0,
                            "commitment": commitment,
                        },
                    ],
                )
            except AllSourcesFailedError as exc:
                raise AdapterFailure(commitment, str(exc)) from exc
            if not isinstance(result, Mapping):
                raise AdapterFailure(commitment, "transaction not available", no_data=True)
            return result

        outcome = await first_success(f"tx:{signature[:12]}", self._commitments, attempt)
        return outcome.value

    async def scan(self, address: str, limit: int = 100) -> WalletScan:
        """Swaps among the last ``limit`` transactions of ``address``.

        Transactions that cannot be fetched are reported in
        ``failed_signatures`` instead of failing the scan.

        Raises:
            AllSourcesFailedError: the signature list itself is unavailable.
        """
        with log_context(address=address):
            signatures = await self.signatures(address, limit)
            swaps: list[ParsedSwap] = []
            failed: list[str] = []

            for start in range(0, len(signatures), self._batch_size):
                batch = signatures[start:start + self._batch_size]
                results = await asyncio.gather(
                    *(self.transaction(s) for s in batch), return_exceptions=True
                )
                for signature, result in zip(batch, results):
                    if isinstance(result, AllSourcesFailedError):
                        failed.append(signature)
                        continue
                    if isinstance(result, BaseException):
                        raise result
                    swap = parse_swap(result, address)
                    if swap is not None:
                        swaps.append(swap)

                if start + self._batch_size < len(signatures) and self._batch_delay:
                    await asyncio.sleep(self._batch_delay)

            swaps.sort(key=lambda s: s.block_time, reverse=True)
            logger.info(
                "wallet_scanned",
                signatures=len(signatures),
                swaps=len(swaps),
                failed=len(failed),
            )
        return WalletScan(
            address=address,
            swaps=tuple(swaps),
            summary=summarize(swaps),
            failed_signatures=tuple(failed),
        )


async def import_swaps(
    store: RowStore, user_id: str, address: str, swaps: Iterable[ParsedSwap]
) -> list[Row]:
    """Insert swaps not yet recorded for the user's wallet as completed trades.

    Returns the inserted rows; nothing is inserted when the user does not
    own a wallet row for ``address``.
    """
    wallets = await store.select("wallets", user_id, filters={"address": address}, limit=1)
    if not wallets:
        logger.info("swap_import_unknown_wallet", user_id=user_id, address=address)
        return []
    wallet_id = wallets[0]["id"]

    existing = await store.select("trades", user_id, filters={"wallet_id": wallet_id})
    seen = {row.get("tx_signature") for row in existing}

    inserted: list[Row] = []
    for swap in swaps:
        if not swap.signature or swap.signature in seen:
            continue
        seen.add(swap.signature)
        row: Row = {
            "user_id": user_id,
            "wallet_id": wallet_id,
            "token_mint": swap.token_mint,
            "token_symbol": swap.token_symbol,
            "trade_type": swap.trade_type,
            "amount_token": swap.token_amount,
            "amount_sol": swap.sol_amount,
            "tx_signature": swap.signature,
            "status": "completed",
        }
        if swap.block_time:
            row["created_at"] = datetime.fromtimestamp(swap.block_time, timezone.utc).isoformat()
        inserted.append(await store.insert("trades", row))

    logger.info("swaps_imported", user_id=user_id, wallet_id=wallet_id, inserted=len(inserted))
    return inserted
