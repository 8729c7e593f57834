"""Tests for swap detection and the wallet transaction scanner."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from solwatch.exceptions import AllSourcesFailedError, TransportFailure
from solwatch.models import ParsedSwap
from solwatch.realtime.feed import ChangeFeed
from solwatch.realtime.store import RowStore
from solwatch.wallet.scanner import (
    WRAPPED_SOL_MINT,
    WalletScanner,
    detect_platform,
    import_swaps,
    parse_swap,
    summarize,
)

WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"
JUPITER = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
PUMPFUN = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
SYSTEM = "11111111111111111111111111111111"


def token_balance(raw: int, mint: str = MINT, owner: str = WALLET, decimals: int = 6) -> dict:
    return {
        "accountIndex": 2,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(raw), "decimals": decimals},
    }


def swap_tx(
    signature: str = "sig1",
    *,
    sol: tuple[int, int] = (2_000_000_000, 1_500_000_000),
    tokens: tuple[list, list] = ([], [token_balance(1_000_000_000)]),
    program: str = JUPITER,
    block_time: int = 1_700_000_000,
    err: object = None,
    logs: list[str] | None = None,
) -> dict:
    """jsonParsed getTransaction result; defaults describe a 0.5 SOL buy of 1000 tokens."""
    return {
        "blockTime": block_time,
        "transaction": {
            "signatures": [signature],
            "message": {
                "accountKeys": [
                    {"pubkey": WALLET, "signer": True, "writable": True},
                    {"pubkey": program, "signer": False, "writable": False},
                ]
            },
        },
        "meta": {
            "err": err,
            "preBalances": [sol[0], 1],
            "postBalances": [sol[1], 1],
            "preTokenBalances": tokens[0],
            "postTokenBalances": tokens[1],
            "logMessages": logs or [],
        },
    }


def make_swap(trade_type: str, mint: str, sol_amount: str, block_time: int = 0) -> ParsedSwap:
    return ParsedSwap(
        signature=f"{trade_type}-{mint}-{sol_amount}",
        block_time=block_time,
        trade_type=trade_type,
        token_mint=mint,
        token_symbol=mint[:4],
        token_amount=Decimal("100"),
        sol_amount=Decimal(sol_amount),
        platform="jupiter",
    )


def scripted_rpc(signatures: list[str], answers: dict) -> AsyncMock:
    """RPC stub: ``answers`` maps (signature, commitment) or signature to a result.

    An exception value is raised instead of returned.
    """

    async def call(method: str, params: list):
        if method == "getSignaturesForAddress":
            return [{"signature": s, "slot": 1} for s in signatures]
        signature, options = params
        answer = answers.get((signature, options["commitment"]), answers.get(signature))
        if isinstance(answer, Exception):
            raise answer
        return answer

    rpc = AsyncMock()
    rpc.call = AsyncMock(side_effect=call)
    return rpc


def commitments_requested(rpc: AsyncMock, signature: str) -> list[str]:
    return [
        c.args[1][1]["commitment"]
        for c in rpc.call.await_args_list
        if c.args[0] == "getTransaction" and c.args[1][0] == signature
    ]


# ---------------------------------------------------------------------------
# Swap parsing
# ---------------------------------------------------------------------------


class TestParseSwap:
    def test_buy(self) -> None:
        swap = parse_swap(swap_tx(), WALLET)

        assert swap is not None
        assert swap.trade_type == "buy"
        assert swap.token_mint == MINT
        assert swap.token_amount == Decimal("1000")
        assert swap.sol_amount == Decimal("0.5")
        assert swap.platform == "jupiter"
        assert swap.signature == "sig1"
        assert swap.block_time == 1_700_000_000

    def test_sell(self) -> None:
        tx = swap_tx(
            sol=(1_000_000_000, 1_750_000_000),
            tokens=([token_balance(400_000_000)], [token_balance(0)]),
            program=PUMPFUN,
        )
        swap = parse_swap(tx, WALLET)

        assert swap is not None
        assert swap.trade_type == "sell"
        assert swap.token_amount == Decimal("400")
        assert swap.sol_amount == Decimal("0.75")
        assert swap.platform == "pumpfun"

    def test_failed_transaction_is_ignored(self) -> None:
        assert parse_swap(swap_tx(err={"InstructionError": [0, "Custom"]}), WALLET) is None

    def test_unknown_program_is_ignored(self) -> None:
        assert parse_swap(swap_tx(program=SYSTEM), WALLET) is None

    def test_log_markers_identify_platform(self) -> None:
        tx = swap_tx(program=SYSTEM, logs=["Program log: Raydium swap_base_in"])
        assert detect_platform(tx) == "raydium"
        assert parse_swap(tx, WALLET).platform == "raydium"

    def test_dust_change_is_ignored(self) -> None:
        tx = swap_tx(tokens=([], [token_balance(50)]))
        assert parse_swap(tx, WALLET) is None

    def test_wrapped_sol_and_foreign_accounts_are_skipped(self) -> None:
        tx = swap_tx(tokens=(
            [token_balance(0, mint=WRAPPED_SOL_MINT, decimals=9)],
            [
                token_balance(500_000_000, mint=WRAPPED_SOL_MINT, decimals=9),
                token_balance(9_000_000, owner="SomeoneElse"),
            ],
        ))
        assert parse_swap(tx, WALLET) is None

    def test_wallet_not_in_transaction(self) -> None:
        assert parse_swap(swap_tx(), "OtherWallet") is None

    @pytest.mark.parametrize("tx", [None, {}, {"meta": None}, {"meta": {"err": None}}])
    def test_malformed_transactions(self, tx) -> None:
        assert parse_swap(tx, WALLET) is None


class TestSummarize:
    def test_realized_pnl_counts_sold_tokens_only(self) -> None:
        summary = summarize([
            make_swap("buy", "MintA", "1"),
            make_swap("sell", "MintA", "1.5"),
            make_swap("buy", "MintB", "1"),
            make_swap("sell", "MintB", "0.4"),
            make_swap("buy", "MintC", "2"),
        ])

        assert summary.total_trades == 5
        assert summary.total_buys == 3
        assert summary.total_sells == 2
        assert summary.total_pnl_sol == Decimal("-0.1")
        assert summary.winning_tokens == 1
        assert summary.losing_tokens == 1
        assert summary.win_rate == Decimal("50")

    def test_empty(self) -> None:
        summary = summarize([])
        assert summary.total_trades == 0
        assert summary.win_rate == Decimal("0")


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class TestWalletScanner:
    @pytest.mark.asyncio
    async def test_missing_transaction_retried_at_next_commitment(self) -> None:
        rpc = scripted_rpc([], {("sig1", "finalized"): None, ("sig1", "confirmed"): swap_tx()})
        scanner = WalletScanner(rpc)

        tx = await scanner.transaction("sig1")

        assert tx["transaction"]["signatures"] == ["sig1"]
        assert commitments_requested(rpc, "sig1") == ["finalized", "confirmed"]

    @pytest.mark.asyncio
    async def test_endpoint_exhaustion_retried_at_next_commitment(self) -> None:
        down = AllSourcesFailedError("rpc:getTransaction", [TransportFailure("rpc-1", "timeout")])
        rpc = scripted_rpc([], {("sig1", "finalized"): down, ("sig1", "confirmed"): swap_tx()})

        tx = await WalletScanner(rpc).transaction("sig1")

        assert tx["meta"]["err"] is None

    @pytest.mark.asyncio
    async def test_scan_collects_swaps_newest_first(self) -> None:
        answers = {
            "old": swap_tx("old", block_time=100),
            "transfer": swap_tx("transfer", program=SYSTEM, block_time=200),
            "new": swap_tx("new", block_time=300),
            "gone": None,
        }
        rpc = scripted_rpc(["old", "transfer", "gone", "new"], answers)
        scanner = WalletScanner(rpc, batch_size=2, batch_delay=0)

        scan = await scanner.scan(WALLET, limit=4)

        assert [s.signature for s in scan.swaps] == ["new", "old"]
        assert scan.failed_signatures == ("gone",)
        assert scan.summary.total_buys == 2
        rpc.call.assert_any_await("getSignaturesForAddress", [WALLET, {"limit": 4}])

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self) -> None:
        rpc = scripted_rpc(["sig1"], {"sig1": RuntimeError("decoder bug")})

        with pytest.raises(RuntimeError, match="decoder bug"):
            await WalletScanner(rpc, batch_delay=0).scan(WALLET)

    @pytest.mark.asyncio
    async def test_signature_list_failure_raises(self) -> None:
        rpc = AsyncMock()
        rpc.call = AsyncMock(side_effect=AllSourcesFailedError("rpc:getSignaturesForAddress", []))

        with pytest.raises(AllSourcesFailedError):
            await WalletScanner(rpc).scan(WALLET)

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            WalletScanner(AsyncMock(), batch_size=0)


# ---------------------------------------------------------------------------
# Trade import
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def store(tmp_path):
    async with RowStore(str(tmp_path / "rows.db"), feed=ChangeFeed()) as row_store:
        yield row_store


class TestImportSwaps:
    @pytest.mark.asyncio
    async def test_new_swaps_become_completed_trades(self, store: RowStore) -> None:
        wallet = await store.insert("wallets", {"user_id": "u1", "address": WALLET})
        swaps = [make_swap("buy", MINT, "0.5", block_time=1_700_000_000)]

        inserted = await import_swaps(store, "u1", WALLET, swaps)
        again = await import_swaps(store, "u1", WALLET, swaps)

        assert len(inserted) == 1
        assert again == []
        trade = inserted[0]
        assert trade["wallet_id"] == wallet["id"]
        assert trade["status"] == "completed"
        assert trade["amount_sol"] == Decimal("0.5")
        assert trade["created_at"].startswith("2023-11-14T22:13:20")

    @pytest.mark.asyncio
    async def test_unknown_wallet_imports_nothing(self, store: RowStore) -> None:
        swaps = [make_swap("buy", MINT, "0.5")]

        assert await import_swaps(store, "u1", WALLET, swaps) == []
        assert await store.select("trades", "u1") == []
