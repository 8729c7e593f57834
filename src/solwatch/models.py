"""Shared data models for solwatch.

All monetary values use Decimal. Never use float for prices, volumes or
balances; floats only appear at the JSON boundary in the HTTP API.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class Confidence(str, Enum):
    """How far a price can be trusted."""

    HIGH = "high"
    LOW = "low"  # derived/approximated (e.g. bonding-curve reserves)


@dataclass(frozen=True)
class PriceRecord:
    """A single normalized price observation from one source."""

    instrument_id: str
    price: Decimal
    change_24h: Decimal = Decimal("0")  # percent, may be negative
    volume_24h: Decimal = Decimal("0")
    market_cap: Decimal = Decimal("0")
    observed_at: float = field(default_factory=time.time)
    source: str = ""
    confidence: Confidence = Confidence.HIGH

    def __post_init__(self) -> None:
        for name in ("price", "volume_24h", "market_cap"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")


@dataclass(frozen=True)
class PricePoint:
    """One sample of a rolling price history."""

    price: Decimal
    observed_at: float


@dataclass(frozen=True)
class SourceResult:
    """Outcome of one adapter invocation: either a record or a failure reason.

    Use ``SourceResult.ok(...)`` / ``SourceResult.failed(...)``; a result
    carrying both (or neither) is rejected.
    """

    record: PriceRecord | None = None
    reason: str | None = None
    no_data: bool = False

    def __post_init__(self) -> None:
        if (self.record is None) == (self.reason is None):
            raise ValueError("SourceResult needs exactly one of record or reason")

    @classmethod
    def ok(cls, record: PriceRecord) -> "SourceResult":
        return cls(record=record)

    @classmethod
    def failed(cls, reason: str, no_data: bool = False) -> "SourceResult":
        return cls(reason=reason, no_data=no_data)

    @property
    def is_ok(self) -> bool:
        return self.record is not None


@dataclass(frozen=True)
class TokenHolding:
    """A non-empty SPL token balance in display units."""

    mint: str
    symbol: str
    raw_amount: int
    decimals: int
    ui_amount: Decimal


@dataclass(frozen=True)
class WalletSnapshot:
    """Native balance plus token holdings of one wallet address."""

    address: str
    balance_native: Decimal
    token_holdings: tuple[TokenHolding, ...] = ()
    observed_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ParsedSwap:
    """A buy or sell detected in one wallet transaction."""

    signature: str
    block_time: int  # Unix seconds, 0 when the node did not report one
    trade_type: str  # "buy" or "sell"
    token_mint: str
    token_symbol: str
    token_amount: Decimal
    sol_amount: Decimal
    platform: str  # jupiter | raydium | pumpfun


@dataclass(frozen=True)
class SwapSummary:
    """Realized PnL over a scan, per token: sells minus buys in SOL."""

    total_trades: int = 0
    total_buys: int = 0
    total_sells: int = 0
    total_pnl_sol: Decimal = Decimal("0")
    winning_tokens: int = 0
    losing_tokens: int = 0
    win_rate: Decimal = Decimal("0")  # percent of tokens with a completed round trip


@dataclass(frozen=True)
class WalletScan:
    """Swaps found in a wallet's recent transactions, newest first."""

    address: str
    swaps: tuple[ParsedSwap, ...] = ()
    summary: SwapSummary = field(default_factory=SwapSummary)
    failed_signatures: tuple[str, ...] = ()  # every endpoint failed for these


@dataclass(frozen=True)
class OHLCVPoint:
    """One candle. ``time`` is Unix milliseconds."""

    time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal


@dataclass
class RefreshReport:
    """Per-instrument outcome of one Price Cache refresh call."""

    updated: dict[str, PriceRecord] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)  # refresh already in flight
    discarded: list[str] = field(default_factory=list)  # older than current value
    untracked: list[str] = field(default_factory=list)  # resolved but not stored


@dataclass
class DashboardStats:
    """Derived per-user aggregate over trades, wallets and positions."""

    total_pnl: Decimal = Decimal("0")
    total_trades: int = 0
    trades_today: int = 0
    win_rate: Decimal = Decimal("0")  # percent
    active_wallets: int = 0
    open_positions: int = 0
