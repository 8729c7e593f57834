"""Raw on-chain token accounts to display-unit wallet snapshots."""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from solwatch.logging import get_logger
from solwatch.models import TokenHolding, WalletSnapshot

logger = get_logger(__name__)

LAMPORTS_PER_SOL = Decimal(10) ** 9
SYMBOL_PLACEHOLDER_LENGTH = 4


def placeholder_symbol(mint: str) -> str:
    """Symbol stand-in derived from the mint's leading characters."""
    return mint[:SYMBOL_PLACEHOLDER_LENGTH].upper()


def ui_amount(raw_amount: int, decimals: int) -> Decimal:
    """Scale an integer amount in minor units by ``10**decimals``."""
    return Decimal(raw_amount).scaleb(-decimals)


def _parse_account(account: Mapping[str, Any]) -> tuple[str, int, int] | None:
    """Extract (mint, raw_amount, decimals) from a jsonParsed token account."""
    try:
        info = account["account"]["data"]["parsed"]["info"]
        token_amount = info["tokenAmount"]
        mint = str(info["mint"])
        raw_amount = int(token_amount["amount"])
        decimals = int(token_amount["decimals"])
    except (KeyError, TypeError, ValueError):
        logger.debug("token_account_unparseable", pubkey=account.get("pubkey"))
        return None
    if decimals < 0:
        return None
    return mint, raw_amount, decimals


def normalize_token_accounts(
    raw_accounts: Iterable[Mapping[str, Any]],
    symbols: Mapping[str, str] | None = None,
) -> list[TokenHolding]:
    """Convert raw accounts to holdings, dropping anything not strictly positive."""
    symbols = symbols or {}
    holdings: list[TokenHolding] = []
    for account in raw_accounts:
        parsed = _parse_account(account)
        if parsed is None:
            continue
        mint, raw_amount, decimals = parsed
        amount = ui_amount(raw_amount, decimals)
        if amount <= 0:
            continue
        holdings.append(
            TokenHolding(
                mint=mint,
                symbol=symbols.get(mint) or placeholder_symbol(mint),
                raw_amount=raw_amount,
                decimals=decimals,
                ui_amount=amount,
            )
        )
    return holdings


def normalize(
    address: str,
    lamports: int,
    raw_accounts: Iterable[Mapping[str, Any]],
    symbols: Mapping[str, str] | None = None,
) -> WalletSnapshot:
    """Build a WalletSnapshot from a lamport balance and raw token accounts."""
    return WalletSnapshot(
        address=address,
        balance_native=Decimal(lamports) / LAMPORTS_PER_SOL,
        token_holdings=tuple(normalize_token_accounts(raw_accounts, symbols)),
    )
