"""Wallet layer -- Solana RPC access, token account normalization and swap scanning."""

from solwatch.wallet.normalizer import normalize, normalize_token_accounts
from solwatch.wallet.rpc import SolanaRpcClient
from solwatch.wallet.scanner import WalletScanner, parse_swap, summarize
from solwatch.wallet.service import WalletService

__all__ = [
    "SolanaRpcClient",
    "WalletScanner",
    "WalletService",
    "normalize",
    "normalize_token_accounts",
    "parse_swap",
    "summarize",
]
