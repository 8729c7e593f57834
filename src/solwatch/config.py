"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

Cadence = Literal["fast", "medium", "slow"]


class PriceSettings(BaseSettings):
    """Price source chains, timeouts and refresh cadences.

    Chain order is static: the first entry is the most trusted/cheapest
    source, the last one the least accurate. All fields configurable via
    the PRICE_ environment variable prefix (lists as JSON).
    """

    model_config = SettingsConfigDict(env_prefix="PRICE_")

    native_symbol: str = "SOL"
    native_chain: list[str] = ["coingecko", "binance", "jupiter"]
    token_chain: list[str] = ["jupiter", "dexscreener", "pumpfun"]

    source_timeout_seconds: float = 8.0
    max_concurrency: int = 8
    history_capacity: int = 30  # samples kept per instrument

    fast_interval: float = 15.0  # volatile token prices
    medium_interval: float = 30.0
    slow_interval: float = 60.0

    # Used to quote bonding-curve prices when no live SOL price is cached
    bonding_curve_reference_rate: Decimal = Decimal("150")

    coingecko_api_key: SecretStr = SecretStr("")
    exchange_quote: str = "USDT"


class RpcSettings(BaseSettings):
    """Solana JSON-RPC endpoints (tried in order) and wallet refresh."""

    model_config = SettingsConfigDict(env_prefix="RPC_")

    endpoints: list[str] = [
        "https://api.mainnet-beta.solana.com",
        "https://solana-mainnet.g.alchemy.com/v2/demo",
        "https://rpc.ankr.com/solana",
    ]
    timeout_seconds: float = 10.0
    token_program_id: str = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
    wallet_refresh_interval: float = 30.0
    scan_batch_size: int = 10
    scan_batch_delay: float = 0.1
    scan_default_limit: int = 100


class ChartSettings(BaseSettings):
    """Approximate OHLCV chart generation."""

    model_config = SettingsConfigDict(env_prefix="CHART_")

    points: int = 50
    default_interval: str = "15m"


class StoreSettings(BaseSettings):
    """Row store (trades, positions, wallets) location."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    db_path: str = "data/solwatch.db"
    trades_limit: int = 50


class ServerSettings(BaseSettings):
    """HTTP API server configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 8080
    broadcast_prices: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    price: PriceSettings = PriceSettings()
    rpc: RpcSettings = RpcSettings()
    chart: ChartSettings = ChartSettings()
    store: StoreSettings = StoreSettings()
    server: ServerSettings = ServerSettings()

    def cadence_seconds(self, cadence: Cadence) -> float:
        """Return the refresh period for a price cadence."""
        return {
            "fast": self.price.fast_interval,
            "medium": self.price.medium_interval,
            "slow": self.price.slow_interval,
        }[cadence]
