"""Dashboard aggregate computed from the row store.

Aggregates are always recomputed from the store rather than patched from
individual change events.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

from solwatch.models import DashboardStats
from solwatch.realtime.store import RowStore


async def compute_dashboard_stats(
    store: RowStore, user_id: str, today: date | None = None
) -> DashboardStats:
    """Total PnL, trade counts, win rate, active wallets and open positions."""
    today = today or datetime.now(timezone.utc).date()
    today_prefix = today.isoformat()

    trades = await store.select("trades", user_id)
    pnls = [t.get("pnl_sol") or Decimal("0") for t in trades]
    winning = sum(1 for pnl in pnls if pnl > 0)

    win_rate = Decimal("0")
    if trades:
        win_rate = Decimal(winning) / Decimal(len(trades)) * 100

    return DashboardStats(
        total_pnl=sum(pnls, Decimal("0")),
        total_trades=len(trades),
        trades_today=sum(1 for t in trades if str(t["created_at"]).startswith(today_prefix)),
        win_rate=win_rate,
        active_wallets=await store.count("wallets", user_id, {"is_active": True}),
        open_positions=await store.count("positions", user_id, {"is_open": True}),
    )
