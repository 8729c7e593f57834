"""Realtime layer -- change events, feed, row store and per-user sync."""

from solwatch.realtime.events import ChangeEvent, EventType, apply_change
from solwatch.realtime.feed import ChangeFeed, Subscription
from solwatch.realtime.stats import compute_dashboard_stats
from solwatch.realtime.store import RowStore
from solwatch.realtime.sync import RealtimeRegistry, RealtimeSync

__all__ = [
    "ChangeEvent",
    "ChangeFeed",
    "EventType",
    "RealtimeRegistry",
    "RealtimeSync",
    "RowStore",
    "Subscription",
    "apply_change",
    "compute_dashboard_stats",
]
