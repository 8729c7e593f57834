"""Keeps one user's cached collections and dashboard stats in sync with the store.

Single-row changes are merged into the cached collection with the
``apply_change`` reducer; per-table ``RowVersions`` drop stale replays and
writes to recently deleted rows. Derived aggregates (dashboard stats) are never
patched: any change on a watched table marks them stale and triggers a
re-fetch from the store.
"""

import asyncio

from solwatch.logging import get_logger, log_context
from solwatch.models import DashboardStats
from solwatch.realtime.events import (
    TABLE_ORDERING,
    WATCHED_TABLES,
    ChangeEvent,
    Row,
    RowVersions,
    apply_change,
)
from solwatch.realtime.feed import ChangeFeed, Subscription
from solwatch.realtime.stats import compute_dashboard_stats
from solwatch.realtime.store import RowStore

logger = get_logger(__name__)


class RealtimeSync:
    """Per-user cache of trades, positions, wallets and dashboard stats.

    Args:
        store: Row store to (re)load collections and aggregates from.
        feed: Change feed delivering row events.
        user_id: Owner whose rows are cached.
        trades_limit: Newest trades kept in the cached trade list.
    """

    def __init__(
        self,
        store: RowStore,
        feed: ChangeFeed,
        user_id: str,
        trades_limit: int = 50,
    ) -> None:
        self._store = store
        self._feed = feed
        self.user_id = user_id
        self._limits: dict[str, int | None] = {
            "trades": trades_limit,
            "positions": None,
            "wallets": None,
        }
        self._collections: dict[str, list[Row]] = {t: [] for t in WATCHED_TABLES}
        self._versions: dict[str, RowVersions] = {t: RowVersions() for t in WATCHED_TABLES}
        self._stats: DashboardStats | None = None
        self._stats_stale = True
        self._subscription: Subscription | None = None
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self.events_applied = 0

    async def start(self) -> None:
        """Subscribe first, then load, so no change between the two is lost."""
        if self._task is not None:
            logger.warning("realtime_sync_already_running", user_id=self.user_id)
            return
        self._subscription = self._feed.subscribe(self.user_id, WATCHED_TABLES)
        await self.refresh_collections()
        await self.refresh_stats()
        self._task = asyncio.create_task(self._consume(), name=f"realtime:{self.user_id}")
        logger.info("realtime_sync_started", user_id=self.user_id)

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("realtime_sync_stopped", user_id=self.user_id)

    async def _consume(self) -> None:
        assert self._subscription is not None
        async for event in self._subscription:
            try:
                with log_context(user_id=self.user_id):
                    await self.handle(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(
                    "realtime_event_error",
                    table=event.table,
                    event_type=event.event_type.value,
                    exc_info=True,
                )

    async def handle(self, event: ChangeEvent) -> bool:
        """Apply one change event.

        Returns False when the event is not for this cache, or is a stale
        replay (older than the cached row, or for a recently deleted row).
        """
        if event.user_id != self.user_id or event.table not in self._collections:
            return False

        versions = self._versions[event.table]
        if not versions.accepts(event):
            logger.debug(
                "realtime_event_stale",
                table=event.table,
                event_type=event.event_type.value,
                row_id=event.row_key,
            )
            return False

        self._collections[event.table] = apply_change(
            event,
            self._collections[event.table],
            order_by=TABLE_ORDERING[event.table],
            limit=self._limits[event.table],
            versions=versions,
        )
        self.events_applied += 1
        logger.debug(
            "realtime_event_applied",
            table=event.table,
            event_type=event.event_type.value,
            row_id=event.row_key,
        )

        self._stats_stale = True
        await self.refresh_stats()
        return True

    async def refresh_collections(self) -> None:
        """Reload every cached collection from the store."""
        for table in WATCHED_TABLES:
            self._collections[table] = await self._store.select(
                table,
                self.user_id,
                order_by=TABLE_ORDERING[table],
                limit=self._limits[table],
            )

    async def refresh_stats(self) -> DashboardStats:
        self._stats = await compute_dashboard_stats(self._store, self.user_id)
        self._stats_stale = False
        return self._stats

    @property
    def stats_stale(self) -> bool:
        return self._stats_stale

    async def stats(self) -> DashboardStats:
        """Cached stats, re-fetched first if a change made them stale."""
        if self._stats is None or self._stats_stale:
            return await self.refresh_stats()
        return self._stats

    def collection(self, table: str) -> tuple[Row, ...]:
        """Read-only copy of one cached collection."""
        return tuple(dict(row) for row in self._collections[table])


class RealtimeRegistry:
    """Lazily starts one RealtimeSync per user and stops them all on shutdown."""

    def __init__(self, store: RowStore, feed: ChangeFeed, trades_limit: int = 50) -> None:
        self._store = store
        self._feed = feed
        self._trades_limit = trades_limit
        self._syncs: dict[str, RealtimeSync] = {}
        self._lock = asyncio.Lock()

    async def for_user(self, user_id: str) -> RealtimeSync:
        async with self._lock:
            sync = self._syncs.get(user_id)
            if sync is None:
                sync = RealtimeSync(self._store, self._feed, user_id, self._trades_limit)
                await sync.start()
                self._syncs[user_id] = sync
            return sync

    async def stop_all(self) -> None:
        for sync in self._syncs.values():
            await sync.stop()
        self._syncs.clear()
