"""Tests for RealtimeSync: cached collections follow store changes."""

import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from solwatch.realtime.events import ChangeEvent, EventType
from solwatch.realtime.feed import ChangeFeed
from solwatch.realtime.store import RowStore
from solwatch.realtime.sync import RealtimeRegistry, RealtimeSync


def trade_row(**overrides) -> dict:
    row = {
        "user_id": "u1",
        "token_mint": "MintA",
        "token_symbol": "AAA",
        "trade_type": "buy",
        "amount_token": Decimal("10"),
        "amount_sol": Decimal("0.1"),
    }
    row.update(overrides)
    return row


async def drain(sync: RealtimeSync, applied: int, timeout: float = 1.0) -> None:
    """Wait until the sync has applied ``applied`` events."""
    deadline = asyncio.get_running_loop().time() + timeout
    while sync.events_applied < applied:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"only {sync.events_applied} events applied")
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def feed_and_store(tmp_path):
    feed = ChangeFeed()
    async with RowStore(str(tmp_path / "sync.db"), feed=feed) as store:
        yield feed, store


# ---------------------------------------------------------------------------
# Event handling
# ---------------------------------------------------------------------------


class TestRealtimeSync:
    @pytest.mark.asyncio
    async def test_initial_load_and_live_insert(self, feed_and_store) -> None:
        feed, store = feed_and_store
        await store.insert("trades", trade_row(id="t1", created_at="2025-01-01T00:00:00+00:00"))

        sync = RealtimeSync(store, feed, "u1")
        await sync.start()
        assert [t["id"] for t in sync.collection("trades")] == ["t1"]
        assert (await sync.stats()).total_trades == 1

        await store.insert("trades", trade_row(id="t2", pnl_sol=Decimal("1")))
        await drain(sync, 1)

        assert [t["id"] for t in sync.collection("trades")] == ["t2", "t1"]
        stats = await sync.stats()
        assert stats.total_trades == 2
        assert stats.total_pnl == Decimal("1")
        await sync.stop()

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_harmless(self, feed_and_store) -> None:
        feed, store = feed_and_store
        sync = RealtimeSync(store, feed, "u1")
        await sync.start()

        row = await store.insert("trades", trade_row(id="t1"))
        await drain(sync, 1)
        replay = ChangeEvent(table="trades", event_type=EventType.INSERT, user_id="u1", new=row)
        await sync.handle(replay)

        assert [t["id"] for t in sync.collection("trades")] == ["t1"]
        await sync.stop()

    @pytest.mark.asyncio
    async def test_stale_replays_do_not_resurrect_rows(self, feed_and_store) -> None:
        feed, store = feed_and_store
        sync = RealtimeSync(store, feed, "u1")
        await sync.start()

        row = await store.insert("trades", trade_row(id="t1"))
        original_insert = ChangeEvent(
            table="trades", event_type=EventType.INSERT, user_id="u1", new=row
        )
        await store.update("trades", "t1", {"status": "confirmed"})
        await drain(sync, 2)

        assert await sync.handle(original_insert) is False
        assert sync.collection("trades")[0]["status"] == "confirmed"

        await store.delete("trades", "t1")
        await drain(sync, 3)
        assert await sync.handle(original_insert) is False
        assert sync.collection("trades") == ()
        await sync.stop()

    @pytest.mark.asyncio
    async def test_other_users_events_are_ignored(self, feed_and_store) -> None:
        feed, store = feed_and_store
        sync = RealtimeSync(store, feed, "u1")
        await sync.start()

        foreign = ChangeEvent(
            table="trades", event_type=EventType.INSERT, user_id="u2",
            new={"id": "x", "user_id": "u2", "created_at": "2025"},
        )
        assert await sync.handle(foreign) is False
        assert sync.collection("trades") == ()
        await sync.stop()

    @pytest.mark.asyncio
    async def test_delete_and_stats_refetch(self, feed_and_store) -> None:
        feed, store = feed_and_store
        await store.insert("positions", {
            "id": "p1", "user_id": "u1", "token_mint": "M", "token_symbol": "M",
            "amount": Decimal("1"),
        })
        sync = RealtimeSync(store, feed, "u1")
        await sync.start()
        assert (await sync.stats()).open_positions == 1

        await store.update("positions", "p1", {"is_open": False})
        await drain(sync, 1)
        assert (await sync.stats()).open_positions == 0
        assert sync.collection("positions")[0]["is_open"] is False

        await store.delete("positions", "p1")
        await drain(sync, 2)
        assert sync.collection("positions") == ()
        assert sync.stats_stale is False
        await sync.stop()

    @pytest.mark.asyncio
    async def test_trade_collection_is_capped(self, feed_and_store) -> None:
        feed, store = feed_and_store
        sync = RealtimeSync(store, feed, "u1", trades_limit=2)
        await sync.start()
        for day in (1, 2, 3):
            await store.insert("trades", trade_row(id=f"t{day}", created_at=f"2025-01-0{day}"))
        await drain(sync, 3)

        assert [t["id"] for t in sync.collection("trades")] == ["t3", "t2"]
        await sync.stop()

    @pytest.mark.asyncio
    async def test_collection_copy_is_detached(self, feed_and_store) -> None:
        feed, store = feed_and_store
        await store.insert("trades", trade_row(id="t1"))
        sync = RealtimeSync(store, feed, "u1")
        await sync.start()

        copy = sync.collection("trades")
        copy[0]["status"] = "tampered"
        assert sync.collection("trades")[0]["status"] == "pending"
        await sync.stop()


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRealtimeRegistry:
    @pytest.mark.asyncio
    async def test_one_sync_per_user(self, feed_and_store) -> None:
        feed, store = feed_and_store
        registry = RealtimeRegistry(store, feed)

        first, second = await asyncio.gather(registry.for_user("u1"), registry.for_user("u1"))
        other = await registry.for_user("u2")

        assert first is second
        assert other is not first
        await registry.stop_all()
