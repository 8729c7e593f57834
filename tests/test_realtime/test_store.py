"""Tests for RowStore (aiosqlite) and dashboard stats."""

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from solwatch.exceptions import ValidationFailure
from solwatch.realtime.events import ChangeEvent, EventType
from solwatch.realtime.feed import ChangeFeed
from solwatch.realtime.stats import compute_dashboard_stats
from solwatch.realtime.store import RowStore


def trade_row(**overrides) -> dict:
    row = {
        "user_id": "u1",
        "token_mint": "MintA",
        "token_symbol": "AAA",
        "trade_type": "buy",
        "amount_token": Decimal("1000"),
        "amount_sol": Decimal("0.5"),
    }
    row.update(overrides)
    return row


@pytest_asyncio.fixture
async def store(tmp_path):
    feed = ChangeFeed()
    async with RowStore(str(tmp_path / "rows.db"), feed=feed) as row_store:
        yield row_store


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


class TestRowStore:
    @pytest.mark.asyncio
    async def test_insert_fills_id_and_timestamps(self, store: RowStore) -> None:
        row = await store.insert("trades", trade_row())
        assert row["id"]
        assert row["created_at"]
        assert row["amount_sol"] == Decimal("0.5")
        assert row["status"] == "pending"

    @pytest.mark.asyncio
    async def test_decimal_precision_roundtrips(self, store: RowStore) -> None:
        row = await store.insert("trades", trade_row(pnl_sol=Decimal("0.000000001")))
        fetched = await store.get("trades", row["id"])
        assert fetched is not None
        assert fetched["pnl_sol"] == Decimal("0.000000001")

    @pytest.mark.asyncio
    async def test_select_orders_newest_first_with_limit(self, store: RowStore) -> None:
        for day in (1, 3, 2):
            await store.insert("trades", trade_row(id=f"t{day}", created_at=f"2025-01-0{day}T00:00:00+00:00"))
        await store.insert("trades", trade_row(id="other", user_id="u2"))

        rows = await store.select("trades", "u1", limit=2)
        assert [r["id"] for r in rows] == ["t3", "t2"]

    @pytest.mark.asyncio
    async def test_select_filters_by_column(self, store: RowStore) -> None:
        await store.insert("wallets", {"user_id": "u1", "address": "A", "is_active": True})
        await store.insert("wallets", {"user_id": "u1", "address": "B", "is_active": False})

        active = await store.select("wallets", "u1", filters={"is_active": True})
        assert [w["address"] for w in active] == ["A"]
        assert active[0]["is_active"] is True

    @pytest.mark.asyncio
    async def test_update_and_delete(self, store: RowStore) -> None:
        row = await store.insert("trades", trade_row())
        updated = await store.update("trades", row["id"], {"status": "confirmed"})
        assert updated is not None and updated["status"] == "confirmed"

        assert await store.delete("trades", row["id"]) is True
        assert await store.get("trades", row["id"]) is None
        assert await store.delete("trades", row["id"]) is False
        assert await store.update("trades", "missing", {"status": "x"}) is None

    @pytest.mark.asyncio
    async def test_unknown_table_or_column_rejected(self, store: RowStore) -> None:
        with pytest.raises(ValueError):
            await store.select("users", "u1")
        with pytest.raises(ValueError):
            await store.select("trades", "u1", filters={"password": "x"})

    @pytest.mark.asyncio
    async def test_writes_publish_change_events(self, tmp_path) -> None:
        feed = ChangeFeed()
        subscription = feed.subscribe("u1", ["trades"])
        async with RowStore(str(tmp_path / "events.db"), feed=feed) as store:
            row = await store.insert("trades", trade_row())
            await store.update("trades", row["id"], {"status": "confirmed"})
            await store.delete("trades", row["id"])

        kinds = []
        while subscription.pending:
            kinds.append((await subscription.__anext__()).event_type)
        assert kinds == [EventType.INSERT, EventType.UPDATE, EventType.DELETE]


# ---------------------------------------------------------------------------
# Mirroring upstream changes
# ---------------------------------------------------------------------------


class TestMirror:
    @pytest.mark.asyncio
    async def test_mirror_upserts_and_deletes(self, store: RowStore) -> None:
        row = {
            "id": "ext-1",
            "created_at": "2025-01-01T00:00:00+00:00",
            "ignored_column": "dropped",
            **trade_row(),
        }
        await store.mirror(ChangeEvent(table="trades", event_type=EventType.INSERT, user_id="u1", new=row))
        await store.mirror(ChangeEvent(table="trades", event_type=EventType.INSERT, user_id="u1", new=row))
        assert await store.count("trades", "u1") == 1

        await store.mirror(ChangeEvent(table="trades", event_type=EventType.DELETE, user_id="u1", old=row))
        assert await store.get("trades", "ext-1") is None

    @pytest.mark.asyncio
    async def test_older_update_does_not_overwrite_newer_row(self, store: RowStore) -> None:
        base = {
            "id": "p1", "user_id": "u1", "token_mint": "M", "token_symbol": "M",
            "created_at": "2025-01-01T00:00:00+00:00",
        }
        newer = {**base, "amount": Decimal("5"), "updated_at": "2025-01-02T00:00:00+00:00"}
        older = {**base, "amount": Decimal("3"), "updated_at": "2025-01-01T00:00:00+00:00"}

        assert await store.mirror(
            ChangeEvent(table="positions", event_type=EventType.UPDATE, user_id="u1", new=newer)
        ) is True
        assert await store.mirror(
            ChangeEvent(table="positions", event_type=EventType.UPDATE, user_id="u1", new=older)
        ) is False

        stored = await store.get("positions", "p1")
        assert stored is not None
        assert stored["amount"] == Decimal("5")
        assert stored["updated_at"] == "2025-01-02T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_replayed_insert_after_update_is_dropped(self, store: RowStore) -> None:
        row = {"id": "t1", "created_at": "2025-01-01T00:00:00+00:00", **trade_row()}
        insert_event = ChangeEvent(
            table="trades", event_type=EventType.INSERT, user_id="u1", new=row,
            commit_timestamp="2025-01-01T00:00:01+00:00",
        )
        update_event = ChangeEvent(
            table="trades", event_type=EventType.UPDATE, user_id="u1",
            new={**row, "status": "confirmed"},
            commit_timestamp="2025-01-01T00:00:02+00:00",
        )

        await store.mirror(insert_event)
        await store.mirror(update_event)
        assert await store.mirror(insert_event) is False

        stored = await store.get("trades", "t1")
        assert stored is not None and stored["status"] == "confirmed"

    @pytest.mark.asyncio
    async def test_late_insert_after_delete_is_dropped(self, store: RowStore) -> None:
        row = {"id": "t1", "created_at": "2025-01-01T00:00:00+00:00", **trade_row()}
        insert_event = ChangeEvent(table="trades", event_type=EventType.INSERT, user_id="u1", new=row)

        await store.mirror(insert_event)
        await store.mirror(ChangeEvent(table="trades", event_type=EventType.DELETE, user_id="u1", old=row))
        assert await store.mirror(insert_event) is False
        assert await store.get("trades", "t1") is None

    @pytest.mark.asyncio
    async def test_mirror_after_local_delete_is_dropped(self, store: RowStore) -> None:
        row = await store.insert("trades", trade_row())
        await store.delete("trades", row["id"])

        replay = ChangeEvent(table="trades", event_type=EventType.INSERT, user_id="u1", new=row)
        assert await store.mirror(replay) is False
        assert await store.count("trades", "u1") == 0

    @pytest.mark.asyncio
    async def test_incomplete_row_is_validation_failure(self, store: RowStore) -> None:
        event = ChangeEvent(
            table="trades", event_type=EventType.INSERT, user_id="u1",
            new={"id": "x", "user_id": "u1"},
        )
        with pytest.raises(ValidationFailure):
            await store.mirror(event)


# ---------------------------------------------------------------------------
# Dashboard stats
# ---------------------------------------------------------------------------


class TestDashboardStats:
    @pytest.mark.asyncio
    async def test_aggregates(self, store: RowStore) -> None:
        await store.insert("trades", trade_row(pnl_sol=Decimal("1.5"), created_at="2025-03-10T08:00:00+00:00"))
        await store.insert("trades", trade_row(pnl_sol=Decimal("-0.5"), created_at="2025-03-10T09:00:00+00:00"))
        await store.insert("trades", trade_row(pnl_sol=None, created_at="2025-03-09T09:00:00+00:00"))
        await store.insert("trades", trade_row(pnl_sol=Decimal("0.25"), created_at="2025-03-08T09:00:00+00:00"))
        await store.insert("wallets", {"user_id": "u1", "address": "A"})
        await store.insert("wallets", {"user_id": "u1", "address": "B", "is_active": False})
        await store.insert("positions", {
            "user_id": "u1", "token_mint": "MintA", "token_symbol": "AAA", "amount": Decimal("5"),
        })

        stats = await compute_dashboard_stats(store, "u1", today=date(2025, 3, 10))

        assert stats.total_pnl == Decimal("1.25")
        assert stats.total_trades == 4
        assert stats.trades_today == 2
        assert stats.win_rate == Decimal("50")
        assert stats.active_wallets == 1
        assert stats.open_positions == 1

    @pytest.mark.asyncio
    async def test_empty_user(self, store: RowStore) -> None:
        stats = await compute_dashboard_stats(store, "nobody")
        assert stats.total_trades == 0
        assert stats.win_rate == Decimal("0")
