"""Async SQLite row store for trades, positions and wallets.

Local replica of the managed relational store: rows are read with simple
user-keyed, column-filtered queries, and every write is announced on the
ChangeFeed as a row-level change event. Decimal columns are stored as TEXT
to preserve precision; timestamps are ISO-8601 UTC strings.
"""

import os
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Self

import aiosqlite

from solwatch.exceptions import ValidationFailure
from solwatch.logging import get_logger
from solwatch.realtime.events import ChangeEvent, EventType, Row, RowVersions, row_version
from solwatch.realtime.feed import ChangeFeed

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS trades (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    wallet_id TEXT,
    token_mint TEXT NOT NULL,
    token_symbol TEXT NOT NULL,
    trade_type TEXT NOT NULL,
    amount_token TEXT NOT NULL,
    amount_sol TEXT NOT NULL,
    price_usd TEXT,
    tx_signature TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    pnl_sol TEXT,
    pnl_percent TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS positions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    wallet_id TEXT,
    token_mint TEXT NOT NULL,
    token_symbol TEXT NOT NULL,
    amount TEXT NOT NULL,
    avg_buy_price TEXT,
    current_price TEXT,
    unrealized_pnl_sol TEXT,
    unrealized_pnl_percent TEXT,
    is_open INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS wallets (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    address TEXT NOT NULL,
    name TEXT,
    balance_sol TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_trades_user_created ON trades(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_positions_user_updated ON positions(user_id, updated_at);
CREATE INDEX IF NOT EXISTS idx_wallets_user_created ON wallets(user_id, created_at);
"""

# Column whitelist per table; also drives Decimal/bool conversion
TABLE_COLUMNS: dict[str, dict[str, str]] = {
    "trades": {
        "id": "text", "user_id": "text", "wallet_id": "text", "token_mint": "text",
        "token_symbol": "text", "trade_type": "text", "amount_token": "decimal",
        "amount_sol": "decimal", "price_usd": "decimal", "tx_signature": "text",
        "status": "text", "pnl_sol": "decimal", "pnl_percent": "decimal",
        "created_at": "text",
    },
    "positions": {
        "id": "text", "user_id": "text", "wallet_id": "text", "token_mint": "text",
        "token_symbol": "text", "amount": "decimal", "avg_buy_price": "decimal",
        "current_price": "decimal", "unrealized_pnl_sol": "decimal",
        "unrealized_pnl_percent": "decimal", "is_open": "bool",
        "created_at": "text", "updated_at": "text",
    },
    "wallets": {
        "id": "text", "user_id": "text", "address": "text", "name": "text",
        "balance_sol": "decimal", "is_active": "bool", "created_at": "text",
        "updated_at": "text",
    },
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db(kind: str, value: Any) -> Any:
    if value is None:
        return None
    if kind == "decimal":
        return str(value)
    if kind == "bool":
        return 1 if value else 0
    return value


def _from_db(kind: str, value: Any) -> Any:
    if value is None:
        return None
    if kind == "decimal":
        return Decimal(str(value))
    if kind == "bool":
        return bool(value)
    return value


class RowStore:
    """aiosqlite-backed store for the watched tables.

    Usage:
        async with RowStore("data/solwatch.db", feed=feed) as store:
            trades = await store.select("trades", user_id, limit=50)
    """

    def __init__(self, db_path: str = "data/solwatch.db", feed: ChangeFeed | None = None) -> None:
        self._db_path = db_path
        self._feed = feed
        self._connection: aiosqlite.Connection | None = None
        self._versions: dict[str, RowVersions] = {}

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Store not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, configure pragmas and create the schema."""
        if self._db_path != ":memory:":
            db_dir = os.path.dirname(self._db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)
        await self._ensure_schema_version()
        await self._connection.commit()
        logger.info("row_store_connected", db_path=self._db_path)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("row_store_closed", db_path=self._db_path)

    async def _ensure_schema_version(self) -> None:
        cursor = await self.db.execute("SELECT version FROM schema_version LIMIT 1")
        if await cursor.fetchone() is None:
            await self.db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    # ──────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────

    @staticmethod
    def _columns(table: str) -> dict[str, str]:
        try:
            return TABLE_COLUMNS[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}") from None

    def _check_columns(self, table: str, names: Mapping[str, Any] | list[str]) -> dict[str, str]:
        columns = self._columns(table)
        unknown = [n for n in names if n not in columns]
        if unknown:
            raise ValueError(f"Unknown columns for {table}: {unknown}")
        return columns

    def _decode(self, table: str, row: aiosqlite.Row) -> Row:
        columns = self._columns(table)
        return {name: _from_db(columns[name], row[name]) for name in row.keys()}

    def _row_versions(self, table: str) -> RowVersions:
        versions = self._versions.get(table)
        if versions is None:
            versions = self._versions[table] = RowVersions()
        return versions

    def _publish(self, event: ChangeEvent) -> None:
        self._row_versions(event.table).record(event)
        if self._feed is not None:
            self._feed.publish(event)

    # ──────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────

    async def get(self, table: str, row_id: str) -> Row | None:
        self._columns(table)
        cursor = await self.db.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,))
        row = await cursor.fetchone()
        return self._decode(table, row) if row is not None else None

    async def select(
        self,
        table: str,
        user_id: str,
        filters: Mapping[str, Any] | None = None,
        order_by: str = "created_at",
        descending: bool = True,
        limit: int | None = None,
    ) -> list[Row]:
        """Rows owned by ``user_id`` matching equality ``filters``."""
        filters = dict(filters or {})
        columns = self._check_columns(table, [*filters, order_by])

        where = ["user_id = ?"]
        params: list[Any] = [user_id]
        for name, value in filters.items():
            where.append(f"{name} = ?")
            params.append(_to_db(columns[name], value))

        sql = (
            f"SELECT * FROM {table} WHERE {' AND '.join(where)} "
            f"ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        cursor = await self.db.execute(sql, params)
        return [self._decode(table, row) for row in await cursor.fetchall()]

    async def count(
        self, table: str, user_id: str, filters: Mapping[str, Any] | None = None
    ) -> int:
        filters = dict(filters or {})
        columns = self._check_columns(table, filters)
        where = ["user_id = ?"]
        params: list[Any] = [user_id]
        for name, value in filters.items():
            where.append(f"{name} = ?")
            params.append(_to_db(columns[name], value))
        cursor = await self.db.execute(
            f"SELECT COUNT(*) FROM {table} WHERE {' AND '.join(where)}", params
        )
        row = await cursor.fetchone()
        return int(row[0]) if row is not None else 0

    # ──────────────────────────────────────────────
    # Writes (each publishes a change event)
    # ──────────────────────────────────────────────

    async def _upsert(self, table: str, row: Row) -> None:
        columns = self._check_columns(table, row)
        names = list(row)
        placeholders = ", ".join("?" for _ in names)
        await self.db.execute(
            f"INSERT OR REPLACE INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
            [_to_db(columns[n], row[n]) for n in names],
        )
        await self.db.commit()

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        """Insert a row, filling ``id`` and timestamps when absent."""
        columns = self._columns(table)
        values = dict(row)
        values.setdefault("id", uuid.uuid4().hex)
        now = utc_now_iso()
        values.setdefault("created_at", now)
        if "updated_at" in columns:
            values.setdefault("updated_at", now)

        await self._upsert(table, values)
        stored = await self.get(table, values["id"])
        assert stored is not None
        self._publish(
            ChangeEvent(table=table, event_type=EventType.INSERT, user_id=stored["user_id"], new=stored)
        )
        return stored

    async def update(self, table: str, row_id: str, changes: Mapping[str, Any]) -> Row | None:
        """Apply ``changes`` to one row; returns the new row or None if missing."""
        old = await self.get(table, row_id)
        if old is None:
            return None
        values = {**old, **changes, "id": row_id}
        if "updated_at" in self._columns(table) and "updated_at" not in changes:
            values["updated_at"] = utc_now_iso()

        await self._upsert(table, values)
        new = await self.get(table, row_id)
        assert new is not None
        self._publish(
            ChangeEvent(table=table, event_type=EventType.UPDATE, user_id=new["user_id"], new=new, old=old)
        )
        return new

    async def delete(self, table: str, row_id: str) -> bool:
        old = await self.get(table, row_id)
        if old is None:
            return False
        await self.db.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
        await self.db.commit()
        self._publish(
            ChangeEvent(table=table, event_type=EventType.DELETE, user_id=old["user_id"], old=old)
        )
        return True

    async def _older_than_stored(self, event: ChangeEvent) -> bool:
        if event.event_type is EventType.DELETE or event.new is None:
            return False
        stored = await self.get(event.table, event.row_key)
        if stored is None:
            return False
        incoming, current = row_version(event.new), row_version(stored)
        return incoming is not None and current is not None and incoming < current

    async def mirror(self, event: ChangeEvent) -> bool:
        """Replay an upstream change into the replica, then re-publish it.

        Stale events are dropped without touching the replica: writes older
        than the stored row or than the last mirrored event for that key,
        and writes to a row deleted within the tombstone window.

        Returns:
            True when the event was applied and published.

        Raises:
            ValidationFailure: the row is incomplete for its table.
        """
        columns = self._columns(event.table)
        stale = not self._row_versions(event.table).accepts(event)
        if stale or await self._older_than_stored(event):
            logger.info(
                "mirror_event_stale",
                table=event.table,
                event_type=event.event_type.value,
                row_id=event.row_key,
            )
            return False

        if event.event_type is EventType.DELETE:
            await self.db.execute(f"DELETE FROM {event.table} WHERE id = ?", (event.row_key,))
            await self.db.commit()
        else:
            assert event.new is not None
            row = {k: v for k, v in event.new.items() if k in columns}
            try:
                await self._upsert(event.table, row)
            except aiosqlite.IntegrityError as exc:
                raise ValidationFailure(f"Incomplete {event.table} row: {exc}") from exc
        self._publish(event)
        return True
