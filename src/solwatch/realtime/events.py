"""Row-level change events and the reducer that folds them into collections.

Events are delivered at least once and may arrive out of order, so the
reducer is idempotent (applying the same event twice leaves the collection
exactly as applying it once) and never lets an older version of a row
replace a newer one. Deleted keys leave a short-lived tombstone in
``RowVersions`` so a late INSERT or UPDATE cannot bring the row back.
"""

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from solwatch.exceptions import ValidationFailure

Row = dict[str, Any]

DEFAULT_TOMBSTONE_TTL = 300.0  # seconds

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)

WATCHED_TABLES: tuple[str, ...] = ("trades", "positions", "wallets")

# Column each cached collection is ordered by (newest first)
TABLE_ORDERING: dict[str, str] = {
    "trades": "created_at",
    "positions": "updated_at",
    "wallets": "created_at",
}


class EventType(str, Enum):
    """Kind of row change."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """One row change on a watched table, owned by ``user_id``."""

    table: str
    event_type: EventType
    user_id: str
    new: Row | None = None
    old: Row | None = None
    commit_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def row_key(self) -> Any:
        """Primary key of the affected row (from ``new``, else ``old``)."""
        for row in (self.new, self.old):
            if row and row.get("id") is not None:
                return row["id"]
        return None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChangeEvent":
        """Parse a postgres-changes style payload.

        Accepts ``{"table", "eventType" | "type", "new" | "record",
        "old" | "old_record", "commit_timestamp"}``.

        Raises:
            ValidationFailure: table, event type, row or owner missing.
        """
        table = payload.get("table")
        if not table:
            raise ValidationFailure("Missing table")

        raw_type = str(payload.get("eventType") or payload.get("type") or "").upper()
        try:
            event_type = EventType(raw_type)
        except ValueError as exc:
            raise ValidationFailure(f"Unknown event type: {raw_type!r}") from exc

        new = payload.get("new") or payload.get("record") or None
        old = payload.get("old") or payload.get("old_record") or None
        for name, value in (("new", new), ("old", old)):
            if value is not None and not isinstance(value, Mapping):
                raise ValidationFailure(f"Change event {name} row must be an object")
        row = new if event_type is not EventType.DELETE else (old or new)
        if not row or row.get("id") is None:
            raise ValidationFailure("Change event carries no row id")

        user_id = (new or {}).get("user_id") or (old or {}).get("user_id")
        if not user_id:
            raise ValidationFailure("Change event carries no user_id")

        kwargs: dict[str, Any] = {}
        if payload.get("commit_timestamp"):
            kwargs["commit_timestamp"] = str(payload["commit_timestamp"])
        return cls(
            table=str(table),
            event_type=event_type,
            user_id=str(user_id),
            new=dict(new) if new else None,
            old=dict(old) if old else None,
            **kwargs,
        )


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def row_version(row: Mapping[str, Any] | None) -> datetime | None:
    """Version of a row: ``updated_at`` when the table has one, else ``created_at``."""
    if not row:
        return None
    return parse_timestamp(row.get("updated_at")) or parse_timestamp(row.get("created_at"))


def event_version(event: ChangeEvent) -> tuple[datetime, datetime]:
    """Ordering key of an INSERT/UPDATE: row version first, then commit time."""
    return (
        row_version(event.new) or _OLDEST,
        parse_timestamp(event.commit_timestamp) or _OLDEST,
    )


class RowVersions:
    """Newest applied version per row key, plus tombstones for deleted keys.

    One instance per cached collection (or stored table). ``accepts`` is a
    pure check; ``record`` must be called once the event has been applied.

    Args:
        tombstone_ttl: Seconds a deleted key keeps rejecting INSERT/UPDATE.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        tombstone_ttl: float = DEFAULT_TOMBSTONE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = tombstone_ttl
        self._clock = clock
        self._versions: dict[Any, tuple[datetime, datetime]] = {}
        self._tombstones: dict[Any, float] = {}

    def _expire(self) -> None:
        now = self._clock()
        expired = [k for k, deleted_at in self._tombstones.items() if now - deleted_at >= self._ttl]
        for row_key in expired:
            del self._tombstones[row_key]

    def is_deleted(self, row_key: Any) -> bool:
        self._expire()
        return row_key in self._tombstones

    def accepts(self, event: ChangeEvent) -> bool:
        """False for writes to a tombstoned key or older than the applied version."""
        if event.event_type is EventType.DELETE:
            return True
        row_key = event.row_key
        if self.is_deleted(row_key):
            return False
        applied = self._versions.get(row_key)
        return applied is None or event_version(event) >= applied

    def record(self, event: ChangeEvent) -> None:
        row_key = event.row_key
        if event.event_type is EventType.DELETE:
            self._versions.pop(row_key, None)
            self._tombstones[row_key] = self._clock()
        else:
            self._versions[row_key] = event_version(event)

    def __len__(self) -> int:
        self._expire()
        return len(self._versions) + len(self._tombstones)


def _insert_ordered(rows: list[Row], row: Row, order_by: str) -> None:
    """Insert ``row`` before the first row that is strictly older."""
    value = row.get(order_by) or ""
    for index, existing in enumerate(rows):
        if (existing.get(order_by) or "") < value:
            rows.insert(index, row)
            return
    rows.append(row)


def apply_change(
    event: ChangeEvent,
    rows: Sequence[Row],
    *,
    key: str = "id",
    order_by: str = "created_at",
    limit: int | None = None,
    versions: RowVersions | None = None,
) -> list[Row]:
    """Return a new collection with ``event`` merged in by primary key.

    INSERT and UPDATE replace any row with the same key and place the new
    version at its descending-time position; DELETE removes the key. The
    input sequence is never mutated.

    A write whose row is older than the cached row with the same key is
    ignored. When ``versions`` is given it also rejects replays older than
    the last applied event and writes to recently deleted keys, and it is
    updated with every event that is applied.
    """
    if versions is not None and not versions.accepts(event):
        return list(rows)

    row_key = event.row_key
    if event.event_type is not EventType.DELETE and event.new is not None:
        incoming = row_version(event.new)
        for existing in rows:
            if existing.get(key) != row_key:
                continue
            current = row_version(existing)
            if incoming is not None and current is not None and incoming < current:
                return list(rows)
            break

    merged = [r for r in rows if r.get(key) != row_key]
    if versions is not None:
        versions.record(event)

    if event.event_type is EventType.DELETE or event.new is None:
        return merged

    _insert_ordered(merged, dict(event.new), order_by)
    if limit is not None:
        del merged[limit:]
    return merged
