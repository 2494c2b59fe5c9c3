"""
SQLite store backends.

Uses aiosqlite for async SQLite access.
WAL mode enabled so the tick driver can read while a request handler writes.

DB: <store.path>/nudge.db

Table: subscriptions
    endpoint    TEXT  PK
    keys        TEXT  (JSON)
    preferences TEXT  (JSON, NULL = no preferences recorded)
    created_at  TEXT
    updated_at  TEXT

Table: scheduled_items
    queue                 TEXT  ('followup' | 'active-checkin')
    id                    TEXT
    event_id              TEXT
    scheduled_time        TEXT  (ISO-8601 UTC)
    scheduled_ts          REAL  (unix seconds, for due comparisons)
    subscription_endpoint TEXT
    sent                  INT   (0/1)
    sent_at               TEXT
    created_at            TEXT
    PRIMARY KEY (queue, id)
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, TypeVar

import aiosqlite

from nudge.core.errors import NudgeError, StorageError
from nudge.core.preferences import Preferences
from nudge.core.types import (
    QueueKind,
    ScheduledItem,
    Subscription,
    as_utc,
    now_iso,
    parse_instant,
    to_iso,
)
from nudge.store.base import ScheduleStore, SubscriptionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        endpoint    TEXT PRIMARY KEY,
        keys        TEXT NOT NULL DEFAULT '{}',
        preferences TEXT,
        created_at  TEXT NOT NULL,
        updated_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scheduled_items (
        queue                 TEXT NOT NULL,
        id                    TEXT NOT NULL,
        event_id              TEXT NOT NULL,
        scheduled_time        TEXT NOT NULL,
        scheduled_ts          REAL NOT NULL,
        subscription_endpoint TEXT NOT NULL,
        sent                  INTEGER NOT NULL DEFAULT 0,
        sent_at               TEXT,
        created_at            TEXT NOT NULL,
        PRIMARY KEY (queue, id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_items_due
        ON scheduled_items(queue, sent, scheduled_ts)
    """,
)


def _decode_row(decode: Callable[[aiosqlite.Row], T], row: aiosqlite.Row) -> T | None:
    """Decode one row; an unreadable row is logged and skipped so the rest still load."""
    try:
        return decode(row)
    except (KeyError, TypeError, ValueError, NudgeError) as e:
        logger.warning(f"Skipping unreadable row {tuple(row)[:2]}: {e!r}")
        return None


class _SQLiteBackend:
    """Connection handling shared by both SQLite stores."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create tables."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._db = await aiosqlite.connect(str(self._db_path))
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")
            for statement in _SCHEMA:
                await self._db.execute(statement)
            await self._db.commit()
            logger.debug(f"SQLite store initialized at {self._db_path}")
        except Exception as e:
            raise StorageError(f"Failed to initialize SQLite at {self._db_path}: {e}") from e

    async def _ensure_db(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db  # type: ignore[return-value]

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None


class SQLiteSubscriptionStore(_SQLiteBackend, SubscriptionStore):
    """
    Usage:
        store = SQLiteSubscriptionStore("~/.nudge/data/nudge.db")
        await store.initialize()
        await store.upsert_by_endpoint(subscription)
    """

    async def upsert_by_endpoint(self, subscription: Subscription) -> Subscription:
        db = await self._ensure_db()
        d = subscription.to_dict()
        try:
            async with self._lock:
                await db.execute(
                    """
                    INSERT INTO subscriptions (endpoint, keys, preferences, created_at, updated_at)
                    VALUES (:endpoint, :keys, :preferences, :createdAt, :updatedAt)
                    ON CONFLICT(endpoint) DO UPDATE SET
                        keys=excluded.keys, preferences=excluded.preferences,
                        created_at=excluded.created_at, updated_at=excluded.updated_at
                    """,
                    {
                        **d,
                        "keys": json.dumps(d["keys"]),
                        "preferences": json.dumps(d["preferences"]) if d["preferences"] else None,
                    },
                )
                await db.commit()
        except Exception as e:
            raise StorageError(f"Failed to save subscription: {e}") from e
        return Subscription.from_dict(d)

    async def remove_by_endpoint(self, endpoint: str) -> bool:
        db = await self._ensure_db()
        try:
            async with self._lock:
                cursor = await db.execute("DELETE FROM subscriptions WHERE endpoint=?", (endpoint,))
                await db.commit()
                return cursor.rowcount > 0
        except Exception as e:
            raise StorageError(f"Failed to remove subscription: {e}") from e

    async def update_preferences(
        self, endpoint: str, preferences: Preferences
    ) -> Subscription | None:
        db = await self._ensure_db()
        try:
            async with self._lock:
                cursor = await db.execute(
                    "UPDATE subscriptions SET preferences=?, updated_at=? WHERE endpoint=?",
                    (json.dumps(preferences.to_dict()), now_iso(), endpoint),
                )
                await db.commit()
                if cursor.rowcount == 0:
                    return None
        except Exception as e:
            raise StorageError(f"Failed to update preferences: {e}") from e
        return await self.get_by_endpoint(endpoint)

    async def get_by_endpoint(self, endpoint: str) -> Subscription | None:
        db = await self._ensure_db()
        try:
            async with db.execute(
                "SELECT * FROM subscriptions WHERE endpoint=?", (endpoint,)
            ) as cursor:
                row = await cursor.fetchone()
        except Exception as e:
            raise StorageError(f"Failed to read subscription: {e}") from e
        return _decode_row(self._row_to_subscription, row) if row else None

    async def list_all(self) -> list[Subscription]:
        db = await self._ensure_db()
        try:
            async with db.execute("SELECT * FROM subscriptions ORDER BY created_at") as cursor:
                rows = await cursor.fetchall()
        except Exception as e:
            raise StorageError(f"Failed to list subscriptions: {e}") from e
        decoded = (_decode_row(self._row_to_subscription, r) for r in rows)
        return [s for s in decoded if s is not None]

    def _row_to_subscription(self, row: aiosqlite.Row) -> Subscription:
        return Subscription.from_dict({
            "endpoint": row["endpoint"],
            "keys": json.loads(row["keys"] or "{}"),
            "preferences": json.loads(row["preferences"]) if row["preferences"] else None,
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        })


class SQLiteScheduleStore(_SQLiteBackend, ScheduleStore):
    """One queue, stored as the rows of scheduled_items with a matching queue column."""

    def __init__(self, db_path: str | Path, kind: QueueKind) -> None:
        _SQLiteBackend.__init__(self, db_path)
        ScheduleStore.__init__(self, kind)

    async def append(self, item: ScheduledItem) -> ScheduledItem:
        db = await self._ensure_db()
        try:
            async with self._lock:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO scheduled_items
                        (queue, id, event_id, scheduled_time, scheduled_ts,
                         subscription_endpoint, sent, sent_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        self.kind.value,
                        item.id,
                        item.event_id,
                        to_iso(item.scheduled_time),
                        item.scheduled_time.timestamp(),
                        item.subscription_endpoint,
                        int(item.sent),
                        item.sent_at,
                        item.created_at,
                    ),
                )
                await db.commit()
        except Exception as e:
            raise StorageError(f"Failed to append {self.kind.value} item: {e}") from e
        return ScheduledItem.from_dict(item.to_dict(), self.kind)

    async def get(self, item_id: str) -> ScheduledItem | None:
        rows = await self._select("AND id=?", (item_id,))
        return rows[0] if rows else None

    async def list_all(self) -> list[ScheduledItem]:
        return await self._select("ORDER BY created_at", ())

    async def list_due(self, now: datetime) -> list[ScheduledItem]:
        return await self._select(
            "AND sent=0 AND scheduled_ts <= ? ORDER BY scheduled_ts",
            (as_utc(now).timestamp(),),
        )

    async def mark_sent(
        self,
        item_id: str,
        sent_at: str | None = None,
        claimed: ScheduledItem | None = None,
    ) -> bool:
        db = await self._ensure_db()
        match, params = "queue=? AND id=?", [self.kind.value, item_id]
        if claimed is not None:
            match += " AND created_at=? AND scheduled_time=?"
            params += [claimed.created_at, to_iso(claimed.scheduled_time)]
        try:
            async with self._lock:
                await db.execute(
                    f"UPDATE scheduled_items SET sent=1, sent_at=? WHERE {match} AND sent=0",
                    (sent_at or now_iso(), *params),
                )
                await db.commit()
                async with db.execute(
                    f"SELECT 1 FROM scheduled_items WHERE {match}", tuple(params)
                ) as cursor:
                    return await cursor.fetchone() is not None
        except Exception as e:
            raise StorageError(f"Failed to mark {item_id} sent: {e}") from e

    async def remove_by_correlation_id(self, event_id: str) -> bool:
        self._check_cancellable()
        db = await self._ensure_db()
        try:
            async with self._lock:
                cursor = await db.execute(
                    "DELETE FROM scheduled_items WHERE queue=? AND event_id=?",
                    (self.kind.value, str(event_id)),
                )
                await db.commit()
                return cursor.rowcount > 0
        except Exception as e:
            raise StorageError(f"Failed to cancel items for {event_id}: {e}") from e

    async def _select(self, clause: str, params: tuple) -> list[ScheduledItem]:
        db = await self._ensure_db()
        try:
            async with db.execute(
                f"SELECT * FROM scheduled_items WHERE queue=? {clause}",
                (self.kind.value, *params),
            ) as cursor:
                rows = await cursor.fetchall()
        except Exception as e:
            raise StorageError(f"Failed to read {self.kind.value} queue: {e}") from e
        decoded = (_decode_row(self._row_to_item, r) for r in rows)
        return [i for i in decoded if i is not None]

    def _row_to_item(self, row: aiosqlite.Row) -> ScheduledItem:
        return ScheduledItem(
            id=row["id"],
            event_id=row["event_id"],
            scheduled_time=parse_instant(row["scheduled_time"]),
            subscription_endpoint=row["subscription_endpoint"],
            kind=self.kind,
            sent=bool(row["sent"]),
            sent_at=row["sent_at"],
            created_at=row["created_at"],
        )
