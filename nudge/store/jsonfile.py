"""
JSON-file store backends. Three flat files in the data directory, the
layout existing deployments already have on disk:

    subscriptions.json
    scheduled-followups.json
    scheduled-active-checkins.json

Each file is a JSON array of records in the persisted camelCase shape.
The whole array is loaded at initialize() and rewritten after every
mutation (temp file + rename, so a crash never leaves half a file).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles

from nudge.core.errors import NudgeError, StorageError
from nudge.core.preferences import Preferences
from nudge.core.types import (
    QueueKind,
    ScheduledItem,
    Subscription,
    as_utc,
    now_iso,
    parse_instant,
)
from nudge.store.base import ScheduleStore, SubscriptionStore

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_FILE = "subscriptions.json"
QUEUE_FILES = {
    QueueKind.FOLLOWUP: "scheduled-followups.json",
    QueueKind.ACTIVE_CHECKIN: "scheduled-active-checkins.json",
}

# Anything a hand-edited or older record can trip over while decoding
_DECODE_ERRORS = (KeyError, TypeError, ValueError, NudgeError)


def _decode_subscription(record: dict[str, Any]) -> Subscription | None:
    try:
        return Subscription.from_dict(record)
    except _DECODE_ERRORS as e:
        logger.warning(f"Skipping unreadable subscription record: {e!r}")
        return None


def _decode_item(record: dict[str, Any], kind: QueueKind) -> ScheduledItem | None:
    try:
        return ScheduledItem.from_dict(record, kind)
    except _DECODE_ERRORS as e:
        logger.warning(f"Skipping unreadable {kind.value} record {record.get('id', '?')}: {e!r}")
        return None


def _is_claimed_record(record: dict[str, Any], claimed: ScheduledItem | None) -> bool:
    """Whether a raw record is still the one the caller read."""
    if claimed is None:
        return True
    try:
        same_time = parse_instant(record["scheduledTime"]) == claimed.scheduled_time
    except (KeyError, ValueError):
        return False
    # records without createdAt get a fresh one on every decode
    created = record.get("createdAt")
    return same_time and (not created or created == claimed.created_at)


class _JSONFileBackend:
    """Load / atomically save one JSON array."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._records: list[dict[str, Any]] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if not self._path.exists():
                self._records = []
                await self._save()
                logger.info(f"Created new store file {self._path.name}")
            else:
                async with aiofiles.open(self._path, mode="r", encoding="utf-8") as f:
                    text = await f.read()
                data = json.loads(text or "[]")
                if not isinstance(data, list):
                    raise ValueError("expected a JSON array")
                self._records = [r for r in data if isinstance(r, dict)]
                if len(self._records) != len(data):
                    logger.warning(
                        f"Ignoring {len(data) - len(self._records)} non-object entries in {self._path.name}"
                    )
                logger.info(f"Loaded {len(self._records)} records from {self._path.name}")
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to load {self._path}: {e}") from e
        self._loaded = True

    async def _ensure_loaded(self) -> None:
        if not self._loaded:
            await self.initialize()

    async def _save(self) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
                await f.write(json.dumps(self._records, indent=2))
            os.replace(tmp_path, self._path)
        except Exception as e:
            raise StorageError(f"Failed to write {self._path}: {e}") from e

    async def _commit(self, records: list[dict[str, Any]]) -> None:
        """Persist first, then swap the in-memory copy."""
        previous = self._records
        self._records = records
        try:
            await self._save()
        except StorageError:
            self._records = previous
            raise

    async def close(self) -> None:
        self._loaded = False


class JSONFileSubscriptionStore(_JSONFileBackend, SubscriptionStore):
    """
    Usage:
        store = JSONFileSubscriptionStore(data_dir / "subscriptions.json")
        await store.initialize()
    """

    async def upsert_by_endpoint(self, subscription: Subscription) -> Subscription:
        await self._ensure_loaded()
        record = subscription.to_dict()
        async with self._lock:
            records = [r for r in self._records if r.get("endpoint") != subscription.endpoint]
            records.append(record)
            await self._commit(records)
        return Subscription.from_dict(record)

    async def remove_by_endpoint(self, endpoint: str) -> bool:
        await self._ensure_loaded()
        async with self._lock:
            records = [r for r in self._records if r.get("endpoint") != endpoint]
            if len(records) == len(self._records):
                return False
            await self._commit(records)
            return True

    async def update_preferences(
        self, endpoint: str, preferences: Preferences
    ) -> Subscription | None:
        await self._ensure_loaded()
        async with self._lock:
            records = [dict(r) for r in self._records]
            for record in records:
                if record.get("endpoint") == endpoint:
                    record["preferences"] = preferences.to_dict()
                    record["updatedAt"] = now_iso()
                    await self._commit(records)
                    return Subscription.from_dict(record)
        return None

    async def get_by_endpoint(self, endpoint: str) -> Subscription | None:
        await self._ensure_loaded()
        for record in self._records:
            if record.get("endpoint") == endpoint:
                return _decode_subscription(record)
        return None

    async def list_all(self) -> list[Subscription]:
        await self._ensure_loaded()
        decoded = (_decode_subscription(r) for r in self._records)
        return [s for s in decoded if s is not None]


class JSONFileScheduleStore(_JSONFileBackend, ScheduleStore):
    """One queue file."""

    def __init__(self, path: str | Path, kind: QueueKind) -> None:
        _JSONFileBackend.__init__(self, path)
        ScheduleStore.__init__(self, kind)

    async def append(self, item: ScheduledItem) -> ScheduledItem:
        await self._ensure_loaded()
        record = item.to_dict()
        async with self._lock:
            records = [r for r in self._records if r.get("id") != item.id]
            records.append(record)
            await self._commit(records)
        return ScheduledItem.from_dict(record, self.kind)

    async def get(self, item_id: str) -> ScheduledItem | None:
        await self._ensure_loaded()
        for record in self._records:
            if record.get("id") == item_id:
                return _decode_item(record, self.kind)
        return None

    async def list_all(self) -> list[ScheduledItem]:
        await self._ensure_loaded()
        decoded = (_decode_item(r, self.kind) for r in self._records)
        return [i for i in decoded if i is not None]

    async def list_due(self, now: datetime) -> list[ScheduledItem]:
        now = as_utc(now)
        return [item for item in await self.list_all() if item.is_due(now)]

    async def mark_sent(
        self,
        item_id: str,
        sent_at: str | None = None,
        claimed: ScheduledItem | None = None,
    ) -> bool:
        await self._ensure_loaded()
        async with self._lock:
            records = [dict(r) for r in self._records]
            for record in records:
                if record.get("id") != item_id:
                    continue
                if not _is_claimed_record(record, claimed):
                    return False
                if not record.get("sent"):
                    record["sent"] = True
                    record["sentAt"] = sent_at or now_iso()
                    await self._commit(records)
                return True
        return False

    async def remove_by_correlation_id(self, event_id: str) -> bool:
        self._check_cancellable()
        await self._ensure_loaded()
        event_id = str(event_id)
        async with self._lock:
            records = [
                r for r in self._records
                if str(r.get("attackId", r.get("eventId"))) != event_id
            ]
            if len(records) == len(self._records):
                return False
            await self._commit(records)
            return True
