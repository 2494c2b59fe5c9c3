"""
In-memory store backends for testing.

Dict-based, guarded by an asyncio.Lock per store. Data lost when the
process exits.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime

from nudge.core.preferences import Preferences
from nudge.core.types import QueueKind, ScheduledItem, Subscription, as_utc, now_iso
from nudge.store.base import ScheduleStore, SubscriptionStore, is_same_record


class MemorySubscriptionStore(SubscriptionStore):
    """
    Usage:
        store = MemorySubscriptionStore()
        await store.upsert_by_endpoint(Subscription(endpoint="https://push/abc"))
        assert await store.get_by_endpoint("https://push/abc") is not None
    """

    def __init__(self) -> None:
        self._records: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    async def upsert_by_endpoint(self, subscription: Subscription) -> Subscription:
        async with self._lock:
            self._records[subscription.endpoint] = copy.deepcopy(subscription)
        return copy.deepcopy(subscription)

    async def remove_by_endpoint(self, endpoint: str) -> bool:
        async with self._lock:
            return self._records.pop(endpoint, None) is not None

    async def update_preferences(
        self, endpoint: str, preferences: Preferences
    ) -> Subscription | None:
        async with self._lock:
            record = self._records.get(endpoint)
            if record is None:
                return None
            record.preferences = preferences.model_copy(deep=True)
            record.updated_at = now_iso()
            return copy.deepcopy(record)

    async def get_by_endpoint(self, endpoint: str) -> Subscription | None:
        record = self._records.get(endpoint)
        return copy.deepcopy(record) if record else None

    async def list_all(self) -> list[Subscription]:
        return [copy.deepcopy(r) for r in self._records.values()]


class MemoryScheduleStore(ScheduleStore):
    """A single deferred queue held in a dict keyed by item id."""

    def __init__(self, kind: QueueKind) -> None:
        super().__init__(kind)
        self._items: dict[str, ScheduledItem] = {}
        self._lock = asyncio.Lock()

    async def append(self, item: ScheduledItem) -> ScheduledItem:
        item = copy.deepcopy(item)
        item.kind = self.kind
        async with self._lock:
            self._items.pop(item.id, None)  # replaced items move to the end
            self._items[item.id] = item
        return copy.deepcopy(item)

    async def get(self, item_id: str) -> ScheduledItem | None:
        item = self._items.get(item_id)
        return copy.deepcopy(item) if item else None

    async def list_all(self) -> list[ScheduledItem]:
        return [copy.deepcopy(i) for i in self._items.values()]

    async def list_due(self, now: datetime) -> list[ScheduledItem]:
        now = as_utc(now)
        return [copy.deepcopy(i) for i in self._items.values() if i.is_due(now)]

    async def mark_sent(
        self,
        item_id: str,
        sent_at: str | None = None,
        claimed: ScheduledItem | None = None,
    ) -> bool:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None or not is_same_record(item, claimed):
                return False
            if not item.sent:
                item.sent = True
                item.sent_at = sent_at or now_iso()
            return True

    async def remove_by_correlation_id(self, event_id: str) -> bool:
        self._check_cancellable()
        event_id = str(event_id)
        async with self._lock:
            doomed = [i.id for i in self._items.values() if i.event_id == event_id]
            for item_id in doomed:
                del self._items[item_id]
            return bool(doomed)
