"""
Store interfaces.

Two stores back the delivery engine:

    SubscriptionStore  push endpoints and their preferences, keyed by endpoint
    ScheduleStore      one deferred queue (follow-ups OR active check-ins)

Implementations:
    Memory*    dict-based, for testing
    SQLite*    aiosqlite, default
    JSONFile*  the flat JSON file layout (subscriptions + two queue files)

Contract shared by every backend:
    - each mutation is a single atomic read-modify-write, serialized per store
    - reads return copies; mutating a returned record never changes the store
    - backend failures surface as StorageError
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime

from nudge.core.errors import StorageError
from nudge.core.preferences import Preferences
from nudge.core.types import QueueKind, ScheduledItem, Subscription, utcnow
from nudge.scheduler.selector import select_daily_checkin_targets


class SubscriptionStore(ABC):
    """Subscriber records.  At most one per endpoint."""

    async def initialize(self) -> None:
        """Prepare the backend (create tables, files, ...)."""

    @abstractmethod
    async def upsert_by_endpoint(self, subscription: Subscription) -> Subscription:
        """Insert, or replace the record with the same endpoint."""
        ...

    @abstractmethod
    async def remove_by_endpoint(self, endpoint: str) -> bool:
        """Delete a subscriber. Returns True if it existed."""
        ...

    @abstractmethod
    async def update_preferences(
        self, endpoint: str, preferences: Preferences
    ) -> Subscription | None:
        """Replace the whole preferences object. None if the endpoint is unknown."""
        ...

    @abstractmethod
    async def get_by_endpoint(self, endpoint: str) -> Subscription | None:
        ...

    @abstractmethod
    async def list_all(self) -> list[Subscription]:
        ...

    async def list_due_for_daily_checkin(
        self, utc_hour: int, on: date | None = None
    ) -> list[Subscription]:
        """Subscribers whose daily check-in matches this UTC hour."""
        on = on or utcnow().date()
        return select_daily_checkin_targets(await self.list_all(), utc_hour, on)

    async def close(self) -> None:
        """Release backend resources."""


class ScheduleStore(ABC):
    """One queue of scheduled items, all of the same kind."""

    def __init__(self, kind: QueueKind) -> None:
        self.kind = kind

    async def initialize(self) -> None:
        """Prepare the backend (create tables, files, ...)."""

    @abstractmethod
    async def append(self, item: ScheduledItem) -> ScheduledItem:
        """Add an item. An existing item with the same id is replaced."""
        ...

    @abstractmethod
    async def get(self, item_id: str) -> ScheduledItem | None:
        ...

    @abstractmethod
    async def list_all(self) -> list[ScheduledItem]:
        """Every item, sent or not (sent items are delivery history)."""
        ...

    @abstractmethod
    async def list_due(self, now: datetime) -> list[ScheduledItem]:
        """Unsent items with scheduled_time <= now."""
        ...

    @abstractmethod
    async def mark_sent(
        self,
        item_id: str,
        sent_at: str | None = None,
        claimed: ScheduledItem | None = None,
    ) -> bool:
        """
        Mark an item sent.  Idempotent: marking an already-sent item keeps
        its first sent_at.

        With `claimed`, only the record the caller read is marked: if the id
        now holds a different record (an active check-in replaced while its
        push was in flight) nothing changes.  Returns False when the id is
        unknown or holds a different record.
        """
        ...

    @abstractmethod
    async def remove_by_correlation_id(self, event_id: str) -> bool:
        """Delete every item for an event. Returns True if any existed."""
        ...

    async def close(self) -> None:
        """Release backend resources."""

    def _check_cancellable(self) -> None:
        if self.kind is not QueueKind.ACTIVE_CHECKIN:
            raise StorageError(f"Items in the {self.kind.value} queue cannot be cancelled")


def is_same_record(stored: ScheduledItem, claimed: ScheduledItem | None) -> bool:
    """True if `stored` is still the record `claimed` was read from."""
    if claimed is None:
        return True
    return (
        stored.created_at == claimed.created_at
        and stored.scheduled_time == claimed.scheduled_time
    )
