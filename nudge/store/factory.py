"""
Build the three stores the engine needs from configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from nudge.core.config import NudgeConfig
from nudge.core.errors import ConfigError
from nudge.core.types import QueueKind
from nudge.store.base import ScheduleStore, SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    """Subscription store plus one schedule store per queue."""

    subscriptions: SubscriptionStore
    followups: ScheduleStore
    active_checkins: ScheduleStore

    def queue(self, kind: QueueKind) -> ScheduleStore:
        return self.followups if kind is QueueKind.FOLLOWUP else self.active_checkins

    async def initialize(self) -> None:
        await self.subscriptions.initialize()
        await self.followups.initialize()
        await self.active_checkins.initialize()

    async def close(self) -> None:
        await self.subscriptions.close()
        await self.followups.close()
        await self.active_checkins.close()


def build_stores(config: NudgeConfig) -> Stores:
    """Instantiate (but do not initialize) the configured backend."""
    backend = config.store.backend
    data_dir = config.get_store_path()

    if backend == "memory":
        from nudge.store.memory import MemoryScheduleStore, MemorySubscriptionStore

        stores = Stores(
            subscriptions=MemorySubscriptionStore(),
            followups=MemoryScheduleStore(QueueKind.FOLLOWUP),
            active_checkins=MemoryScheduleStore(QueueKind.ACTIVE_CHECKIN),
        )
    elif backend == "sqlite":
        from nudge.store.sqlite import SQLiteScheduleStore, SQLiteSubscriptionStore

        db_path = data_dir / "nudge.db"
        stores = Stores(
            subscriptions=SQLiteSubscriptionStore(db_path),
            followups=SQLiteScheduleStore(db_path, QueueKind.FOLLOWUP),
            active_checkins=SQLiteScheduleStore(db_path, QueueKind.ACTIVE_CHECKIN),
        )
    elif backend == "json":
        from nudge.store.jsonfile import (
            QUEUE_FILES,
            SUBSCRIPTIONS_FILE,
            JSONFileScheduleStore,
            JSONFileSubscriptionStore,
        )

        stores = Stores(
            subscriptions=JSONFileSubscriptionStore(data_dir / SUBSCRIPTIONS_FILE),
            followups=JSONFileScheduleStore(
                data_dir / QUEUE_FILES[QueueKind.FOLLOWUP], QueueKind.FOLLOWUP
            ),
            active_checkins=JSONFileScheduleStore(
                data_dir / QUEUE_FILES[QueueKind.ACTIVE_CHECKIN], QueueKind.ACTIVE_CHECKIN
            ),
        )
    else:
        raise ConfigError(f"Unknown store backend: {backend!r}")

    logger.debug(f"Using {backend} stores at {data_dir}")
    return stores
