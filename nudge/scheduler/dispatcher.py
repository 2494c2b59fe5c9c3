"""
Dispatcher — delivers due notifications and records terminal state.

For every due item:
    sent               → mark the item sent (persisted before moving on)
    subscriber gone    → mark sent too, so a dead endpoint is not retried,
                         then drop the subscriber (best effort)
    transient failure  → leave the item due; the next tick is the retry

An item whose subscriber no longer exists is treated as "gone" without
attempting delivery.  Daily check-ins have no queue entry, so a transient
failure there is simply lost for the hour.

Items are dispatched concurrently (bounded by a semaphore), each in its
own failure domain.  A StorageError lets the other items finish and then
aborts the pass.

An item replaced or cancelled while its push is in flight is left alone:
the mark only applies to the exact record that was read.

Residual risk: a crash after the push leaves the process but before the
mark lands means the item is sent again on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable

from nudge.core.errors import DispatchError, StorageError
from nudge.core.types import QueueKind, ScheduledItem, Subscription, utcnow
from nudge.notifications.base import TransportSender
from nudge.notifications.payloads import Branding, NotificationKind, Payload, build_payload
from nudge.store.base import ScheduleStore
from nudge.store.factory import Stores

logger = logging.getLogger(__name__)

_PAYLOAD_KIND = {
    QueueKind.FOLLOWUP: NotificationKind.POST_EVENT_FOLLOWUP,
    QueueKind.ACTIVE_CHECKIN: NotificationKind.ACTIVE_CHECKIN,
}

_QUEUE_LABEL = {
    QueueKind.FOLLOWUP: "Follow-ups",
    QueueKind.ACTIVE_CHECKIN: "Active check-ins",
}


class DispatchOutcome(str, Enum):
    SENT = "sent"
    SUBSCRIBER_GONE = "subscriber_gone"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass
class PassStats:
    """What one queue (or the daily check-in sweep) did during a pass."""

    queue: str
    selected: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0  # already sent, cancelled, or in flight elsewhere

    def record(self, outcome: DispatchOutcome | None) -> None:
        if outcome is None:
            self.skipped += 1
        elif outcome is DispatchOutcome.SENT:
            self.sent += 1
        else:
            self.failed += 1


class Dispatcher:
    """
    Usage:
        dispatcher = Dispatcher(stores, WebPushSender(config.push))
        stats = await dispatcher.dispatch_due(QueueKind.FOLLOWUP, now)
    """

    def __init__(
        self,
        stores: Stores,
        sender: TransportSender,
        branding: Branding | None = None,
        max_concurrent_sends: int = 10,
        remove_gone_subscribers: bool = True,
    ) -> None:
        self._stores = stores
        self._sender = sender
        self._branding = branding or Branding()
        self._semaphore = asyncio.Semaphore(max_concurrent_sends)
        self._remove_gone = remove_gone_subscribers
        self._in_flight: set[tuple[QueueKind, str]] = set()

    @property
    def branding(self) -> Branding:
        return self._branding

    # ── Single deliveries ─────────────────────────────────────────────────────

    async def deliver(self, subscriber: Subscription, payload: Payload) -> DispatchOutcome:
        """Send one payload and classify the result. Never raises for send errors."""
        try:
            result = await self._sender.send(subscriber.push_info(), payload)
        except Exception as e:
            logger.warning(f"Transport {self._sender.name} raised for {payload.tag}: {e}")
            return DispatchOutcome.TRANSIENT_FAILURE
        if result.ok:
            return DispatchOutcome.SENT
        if result.permanent_failure:
            return DispatchOutcome.SUBSCRIBER_GONE
        logger.debug(f"Transient failure for {payload.tag}: {result.reason}")
        return DispatchOutcome.TRANSIENT_FAILURE

    async def dispatch(
        self,
        item: ScheduledItem,
        subscriber: Subscription | None,
        payload: Payload,
    ) -> DispatchOutcome:
        """Deliver one scheduled item and record its terminal state."""
        store = self._stores.queue(item.kind)

        if subscriber is None:
            logger.info(f"Subscription not found for {item.id}; marking sent")
            await self._retire(store, item)
            return DispatchOutcome.SUBSCRIBER_GONE

        outcome = await self.deliver(subscriber, payload)
        if outcome is DispatchOutcome.SENT:
            await self._retire(store, item)
            logger.debug(f"{item.kind.value} sent for event {item.event_id}")
        elif outcome is DispatchOutcome.SUBSCRIBER_GONE:
            await self._retire(store, item)
            await self._forget_subscriber(subscriber.endpoint)
        else:
            logger.info(f"{item.kind.value} for event {item.event_id} left due for retry")
        return outcome

    async def _retire(self, store: ScheduleStore, item: ScheduledItem) -> None:
        # marks only the record that was read, never a replacement under the same id
        if not await store.mark_sent(item.id, claimed=item):
            logger.debug(f"{item.id} was replaced or cancelled while sending; left as is")

    # ── Passes ────────────────────────────────────────────────────────────────

    async def dispatch_daily_checkins(self, targets: Iterable[Subscription]) -> PassStats:
        """Send the daily check-in to every selected subscriber."""
        targets = list(targets)
        stats = PassStats(queue="daily-checkin", selected=len(targets))
        if not targets:
            logger.info("No daily check-ins scheduled for this hour")
            return stats

        payload = build_payload(NotificationKind.DAILY_CHECKIN, branding=self._branding)

        async def _one(sub: Subscription) -> DispatchOutcome:
            async with self._semaphore:
                outcome = await self.deliver(sub, payload)
            if outcome is DispatchOutcome.SUBSCRIBER_GONE:
                await self._forget_subscriber(sub.endpoint)
            return outcome

        for outcome in await asyncio.gather(*(_one(s) for s in targets)):
            stats.record(outcome)
        logger.info(f"Daily check-ins sent: {stats.sent}, Failed: {stats.failed}")
        return stats

    async def dispatch_due(self, kind: QueueKind, now: datetime | None = None) -> PassStats:
        """
        Deliver every due item in one queue.

        Raises DispatchError (from the StorageError) if the store failed;
        the remaining items are still attempted first.
        """
        store = self._stores.queue(kind)
        label = _QUEUE_LABEL[kind]
        due = await store.list_due(now or utcnow())
        stats = PassStats(queue=kind.value, selected=len(due))
        if not due:
            logger.debug(f"No {label.lower()} due at this time")
            return stats

        logger.info(f"Found {len(due)} {label.lower()} to send")
        results = await asyncio.gather(
            *(self._dispatch_one(store, item) for item in due),
            return_exceptions=True,
        )

        storage_error: StorageError | None = None
        for item, result in zip(due, results):
            if isinstance(result, StorageError):
                storage_error = storage_error or result
                stats.failed += 1
            elif isinstance(result, BaseException):
                logger.error(f"Error processing {item.id}: {result}", exc_info=result)
                stats.failed += 1
            else:
                stats.record(result)

        logger.info(f"{label} sent: {stats.sent}, Failed: {stats.failed}")
        if storage_error is not None:
            raise DispatchError(
                f"{label} pass aborted: {storage_error}", queue=kind.value
            ) from storage_error
        return stats

    async def _dispatch_one(
        self, store: ScheduleStore, item: ScheduledItem
    ) -> DispatchOutcome | None:
        key = (store.kind, item.id)
        if key in self._in_flight:
            logger.debug(f"{item.id} already in flight, skipping")
            return None
        self._in_flight.add(key)
        try:
            # Another pass may have finished (or a cancel removed) this item
            # since our snapshot was taken
            current = await store.get(item.id)
            if current is None or current.sent:
                return None
            subscriber = await self._stores.subscriptions.get_by_endpoint(
                current.subscription_endpoint
            )
            payload = build_payload(_PAYLOAD_KIND[store.kind], current.event_id, self._branding)
            async with self._semaphore:
                return await self.dispatch(current, subscriber, payload)
        finally:
            self._in_flight.discard(key)

    async def _forget_subscriber(self, endpoint: str) -> None:
        """Advisory cleanup of a dead endpoint; failure here is only logged."""
        if not self._remove_gone:
            logger.info(f"Subscriber gone, removal disabled: {endpoint[:50]}")
            return
        try:
            removed = await self._stores.subscriptions.remove_by_endpoint(endpoint)
        except StorageError as e:
            logger.warning(f"Could not remove gone subscriber {endpoint[:50]}: {e}")
            return
        if removed:
            logger.info(f"Removed expired subscription {endpoint[:50]}")
