"""
NotificationService — the requests an outer layer (HTTP handlers, CLI,
the app's own backend) makes into the delivery engine.

This is the validation boundary: malformed requests raise ValidationError
here and never reach the stores.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from nudge.core.errors import ValidationError
from nudge.core.preferences import Preferences
from nudge.core.types import (
    QueueKind,
    ScheduledItem,
    Subscription,
    now_iso,
    parse_instant,
    utcnow,
)
from nudge.notifications.payloads import NotificationKind, build_payload
from nudge.scheduler.dispatcher import Dispatcher, DispatchOutcome
from nudge.store.factory import Stores

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Usage:
        service = NotificationService(stores, dispatcher)
        await service.subscribe(endpoint, keys, {"dailyCheckIn": {"utcHour": 19}})
        await service.schedule_follow_up("42", "2026-10-19T21:00:00Z", endpoint)
    """

    def __init__(self, stores: Stores, dispatcher: Dispatcher | None = None) -> None:
        self._stores = stores
        self._dispatcher = dispatcher

    # ── Subscriptions ─────────────────────────────────────────────────────────

    async def subscribe(
        self,
        endpoint: str,
        keys: dict[str, str] | None = None,
        preferences: dict[str, Any] | Preferences | None = None,
    ) -> Subscription:
        """Register an endpoint, replacing any earlier record for it."""
        endpoint = _require_text(endpoint, "endpoint")
        prefs = Preferences.from_dict(preferences) if preferences is not None else Preferences()
        now = now_iso()
        subscription = Subscription(
            endpoint=endpoint,
            keys=dict(keys or {}),
            preferences=prefs,
            created_at=now,
            updated_at=now,
        )
        saved = await self._stores.subscriptions.upsert_by_endpoint(subscription)
        logger.info(f"Subscription saved for {endpoint[:50]}")
        return saved

    async def unsubscribe(self, endpoint: str) -> bool:
        endpoint = _require_text(endpoint, "endpoint")
        return await self._stores.subscriptions.remove_by_endpoint(endpoint)

    async def update_preferences(
        self, endpoint: str, preferences: dict[str, Any] | Preferences
    ) -> Subscription | None:
        """Replace a subscriber's preferences wholesale. None if unknown."""
        endpoint = _require_text(endpoint, "endpoint")
        if preferences is None:
            raise ValidationError("preferences are required", field="preferences")
        prefs = Preferences.from_dict(preferences)
        return await self._stores.subscriptions.update_preferences(endpoint, prefs)

    async def get_subscription(self, endpoint: str) -> Subscription | None:
        return await self._stores.subscriptions.get_by_endpoint(endpoint)

    async def list_subscriptions(self) -> list[Subscription]:
        return await self._stores.subscriptions.list_all()

    # ── Scheduled items ───────────────────────────────────────────────────────

    async def schedule_follow_up(
        self, event_id: str | int, due_time: Any, endpoint: str
    ) -> ScheduledItem:
        """Queue a post-event follow-up. Several may be outstanding per event."""
        item = ScheduledItem(
            event_id=_require_event_id(event_id),
            scheduled_time=_require_instant(due_time),
            subscription_endpoint=_require_text(endpoint, "subscriptionEndpoint"),
            kind=QueueKind.FOLLOWUP,
        )
        saved = await self._stores.followups.append(item)
        logger.info(f"Follow-up scheduled for event {item.event_id} at {item.scheduled_time}")
        return saved

    async def schedule_follow_up_after(
        self, event_id: str | int, endpoint: str, ended_at: Any = None
    ) -> ScheduledItem | None:
        """
        Queue a follow-up using the subscriber's own delay preference.

        Returns None when the subscriber has follow-ups turned off.
        """
        sub = await self._require_subscriber(endpoint)
        follow_up = (sub.preferences or Preferences()).post_attack_follow_up
        if not follow_up.enabled:
            return None
        start = _require_instant(ended_at) if ended_at is not None else utcnow()
        due = start + timedelta(hours=follow_up.delay_hours)
        return await self.schedule_follow_up(event_id, due, sub.endpoint)

    async def schedule_active_checkin(
        self, event_id: str | int, due_time: Any, endpoint: str
    ) -> ScheduledItem:
        """
        Queue the check-in for an ongoing event.

        At most one per event: whatever the event already had is removed
        first, so the new request replaces it.
        """
        item = ScheduledItem(
            event_id=_require_event_id(event_id),
            scheduled_time=_require_instant(due_time),
            subscription_endpoint=_require_text(endpoint, "subscriptionEndpoint"),
            kind=QueueKind.ACTIVE_CHECKIN,
        )
        if await self._stores.active_checkins.remove_by_correlation_id(item.event_id):
            logger.debug(f"Replaced earlier active check-in for event {item.event_id}")
        saved = await self._stores.active_checkins.append(item)
        logger.info(f"Active check-in scheduled for event {item.event_id} at {item.scheduled_time}")
        return saved

    async def cancel_active_checkin(self, event_id: str | int) -> bool:
        """Remove the event's check-in if there is one. Safe to repeat."""
        event_id = _require_event_id(event_id)
        canceled = await self._stores.active_checkins.remove_by_correlation_id(event_id)
        if canceled:
            logger.info(f"Active check-in canceled for event {event_id}")
        return canceled

    # ── Debug ─────────────────────────────────────────────────────────────────

    async def send_test(self, endpoint: str) -> DispatchOutcome:
        """Push the test notification to a registered subscriber right now."""
        if self._dispatcher is None:
            raise ValidationError("No transport configured for test sends", field="transport")
        sub = await self._require_subscriber(endpoint)
        payload = build_payload(NotificationKind.TEST, branding=self._dispatcher.branding)
        outcome = await self._dispatcher.deliver(sub, payload)
        logger.info(f"Test notification to {endpoint[:50]}: {outcome.value}")
        return outcome

    async def _require_subscriber(self, endpoint: str) -> Subscription:
        endpoint = _require_text(endpoint, "endpoint")
        sub = await self._stores.subscriptions.get_by_endpoint(endpoint)
        if sub is None:
            raise ValidationError("Subscription not found", field="endpoint")
        return sub


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Validation helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _require_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required", field=name)
    return value.strip()


def _require_event_id(value: Any) -> str:
    if value is None or isinstance(value, bool) or str(value).strip() == "":
        raise ValidationError("attackId is required", field="attackId")
    return str(value).strip()


def _require_instant(value: Any) -> datetime:
    if value is None or value == "":
        raise ValidationError("scheduled time is required", field="scheduledTime")
    try:
        return parse_instant(value)
    except (ValueError, OverflowError, OSError) as e:
        raise ValidationError(f"Invalid scheduled time: {value!r}", field="scheduledTime") from e
