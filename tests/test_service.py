"""Tests for NotificationService: validation and scheduling requests."""

from __future__ import annotations

from datetime import timedelta

import pytest

from nudge.core.errors import ValidationError
from nudge.core.types import to_iso
from nudge.notifications.base import SendResult
from nudge.scheduler.dispatcher import DispatchOutcome
from nudge.service import NotificationService

ENDPOINT = "https://push.example/abc"
KEYS = {"p256dh": "key", "auth": "secret"}


@pytest.mark.asyncio
class TestSubscriptions:
    async def test_subscribe_with_defaults(self, service):
        sub = await service.subscribe(ENDPOINT, KEYS)
        assert sub.keys == KEYS
        assert sub.preferences.daily_check_in.enabled is True
        assert sub.preferences.active_attack_check_in.enabled is False

    async def test_subscribe_twice_keeps_one_record(self, service):
        await service.subscribe(ENDPOINT, KEYS)
        await service.subscribe(ENDPOINT, {"auth": "rotated"})
        subs = await service.list_subscriptions()
        assert len(subs) == 1
        assert subs[0].keys == {"auth": "rotated"}

    @pytest.mark.parametrize("endpoint", ["", "   ", None, 42])
    async def test_subscribe_requires_endpoint(self, service, endpoint):
        with pytest.raises(ValidationError) as exc_info:
            await service.subscribe(endpoint, KEYS)
        assert exc_info.value.field == "endpoint"

    async def test_unknown_preference_field_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.subscribe(ENDPOINT, KEYS, {"dailyCheckin": {"enabled": True}})
        assert await service.get_subscription(ENDPOINT) is None

    async def test_update_preferences(self, service):
        await service.subscribe(ENDPOINT, KEYS)
        updated = await service.update_preferences(
            ENDPOINT, {"dailyCheckIn": {"utcHour": 6, "frequency": "every-other-day"}}
        )
        assert updated.preferences.daily_check_in.utc_hour == 6
        assert updated.preferences.daily_check_in.frequency == "every-other-day"

    async def test_update_preferences_unknown_endpoint(self, service):
        assert await service.update_preferences(ENDPOINT, {}) is None

    async def test_update_preferences_requires_preferences(self, service):
        await service.subscribe(ENDPOINT, KEYS)
        with pytest.raises(ValidationError):
            await service.update_preferences(ENDPOINT, None)

    async def test_unsubscribe(self, service):
        await service.subscribe(ENDPOINT, KEYS)
        assert await service.unsubscribe(ENDPOINT) is True
        assert await service.unsubscribe(ENDPOINT) is False


@pytest.mark.asyncio
class TestScheduling:
    async def test_schedule_follow_up(self, service, stores, now):
        item = await service.schedule_follow_up(42, to_iso(now + timedelta(hours=2)), ENDPOINT)
        assert item.event_id == "42"
        assert item.id.startswith("followup-42-")
        assert item.scheduled_time == now + timedelta(hours=2)
        assert [i.id for i in await stores.followups.list_all()] == [item.id]

    @pytest.mark.parametrize(
        "event_id,due,endpoint,field",
        [
            (None, "2026-10-19T21:00:00Z", ENDPOINT, "attackId"),
            ("", "2026-10-19T21:00:00Z", ENDPOINT, "attackId"),
            ("42", None, ENDPOINT, "scheduledTime"),
            ("42", "not a time", ENDPOINT, "scheduledTime"),
            ("42", "2026-10-19T21:00:00Z", "", "subscriptionEndpoint"),
        ],
    )
    async def test_schedule_follow_up_validation(self, service, stores, event_id, due, endpoint, field):
        with pytest.raises(ValidationError) as exc_info:
            await service.schedule_follow_up(event_id, due, endpoint)
        assert exc_info.value.field == field
        assert await stores.followups.list_all() == []

    async def test_schedule_follow_up_after_uses_delay_preference(self, service, now):
        await service.subscribe(ENDPOINT, KEYS, {"postAttackFollowUp": {"delayHours": 3}})
        item = await service.schedule_follow_up_after("42", ENDPOINT, ended_at=now)
        assert item.scheduled_time == now + timedelta(hours=3)

    async def test_schedule_follow_up_after_disabled(self, service, stores, now):
        await service.subscribe(ENDPOINT, KEYS, {"postAttackFollowUp": {"enabled": False}})
        assert await service.schedule_follow_up_after("42", ENDPOINT, ended_at=now) is None
        assert await stores.followups.list_all() == []

    async def test_schedule_follow_up_after_unknown_subscriber(self, service):
        with pytest.raises(ValidationError):
            await service.schedule_follow_up_after("42", ENDPOINT)

    async def test_active_checkin_replaces_earlier_one(self, service, stores, now):
        await service.schedule_active_checkin("42", now + timedelta(hours=1), ENDPOINT)
        second = await service.schedule_active_checkin("42", now + timedelta(hours=3), ENDPOINT)

        items = await stores.active_checkins.list_all()
        assert len(items) == 1
        assert items[0].id == "active-checkin-42"
        assert items[0].scheduled_time == second.scheduled_time

    async def test_cancel_then_reschedule(self, service, stores, now):
        await service.schedule_active_checkin("42", now + timedelta(hours=1), ENDPOINT)

        assert await service.cancel_active_checkin("42") is True
        assert await stores.active_checkins.list_all() == []
        # Idempotent
        assert await service.cancel_active_checkin("42") is False

        again = await service.schedule_active_checkin(42, now + timedelta(hours=2), ENDPOINT)
        items = await stores.active_checkins.list_all()
        assert [i.id for i in items] == [again.id]
        assert items[0].sent is False

    async def test_cancel_requires_event_id(self, service):
        with pytest.raises(ValidationError):
            await service.cancel_active_checkin(None)


@pytest.mark.asyncio
class TestSendTest:
    async def test_sends_test_payload(self, service, sender):
        await service.subscribe(ENDPOINT, KEYS)
        assert await service.send_test(ENDPOINT) is DispatchOutcome.SENT
        assert sender.attempts[0][1].tag == "test"
        assert sender.attempts[0][1].title == "Aiding Migraine - Test"

    async def test_reports_gone_without_removing(self, service, sender):
        await service.subscribe(ENDPOINT, KEYS)
        sender.results[ENDPOINT] = SendResult.gone()
        assert await service.send_test(ENDPOINT) is DispatchOutcome.SUBSCRIBER_GONE

    async def test_unknown_subscriber(self, service):
        with pytest.raises(ValidationError):
            await service.send_test(ENDPOINT)

    async def test_needs_a_transport(self, stores):
        service = NotificationService(stores)
        await service.subscribe(ENDPOINT, KEYS)
        with pytest.raises(ValidationError):
            await service.send_test(ENDPOINT)
