"""Tests for nudge/core/types.py"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from nudge.core.preferences import Preferences
from nudge.core.types import (
    QueueKind,
    ScheduledItem,
    Subscription,
    parse_instant,
    to_iso,
)

UTC = timezone.utc


class TestParseInstant:
    def test_iso_with_z(self):
        assert parse_instant("2026-10-19T19:00:00.000Z") == datetime(2026, 10, 19, 19, tzinfo=UTC)

    def test_iso_with_offset_converted_to_utc(self):
        assert parse_instant("2026-10-19T21:00:00+02:00") == datetime(2026, 10, 19, 19, tzinfo=UTC)

    def test_naive_taken_as_utc(self):
        assert parse_instant(datetime(2026, 1, 1, 8)) == datetime(2026, 1, 1, 8, tzinfo=UTC)

    def test_epoch_millis(self):
        assert parse_instant(0) == datetime(1970, 1, 1, tzinfo=UTC)

    @pytest.mark.parametrize("value", ["", "tomorrow", None, True, [], "2026-13-01"])
    def test_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            parse_instant(value)

    def test_to_iso_shape(self):
        assert to_iso(datetime(2026, 10, 19, 19, 5, 7, 123456, tzinfo=UTC)) == "2026-10-19T19:05:07.123Z"


class TestScheduledItem:
    def test_active_checkin_id_is_per_event(self):
        a = ScheduledItem("42", datetime.now(UTC), "ep", kind=QueueKind.ACTIVE_CHECKIN)
        b = ScheduledItem("42", datetime.now(UTC), "ep", kind=QueueKind.ACTIVE_CHECKIN)
        assert a.id == b.id == "active-checkin-42"

    def test_followup_ids_unique_per_item(self):
        a = ScheduledItem("42", datetime.now(UTC), "ep")
        b = ScheduledItem("42", datetime.now(UTC), "ep")
        assert a.id.startswith("followup-42-")
        assert a.id != b.id

    def test_event_id_normalised_to_text(self):
        item = ScheduledItem(42, datetime.now(UTC), "ep")  # type: ignore[arg-type]
        assert item.event_id == "42"

    def test_is_due(self):
        now = datetime(2026, 10, 19, 19, tzinfo=UTC)
        item = ScheduledItem("1", now - timedelta(days=30), "ep")
        assert item.is_due(now)
        assert not ScheduledItem("1", now + timedelta(seconds=1), "ep").is_due(now)
        item.sent = True
        assert not item.is_due(now)

    def test_persisted_shape(self):
        item = ScheduledItem(
            "42",
            datetime(2026, 10, 19, 19, tzinfo=UTC),
            "https://push.example/abc",
            id="followup-42-1",
            created_at="2026-10-19T17:00:00.000Z",
        )
        assert item.to_dict() == {
            "id": "followup-42-1",
            "attackId": "42",
            "scheduledTime": "2026-10-19T19:00:00.000Z",
            "subscriptionEndpoint": "https://push.example/abc",
            "sent": False,
            "createdAt": "2026-10-19T17:00:00.000Z",
        }

    def test_from_dict_accepts_event_id_alias(self):
        item = ScheduledItem.from_dict(
            {
                "id": "active-checkin-7",
                "eventId": 7,
                "scheduledTime": "2026-10-19T19:00:00Z",
                "subscriptionEndpoint": "ep",
                "sent": True,
                "sentAt": "2026-10-19T19:00:01.000Z",
            },
            QueueKind.ACTIVE_CHECKIN,
        )
        assert item.event_id == "7"
        assert item.sent is True
        assert item.kind is QueueKind.ACTIVE_CHECKIN
        assert item.to_dict()["sentAt"] == "2026-10-19T19:00:01.000Z"


class TestSubscription:
    def test_push_info_only_carries_credentials(self):
        sub = Subscription("https://push.example/abc", keys={"p256dh": "k", "auth": "a"})
        assert sub.push_info() == {
            "endpoint": "https://push.example/abc",
            "keys": {"p256dh": "k", "auth": "a"},
        }

    def test_round_trip(self):
        sub = Subscription("ep", keys={"auth": "a"})
        again = Subscription.from_dict(sub.to_dict())
        assert again == sub

    def test_record_without_preferences(self):
        sub = Subscription.from_dict({"endpoint": "ep", "keys": {}})
        assert sub.preferences is None
        assert sub.to_dict()["preferences"] is None

    def test_stored_record_without_daily_block_reads_as_disabled(self):
        sub = Subscription.from_dict(
            {
                "endpoint": "ep",
                "preferences": {"postAttackFollowUp": {"enabled": True, "delayHours": 3}},
            }
        )
        assert sub.preferences.daily_check_in.enabled is False
        assert sub.preferences.post_attack_follow_up.delay_hours == 3

    def test_new_preferences_without_daily_block_use_defaults(self):
        prefs = Preferences.from_dict({"postAttackFollowUp": {"enabled": True}})
        assert prefs.daily_check_in.enabled is True

    def test_stored_preferences_that_no_longer_validate_are_dropped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="nudge.core.types"):
            sub = Subscription.from_dict(
                {"endpoint": "ep", "preferences": {"dailyCheckIn": {"time": "7pm"}}}
            )
        assert sub.preferences is None
        assert "Ignoring stored preferences of ep" in caplog.text


class TestStoredItems:
    def test_item_without_target_decodes_with_empty_endpoint(self):
        item = ScheduledItem.from_dict(
            {"id": "followup-1-1", "attackId": 1, "scheduledTime": "2026-10-19T19:00:00.000Z"},
            QueueKind.FOLLOWUP,
        )
        assert item.subscription_endpoint == ""

    def test_item_without_id_is_rejected(self):
        with pytest.raises(KeyError):
            ScheduledItem.from_dict(
                {"attackId": 1, "scheduledTime": "2026-10-19T19:00:00.000Z"}, QueueKind.FOLLOWUP
            )
