"""Tests for the utcHour backfill of legacy daily check-ins."""

from __future__ import annotations

from datetime import date

import pytest

from nudge.core.preferences import Preferences
from nudge.core.types import Subscription
from nudge.scheduler.backfill import backfill_utc_hours, local_time_to_utc, needs_backfill

WINTER = date(2026, 1, 15)
SUMMER = date(2026, 7, 15)


def _legacy(endpoint, time="19:00", tz=None):
    daily = {"time": time}
    if tz:
        daily["timezone"] = tz
    return Subscription(endpoint, preferences=Preferences.from_dict({"dailyCheckIn": daily}))


class TestLocalTimeToUtc:
    def test_utc_is_identity(self):
        assert local_time_to_utc("19:30", "UTC", WINTER) == (19, 30)

    def test_daylight_saving_changes_the_hour(self):
        assert local_time_to_utc("19:00", "Europe/Berlin", WINTER) == (18, 0)
        assert local_time_to_utc("19:00", "Europe/Berlin", SUMMER) == (17, 0)

    def test_crosses_midnight(self):
        assert local_time_to_utc("20:00", "America/New_York", WINTER) == (1, 0)

    def test_unknown_timezone(self):
        with pytest.raises(ValueError):
            local_time_to_utc("19:00", "Mars/Olympus_Mons", WINTER)


def test_needs_backfill():
    assert needs_backfill(_legacy("a"))
    assert not needs_backfill(
        Subscription("b", preferences=Preferences.from_dict({"dailyCheckIn": {"utcHour": 3}}))
    )
    assert not needs_backfill(Subscription("c", preferences=None))


@pytest.mark.asyncio
class TestBackfill:
    async def test_updates_records_with_a_timezone(self, stores):
        await stores.subscriptions.upsert_by_endpoint(_legacy("a", "19:00", "Europe/Berlin"))

        report = await backfill_utc_hours(stores.subscriptions, reference=WINTER)

        assert report.updated == ["a"]
        daily = (await stores.subscriptions.get_by_endpoint("a")).preferences.daily_check_in
        assert daily.utc_hour == 18
        assert daily.utc_time == "18:00"
        assert daily.time == "19:00"

    async def test_default_timezone_fills_gaps(self, stores):
        await stores.subscriptions.upsert_by_endpoint(_legacy("a", "08:30"))

        report = await backfill_utc_hours(
            stores.subscriptions, default_timezone="America/New_York", reference=SUMMER
        )

        assert report.updated == ["a"]
        daily = (await stores.subscriptions.get_by_endpoint("a")).preferences.daily_check_in
        assert daily.utc_hour == 12
        assert daily.timezone == "America/New_York"

    async def test_skips_without_timezone(self, stores):
        await stores.subscriptions.upsert_by_endpoint(_legacy("a"))

        report = await backfill_utc_hours(stores.subscriptions, reference=WINTER)

        assert report.updated == []
        assert report.skipped == {"a": "no timezone"}
        daily = (await stores.subscriptions.get_by_endpoint("a")).preferences.daily_check_in
        assert daily.utc_hour is None

    async def test_dry_run_changes_nothing(self, stores):
        await stores.subscriptions.upsert_by_endpoint(_legacy("a", "19:00", "UTC"))

        report = await backfill_utc_hours(stores.subscriptions, reference=WINTER, dry_run=True)

        assert report.updated == ["a"]
        daily = (await stores.subscriptions.get_by_endpoint("a")).preferences.daily_check_in
        assert daily.utc_hour is None

    async def test_already_converted_records_untouched(self, stores):
        sub = Subscription("a", preferences=Preferences.from_dict({"dailyCheckIn": {"utcHour": 7}}))
        await stores.subscriptions.upsert_by_endpoint(sub)

        report = await backfill_utc_hours(stores.subscriptions, default_timezone="UTC")

        assert report.updated == [] and report.skipped == {}
