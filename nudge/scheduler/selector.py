"""
Due selection — which subscribers and queued items fire on this tick.

Everything here is pure: it takes a snapshot and "now" and returns the
subset that should be delivered.  Nothing remembers earlier ticks, so a
daily check-in fires at most once per hour only because the hourly pass
runs once per hour.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable

from nudge.core.types import ScheduledItem, Subscription, as_utc

logger = logging.getLogger(__name__)


def day_of_year(on: date) -> int:
    """1-based day number: Jan 1 is day 1."""
    return (on - date(on.year, 1, 1)).days + 1


def every_other_day_gate(on: date) -> bool:
    """
    True on even days of the year.

    Depends only on the date, so every every-other-day subscriber gets the
    same answer on a given day.
    """
    return day_of_year(on) % 2 == 0


def legacy_target_hour(local_time: str | None) -> int | None:
    """
    Compatibility shim for records saved before utcHour existed.

    The stored "HH:MM" is local wall-clock time, but its hour is used as if
    it were already UTC.  `nudge backfill` stores a real utcHour for these
    records; until then this fallback keeps their old behaviour.
    """
    if not local_time:
        return None
    hour_text, _, _ = local_time.partition(":")
    try:
        hour = int(hour_text)
    except ValueError:
        return None
    return hour if 0 <= hour <= 23 else None


def target_utc_hour(subscription: Subscription) -> int | None:
    """The UTC hour a subscription's daily check-in is meant for, if any."""
    if subscription.preferences is None:
        return None
    daily = subscription.preferences.daily_check_in
    if daily.utc_hour is not None:
        return daily.utc_hour
    return legacy_target_hour(daily.time)


def select_daily_checkin_targets(
    subscriptions: Iterable[Subscription],
    now_utc_hour: int,
    now_date: date,
) -> list[Subscription]:
    """Subscriptions whose daily check-in matches this UTC hour and date."""
    gate_open = every_other_day_gate(now_date)
    selected: list[Subscription] = []
    for sub in subscriptions:
        if sub.preferences is None or not sub.preferences.daily_check_in.enabled:
            continue
        hour = target_utc_hour(sub)
        if hour is None:
            logger.debug(f"Daily check-in for {sub.endpoint[:40]} has no usable time")
            continue
        if hour != now_utc_hour:
            continue
        if sub.preferences.daily_check_in.frequency == "every-other-day" and not gate_open:
            continue
        selected.append(sub)
    return selected


def select_due_items(items: Iterable[ScheduledItem], now: datetime) -> list[ScheduledItem]:
    """Unsent items whose due time has passed, however long ago."""
    now = as_utc(now)
    return [item for item in items if item.is_due(now)]
