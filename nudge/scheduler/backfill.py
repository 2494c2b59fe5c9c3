"""
Backfill a real UTC hour into daily check-ins saved before utcHour existed.

Legacy records only carry the local "HH:MM" (and sometimes the IANA
timezone it was picked in).  Until they have a utcHour the selector
treats the local hour as UTC.  This converts local time → UTC for a
reference date and stores utcHour / utcTime, after which the fallback no
longer applies to them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from nudge.core.types import Subscription, utcnow
from nudge.store.base import SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass
class BackfillReport:
    updated: list[str] = field(default_factory=list)   # endpoints
    skipped: dict[str, str] = field(default_factory=dict)  # endpoint → reason


def local_time_to_utc(local_time: str, tz_name: str, on: date) -> tuple[int, int]:
    """
    Convert "HH:MM" in tz_name on the given date to a UTC (hour, minute).

    Raises ValueError for a malformed time or unknown timezone.
    """
    hour_text, _, minute_text = local_time.partition(":")
    hour, minute = int(hour_text), int(minute_text or 0)
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone {tz_name!r}") from e
    local = datetime(on.year, on.month, on.day, hour, minute, tzinfo=tz)
    utc = local.astimezone(timezone.utc)
    return utc.hour, utc.minute


def needs_backfill(subscription: Subscription) -> bool:
    prefs = subscription.preferences
    return prefs is not None and prefs.daily_check_in.utc_hour is None


async def backfill_utc_hours(
    store: SubscriptionStore,
    default_timezone: str | None = None,
    reference: date | None = None,
    dry_run: bool = False,
) -> BackfillReport:
    """
    Store utcHour / utcTime for every legacy daily check-in that can be resolved.

    Records with neither their own timezone nor default_timezone are
    skipped and keep the UTC fallback.
    """
    on = reference or utcnow().date()
    report = BackfillReport()

    for sub in await store.list_all():
        if not needs_backfill(sub):
            continue
        daily = sub.preferences.daily_check_in
        tz_name = daily.timezone or default_timezone
        if not tz_name:
            report.skipped[sub.endpoint] = "no timezone"
            continue
        try:
            hour, minute = local_time_to_utc(daily.time, tz_name, on)
        except ValueError as e:
            report.skipped[sub.endpoint] = str(e)
            continue

        prefs = sub.preferences.model_copy(deep=True)
        prefs.daily_check_in = prefs.daily_check_in.model_copy(
            update={
                "utc_hour": hour,
                "utc_time": f"{hour:02d}:{minute:02d}",
                "timezone": tz_name,
            }
        )
        if not dry_run:
            await store.update_preferences(sub.endpoint, prefs)
        report.updated.append(sub.endpoint)
        logger.info(f"Backfilled utcHour={hour} for {sub.endpoint[:50]} ({daily.time} {tz_name})")

    return report
