"""
Trigger implementations — compute when the next tick of a pass is due.

All times are unix timestamps and cron expressions are evaluated in UTC,
so the hourly pass lines up with the UTC hours subscriptions are stored in.

Usage:
    trigger = make_trigger({"type": "cron", "expression": "*/15 * * * *"})
    next_ts = trigger.next_fire_time(after=time.time())
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone

from croniter import croniter


class Trigger(ABC):
    """Computes the next fire timestamp for a recurring pass."""

    @abstractmethod
    def next_fire_time(self, after: float) -> float:
        """Return the first fire time strictly after `after`."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description, e.g. 'cron(0 * * * *)'."""
        ...


class CronTrigger(Trigger):
    """
    Fires on a cron schedule.

    expression: standard 5-field cron string, e.g. "0 * * * *"
    """

    def __init__(self, expression: str) -> None:
        if not croniter.is_valid(expression):
            raise ValueError(f"Invalid cron expression: {expression!r}")
        self._expression = expression

    def next_fire_time(self, after: float) -> float:
        base = datetime.fromtimestamp(after, tz=timezone.utc)
        return croniter(self._expression, base).get_next(float)

    @property
    def description(self) -> str:
        return f"cron({self._expression})"


class IntervalTrigger(Trigger):
    """Fires every N seconds, counted from the previous fire."""

    def __init__(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError("Interval must be positive")
        self._seconds = seconds

    def next_fire_time(self, after: float) -> float:
        return after + self._seconds

    @property
    def description(self) -> str:
        s = self._seconds
        if s % 3600 == 0:
            return f"every {int(s // 3600)}h"
        if s % 60 == 0:
            return f"every {int(s // 60)}m"
        return f"every {s:g}s"


def make_trigger(trigger_dict: dict) -> Trigger:
    """
    Build a Trigger from its dict form.

    Raises ValueError for unknown trigger types.
    """
    t = trigger_dict.get("type", "")
    if t == "cron":
        return CronTrigger(trigger_dict["expression"])
    elif t == "interval":
        return IntervalTrigger(float(trigger_dict["seconds"]))
    else:
        raise ValueError(f"Unknown trigger type: {t!r}")
