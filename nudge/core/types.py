"""
Nudge shared types — the records every layer passes around.

Subscriptions and scheduled items are dataclasses.  Their to_dict /
from_dict methods produce the persisted camelCase shape so that any store
backend (and existing JSON data files) read and write the same records:

    Subscription:   {endpoint, keys, preferences, createdAt, updatedAt}
    ScheduledItem:  {id, attackId, scheduledTime, subscriptionEndpoint,
                     sent, sentAt?, createdAt}
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from nudge.core.errors import ValidationError
from nudge.core.preferences import Preferences

logger = logging.getLogger(__name__)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class QueueKind(str, Enum):
    """Which deferred queue a scheduled item lives in."""

    FOLLOWUP = "followup"
    ACTIVE_CHECKIN = "active-checkin"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Time helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a trailing Z."""
    value = as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def now_iso() -> str:
    return to_iso(utcnow())


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(value: Any) -> datetime:
    """
    Parse an absolute instant.

    Accepts aware or naive datetimes, ISO-8601 strings (trailing 'Z' ok)
    and epoch milliseconds.  Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_utc(datetime.fromisoformat(text))
    raise ValueError(f"Not a timestamp: {value!r}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Records
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class Subscription:
    """A push endpoint plus what its owner wants to receive."""

    endpoint: str                       # unique key
    keys: dict[str, str] = field(default_factory=dict)  # opaque, passed to the transport
    preferences: Preferences | None = field(default_factory=Preferences)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def push_info(self) -> dict[str, Any]:
        """The credentials a transport sender needs to reach this endpoint."""
        return {"endpoint": self.endpoint, "keys": dict(self.keys)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "keys": dict(self.keys),
            "preferences": self.preferences.to_dict() if self.preferences else None,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Subscription:
        """
        Decode a stored record.

        Stored preferences are read leniently: a record written before the
        dailyCheckIn block existed reads as daily check-in disabled, and
        preferences that no longer validate are dropped (None) with a
        warning so one bad record cannot stall a pass.  New preferences
        are validated strictly on the write path instead.
        """
        return cls(
            endpoint=d["endpoint"],
            keys=dict(d.get("keys") or {}),
            preferences=_stored_preferences(d["endpoint"], d.get("preferences")),
            created_at=d.get("createdAt") or now_iso(),
            updated_at=d.get("updatedAt") or d.get("createdAt") or now_iso(),
        )


def _stored_preferences(endpoint: str, prefs: Any) -> Preferences | None:
    if not prefs:
        return None
    if isinstance(prefs, dict) and "dailyCheckIn" not in prefs:
        prefs = {**prefs, "dailyCheckIn": {"enabled": False}}
    try:
        return Preferences.from_dict(prefs)
    except ValidationError as e:
        logger.warning(f"Ignoring stored preferences of {endpoint[:60]}: {e.message}")
        return None


def make_item_id(kind: QueueKind, event_id: str, created: datetime | None = None) -> str:
    """
    Follow-ups:      followup-<event>-<epoch ms>-<suffix>  (many per event)
    Active check-ins: active-checkin-<event>               (one per event)
    """
    if kind is QueueKind.ACTIVE_CHECKIN:
        return f"active-checkin-{event_id}"
    millis = int((created or utcnow()).timestamp() * 1000)
    return f"followup-{event_id}-{millis}-{uuid.uuid4().hex[:6]}"


@dataclass
class ScheduledItem:
    """A one-shot notification waiting for its due time."""

    event_id: str
    scheduled_time: datetime            # aware, UTC
    subscription_endpoint: str          # back-reference, resolved at dispatch time
    kind: QueueKind = QueueKind.FOLLOWUP
    id: str = ""
    sent: bool = False
    sent_at: str | None = None
    created_at: str = field(default_factory=now_iso)

    def __post_init__(self) -> None:
        self.event_id = str(self.event_id)
        self.scheduled_time = as_utc(self.scheduled_time)
        if not self.id:
            self.id = make_item_id(self.kind, self.event_id)

    def is_due(self, now: datetime) -> bool:
        return not self.sent and self.scheduled_time <= as_utc(now)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "attackId": self.event_id,
            "scheduledTime": to_iso(self.scheduled_time),
            "subscriptionEndpoint": self.subscription_endpoint,
            "sent": self.sent,
            "createdAt": self.created_at,
        }
        if self.sent_at:
            d["sentAt"] = self.sent_at
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any], kind: QueueKind) -> ScheduledItem:
        event_id = d.get("attackId", d.get("eventId"))
        return cls(
            id=d["id"],
            event_id=str(event_id),
            scheduled_time=parse_instant(d["scheduledTime"]),
            # no target reads as "" which never resolves, so dispatch retires it
            subscription_endpoint=d.get("subscriptionEndpoint") or "",
            kind=kind,
            sent=bool(d.get("sent", False)),
            sent_at=d.get("sentAt"),
            created_at=d.get("createdAt") or now_iso(),
        )
