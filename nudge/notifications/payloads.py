"""
Payload builder — what the service worker receives for each kind of
notification.

Tags name a notification *stream*: the browser replaces a shown
notification that has the same tag, so repeats of one stream collapse
(e.g. active-checkin-42) while different events stay separate.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class NotificationKind(str, Enum):
    DAILY_CHECKIN = "daily-checkin"
    POST_EVENT_FOLLOWUP = "post-event-followup"
    ACTIVE_CHECKIN = "active-checkin"
    TEST = "test"


@dataclass(frozen=True)
class Branding:
    """App-level strings shared by every payload."""

    title: str = "Aiding Migraine"
    icon: str = "./icons/icon-192x192.png"
    badge: str = "./icons/icon-72x72.png"


@dataclass(frozen=True)
class Payload:
    """Transport-agnostic notification message."""

    title: str
    body: str
    icon: str
    badge: str
    tag: str
    url: str
    type: str
    event_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "tag": self.tag,
            "url": self.url,
            "type": self.type,
        }
        if self.event_id is not None:
            d["attackId"] = self.event_id
        return d


_EVENT_KINDS = {NotificationKind.POST_EVENT_FOLLOWUP, NotificationKind.ACTIVE_CHECKIN}


def build_payload(
    kind: NotificationKind | str,
    event_id: str | int | None = None,
    branding: Branding | None = None,
) -> Payload:
    """
    Map a notification kind (plus its event, where it has one) to a payload.

    Raises ValueError for unknown kinds, or for event kinds with no event id.
    """
    kind = NotificationKind(kind)
    branding = branding or Branding()
    if kind in _EVENT_KINDS and (event_id is None or str(event_id) == ""):
        raise ValueError(f"{kind.value} payload needs an event id")

    base = dict(title=branding.title, icon=branding.icon, badge=branding.badge)

    if kind is NotificationKind.DAILY_CHECKIN:
        return Payload(
            **base,
            body="How was your day? Log your migraine status",
            tag="daily-checkin",
            url="./?action=log",
            type="daily-checkin",
        )
    if kind is NotificationKind.POST_EVENT_FOLLOWUP:
        return Payload(
            **base,
            body="How are you feeling now? Update your status",
            tag=f"followup-{event_id}",
            url=f"./?action=update&attackId={event_id}",
            type="post-attack-followup",
            event_id=str(event_id),
        )
    if kind is NotificationKind.ACTIVE_CHECKIN:
        return Payload(
            **base,
            body="How is your migraine? Update your pain level or add relief methods",
            tag=f"active-checkin-{event_id}",
            url="./?action=active-checkin",
            type="active-attack-checkin",
            event_id=str(event_id),
        )
    return Payload(
        title=f"{branding.title} - Test",
        icon=branding.icon,
        badge=branding.badge,
        body="This is a test notification from the server",
        tag="test",
        url="./",
        type="test",
    )
