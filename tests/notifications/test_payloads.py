"""Tests for notification payloads."""

import pytest

from nudge.notifications.payloads import Branding, NotificationKind, build_payload


def test_daily_checkin():
    p = build_payload(NotificationKind.DAILY_CHECKIN)
    assert p.title == "Aiding Migraine"
    assert p.body == "How was your day? Log your migraine status"
    assert p.tag == "daily-checkin"
    assert p.url == "./?action=log"
    assert "attackId" not in p.to_dict()


def test_followup_carries_event():
    p = build_payload("post-event-followup", event_id=42)
    assert p.tag == "followup-42"
    assert p.url == "./?action=update&attackId=42"
    assert p.type == "post-attack-followup"
    assert p.to_dict()["attackId"] == "42"


def test_active_checkin():
    p = build_payload(NotificationKind.ACTIVE_CHECKIN, event_id="7")
    assert p.tag == "active-checkin-7"
    assert p.url == "./?action=active-checkin"
    assert p.type == "active-attack-checkin"


def test_test_payload_uses_branding():
    branding = Branding(title="Headache Log", icon="/i.png", badge="/b.png")
    p = build_payload(NotificationKind.TEST, branding=branding)
    assert p.title == "Headache Log - Test"
    assert p.icon == "/i.png"
    assert p.badge == "/b.png"
    assert p.tag == "test"


def test_same_event_same_tag():
    a = build_payload(NotificationKind.ACTIVE_CHECKIN, event_id="7")
    b = build_payload(NotificationKind.ACTIVE_CHECKIN, event_id="7")
    c = build_payload(NotificationKind.ACTIVE_CHECKIN, event_id="8")
    assert a.tag == b.tag != c.tag


@pytest.mark.parametrize("kind", [NotificationKind.POST_EVENT_FOLLOWUP, NotificationKind.ACTIVE_CHECKIN])
def test_event_kinds_need_an_id(kind):
    with pytest.raises(ValueError):
        build_payload(kind)


def test_unknown_kind():
    with pytest.raises(ValueError):
        build_payload("weekly-digest")
