import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from appointment_engine.core.config import settings
from appointment_engine.services import notification_service
from appointment_engine.services.notification_service import (
    AppointmentSnapshot,
    LoggingNotifier,
    ResendNotifier,
)


def _snapshot(**overrides) -> AppointmentSnapshot:
    fields = {
        "appointment_id": uuid.uuid4(),
        "title": "Physio session",
        "description": "Wear comfortable clothes",
        "start_time": datetime(2024, 6, 10, 15, 0, tzinfo=timezone.utc),
        "timezone": "Europe/Berlin",
        "status": "scheduled",
    }
    fields.update(overrides)
    return AppointmentSnapshot(**fields)


def _recipient(email: str | None = "jane@example.com"):
    return SimpleNamespace(id=uuid.uuid4(), name="Jane", email=email)


def test_snapshot_local_start_time_uses_appointment_timezone():
    snapshot = _snapshot()

    assert snapshot.local_start_time.hour == 17
    assert _snapshot(timezone="Not/AZone").local_start_time == snapshot.start_time


def test_snapshot_from_appointment(make_appointment, db):
    appointment = make_appointment(title="Check-up")
    reminder = appointment.reminders[0]

    snapshot = AppointmentSnapshot.from_appointment(appointment, reminder)

    assert snapshot.appointment_id == appointment.id
    assert snapshot.title == "Check-up"
    assert snapshot.reminder_id == reminder.id
    assert snapshot.offset_label == "default"


@pytest.mark.asyncio
async def test_resend_notifier_sends_email(monkeypatch):
    import resend

    monkeypatch.setattr(resend, "api_key", None, raising=False)
    captured = {}

    def fake_send(params):
        captured.update(params)
        return {"id": "msg_123"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    notifier = ResendNotifier("re_test_key", "reminders@example.com")

    await notifier.send(_recipient(), _snapshot())

    assert resend.api_key == "re_test_key"
    assert captured["from"] == "reminders@example.com"
    assert captured["to"] == ["jane@example.com"]
    assert captured["subject"] == "Appointment Reminder: Physio session"
    assert "Hello Jane!" in captured["text"]
    assert "Wear comfortable clothes" in captured["text"]
    assert "05:00 PM" in captured["text"]


@pytest.mark.asyncio
async def test_resend_notifier_requires_email():
    notifier = ResendNotifier("re_test_key", "reminders@example.com")

    with pytest.raises(ValueError):
        await notifier.send(_recipient(email=None), _snapshot())


@pytest.mark.asyncio
async def test_logging_notifier_does_not_raise():
    await LoggingNotifier().send(_recipient(), _snapshot())


def test_build_notifier_depends_on_api_key(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "")
    assert isinstance(notification_service.build_notifier(), LoggingNotifier)

    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_live")
    notifier = notification_service.build_notifier()
    assert isinstance(notifier, ResendNotifier)
    assert notifier.from_address == settings.EMAIL_FROM


def test_set_notifier_overrides_default():
    custom = LoggingNotifier()
    notification_service.set_notifier(custom)
    try:
        assert notification_service.get_notifier() is custom
    finally:
        notification_service.set_notifier(None)
