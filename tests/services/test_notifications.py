# tests/services/test_notifications.py
from unittest.mock import MagicMock, patch

import pytest

from slotbook.constants.booking import NotificationKind, OutboxStatus
from slotbook.crud import notification_outbox
from slotbook.services.notifications import (
    TOPIC_BOOKING_NOTIFICATIONS,
    KafkaNotificationDispatcher,
    NotificationDeliveryError,
    NotificationDispatcher,
    dispatch_pending_notifications,
    payment_link,
    queue_notification,
)


class RecordingDispatcher(NotificationDispatcher):
    """Collects notifications; fails for recipients listed in ``failing``."""

    def __init__(self, failing=()):
        self.sent = []
        self.failing = set(failing)

    def notify(self, kind, recipient, payload):
        if recipient in self.failing:
            raise NotificationDeliveryError(f"mailbox {recipient} unavailable")
        self.sent.append((kind, recipient, payload))


def _queue(db, recipient, kind=NotificationKind.WAITLIST_JOINED, **extra):
    queue_notification(db, kind=kind, recipient=recipient, **extra)
    db.commit()


def test_queue_notification_builds_payload_from_booking_and_session(db_session, make_session, seed_booking):
    session_obj = make_session(max_capacity=5, title="Evening Padel")
    booking = seed_booking(session_obj, "alice", guest_count=2)

    queue_notification(
        db_session,
        kind=NotificationKind.BOOKING_CONFIRMED,
        booking=booking,
        session_obj=session_obj,
        paymentLink="https://example.com/pay",
    )
    db_session.commit()

    message = notification_outbox.get_by_kind(db_session, NotificationKind.BOOKING_CONFIRMED)[0]
    assert message.recipient == "alice@example.com"
    assert message.status == OutboxStatus.PENDING
    assert message.payload["sessionTitle"] == "Evening Padel"
    assert message.payload["bookingId"] == booking.id
    assert message.payload["guestCount"] == 2
    assert message.payload["paymentLink"] == "https://example.com/pay"


def test_queue_notification_without_recipient_is_skipped(db_session):
    queue_notification(db_session, kind=NotificationKind.BOOKING_CANCELLED)
    db_session.commit()

    assert notification_outbox.get_by_kind(db_session, NotificationKind.BOOKING_CANCELLED) == []


def test_relay_marks_sent_and_failed_rows(db_session):
    _queue(db_session, "ok@example.com")
    _queue(db_session, "broken@example.com")
    dispatcher = RecordingDispatcher(failing={"broken@example.com"})

    summary = dispatch_pending_notifications(db_session, dispatcher)

    assert (summary.sent, summary.failed) == (1, 1)
    assert [recipient for _, recipient, _ in dispatcher.sent] == ["ok@example.com"]
    rows = {m.recipient: m for m in notification_outbox.get_by_kind(db_session, NotificationKind.WAITLIST_JOINED)}
    assert rows["ok@example.com"].status == OutboxStatus.SENT
    assert rows["ok@example.com"].sent_at is not None
    assert rows["broken@example.com"].status == OutboxStatus.FAILED
    assert "unavailable" in rows["broken@example.com"].last_error


def test_relay_retries_failed_rows_until_max_attempts(db_session):
    _queue(db_session, "broken@example.com")
    dispatcher = RecordingDispatcher(failing={"broken@example.com"})

    for _ in range(4):
        dispatch_pending_notifications(db_session, dispatcher, max_attempts=3)

    message = notification_outbox.get_by_kind(db_session, NotificationKind.WAITLIST_JOINED)[0]
    assert message.attempts == 3
    assert message.status == OutboxStatus.FAILED

    dispatcher.failing.clear()
    summary = dispatch_pending_notifications(db_session, dispatcher, max_attempts=5)
    assert summary.sent == 1


def test_relay_never_resends_sent_rows(db_session):
    _queue(db_session, "ok@example.com")
    dispatcher = RecordingDispatcher()

    dispatch_pending_notifications(db_session, dispatcher)
    second = dispatch_pending_notifications(db_session, dispatcher)

    assert second.processed == 0
    assert len(dispatcher.sent) == 1


def test_relay_respects_batch_limit(db_session):
    for i in range(3):
        _queue(db_session, f"user{i}@example.com")

    summary = dispatch_pending_notifications(db_session, RecordingDispatcher(), limit=2)

    assert summary.sent == 2
    pending = notification_outbox.get_by_kind(db_session, NotificationKind.WAITLIST_JOINED, status=OutboxStatus.PENDING)
    assert [m.recipient for m in pending] == ["user2@example.com"]


@patch("slotbook.services.notifications.get_kafka_singleton")
def test_kafka_dispatcher_publishes_and_waits_for_ack(mock_get_producer):
    producer = MagicMock()
    mock_get_producer.return_value = producer

    KafkaNotificationDispatcher().notify("waitlist_promotion", "a@example.com", {"bookingId": "bkg_1"})

    producer.send.assert_called_once_with(
        TOPIC_BOOKING_NOTIFICATIONS,
        value={"type": "waitlist_promotion", "recipient": "a@example.com", "payload": {"bookingId": "bkg_1"}},
    )
    producer.send.return_value.get.assert_called_once_with(timeout=10)


@patch("slotbook.services.notifications.get_kafka_singleton")
def test_kafka_dispatcher_wraps_broker_errors(mock_get_producer):
    producer = MagicMock()
    producer.send.return_value.get.side_effect = RuntimeError("broker timeout")
    mock_get_producer.return_value = producer

    with pytest.raises(NotificationDeliveryError, match="broker timeout"):
        KafkaNotificationDispatcher().notify("hold_expired", "a@example.com", {})


@patch("slotbook.services.notifications.get_kafka_singleton", return_value=None)
def test_kafka_dispatcher_without_producer(mock_get_producer):
    with pytest.raises(NotificationDeliveryError):
        KafkaNotificationDispatcher().notify("hold_expired", "a@example.com", {})


@patch("slotbook.services.notifications.settings")
def test_payment_link_points_at_frontend(mock_settings):
    mock_settings.FRONTEND_URL = "https://play.example.com/"

    assert payment_link("bkg_42") == "https://play.example.com/play/payment?pending=bkg_42"
