# slotbook/services/notifications.py
"""
Notification dispatch for booking events.

Services never talk to the dispatcher directly. They append rows to the
notification outbox inside their own transaction (``queue_notification``),
and ``dispatch_pending_notifications`` relays those rows afterwards. A
delivery failure is recorded on the row and retried; it never touches the
booking state that was already committed.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from slotbook.core.config import settings
from slotbook.core.kafka_producer import get_kafka_singleton
from slotbook.crud import crud_notification_outbox
from slotbook.models.booking import Booking
from slotbook.models.session import Session as SessionModel
from slotbook.schemas.sweep import OutboxRelaySummary

logger = logging.getLogger(__name__)

# Kafka Topics
TOPIC_BOOKING_NOTIFICATIONS = "booking.notifications.v1"


class NotificationDeliveryError(Exception):
    """Raised by a dispatcher when a notification could not be handed off."""


class NotificationDispatcher(ABC):
    """Fire-and-forget notification transport."""

    @abstractmethod
    def notify(self, kind: str, recipient: str, payload: Dict[str, Any]) -> None:
        """
        Hand one notification to the transport.

        Raises:
            NotificationDeliveryError: if the transport refused it
        """
        pass


class KafkaNotificationDispatcher(NotificationDispatcher):
    """
    Publishes notifications to Kafka for the email consumer.
    """

    def __init__(self, topic: str = TOPIC_BOOKING_NOTIFICATIONS, send_timeout: float = 10):
        self.topic = topic
        self.send_timeout = send_timeout

    def notify(self, kind: str, recipient: str, payload: Dict[str, Any]) -> None:
        producer = get_kafka_singleton()
        if producer is None:
            raise NotificationDeliveryError("Kafka producer unavailable")

        event_data = {
            "type": kind,
            "recipient": recipient,
            "payload": payload,
        }
        try:
            future = producer.send(self.topic, value=event_data)
            # Wait for the broker ack so a failure is recorded on the outbox row
            future.get(timeout=self.send_timeout)
        except Exception as e:
            raise NotificationDeliveryError(str(e)) from e

        logger.info(f"Published {kind} notification to {self.topic}")


def payment_link(booking_id: str) -> str:
    """Link a promoted user follows to pay for their held seat."""
    return f"{settings.FRONTEND_URL.rstrip('/')}/play/payment?pending={booking_id}"


def session_details(session_obj: SessionModel) -> Dict[str, Any]:
    return {
        "sessionId": session_obj.id,
        "sessionTitle": session_obj.title,
        "startsAt": session_obj.starts_at.isoformat() if session_obj.starts_at else None,
    }


def queue_notification(
    db: Session,
    *,
    kind: str,
    booking: Optional[Booking] = None,
    recipient: Optional[str] = None,
    session_obj: Optional[SessionModel] = None,
    **extra: Any,
) -> None:
    """
    Add a notification to the outbox in the caller's transaction.

    The recipient defaults to the booking's contact email; a booking without
    one is skipped with a warning.
    """
    recipient = recipient or (booking.contact_email if booking is not None else None)
    if not recipient:
        logger.warning(f"No recipient for {kind} notification, skipping")
        return

    payload: Dict[str, Any] = {}
    if session_obj is not None:
        payload.update(session_details(session_obj))
    if booking is not None:
        payload.update({
            "bookingId": booking.id,
            "ownerId": booking.owner_id,
            "name": booking.contact_name,
            "guestCount": booking.guest_count,
        })
    payload.update(extra)

    crud_notification_outbox.enqueue_notification(
        db, kind=kind, recipient=recipient, payload=payload
    )


def dispatch_pending_notifications(
    db: Session,
    dispatcher: NotificationDispatcher,
    *,
    max_attempts: Optional[int] = None,
    limit: Optional[int] = None,
) -> OutboxRelaySummary:
    """
    Relay pending (and retryable failed) outbox rows to the dispatcher.

    Each row is committed on its own so one bad message never holds back
    the rest of the batch.
    """
    max_attempts = max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS
    limit = limit or settings.NOTIFICATION_BATCH_SIZE
    summary = OutboxRelaySummary()

    messages = crud_notification_outbox.get_dispatchable(
        db, max_attempts=max_attempts, limit=limit
    )

    for message in messages:
        summary.processed += 1
        try:
            dispatcher.notify(message.kind, message.recipient, message.payload or {})
        except Exception as e:
            logger.error(
                f"Failed to dispatch {message.kind} notification {message.id}: {e}",
                exc_info=True,
            )
            crud_notification_outbox.mark_failed(db, message=message, error=str(e))
            db.commit()
            summary.failed += 1
            summary.errors.append(f"Notification {message.id} failed: {e}")
            continue

        crud_notification_outbox.mark_sent(db, message=message)
        db.commit()
        summary.sent += 1
        summary.succeeded += 1

    if messages:
        logger.info(
            f"Outbox relay processed {summary.processed} notification(s): "
            f"{summary.sent} sent, {summary.failed} failed"
        )
    return summary
