# slotbook/crud/crud_notification_outbox.py
"""
CRUD operations for the notification outbox.
"""
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import and_, or_

from slotbook.constants.booking import OutboxStatus
from slotbook.models.notification_outbox import OutboxMessage
from slotbook.utils.clock import utcnow


def enqueue_notification(
    db: Session,
    *,
    kind: str,  # see NotificationKind
    recipient: str,  # email address
    payload: Dict[str, Any],
) -> OutboxMessage:
    """Add an outbox row to the current transaction (flushed, not committed)."""
    message = OutboxMessage(
        kind=kind,
        recipient=recipient,
        payload=payload,
        status=OutboxStatus.PENDING,
        attempts=0,
    )
    db.add(message)
    db.flush()
    return message


def get_dispatchable(
    db: Session,
    *,
    max_attempts: int,
    limit: int = 100,
) -> List[OutboxMessage]:
    """Pending rows plus failed rows that still have attempts left, oldest first."""
    return (
        db.query(OutboxMessage)
        .filter(
            or_(
                OutboxMessage.status == OutboxStatus.PENDING,
                and_(
                    OutboxMessage.status == OutboxStatus.FAILED,
                    OutboxMessage.attempts < max_attempts,
                ),
            )
        )
        .order_by(OutboxMessage.created_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )


def mark_sent(db: Session, *, message: OutboxMessage) -> OutboxMessage:
    message.status = OutboxStatus.SENT
    message.attempts = (message.attempts or 0) + 1
    message.sent_at = utcnow()
    message.last_error = None
    db.flush()
    return message


def mark_failed(db: Session, *, message: OutboxMessage, error: str) -> OutboxMessage:
    message.status = OutboxStatus.FAILED
    message.attempts = (message.attempts or 0) + 1
    message.last_error = error[:2000]
    db.flush()
    return message


def get_by_kind(
    db: Session,
    kind: str,
    status: Optional[str] = None,
) -> List[OutboxMessage]:
    """Get outbox rows of one kind, optionally filtered by status."""
    query = db.query(OutboxMessage).filter(OutboxMessage.kind == kind)
    if status:
        query = query.filter(OutboxMessage.status == status)
    return query.order_by(OutboxMessage.created_at.asc()).all()
