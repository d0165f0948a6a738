# slotbook/models/notification_outbox.py
"""
Transactional outbox for user notifications.

Rows are written in the same transaction as the booking change they report
and relayed to the dispatcher by a background job.
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, Integer, JSON, Index, func
from sqlalchemy.dialects.postgresql import JSONB
from slotbook.db.base_class import Base
from slotbook.constants.booking import OutboxStatus
from slotbook.utils.clock import utcnow


class OutboxMessage(Base):
    __tablename__ = "notification_outbox"

    id = Column(String, primary_key=True, default=lambda: f"ntf_{uuid.uuid4().hex[:12]}")
    kind = Column(String(50), nullable=False, index=True)  # waitlist_promotion, booking_confirmed, ...
    recipient = Column(String(255), nullable=False)  # email address
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)

    # Delivery tracking
    status = Column(String(20), nullable=False, server_default=OutboxStatus.PENDING, default=OutboxStatus.PENDING)
    attempts = Column(Integer, nullable=False, server_default="0", default=0)
    last_error = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    # Python default keeps rows from one transaction in insertion order
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow)

    __table_args__ = (
        Index("ix_notification_outbox_status_created", "status", "created_at"),
    )
