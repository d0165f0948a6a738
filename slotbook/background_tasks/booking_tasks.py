# slotbook/background_tasks/booking_tasks.py
"""
Background tasks for the booking engine.

Run periodically by the scheduler (see slotbook/scheduler.py):
- expire_pending_payments_task(): every minute
- relay_notifications_task(): every minute
- process_available_spots_task(): every 5 minutes
- process_refunds_task(): hourly

Each task opens its own database session, runs one pass and closes it. A
task never raises: failures are logged and reported in the returned summary.
"""

import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from slotbook.db.session import SessionLocal
from slotbook.schemas.sweep import (
    ExpirySummary,
    OutboxRelaySummary,
    PromotionSweepSummary,
    RefundSummary,
)
from slotbook.services.notifications import (
    KafkaNotificationDispatcher,
    NotificationDispatcher,
    dispatch_pending_notifications,
)
from slotbook.services.payment.provider_interface import PaymentGatewayInterface
from slotbook.services.pending_payment_service import PendingPaymentService
from slotbook.services.refund_service import RefundService
from slotbook.services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def expire_pending_payments_task(session_factory: SessionFactory = SessionLocal) -> ExpirySummary:
    """Cancel holds whose payment window has passed and promote the next in line."""
    db = session_factory()
    try:
        summary = PendingPaymentService(db).expire_pending_payments()
        for error in summary.errors:
            logger.warning(f"Expiry sweep error: {error}")
        return summary
    except Exception as e:
        logger.error(f"Error in expire_pending_payments_task: {e}", exc_info=True)
        db.rollback()
        return ExpirySummary(errors=[str(e)])
    finally:
        db.close()


def process_available_spots_task(session_factory: SessionFactory = SessionLocal) -> PromotionSweepSummary:
    """Fill seats nobody has claimed yet from the waitlists."""
    db = session_factory()
    try:
        return WaitlistService(db).process_waitlists_for_available_spots()
    except Exception as e:
        logger.error(f"Error in process_available_spots_task: {e}", exc_info=True)
        db.rollback()
        return PromotionSweepSummary(errors=[str(e)])
    finally:
        db.close()


def relay_notifications_task(
    session_factory: SessionFactory = SessionLocal,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> OutboxRelaySummary:
    """Publish pending outbox rows."""
    db = session_factory()
    try:
        return dispatch_pending_notifications(db, dispatcher or KafkaNotificationDispatcher())
    except Exception as e:
        logger.error(f"Error in relay_notifications_task: {e}", exc_info=True)
        db.rollback()
        return OutboxRelaySummary(errors=[str(e)])
    finally:
        db.close()


def process_refunds_task(
    session_factory: SessionFactory = SessionLocal,
    gateway: Optional[PaymentGatewayInterface] = None,
) -> RefundSummary:
    """Refund unseated payments for sessions that are over."""
    db = session_factory()
    try:
        # The scheduler runs jobs on plain threads, so each run gets its own loop
        return asyncio.run(RefundService(db, gateway=gateway).process_refunds_for_completed_sessions())
    except Exception as e:
        logger.error(f"Error in process_refunds_task: {e}", exc_info=True)
        db.rollback()
        return RefundSummary(errors=[str(e)])
    finally:
        db.close()
