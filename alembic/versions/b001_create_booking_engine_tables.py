"""Create booking engine tables

Revision ID: b001_booking_engine
Revises:
Create Date: 2026-10-19

This migration creates the tables for the capacity and waitlist engine:
- sessions: bookable sessions with the occupied-seat counter
- bookings: one row per (session, owner)
- waitlist_entries: new-spot and add-guest queue
- notification_outbox: notifications written with the state change
- booking_refunds: queued and attempted post-event refunds
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = 'b001_booking_engine'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'sessions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),

        # Capacity
        sa.Column('max_capacity', sa.Integer(), nullable=False, server_default='20'),
        sa.Column('occupied_seats', sa.Integer(), nullable=False, server_default='0'),

        # Pricing (smallest currency unit)
        sa.Column('price_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='EUR'),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('max_capacity >= 0', name='check_session_capacity_positive'),
        sa.CheckConstraint('occupied_seats >= 0', name='check_session_occupied_positive'),
        sa.CheckConstraint('occupied_seats <= max_capacity', name='check_session_occupied_lte_capacity'),
    )
    op.create_index('ix_sessions_starts_at', 'sessions', ['starts_at'])

    op.create_table(
        'bookings',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=False),  # No FK - users live in the identity service

        # Contact snapshot
        sa.Column('contact_name', sa.String(), nullable=False),
        sa.Column('contact_email', sa.String(), nullable=False),
        sa.Column('contact_phone', sa.String(), nullable=True),

        sa.Column('guest_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='confirmed'),
        sa.Column('pending_payment_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_reference', sa.String(255), nullable=True),

        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('session_id', 'owner_id', name='unique_booking_session_owner'),
        sa.CheckConstraint('guest_count >= 0 AND guest_count <= 10', name='check_booking_guest_count'),
    )
    op.create_check_constraint(
        'check_booking_status',
        'bookings',
        "status IN ('pending_payment', 'confirmed', 'cancelled')"
    )
    op.create_check_constraint(
        'check_booking_cancel_reason',
        'bookings',
        "cancel_reason IS NULL OR cancel_reason IN ('owner', 'hold_expired', 'checkout_expired')"
    )
    op.create_index('ix_bookings_session_id', 'bookings', ['session_id'])
    op.create_index('ix_bookings_owner_id', 'bookings', ['owner_id'])
    op.create_index('ix_bookings_pending_payment_expires_at', 'bookings', ['pending_payment_expires_at'])
    op.create_index('ix_bookings_session_status', 'bookings', ['session_id', 'status'])

    op.create_table(
        'waitlist_entries',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=False),

        # Queue Management
        sa.Column('kind', sa.String(20), nullable=False, server_default='new_spot'),
        sa.Column('booking_id', sa.String(), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('guest_count', sa.Integer(), nullable=False, server_default='1'),

        sa.Column('contact_name', sa.String(), nullable=False),
        sa.Column('contact_email', sa.String(), nullable=False),
        sa.Column('contact_phone', sa.String(), nullable=True),
        sa.Column('payment_reference', sa.String(255), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('session_id', 'owner_id', 'kind', name='unique_waitlist_session_owner_kind'),
        sa.CheckConstraint('guest_count >= 1', name='check_waitlist_guest_count_positive'),
    )
    op.create_check_constraint(
        'check_waitlist_kind',
        'waitlist_entries',
        "kind IN ('new_spot', 'add_guest')"
    )
    op.create_index('ix_waitlist_entries_session_id', 'waitlist_entries', ['session_id'])
    op.create_index('ix_waitlist_entries_owner_id', 'waitlist_entries', ['owner_id'])
    op.create_index('ix_waitlist_entries_booking_id', 'waitlist_entries', ['booking_id'])
    op.create_index(
        'ix_waitlist_entries_session_kind_created',
        'waitlist_entries',
        ['session_id', 'kind', 'created_at']
    )

    op.create_table(
        'notification_outbox',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=False),
        sa.Column('payload', JSONB(), nullable=False),

        # Delivery tracking
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_notification_outbox_kind', 'notification_outbox', ['kind'])
    op.create_index('ix_notification_outbox_status_created', 'notification_outbox', ['status', 'created_at'])

    op.create_table(
        'booking_refunds',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('session_id', sa.String(), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('source_type', sa.String(20), nullable=False),
        sa.Column('source_id', sa.String(), nullable=False),
        sa.Column('payment_reference', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('provider_refund_id', sa.String(255), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.UniqueConstraint('source_type', 'source_id', name='unique_booking_refund_source'),
    )
    op.create_index('ix_booking_refunds_session_id', 'booking_refunds', ['session_id'])


def downgrade() -> None:
    op.drop_table('booking_refunds')
    op.drop_table('notification_outbox')
    op.drop_table('waitlist_entries')
    op.drop_table('bookings')
    op.drop_table('sessions')
