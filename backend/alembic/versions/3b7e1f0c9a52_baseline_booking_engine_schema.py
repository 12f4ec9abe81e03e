"""Baseline booking engine schema

Revision ID: 3b7e1f0c9a52
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b7e1f0c9a52'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('external_id', sa.String(255), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('business_name', sa.String(255), nullable=True),
        sa.Column('widget_id', sa.String(64), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('subscription_tier', sa.String(32), nullable=False, server_default='free'),
        sa.Column('subscription_status', sa.String(32), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('billing_interval', sa.String(16), nullable=True),
        sa.Column('current_period_end', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('monthly_bookings', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_usage_reset', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('gcal_credentials', sa.Text(), nullable=True),
        sa.Column('stripe_connect_account_id', sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_widget_id', 'users', ['widget_id'], unique=True)
    op.create_index('ix_users_stripe_customer_id', 'users', ['stripe_customer_id'])
    op.create_index('ix_users_stripe_subscription_id', 'users', ['stripe_subscription_id'])

    op.create_table(
        'availability_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=False),
        sa.Column('end_time', sa.String(5), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'day_of_week', name='uq_availability_rule_user_day'),
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_availability_rule_day_of_week'),
    )
    op.create_index('ix_availability_rules_id', 'availability_rules', ['id'])
    op.create_index('ix_availability_rules_user_id', 'availability_rules', ['user_id'])

    op.create_table(
        'date_overrides',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('start_time', sa.String(5), nullable=True),
        sa.Column('end_time', sa.String(5), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'date', name='uq_date_override_user_date'),
    )
    op.create_index('ix_date_overrides_id', 'date_overrides', ['id'])
    op.create_index('ix_date_overrides_user_id', 'date_overrides', ['user_id'])

    op.create_table(
        'appointment_types',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('buffer_before', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('buffer_after', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('require_payment', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('price', sa.Integer(), nullable=True),
        sa.Column('deposit_percent', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('enable_google_meet', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('refund_policy', sa.String(16), nullable=False, server_default='full'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_appointment_types_id', 'appointment_types', ['id'])
    op.create_index('ix_appointment_types_user_id', 'appointment_types', ['user_id'])

    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('appointment_type_id', sa.Integer(), sa.ForeignKey('appointment_types.id'), nullable=False),
        sa.Column('start_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('status', sa.String(16), nullable=False, server_default='confirmed'),
        sa.Column('visitor_name', sa.String(255), nullable=False),
        sa.Column('visitor_email', sa.String(255), nullable=False),
        sa.Column('visitor_phone', sa.String(64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('form_responses', sa.JSON(), nullable=True),
        sa.Column('payment_intent_id', sa.String(255), nullable=True, unique=True),
        sa.Column('payment_status', sa.String(32), nullable=True),
        sa.Column('amount_paid', sa.Integer(), nullable=True),
        sa.Column('refund_id', sa.String(255), nullable=True),
        sa.Column('refund_amount', sa.Integer(), nullable=True),
        sa.Column('refund_status', sa.String(32), nullable=True),
        sa.Column('cancellation_token', sa.String(128), nullable=False),
        sa.Column('calendar_event_id', sa.String(255), nullable=True),
        sa.Column('meeting_link', sa.String(512), nullable=True),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_appointments_id', 'appointments', ['id'])
    op.create_index('ix_appointments_user_id', 'appointments', ['user_id'])
    op.create_index('ix_appointments_cancellation_token', 'appointments', ['cancellation_token'], unique=True)
    op.create_index('idx_appointments_user_start', 'appointments', ['user_id', 'start_time'])
    # Storage-level guard against racing double inserts
    op.create_index(
        'uq_appointments_user_start_confirmed',
        'appointments',
        ['user_id', 'start_time'],
        unique=True,
        postgresql_where=sa.text("status = 'confirmed'"),
    )

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(128), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event'),
    )
    op.create_index('ix_webhook_events_id', 'webhook_events', ['id'])


def downgrade() -> None:
    op.drop_table('webhook_events')
    op.drop_index('uq_appointments_user_start_confirmed', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('appointment_types')
    op.drop_table('date_overrides')
    op.drop_table('availability_rules')
    op.drop_table('users')
