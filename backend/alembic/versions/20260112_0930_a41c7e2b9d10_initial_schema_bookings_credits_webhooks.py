"""Initial schema: users, rooms, products, bookings, credits, payments, refunds, coupons, webhook ledger, audit

Revision ID: a41c7e2b9d10
Revises: 
Create Date: 2026-01-12 09:30:41.218733

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a41c7e2b9d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy persists enum member names
ENUMS = {
    'producttype': (
        'HOURLY_RATE', 'PACKAGE_10H', 'PACKAGE_20H', 'PACKAGE_40H', 'SHIFT_FIXED',
        'DAY_PASS', 'SATURDAY_HOUR', 'SATURDAY_5H', 'SATURDAY_SHIFT',
    ),
    'bookingstatus': ('PENDING', 'CONFIRMED', 'CANCELLED', 'COMPLETED', 'NO_SHOW'),
    'financialstatus': ('UNPAID', 'PAID', 'COURTESY', 'PARTIAL_REFUND', 'REFUNDED'),
    'paymentstatus': ('PENDING', 'APPROVED', 'REJECTED', 'REFUNDED'),
    'creditstatus': ('PENDING', 'CONFIRMED', 'USED', 'REFUNDED', 'EXPIRED'),
    'creditusagetype': ('HOURLY', 'SHIFT', 'SATURDAY_HOURLY', 'SATURDAY_SHIFT'),
    'refundstatus': ('PENDING', 'COMPLETED', 'FAILED'),
    'refundgateway': ('MANUAL', 'ASAAS'),
    'couponusagecontext': ('BOOKING', 'CREDIT_PURCHASE'),
    'couponusagestatus': ('USED', 'RESTORED'),
    'webhookeventstatus': (
        'PROCESSING', 'PROCESSED', 'FAILED', 'IGNORED_NO_REFERENCE', 'IGNORED_NOT_FOUND',
        'BLOCKED_CANCELLED', 'BLOCKED_REFUNDED', 'BLOCKED_COURTESY',
    ),
    'conversionstatus': ('PENDING', 'SENT', 'FAILED'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _base_columns() -> list:
    return [
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables for the booking payments service."""
    for name, values in ENUMS.items():
        labels = ", ".join(f"'{value}'" for value in values)
        op.execute(f"CREATE TYPE {name} AS ENUM ({labels})")

    # 1. Users and rooms (no dependencies)
    op.create_table(
        'users',
        *_base_columns(),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('email_verified_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'rooms',
        *_base_columns(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('hourly_rate', sa.Integer(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_rooms_slug'), 'rooms', ['slug'], unique=True)

    # 2. Products (depends on rooms)
    op.create_table(
        'products',
        *_base_columns(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('type', _enum('producttype'), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('hours_included', sa.Integer(), nullable=True),
        sa.Column('validity_days', sa.Integer(), nullable=True),
        sa.Column('room_id', sa.String(length=36), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_products_type'), 'products', ['type'])
    op.create_index(op.f('ix_products_room_id'), 'products', ['room_id'])

    # 3. Bookings (depends on users, rooms, products)
    op.create_table(
        'bookings',
        *_base_columns(),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('room_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=True),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('status', _enum('bookingstatus'), nullable=False, server_default='PENDING'),
        sa.Column('payment_status', _enum('paymentstatus'), nullable=False, server_default='PENDING'),
        sa.Column('financial_status', _enum('financialstatus'), nullable=False, server_default='UNPAID'),
        sa.Column('amount_paid', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Integer(), nullable=True),
        sa.Column('credits_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credit_ids', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('coupon_code', sa.String(), nullable=True),
        sa.Column('payment_id', sa.String(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('email_sent_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_user_id'), 'bookings', ['user_id'])
    op.create_index(op.f('ix_bookings_room_id'), 'bookings', ['room_id'])
    op.create_index(op.f('ix_bookings_product_id'), 'bookings', ['product_id'])
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'])
    op.create_index(op.f('ix_bookings_financial_status'), 'bookings', ['financial_status'])
    op.create_index(op.f('ix_bookings_payment_id'), 'bookings', ['payment_id'])

    # 4. Credits (depends on users, rooms, products, bookings)
    op.create_table(
        'credits',
        *_base_columns(),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('room_id', sa.String(length=36), nullable=True),
        sa.Column('product_id', sa.String(length=36), nullable=True),
        sa.Column('source_booking_id', sa.String(length=36), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('remaining_amount', sa.Integer(), nullable=False),
        sa.Column('hours', sa.Integer(), nullable=True),
        sa.Column('status', _enum('creditstatus'), nullable=False, server_default='PENDING'),
        sa.Column('usage_type', _enum('creditusagetype'), nullable=False, server_default='HOURLY'),
        sa.Column('coupon_code', sa.String(), nullable=True),
        sa.Column('payment_id', sa.String(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['source_booking_id'], ['bookings.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credits_user_id'), 'credits', ['user_id'])
    op.create_index(op.f('ix_credits_room_id'), 'credits', ['room_id'])
    op.create_index(op.f('ix_credits_source_booking_id'), 'credits', ['source_booking_id'])
    op.create_index(op.f('ix_credits_status'), 'credits', ['status'])
    op.create_index(op.f('ix_credits_payment_id'), 'credits', ['payment_id'])

    # 5. Payments and refunds (depend on bookings, credits)
    op.create_table(
        'payments',
        *_base_columns(),
        sa.Column('external_id', sa.String(), nullable=False),
        sa.Column('booking_id', sa.String(length=36), nullable=True),
        sa.Column('credit_id', sa.String(length=36), nullable=True),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', _enum('paymentstatus'), nullable=False, server_default='PENDING'),
        sa.Column('billing_type', sa.String(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=False, server_default='{}'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id']),
        sa.ForeignKeyConstraint(['credit_id'], ['credits.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payments_external_id'), 'payments', ['external_id'], unique=True)
    op.create_index(op.f('ix_payments_booking_id'), 'payments', ['booking_id'])
    op.create_index(op.f('ix_payments_credit_id'), 'payments', ['credit_id'])
    op.create_index(op.f('ix_payments_user_id'), 'payments', ['user_id'])
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'])

    op.create_table(
        'refunds',
        *_base_columns(),
        sa.Column('booking_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('expected_amount', sa.Integer(), nullable=False),
        sa.Column('refunded_amount', sa.Integer(), nullable=False),
        sa.Column('is_partial', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('credits_returned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('money_returned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_refunded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', _enum('refundstatus'), nullable=False, server_default='PENDING'),
        sa.Column('gateway', _enum('refundgateway'), nullable=False, server_default='ASAAS'),
        sa.Column('external_refund_id', sa.String(), nullable=True),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_refunds_booking_id'), 'refunds', ['booking_id'], unique=True)
    op.create_index(op.f('ix_refunds_user_id'), 'refunds', ['user_id'])
    op.create_index(op.f('ix_refunds_status'), 'refunds', ['status'])

    # 6. Coupons
    op.create_table(
        'coupons',
        *_base_columns(),
        sa.Column('code', sa.String(), nullable=False),
        sa.Column('discount_percent', sa.Integer(), nullable=True),
        sa.Column('discount_amount', sa.Integer(), nullable=True),
        sa.Column('current_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default='true'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_coupons_code'), 'coupons', ['code'], unique=True)

    op.create_table(
        'coupon_usages',
        *_base_columns(),
        sa.Column('coupon_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('context', _enum('couponusagecontext'), nullable=False),
        sa.Column('booking_id', sa.String(length=36), nullable=True),
        sa.Column('credit_id', sa.String(length=36), nullable=True),
        sa.Column('status', _enum('couponusagestatus'), nullable=False, server_default='USED'),
        sa.Column('restored_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id']),
        sa.ForeignKeyConstraint(['credit_id'], ['credits.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_coupon_usages_coupon_id'), 'coupon_usages', ['coupon_id'])
    op.create_index(op.f('ix_coupon_usages_user_id'), 'coupon_usages', ['user_id'])
    op.create_index(op.f('ix_coupon_usages_booking_id'), 'coupon_usages', ['booking_id'])
    op.create_index(op.f('ix_coupon_usages_credit_id'), 'coupon_usages', ['credit_id'])

    # 7. Webhook ledger (event_id uniqueness is the idempotency guarantee)
    op.create_table(
        'webhook_events',
        *_base_columns(),
        sa.Column('event_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('external_payment_id', sa.String(), nullable=True),
        sa.Column('resource_reference', sa.String(), nullable=True),
        sa.Column('status', _enum('webhookeventstatus'), nullable=False, server_default='PROCESSING'),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_webhook_events_event_id'), 'webhook_events', ['event_id'], unique=True)
    op.create_index(op.f('ix_webhook_events_event_type'), 'webhook_events', ['event_type'])
    op.create_index(op.f('ix_webhook_events_external_payment_id'), 'webhook_events', ['external_payment_id'])
    op.create_index(op.f('ix_webhook_events_status'), 'webhook_events', ['status'])

    # 8. Audit, conversion guard, activation tokens
    op.create_table(
        'audit_logs',
        *_base_columns(),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('source', sa.String(), nullable=False, server_default='SYSTEM'),
        sa.Column('target_type', sa.String(), nullable=False),
        sa.Column('target_id', sa.String(), nullable=False),
        sa.Column('actor_id', sa.String(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_logs_action'), 'audit_logs', ['action'])
    op.create_index(op.f('ix_audit_logs_target_type'), 'audit_logs', ['target_type'])
    op.create_index(op.f('ix_audit_logs_target_id'), 'audit_logs', ['target_id'])

    op.create_table(
        'conversion_events',
        *_base_columns(),
        sa.Column('event_name', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(length=36), nullable=False),
        sa.Column('status', _enum('conversionstatus'), nullable=False, server_default='PENDING'),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_name', 'entity_type', 'entity_id', name='uq_conversion_event_entity')
    )
    op.create_index(op.f('ix_conversion_events_entity_id'), 'conversion_events', ['entity_id'])

    op.create_table(
        'activation_tokens',
        *_base_columns(),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_hash')
    )
    op.create_index(op.f('ix_activation_tokens_user_id'), 'activation_tokens', ['user_id'])


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse dependency order
    op.drop_table('activation_tokens')
    op.drop_table('conversion_events')
    op.drop_table('audit_logs')
    op.drop_table('webhook_events')
    op.drop_table('coupon_usages')
    op.drop_table('coupons')
    op.drop_table('refunds')
    op.drop_table('payments')
    op.drop_table('credits')
    op.drop_table('bookings')
    op.drop_table('products')
    op.drop_table('rooms')
    op.drop_table('users')

    # Drop enums
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
