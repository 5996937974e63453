"""Add composite indexes for ledger replay and refund lookups

Revision ID: 20260114_1015
Revises: a41c7e2b9d10
Create Date: 2026-01-14 10:15:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = '20260114_1015'
down_revision = 'a41c7e2b9d10'
branch_labels = None
depends_on = None


def upgrade():
    """Add composite indexes for common query patterns."""

    # Webhook ledger: status + updated_at (replay worker finds FAILED and stuck PROCESSING rows)
    op.create_index(
        'ix_webhook_events_status_updated_at',
        'webhook_events',
        ['status', 'updated_at'],
        unique=False
    )

    # Refunds: status + created_at (pending refunds awaiting completion)
    op.create_index(
        'ix_refunds_status_created_at',
        'refunds',
        ['status', 'created_at'],
        unique=False
    )

    # Credits: user_id + status (available balance per user)
    op.create_index(
        'ix_credits_user_status',
        'credits',
        ['user_id', 'status'],
        unique=False
    )

    # Audit logs: target_type + target_id + created_at (history of one entity)
    op.create_index(
        'ix_audit_logs_target_created',
        'audit_logs',
        ['target_type', 'target_id', 'created_at'],
        unique=False
    )


def downgrade():
    """Remove composite indexes."""
    op.drop_index('ix_audit_logs_target_created', table_name='audit_logs')
    op.drop_index('ix_credits_user_status', table_name='credits')
    op.drop_index('ix_refunds_status_created_at', table_name='refunds')
    op.drop_index('ix_webhook_events_status_updated_at', table_name='webhook_events')
